"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the NFT lending pool.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. ownership.py - Every pooled NFT sits in exactly one place
2. atomicity.py - All-or-nothing operation semantics
3. conservation.py - Quote tokens, NFTs and LP shares are conserved
4. accrual.py - Interest only ever accrues forward
5. determinism.py - Reproducible behavior
6. temporal.py - Time and event ordering

These tests use hypothesis for property-based testing; strategies.py
generates the random operation sequences they share.
"""
