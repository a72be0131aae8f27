"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the multi-delegation engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Ledger totals equal custodied balances
2. atomicity.py - All-or-nothing delegate_multi semantics
3. determinism.py - Reproducible plans, addresses and receipts
4. concurrency.py - Serialized calls per asset, isolated rollbacks

These tests use hypothesis for property-based testing.
"""
