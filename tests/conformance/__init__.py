"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of group execution.
Any compliant executor MUST pass these tests.

The tests are organized by invariant:
1. test_atomicity.py - All-or-nothing group semantics
2. test_conservation.py - Currency and asset supply are never created or destroyed
3. test_optin_idempotency.py - Repeated opt-ins yield the same record
4. test_ordering.py - Caller order decides balance sufficiency
5. test_determinism.py - Identical inputs produce identical state

These tests use hypothesis for property-based testing.
"""
