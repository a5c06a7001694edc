"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the issuance engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - Failed operations leave no observable effect
2. invariants.py - Over-collateralization and custody conservation
3. valuation.py - Fixed-point valuation bounds and registry construction

These tests use hypothesis for property-based testing.
"""
