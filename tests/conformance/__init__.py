"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending system.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_calculator_laws.py - Exact floor arithmetic of every amount
2. test_call_atomicity.py - All-or-nothing lifecycle calls
3. test_no_double_spend.py - Escrow paid out at most once, value conserved

These tests use hypothesis for property-based testing.
"""
