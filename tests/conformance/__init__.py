"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the investment system.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Supply accounting invariants
2. atomicity.py - All-or-nothing operation semantics
3. idempotency.py - Duplicate execution handling
4. determinism.py - Reproducible behavior
5. temporal.py - Lock boundary and time ordering

These tests use hypothesis for property-based testing.
"""
