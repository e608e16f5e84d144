"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the escrow.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Token totals never change across make/take
2. atomicity.py - An instruction applies every effect or none
3. uniqueness.py - One live offer per (maker, id)

These tests use hypothesis for property-based testing.
"""
