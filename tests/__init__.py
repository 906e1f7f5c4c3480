"""
Regulatory Truth Test Suite
===========================

Test organization:
- tests/unit/                     - Settings and error classification
- tests/services/regulatory_truth - Pipeline services, stores and API

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
"""
