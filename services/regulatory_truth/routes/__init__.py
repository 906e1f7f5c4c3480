"""
Regulatory Truth Routes
=======================

API route handlers for the Regulatory Truth Service.

Routes:
- rules: composition and lifecycle transitions
- conflicts: open conflicts awaiting triage
- staleness: evidence re-verification and rule expiry
- releases: release hash and verification
"""

from services.regulatory_truth.routes import conflicts, releases, rules, staleness


__all__ = ["conflicts", "releases", "rules", "staleness"]
