"""
Regulatory Truth Services
=========================

Services for curating and publishing verified regulatory rules.

Services:
- regulatory_truth: provenance, composition, lifecycle and release integrity
"""

__all__ = [
    "regulatory_truth",
]
