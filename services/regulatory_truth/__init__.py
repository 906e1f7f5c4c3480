"""
Regulatory Truth Service
========================

Turns scraped regulatory evidence into a verified, deduplicated,
conflict-free and citable set of rules.

Features:
- Provenance validation against unmodified source bytes
- Concept deduplication by meaning signature
- Fail-closed rule composition
- Conflict and amendment-cycle detection
- Lifecycle state machine with a provenance publish gate
- Staleness-driven re-verification and deprecation
- Deterministic release hashing

Port: 8010
"""

__version__ = "0.1.0"
