"""
Rule Store
==========

Repository abstraction with in-memory and SQLAlchemy implementations.
"""

from services.regulatory_truth.store.base import RuleStore
from services.regulatory_truth.store.memory import InMemoryRuleStore
from services.regulatory_truth.store.sql import SqlRuleStore


__all__ = [
    "RuleStore",
    "InMemoryRuleStore",
    "SqlRuleStore",
]
