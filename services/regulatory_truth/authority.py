"""
Authority Levels
================

Maps source hierarchy to rule authority and ranks authority levels for
conflict tie-breaks (LAW > GUIDANCE > PROCEDURE > PRACTICE).

Version: 0.1.0
"""

from collections.abc import Iterable

from services.regulatory_truth.models import AuthorityLevel


HIERARCHY_AUTHORITY: dict[int, AuthorityLevel] = {
    1: AuthorityLevel.LAW,  # Ustav, zakon
    2: AuthorityLevel.LAW,  # Pravilnik, uredba
    3: AuthorityLevel.GUIDANCE,  # Official guidance and interpretations
    4: AuthorityLevel.PROCEDURE,  # Practice guides and procedures
    5: AuthorityLevel.PRACTICE,  # Auto-created or unknown sources
}

AUTHORITY_RANK: dict[AuthorityLevel, int] = {
    AuthorityLevel.LAW: 1,
    AuthorityLevel.GUIDANCE: 2,
    AuthorityLevel.PROCEDURE: 3,
    AuthorityLevel.PRACTICE: 4,
}


def authority_for_hierarchy(hierarchy: int) -> AuthorityLevel:
    return HIERARCHY_AUTHORITY.get(hierarchy, AuthorityLevel.PRACTICE)


def derive_authority_level(hierarchies: Iterable[int]) -> AuthorityLevel:
    """
    Authority of a rule from the hierarchy of its contributing sources.

    The highest-ranked source wins (lowest hierarchy number). With no known
    source the rule is treated as PRACTICE.
    """
    known = [h for h in hierarchies if h is not None]
    if not known:
        return AuthorityLevel.PRACTICE
    return authority_for_hierarchy(min(known))


def outranks(a: AuthorityLevel, b: AuthorityLevel) -> bool:
    """True when ``a`` is strictly stronger than ``b``."""
    return AUTHORITY_RANK[a] < AUTHORITY_RANK[b]
