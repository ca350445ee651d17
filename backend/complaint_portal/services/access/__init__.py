"""Access control: actors, has_role and the row-level policies."""
from .policies import (
    Actor,
    Operation,
    Policy,
    POLICIES,
    RowLevelSecurity,
    has_role,
    policies_for,
)

__all__ = [
    "Actor",
    "Operation",
    "Policy",
    "POLICIES",
    "RowLevelSecurity",
    "has_role",
    "policies_for",
]
