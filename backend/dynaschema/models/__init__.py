"""
SQLAlchemy ORM Models
"""
from dynaschema.models.core import (
    ALLOWED_TRANSITIONS,
    AssignmentRecord,
    AttributeDefinition,
    EntityState,
    EvolutionRecord,
    can_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AssignmentRecord",
    "AttributeDefinition",
    "EntityState",
    "EvolutionRecord",
    "can_transition",
]
