"""
Pydantic Schemas
"""
from dynaschema.schemas.assignment import AssignmentCreate, AssignmentResponse, AssignmentUpdate
from dynaschema.schemas.attribute import AttributeCreate, AttributeResponse, AttributeUpdate
from dynaschema.schemas.composed import ComposedAttribute, ComposedSchema, SchemaStamp
from dynaschema.schemas.evolution import (
    EvolutionRecordResponse,
    ImpactDetail,
    ImpactReport,
    SafetyLevel,
    worst_level,
)
from dynaschema.schemas.rules import DataType, RuleKind, normalize_rule_set
from dynaschema.schemas.validation import ValidationResult, Violation

__all__ = [
    "AssignmentCreate",
    "AssignmentResponse",
    "AssignmentUpdate",
    "AttributeCreate",
    "AttributeResponse",
    "AttributeUpdate",
    "ComposedAttribute",
    "ComposedSchema",
    "SchemaStamp",
    "EvolutionRecordResponse",
    "ImpactDetail",
    "ImpactReport",
    "SafetyLevel",
    "worst_level",
    "DataType",
    "RuleKind",
    "normalize_rule_set",
    "ValidationResult",
    "Violation",
]
