"""
Validation Result Schemas
"""
from typing import Any, Dict, List
from uuid import UUID

from pydantic import BaseModel, Field


class Violation(BaseModel):
    """검증 위반 (필드, 규칙, 관측 값)"""

    field: str
    rule: str
    value: Any = None
    message: str = ""


class ValidationResult(BaseModel):
    """검증 결과 (Accepted / Rejected)"""

    class_id: UUID
    accepted: bool
    violations: List[Violation] = Field(default_factory=list)
    normalized_values: Dict[str, Any] = Field(
        default_factory=dict,
        description="타입 변환 및 기본값이 적용된 값 (accepted일 때만)",
    )
    schema_hash: str

    @property
    def rejected(self) -> bool:
        return not self.accepted
