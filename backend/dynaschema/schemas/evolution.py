"""
Schema Evolution Pydantic Schemas
변경 영향 보고서 및 변경 이력
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SafetyLevel(str, Enum):
    """기존 데이터에 대한 변경 안전도"""

    SAFE = "safe"
    WARNING = "warning"
    BREAKING = "breaking"

    @property
    def rank(self) -> int:
        return _SAFETY_RANK[self]


_SAFETY_RANK = {
    SafetyLevel.SAFE: 0,
    SafetyLevel.WARNING: 1,
    SafetyLevel.BREAKING: 2,
}


def worst_level(levels: Iterable[SafetyLevel]) -> SafetyLevel:
    """가장 위험한 안전도 (없으면 safe)"""
    return max(levels, key=lambda level: level.rank, default=SafetyLevel.SAFE)


class ImpactDetail(BaseModel):
    """변경 항목별 영향"""

    field: str = Field(..., description="규칙 이름 또는 required/default_value/assignment")
    change: str = Field(..., description="narrowed, relaxed, neutral, added, removed")
    old: Any = None
    new: Any = None
    class_id: Optional[UUID] = None
    assignment_id: Optional[UUID] = None
    affected_instance_count: int = 0
    safety_level: SafetyLevel
    message: str = ""


class ImpactReport(BaseModel):
    """변경 영향 보고서"""

    entity_type: str
    entity_id: Optional[UUID] = None
    change_type: str
    safety_level: SafetyLevel = SafetyLevel.SAFE
    affected_assignment_count: int = 0
    affected_instance_count: int = 0
    details: List[ImpactDetail] = Field(default_factory=list)
    recommended_actions: List[str] = Field(default_factory=list)
    instance_counts: Dict[str, int] = Field(
        default_factory=dict,
        description="분류에 사용한 클래스별 인스턴스 수 스냅샷",
    )

    @property
    def is_breaking(self) -> bool:
        return self.safety_level is SafetyLevel.BREAKING

    @classmethod
    def safe(cls, entity_type: str, entity_id: Optional[UUID], change_type: str) -> "ImpactReport":
        """분석할 영향이 없는 변경 (생성, 미사용 속성 비활성화 등)"""
        return cls(entity_type=entity_type, entity_id=entity_id, change_type=change_type)


class EvolutionRecordResponse(BaseModel):
    """변경 이력 응답"""

    evolution_id: UUID
    tenant_id: UUID
    entity_type: str
    entity_id: UUID
    operation: str
    entity_version: int
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    safety_level: SafetyLevel
    forced: bool
    instance_counts: Dict[str, int] = Field(default_factory=dict)
    impact_report: Optional[Dict[str, Any]] = None
    rollback_data: Optional[Dict[str, Any]] = None
    actor_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True
