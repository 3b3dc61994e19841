"""
Schema Engine ORM Models
속성 정의, 클래스-속성 할당, 스키마 변경 이력

- 모든 행은 tenant_id로 격리
- version: 행 단위 단조 증가 카운터 (낙관적 동시성)
- status: active → deactivated (종료 상태, 물리 삭제 없음)
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB

from dynaschema.database import Base

# PostgreSQL에서는 JSONB, 그 외(SQLite 테스트)는 JSON
JSONType = JSON().with_variant(JSONB(), "postgresql")

ACTIVE_ONLY = text("status = 'active'")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityState(str, Enum):
    """템플릿 엔티티 상태 (Active → Deactivated, 종료 상태)"""

    ACTIVE = "active"
    DEACTIVATED = "deactivated"


ALLOWED_TRANSITIONS = {
    EntityState.ACTIVE: {EntityState.DEACTIVATED},
    EntityState.DEACTIVATED: set(),
}


def can_transition(current: str, target: str) -> bool:
    """상태 전이 가능 여부"""
    return EntityState(target) in ALLOWED_TRANSITIONS[EntityState(current)]


class AttributeDefinition(Base):
    """속성 정의 (클래스와 무관한 재사용 가능한 타입 템플릿)

    name, data_type은 생성 후 변경 불가
    """

    __tablename__ = "attribute_definitions"
    __table_args__ = (
        CheckConstraint(
            "data_type IN ('string', 'integer', 'decimal', 'boolean', "
            "'date', 'datetime', 'structured', 'reference')",
            name="ck_attribute_definitions_data_type"
        ),
        CheckConstraint(
            "status IN ('active', 'deactivated')",
            name="ck_attribute_definitions_status"
        ),
        Index(
            "uq_attribute_definitions_tenant_name_active",
            "tenant_id", "name",
            unique=True,
            postgresql_where=ACTIVE_ONLY,
            sqlite_where=ACTIVE_ONLY,
        ),
        {"extend_existing": True}
    )

    attribute_id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, nullable=False, index=True)
    name = Column(String(63), nullable=False)
    data_type = Column(String(20), nullable=False)
    base_rules = Column(JSONType, default=dict, nullable=False)
    description = Column(Text, nullable=True)

    version = Column(Integer, default=1, nullable=False)
    status = Column(String(20), default=EntityState.ACTIVE.value, nullable=False)

    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == EntityState.ACTIVE.value

    def __repr__(self):
        return f"<AttributeDefinition(id={self.attribute_id}, name='{self.name}', type={self.data_type})>"


class AssignmentRecord(Base):
    """클래스-속성 할당 (클래스별 필수 여부, 정렬 위치, 기본값, 규칙 override)

    역방향(속성 → 클래스)은 back-pointer 대신 ix_assignment_records_attribute 인덱스로 조회
    """

    __tablename__ = "assignment_records"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'deactivated')",
            name="ck_assignment_records_status"
        ),
        CheckConstraint("sort_position >= 0", name="ck_assignment_records_sort_position"),
        # (class, attribute)당 활성 할당은 최대 1개
        Index(
            "uq_assignment_records_class_attribute_active",
            "tenant_id", "class_id", "attribute_id",
            unique=True,
            postgresql_where=ACTIVE_ONLY,
            sqlite_where=ACTIVE_ONLY,
        ),
        # 클래스 내 활성 할당의 정렬 위치는 유일
        Index(
            "uq_assignment_records_class_sort_active",
            "tenant_id", "class_id", "sort_position",
            unique=True,
            postgresql_where=ACTIVE_ONLY,
            sqlite_where=ACTIVE_ONLY,
        ),
        # "클래스 X의 활성 할당을 정렬 순서로" 조회용
        Index(
            "ix_assignment_records_class_status_sort",
            "tenant_id", "class_id", "status", "sort_position",
        ),
        Index("ix_assignment_records_attribute", "tenant_id", "attribute_id"),
        {"extend_existing": True}
    )

    assignment_id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, nullable=False)
    class_id = Column(Uuid, nullable=False)  # 클래스 템플릿 서비스 소유 (엔진에는 opaque)
    attribute_id = Column(
        Uuid,
        ForeignKey("attribute_definitions.attribute_id"),
        nullable=False,
    )

    required = Column(Boolean, default=False, nullable=False)
    sort_position = Column(Integer, nullable=False)
    display_name = Column(String(255), nullable=True)
    override_rules = Column(JSONType, default=dict, nullable=False)
    default_value = Column(JSONType, nullable=True)  # NULL이면 기본값 없음

    version = Column(Integer, default=1, nullable=False)
    status = Column(String(20), default=EntityState.ACTIVE.value, nullable=False)

    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == EntityState.ACTIVE.value

    @property
    def has_default(self) -> bool:
        return self.default_value is not None

    def __repr__(self):
        return (
            f"<AssignmentRecord(id={self.assignment_id}, class={self.class_id}, "
            f"attribute={self.attribute_id}, position={self.sort_position})>"
        )


class EvolutionRecord(Base):
    """스키마 변경 이력 (append-only)

    정의/할당 변경이 성공할 때마다 서비스 계층에서 기록
    """

    __tablename__ = "evolution_records"
    __table_args__ = (
        CheckConstraint(
            "entity_type IN ('attribute', 'assignment')",
            name="ck_evolution_records_entity_type"
        ),
        CheckConstraint(
            "safety_level IN ('safe', 'warning', 'breaking')",
            name="ck_evolution_records_safety_level"
        ),
        Index("ix_evolution_records_entity", "tenant_id", "entity_id", "created_at"),
        {"extend_existing": True}
    )

    evolution_id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(Uuid, nullable=False)
    operation = Column(String(20), nullable=False)  # create, update, deactivate, rollback
    entity_version = Column(Integer, nullable=False)  # 변경 후 버전

    old_value = Column(JSONType, nullable=True)
    new_value = Column(JSONType, nullable=True)
    safety_level = Column(String(20), nullable=False)
    forced = Column(Boolean, default=False, nullable=False)
    instance_counts = Column(JSONType, default=dict, nullable=False)  # 분류에 사용한 인스턴스 수 스냅샷
    impact_report = Column(JSONType, nullable=True)
    rollback_data = Column(JSONType, nullable=True)

    actor_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<EvolutionRecord(id={self.evolution_id}, entity={self.entity_type}:{self.entity_id}, "
            f"op={self.operation}, safety={self.safety_level})>"
        )
