"""
Schema Service
테넌트 컨텍스트 하나에 대한 스키마 엔진 진입점

모든 변경 흐름:
1. EvolutionAnalyzer로 영향 분석
2. breaking이면 force 없이는 거부 (BreakingChangeNotForcedError)
3. ConcurrencyGuard로 버전 조건부 적용 + 캐시 무효화
4. EvolutionRecord 추가 (이전/이후 값, 안전도, 인스턴스 수 스냅샷, 롤백 데이터)
5. 커밋 (실패 시 롤백)

기존 인스턴스에 기본값을 채우는 backfill은 인스턴스 저장소의 책임 - 엔진은 인스턴스를 쓰지 않음
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.orm import Session

from dynaschema.models.core import AssignmentRecord, AttributeDefinition, EvolutionRecord
from dynaschema.repositories.evolution_repository import EvolutionRepository
from dynaschema.schemas.assignment import AssignmentCreate, AssignmentResponse
from dynaschema.schemas.attribute import AttributeCreate, AttributeResponse
from dynaschema.schemas.composed import ComposedSchema
from dynaschema.schemas.evolution import ImpactReport, SafetyLevel
from dynaschema.schemas.validation import ValidationResult
from dynaschema.services.assignment_index import MUTABLE_FIELDS as ASSIGNMENT_MUTABLE_FIELDS
from dynaschema.services.assignment_index import AssignmentIndex
from dynaschema.services.attribute_catalog import MUTABLE_FIELDS as ATTRIBUTE_MUTABLE_FIELDS
from dynaschema.services.attribute_catalog import AttributeCatalog
from dynaschema.services.collaborators import ClassRegistry, InstanceStore
from dynaschema.services.evolution_analyzer import EvolutionAnalyzer
from dynaschema.services.schema_cache import NullSchemaCache, SchemaCache
from dynaschema.services.schema_composer import SchemaComposer
from dynaschema.services.tenant_context import TenantContext, require_tenant
from dynaschema.services.validation_engine import ValidationEngine
from dynaschema.utils.errors import (
    BreakingChangeNotForcedError,
    EvolutionRecordNotFoundError,
    RollbackNotSupportedError,
    VersionConflictError,
)
from dynaschema.utils.metrics import track_schema_change, track_version_conflict

logger = logging.getLogger(__name__)

Changes = Union[BaseModel, Mapping[str, Any]]


@dataclass
class ChangeOutcome:
    """변경 결과 (적용된 엔티티, 영향 보고서, 변경 이력)"""

    entity: Any
    report: ImpactReport
    evolution: EvolutionRecord
    forced: bool = False


def _as_changes(changes: Changes) -> Dict[str, Any]:
    """요청 스키마는 명시적으로 전달된 필드만 사용"""
    if isinstance(changes, BaseModel):
        return changes.model_dump(exclude_unset=True)
    return dict(changes)


class SchemaService:
    """스키마 엔진 서비스 (트랜잭션 소유)"""

    def __init__(
        self,
        db: Session,
        ctx: TenantContext,
        *,
        cache: Optional[SchemaCache] = None,
        instance_store: Optional[InstanceStore] = None,
        class_registry: Optional[ClassRegistry] = None,
    ):
        require_tenant(ctx)
        self.db = db
        self.ctx = ctx
        self.cache = cache or NullSchemaCache()
        self.catalog = AttributeCatalog(db, ctx, self.cache)
        self.index = AssignmentIndex(db, ctx, self.cache, class_registry)
        self.composer = SchemaComposer(db, ctx, self.cache)
        self.validator = ValidationEngine(self.composer)
        self.analyzer = EvolutionAnalyzer(db, ctx, instance_store)
        self.evolutions = EvolutionRepository(db, ctx)

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # ========== 조회 ==========

    def get_attribute(self, attribute_id: UUID) -> AttributeDefinition:
        return self.catalog.get(attribute_id)

    def get_attribute_by_name(self, name: str) -> AttributeDefinition:
        return self.catalog.get_by_name(name)

    def list_attributes(self, data_type: Optional[str] = None, include_inactive: bool = False) -> List[AttributeDefinition]:
        return self.catalog.list(data_type=data_type, include_inactive=include_inactive)

    def referencing_class_ids(self, attribute_id: UUID) -> List[UUID]:
        return self.catalog.referencing_class_ids(attribute_id)

    def get_assignment(self, assignment_id: UUID) -> AssignmentRecord:
        return self.index.get(assignment_id)

    def list_assignments(self, class_id: UUID, include_inactive: bool = False) -> List[AssignmentRecord]:
        return self.index.list_for_class(class_id, include_inactive=include_inactive)

    def list_assignments_for_attribute(self, attribute_id: UUID) -> List[AssignmentRecord]:
        return self.index.list_for_attribute(attribute_id)

    def compose(self, class_id: UUID, bypass_cache: bool = False) -> ComposedSchema:
        return self.composer.compose(class_id, bypass_cache=bypass_cache)

    def validate(self, class_id: UUID, candidate_values: Any) -> ValidationResult:
        return self.validator.validate(class_id, candidate_values)

    def analyze_attribute_change(self, attribute_id: UUID, changes: Changes) -> ImpactReport:
        return self.analyzer.analyze_attribute_change(attribute_id, _as_changes(changes))

    def analyze_assignment_change(self, assignment_id: UUID, changes: Changes) -> ImpactReport:
        return self.analyzer.analyze_assignment_change(assignment_id, _as_changes(changes))

    def analyze_assignment_creation(self, data: AssignmentCreate) -> ImpactReport:
        return self.analyzer.analyze_assignment_creation(
            data.class_id, data.attribute_id, data.required, data.override_rules, data.default_value
        )

    def analyze_assignment_removal(self, assignment_id: UUID) -> ImpactReport:
        return self.analyzer.analyze_assignment_removal(assignment_id)

    def history(
        self,
        entity_id: Optional[UUID] = None,
        entity_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[EvolutionRecord]:
        """변경 이력 (최신순)"""
        return self.evolutions.list(entity_id=entity_id, entity_type=entity_type, limit=limit)

    # ========== 내부 ==========

    def _precheck_version(self, entity: str, entity_id: UUID, current: int, expected: int):
        """분석 전에 이미 어긋난 버전은 바로 거부"""
        if current != expected:
            track_version_conflict(entity)
            logger.warning(f"Version conflict on {entity} {entity_id}: expected={expected}, current={current}")
            raise VersionConflictError(
                f"{entity} 버전이 일치하지 않습니다 (expected={expected}, current={current})",
                entity_id=str(entity_id),
                expected_version=expected,
                current_version=current,
            )

    def _enforce(self, report: ImpactReport, force: bool, entity: str, operation: str) -> bool:
        """breaking 변경 거부 (force면 통과). 강제 적용 여부 반환"""
        if not report.is_breaking:
            return False
        if not force:
            track_schema_change(entity, operation, report.safety_level.value, "rejected")
            logger.warning(
                f"Breaking {entity} {operation} rejected: {report.entity_id} "
                f"(instances={report.affected_instance_count})"
            )
            raise BreakingChangeNotForcedError(
                "기존 데이터와 호환되지 않는 변경은 force 없이 적용할 수 없습니다",
                report=report,
                impact_report=report.model_dump(mode="json"),
            )
        logger.warning(f"Breaking {entity} {operation} forced: {report.entity_id}")
        return True

    def _record(
        self,
        entity_type: str,
        entity_id: UUID,
        operation: str,
        entity_version: int,
        old_value: Optional[Dict[str, Any]],
        new_value: Optional[Dict[str, Any]],
        report: ImpactReport,
        forced: bool,
        rollback_data: Optional[Dict[str, Any]],
    ) -> EvolutionRecord:
        record = EvolutionRecord(
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            entity_version=entity_version,
            old_value=old_value,
            new_value=new_value,
            safety_level=report.safety_level.value,
            forced=forced,
            instance_counts=dict(report.instance_counts),
            impact_report=report.model_dump(mode="json"),
            rollback_data=rollback_data,
            actor_id=self.ctx.actor_id,
        )
        self.evolutions.append(record)
        track_schema_change(entity_type, operation, report.safety_level.value, "forced" if forced else "applied")
        return record

    @staticmethod
    def _attribute_snapshot(attribute: AttributeDefinition) -> Dict[str, Any]:
        return AttributeResponse.model_validate(attribute).model_dump(mode="json")

    @staticmethod
    def _assignment_snapshot(assignment: AssignmentRecord) -> Dict[str, Any]:
        return AssignmentResponse.model_validate(assignment).model_dump(mode="json")

    # ========== 속성 정의 ==========

    def create_attribute(self, data: AttributeCreate) -> ChangeOutcome:
        with self._transaction():
            attribute = self.catalog.create(
                name=data.name,
                data_type=data.data_type,
                base_rules=data.base_rules,
                description=data.description,
            )
            report = ImpactReport.safe("attribute", attribute.attribute_id, "create")
            record = self._record(
                "attribute", attribute.attribute_id, "create", attribute.version,
                None, self._attribute_snapshot(attribute), report, False,
                {"action": "deactivate"},
            )
        return ChangeOutcome(attribute, report, record)

    def update_attribute(
        self,
        attribute_id: UUID,
        changes: Changes,
        expected_version: int,
        force: bool = False,
        *,
        operation: str = "update",
    ) -> ChangeOutcome:
        changes = _as_changes(changes)
        with self._transaction():
            attribute = self.catalog.get(attribute_id)
            self.catalog.prepare_changes(attribute, changes)
            self._precheck_version("attribute", attribute_id, attribute.version, expected_version)
            before = self._attribute_snapshot(attribute)

            report = self.analyzer.analyze_attribute_change(attribute_id, changes)
            forced = self._enforce(report, force, "attribute", operation)

            updated = self.catalog.update(attribute_id, changes, expected_version)
            record = self._record(
                "attribute", attribute_id, operation, updated.version,
                before, self._attribute_snapshot(updated), report, forced,
                {"action": "restore", "values": {key: before[key] for key in ATTRIBUTE_MUTABLE_FIELDS}},
            )
        return ChangeOutcome(updated, report, record, forced)

    def deactivate_attribute(
        self,
        attribute_id: UUID,
        expected_version: Optional[int] = None,
        *,
        operation: str = "deactivate",
    ) -> ChangeOutcome:
        """속성 비활성화 (활성 할당이 참조 중이면 InUseError)"""
        with self._transaction():
            attribute = self.catalog.get(attribute_id)
            before = self._attribute_snapshot(attribute)
            report = ImpactReport.safe("attribute", attribute_id, "deactivate")

            deactivated = self.catalog.deactivate(attribute_id, expected_version)
            record = self._record(
                "attribute", attribute_id, operation, deactivated.version,
                before, self._attribute_snapshot(deactivated), report, False, None,
            )
        return ChangeOutcome(deactivated, report, record)

    # ========== 할당 ==========

    def create_assignment(self, data: AssignmentCreate, force: bool = False) -> ChangeOutcome:
        with self._transaction():
            self.index.require_class(data.class_id)
            report = self.analyzer.analyze_assignment_creation(
                data.class_id, data.attribute_id, data.required, data.override_rules, data.default_value
            )
            forced = self._enforce(report, force, "assignment", "create")

            assignment = self.index.create(
                class_id=data.class_id,
                attribute_id=data.attribute_id,
                required=data.required,
                sort_position=data.sort_position,
                override_rules=data.override_rules,
                default_value=data.default_value,
                display_name=data.display_name,
            )
            report.entity_id = assignment.assignment_id
            record = self._record(
                "assignment", assignment.assignment_id, "create", assignment.version,
                None, self._assignment_snapshot(assignment), report, forced,
                {"action": "deactivate"},
            )
        return ChangeOutcome(assignment, report, record, forced)

    def update_assignment(
        self,
        assignment_id: UUID,
        changes: Changes,
        expected_version: int,
        force: bool = False,
        *,
        operation: str = "update",
    ) -> ChangeOutcome:
        changes = _as_changes(changes)
        with self._transaction():
            assignment = self.index.get(assignment_id)
            self.index.prepare_changes(assignment, changes)
            self._precheck_version("assignment", assignment_id, assignment.version, expected_version)
            before = self._assignment_snapshot(assignment)

            report = self.analyzer.analyze_assignment_change(assignment_id, changes)
            forced = self._enforce(report, force, "assignment", operation)

            updated = self.index.update(assignment_id, changes, expected_version)
            record = self._record(
                "assignment", assignment_id, operation, updated.version,
                before, self._assignment_snapshot(updated), report, forced,
                {"action": "restore", "values": {key: before[key] for key in ASSIGNMENT_MUTABLE_FIELDS}},
            )
        return ChangeOutcome(updated, report, record, forced)

    def delete_assignment(
        self,
        assignment_id: UUID,
        expected_version: Optional[int] = None,
        force: bool = False,
        *,
        operation: str = "deactivate",
    ) -> ChangeOutcome:
        """할당 비활성화 (저장된 값이 있으면 warning)"""
        with self._transaction():
            assignment = self.index.get(assignment_id)
            if expected_version is not None:
                self._precheck_version("assignment", assignment_id, assignment.version, expected_version)
            before = self._assignment_snapshot(assignment)

            report = self.analyzer.analyze_assignment_removal(assignment_id)
            forced = self._enforce(report, force, "assignment", operation)

            deleted = self.index.delete(assignment_id, expected_version)
            record = self._record(
                "assignment", assignment_id, operation, deleted.version,
                before, self._assignment_snapshot(deleted), report, forced, None,
            )
        return ChangeOutcome(deleted, report, record, forced)

    # ========== 롤백 ==========

    def rollback(self, evolution_id: UUID, force: bool = False) -> ChangeOutcome:
        """
        변경 이력 롤백

        - update: 기록된 이전 값으로 복원 (expected_version = 해당 변경이 만든 버전)
        - create: 생성된 엔티티 비활성화
        - 비활성화는 종료 상태이므로 롤백 불가
        """
        record = self.evolutions.get_by_id(evolution_id)
        if record is None:
            raise EvolutionRecordNotFoundError(
                f"변경 이력을 찾을 수 없습니다: {evolution_id}",
                evolution_id=str(evolution_id),
            )

        data = record.rollback_data or {}
        action = data.get("action")
        logger.info(f"Rolling back {record.entity_type} {record.entity_id} ({record.operation}) via {action}")

        if action == "restore":
            if record.entity_type == "attribute":
                return self.update_attribute(
                    record.entity_id, data["values"], record.entity_version, force, operation="rollback"
                )
            return self.update_assignment(
                record.entity_id, data["values"], record.entity_version, force, operation="rollback"
            )

        if action == "deactivate":
            if record.entity_type == "attribute":
                return self.deactivate_attribute(record.entity_id, record.entity_version, operation="rollback")
            return self.delete_assignment(record.entity_id, record.entity_version, force, operation="rollback")

        raise RollbackNotSupportedError(
            f"{record.operation} 변경은 롤백할 수 없습니다",
            evolution_id=str(evolution_id),
            operation=record.operation,
        )
