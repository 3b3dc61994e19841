"""
Assignment Index
클래스-속성 할당 저장소

- (클래스, 속성)당 활성 할당은 최대 1개
- 클래스 내 활성 할당의 정렬 위치는 유일
- 두 불변식 모두 사전 검사 + 부분 유니크 인덱스로 보장
- 역방향(속성 → 클래스)은 back-pointer 없이 인덱스 조회로 해결
"""
import logging
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from pydantic_core import to_jsonable_python
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dynaschema.config import settings
from dynaschema.models.core import AssignmentRecord, AttributeDefinition, EntityState, utcnow
from dynaschema.repositories.assignment_repository import AssignmentRepository
from dynaschema.repositories.attribute_repository import AttributeRepository
from dynaschema.schemas.rules import normalize_rule_set
from dynaschema.services.collaborators import ClassRegistry
from dynaschema.services.concurrency_guard import ConcurrencyGuard
from dynaschema.services.rule_merger import merge_rules
from dynaschema.services.schema_cache import SchemaCache
from dynaschema.services.tenant_context import TenantContext
from dynaschema.services.validation_engine import check_value
from dynaschema.utils.errors import (
    AssignmentNotFoundError,
    AttributeNotFoundError,
    ClassNotFoundError,
    DefaultValueInvalidError,
    DuplicateAssignmentError,
    ImmutableFieldError,
    InvalidSortPositionError,
    SortPositionConflictError,
)

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = ("class_id", "attribute_id")
MUTABLE_FIELDS = ("required", "sort_position", "display_name", "override_rules", "default_value")
SORT_INDEX = "uq_assignment_records_class_sort_active"


class AssignmentIndex:
    """할당 CRUD"""

    def __init__(
        self,
        db: Session,
        ctx: TenantContext,
        cache: Optional[SchemaCache] = None,
        class_registry: Optional[ClassRegistry] = None,
    ):
        self.db = db
        self.ctx = ctx
        self.repo = AssignmentRepository(db, ctx)
        self.attributes = AttributeRepository(db, ctx)
        self.guard = ConcurrencyGuard(db, ctx, cache)
        self.class_registry = class_registry

    # ========== 조회 ==========

    def get(self, assignment_id: UUID, include_inactive: bool = False) -> AssignmentRecord:
        assignment = self.repo.get_by_id(assignment_id, include_inactive=include_inactive)
        if assignment is None:
            raise AssignmentNotFoundError(
                f"할당을 찾을 수 없습니다: {assignment_id}",
                assignment_id=str(assignment_id),
            )
        return assignment

    def list_for_class(self, class_id: UUID, include_inactive: bool = False) -> List[AssignmentRecord]:
        return self.repo.list_for_class(class_id, include_inactive=include_inactive)

    def list_for_attribute(self, attribute_id: UUID, include_inactive: bool = False) -> List[AssignmentRecord]:
        return self.repo.list_for_attribute(attribute_id, include_inactive=include_inactive)

    # ========== 검증 ==========

    def require_class(self, class_id: UUID):
        if self.class_registry is None:
            return
        timeout = self.ctx.lookup_timeout("class_exists", settings.external_timeout_seconds)
        if not self.class_registry.class_exists(self.ctx.tenant_id, class_id, timeout=timeout):
            raise ClassNotFoundError(f"클래스를 찾을 수 없습니다: {class_id}", class_id=str(class_id))

    def _require_attribute(self, attribute_id: UUID) -> AttributeDefinition:
        attribute = self.attributes.get_by_id(attribute_id)
        if attribute is None:
            raise AttributeNotFoundError(
                f"속성을 찾을 수 없습니다: {attribute_id}",
                attribute_id=str(attribute_id),
            )
        return attribute

    @staticmethod
    def require_valid_position(sort_position: Any) -> int:
        """정렬 위치는 0 이상의 정수"""
        if isinstance(sort_position, bool) or not isinstance(sort_position, int) or sort_position < 0:
            raise InvalidSortPositionError(
                f"정렬 위치는 0 이상의 정수여야 합니다: {sort_position!r}",
                sort_position=sort_position,
            )
        return sort_position

    def _check_position(self, class_id: UUID, sort_position: int, exclude: Optional[UUID] = None):
        holder = self.repo.get_active_by_position(class_id, sort_position)
        if holder is not None and holder.assignment_id != exclude:
            raise SortPositionConflictError(
                f"정렬 위치 {sort_position}은(는) 이미 사용 중입니다",
                class_id=str(class_id),
                sort_position=sort_position,
            )

    @staticmethod
    def check_default(
        attribute: AttributeDefinition,
        override_rules: Optional[Mapping[str, Any]],
        default_value: Any,
        base_rules: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """
        기본값을 병합된 유효 규칙으로 검증

        base_rules를 주면 속성의 현재 기본 규칙 대신 사용 (속성 변경 전 검사)

        Returns:
            저장할 JSON 형태의 기본값 (None이면 기본값 없음)
        """
        if default_value is None:
            return None
        base = attribute.base_rules if base_rules is None else base_rules
        effective = merge_rules(attribute.data_type, base, override_rules)
        typed, violations = check_value(attribute.name, attribute.data_type, effective.rules, default_value)
        if violations:
            raise DefaultValueInvalidError(
                f"기본값이 유효 규칙을 만족하지 않습니다: {attribute.name}",
                violations=[v.model_dump(mode="json") for v in violations],
            )
        return to_jsonable_python(typed.value)

    @staticmethod
    def effective_rules(
        attribute: AttributeDefinition,
        override_rules: Optional[Mapping[str, Any]],
        base_rules: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """병합 결과가 구조적으로도 유효한지 확인 (min > max 같은 조합 방지)"""
        base = attribute.base_rules if base_rules is None else base_rules
        merged = merge_rules(attribute.data_type, base, override_rules)
        return normalize_rule_set(attribute.data_type, merged.rules)

    def _integrity_conflict(self, error: IntegrityError, class_id: UUID, attribute_id: UUID, sort_position):
        """동시 쓰기로 부분 유니크 인덱스에 걸린 경우"""
        self.db.rollback()
        message = str(error.orig).lower()
        # PostgreSQL은 인덱스 이름, SQLite는 컬럼 목록을 보고함
        if SORT_INDEX in message or ("unique" in message and "sort_position" in message):
            return SortPositionConflictError(
                f"정렬 위치 {sort_position}은(는) 이미 사용 중입니다",
                class_id=str(class_id),
                sort_position=sort_position,
            )
        return DuplicateAssignmentError(
            "이 속성은 이미 클래스에 할당되어 있습니다",
            class_id=str(class_id),
            attribute_id=str(attribute_id),
        )

    # ========== 변경 ==========

    def create(
        self,
        class_id: UUID,
        attribute_id: UUID,
        required: bool = False,
        sort_position: Optional[int] = None,
        override_rules: Optional[Mapping[str, Any]] = None,
        default_value: Any = None,
        display_name: Optional[str] = None,
    ) -> AssignmentRecord:
        """
        할당 생성

        Raises:
            ClassNotFoundError, AttributeNotFoundError, DuplicateAssignmentError,
            SortPositionConflictError, InvalidRuleSetError, DefaultValueInvalidError
        """
        self.require_class(class_id)
        attribute = self._require_attribute(attribute_id)

        if self.repo.get_active(class_id, attribute_id) is not None:
            raise DuplicateAssignmentError(
                f"속성 {attribute.name}은(는) 이미 클래스에 할당되어 있습니다",
                class_id=str(class_id),
                attribute_id=str(attribute_id),
            )

        if sort_position is None:
            sort_position = self.repo.next_sort_position(class_id)
        else:
            self._check_position(class_id, self.require_valid_position(sort_position))

        overrides = normalize_rule_set(attribute.data_type, override_rules)
        self.effective_rules(attribute, overrides)
        stored_default = self.check_default(attribute, overrides, default_value)

        assignment = AssignmentRecord(
            class_id=class_id,
            attribute_id=attribute_id,
            required=bool(required),
            sort_position=sort_position,
            display_name=display_name,
            override_rules=overrides,
            default_value=stored_default,
            version=1,
            status=EntityState.ACTIVE.value,
            created_by=self.ctx.actor_id,
        )
        try:
            self.repo.create(assignment)
        except IntegrityError as e:
            raise self._integrity_conflict(e, class_id, attribute_id, sort_position)

        self.guard.invalidate_classes([class_id])
        logger.info(
            f"Assignment created: class={class_id} attribute={attribute.name} "
            f"position={sort_position} required={assignment.required}"
        )
        return assignment

    def prepare_changes(self, assignment: AssignmentRecord, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """
        변경 요청 검증 후 정규화된 컬럼 값 반환

        default_value가 명시적으로 null이면 기본값 제거
        """
        for field_name in IMMUTABLE_FIELDS:
            requested = changes.get(field_name)
            if requested is not None and str(requested) != str(getattr(assignment, field_name)):
                raise ImmutableFieldError(
                    f"{field_name}은(는) 변경할 수 없습니다",
                    field=field_name,
                )

        attribute = self._require_attribute(assignment.attribute_id)
        values: Dict[str, Any] = {}

        if changes.get("required") is not None:
            values["required"] = bool(changes["required"])
        if "display_name" in changes:
            values["display_name"] = changes["display_name"]
        if changes.get("sort_position") is not None:
            position = self.require_valid_position(changes["sort_position"])
            if position != assignment.sort_position:
                self._check_position(assignment.class_id, position, exclude=assignment.assignment_id)
                values["sort_position"] = position

        overrides = assignment.override_rules or {}
        if changes.get("override_rules") is not None:
            overrides = normalize_rule_set(attribute.data_type, changes["override_rules"])
            self.effective_rules(attribute, overrides)
            values["override_rules"] = overrides

        if "default_value" in changes:
            values["default_value"] = self.check_default(attribute, overrides, changes["default_value"])
        elif "override_rules" in values and assignment.has_default:
            # 규칙이 바뀌면 기존 기본값도 다시 검증
            self.check_default(attribute, overrides, assignment.default_value)

        return values

    def update(
        self,
        assignment_id: UUID,
        changes: Mapping[str, Any],
        expected_version: int,
    ) -> AssignmentRecord:
        """
        할당 수정

        Raises:
            AssignmentNotFoundError, VersionConflictError, SortPositionConflictError,
            ImmutableFieldError, InvalidRuleSetError, DefaultValueInvalidError
        """
        assignment = self.get(assignment_id)
        class_id = assignment.class_id
        values = self.prepare_changes(assignment, changes)

        try:
            self.guard.versioned_update(
                "assignment",
                AssignmentRecord,
                AssignmentRecord.assignment_id,
                assignment_id,
                expected_version,
                values,
                not_found_error=AssignmentNotFoundError,
            )
        except IntegrityError as e:
            raise self._integrity_conflict(e, class_id, assignment.attribute_id, values.get("sort_position"))

        self.guard.invalidate_classes([class_id])
        updated = self.get(assignment_id)
        logger.info(f"Assignment updated: {assignment_id} v{updated.version} fields={sorted(values)}")
        return updated

    def delete(self, assignment_id: UUID, expected_version: Optional[int] = None) -> AssignmentRecord:
        """할당 비활성화 (종료 상태) 후 소유 클래스 스키마 무효화"""
        assignment = self.get(assignment_id)
        class_id = assignment.class_id
        version = assignment.version if expected_version is None else expected_version

        self.guard.versioned_update(
            "assignment",
            AssignmentRecord,
            AssignmentRecord.assignment_id,
            assignment_id,
            version,
            {"status": EntityState.DEACTIVATED.value, "deactivated_at": utcnow()},
            not_found_error=AssignmentNotFoundError,
        )
        self.guard.invalidate_classes([class_id])

        deleted = self.get(assignment_id, include_inactive=True)
        logger.info(f"Assignment deactivated: {assignment_id} class={class_id}")
        return deleted
