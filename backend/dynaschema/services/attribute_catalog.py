"""
Attribute Catalog
속성 정의 저장소 (클래스와 무관한 재사용 가능한 타입 템플릿)

- name: 테넌트 내 활성 속성 중 유일, 생성 후 변경 불가
- data_type: 생성 후 변경 불가
- 활성 할당이 참조하는 동안 비활성화 불가
"""
import logging
import re
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dynaschema.config import settings
from dynaschema.models.core import AttributeDefinition, EntityState, utcnow
from dynaschema.repositories.assignment_repository import AssignmentRepository
from dynaschema.repositories.attribute_repository import AttributeRepository
from dynaschema.schemas.rules import normalize_rule_set, parse_data_type
from dynaschema.services.assignment_index import AssignmentIndex
from dynaschema.services.concurrency_guard import ConcurrencyGuard
from dynaschema.services.schema_cache import SchemaCache
from dynaschema.services.tenant_context import TenantContext
from dynaschema.utils.errors import (
    AttributeNotFoundError,
    ImmutableFieldError,
    InUseError,
    InvalidRuleSetError,
    NameConflictError,
)

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = ("name", "data_type")
MUTABLE_FIELDS = ("base_rules", "description")


class AttributeCatalog:
    """속성 정의 CRUD"""

    def __init__(
        self,
        db: Session,
        ctx: TenantContext,
        cache: Optional[SchemaCache] = None,
        name_pattern: Optional[str] = None,
    ):
        self.db = db
        self.ctx = ctx
        self.repo = AttributeRepository(db, ctx)
        self.assignments = AssignmentRepository(db, ctx)
        self.guard = ConcurrencyGuard(db, ctx, cache)
        self._name_re = re.compile(name_pattern or settings.attribute_name_pattern)

    # ========== 조회 ==========

    def get(self, attribute_id: UUID, include_inactive: bool = False) -> AttributeDefinition:
        """속성 조회 (없거나 비활성이면 AttributeNotFoundError)"""
        attribute = self.repo.get_by_id(attribute_id, include_inactive=include_inactive)
        if attribute is None:
            raise AttributeNotFoundError(
                f"속성을 찾을 수 없습니다: {attribute_id}",
                attribute_id=str(attribute_id),
            )
        return attribute

    def get_by_name(self, name: str) -> AttributeDefinition:
        attribute = self.repo.get_active_by_name(name)
        if attribute is None:
            raise AttributeNotFoundError(f"속성을 찾을 수 없습니다: {name}", name=name)
        return attribute

    def list(self, data_type: Optional[str] = None, include_inactive: bool = False) -> List[AttributeDefinition]:
        if data_type is not None:
            data_type = parse_data_type(data_type).value
        return self.repo.list(data_type=data_type, include_inactive=include_inactive)

    def referencing_class_ids(self, attribute_id: UUID) -> List[UUID]:
        """속성을 참조하는 활성 할당의 클래스 목록"""
        return self.repo.referencing_class_ids(attribute_id)

    # ========== 변경 ==========

    def create(
        self,
        name: str,
        data_type: str,
        base_rules: Optional[Mapping[str, Any]] = None,
        description: Optional[str] = None,
    ) -> AttributeDefinition:
        """
        속성 정의 생성

        Raises:
            InvalidRuleSetError: 이름 형식 오류, 지원하지 않는 타입, 규칙 구조 오류
            NameConflictError: 같은 이름의 활성 속성 존재
        """
        if not isinstance(name, str) or not self._name_re.match(name):
            raise InvalidRuleSetError(
                f"속성 이름 형식이 올바르지 않습니다: {name!r}",
                errors=[f"name: must match {self._name_re.pattern}"],
            )
        dt = parse_data_type(data_type)
        rules = normalize_rule_set(dt, base_rules)

        if self.repo.get_active_by_name(name) is not None:
            raise NameConflictError(f"같은 이름의 속성이 이미 존재합니다: {name}", name=name)

        attribute = AttributeDefinition(
            name=name,
            data_type=dt.value,
            base_rules=rules,
            description=description,
            version=1,
            status=EntityState.ACTIVE.value,
            created_by=self.ctx.actor_id,
        )
        try:
            self.repo.create(attribute)
        except IntegrityError:
            # 동시 생성 - 부분 유니크 인덱스가 막음
            self.db.rollback()
            raise NameConflictError(f"같은 이름의 속성이 이미 존재합니다: {name}", name=name)

        logger.info(f"Attribute created: {name} ({dt.value}) id={attribute.attribute_id}")
        return attribute

    @staticmethod
    def check_immutable(attribute: AttributeDefinition, changes: Mapping[str, Any]) -> None:
        """name, data_type 변경 시도 검사"""
        for field_name in IMMUTABLE_FIELDS:
            if field_name not in changes or changes[field_name] is None:
                continue
            requested = changes[field_name]
            requested = getattr(requested, "value", requested)
            if requested != getattr(attribute, field_name):
                raise ImmutableFieldError(
                    f"{field_name}은(는) 생성 후 변경할 수 없습니다",
                    field=field_name,
                    current=getattr(attribute, field_name),
                    requested=requested,
                )

    def prepare_changes(self, attribute: AttributeDefinition, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """
        변경 요청 검증 후 정규화된 컬럼 값 반환

        base_rules 변경 시 참조하는 활성 할당마다 병합 결과와 저장된 기본값을 다시 검사
        """
        self.check_immutable(attribute, changes)
        values: Dict[str, Any] = {}
        if changes.get("base_rules") is not None:
            base_rules = normalize_rule_set(attribute.data_type, changes["base_rules"])
            self.check_assignments(attribute, base_rules)
            values["base_rules"] = base_rules
        if "description" in changes:
            values["description"] = changes["description"]
        return values

    def check_assignments(self, attribute: AttributeDefinition, base_rules: Mapping[str, Any]) -> None:
        """
        새 기본 규칙이 기존 할당과 양립하는지 확인

        Raises:
            InvalidRuleSetError: override와 병합한 결과가 모순 (예: min > max)
            DefaultValueInvalidError: 할당의 기본값이 새 유효 규칙을 위반
        """
        for assignment in self.assignments.list_for_attribute(attribute.attribute_id):
            AssignmentIndex.effective_rules(attribute, assignment.override_rules, base_rules=base_rules)
            if assignment.has_default:
                AssignmentIndex.check_default(
                    attribute, assignment.override_rules, assignment.default_value, base_rules=base_rules
                )

    def update(
        self,
        attribute_id: UUID,
        changes: Mapping[str, Any],
        expected_version: int,
    ) -> AttributeDefinition:
        """
        속성 정의 수정 (base_rules, description)

        Raises:
            AttributeNotFoundError, VersionConflictError, InvalidRuleSetError, ImmutableFieldError,
            DefaultValueInvalidError
        """
        attribute = self.get(attribute_id)
        values = self.prepare_changes(attribute, changes)

        self.guard.versioned_update(
            "attribute",
            AttributeDefinition,
            AttributeDefinition.attribute_id,
            attribute_id,
            expected_version,
            values,
            not_found_error=AttributeNotFoundError,
        )
        self.guard.invalidate_classes(self.referencing_class_ids(attribute_id))

        updated = self.get(attribute_id)
        logger.info(f"Attribute updated: {updated.name} v{updated.version} fields={sorted(values)}")
        return updated

    def deactivate(self, attribute_id: UUID, expected_version: Optional[int] = None) -> AttributeDefinition:
        """
        속성 정의 비활성화 (종료 상태)

        Raises:
            InUseError: 활성 할당이 참조 중
        """
        attribute = self.get(attribute_id)
        in_use = self.repo.count_active_assignments(attribute_id)
        if in_use:
            raise InUseError(
                f"활성 할당 {in_use}개가 참조 중인 속성은 비활성화할 수 없습니다: {attribute.name}",
                attribute_id=str(attribute_id),
                assignment_count=in_use,
            )

        version = attribute.version if expected_version is None else expected_version
        self.guard.versioned_update(
            "attribute",
            AttributeDefinition,
            AttributeDefinition.attribute_id,
            attribute_id,
            version,
            {"status": EntityState.DEACTIVATED.value, "deactivated_at": utcnow()},
            not_found_error=AttributeNotFoundError,
        )

        deactivated = self.get(attribute_id, include_inactive=True)
        logger.info(f"Attribute deactivated: {deactivated.name} id={attribute_id}")
        return deactivated
