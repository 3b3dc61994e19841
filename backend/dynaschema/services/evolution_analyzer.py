"""
Evolution Analyzer
스키마 변경 제안의 영향 범위 분석 및 안전도 분류

분류 정책:
- 제약 제거/완화: safe (인스턴스 수와 무관)
- 제약 없던 차원에 제약 추가 또는 범위 축소: 영향 인스턴스 > 0 이면 breaking, 0이면 warning
- optional → required: 값이 없는 인스턴스가 있으면 breaking (변경 후 기본값이 있으면 warning)
- required → optional: safe
- 인스턴스가 있는 클래스에 기본값 없는 필수 할당 추가: breaking (기본값 있으면 warning)
- 저장된 값이 있는 할당 제거: warning

분석기는 분류만 수행. breaking 거부는 호출 서비스(SchemaService)의 책임.
최신성이 필요하므로 항상 캐시를 우회해 다시 조합하고,
인스턴스 수는 호출자의 남은 deadline으로 InstanceStore에서 조회.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from dynaschema.config import settings
from dynaschema.models.core import AssignmentRecord, AttributeDefinition
from dynaschema.repositories.assignment_repository import AssignmentRepository
from dynaschema.repositories.attribute_repository import AttributeRepository
from dynaschema.schemas.evolution import ImpactDetail, ImpactReport, SafetyLevel, worst_level
from dynaschema.schemas.rules import normalize_rule_set
from dynaschema.services.collaborators import InstanceStore
from dynaschema.services.rule_merger import NARROWED, RELAXED, diff_rule_sets, merge_rules
from dynaschema.services.schema_composer import SchemaComposer
from dynaschema.services.tenant_context import TenantContext
from dynaschema.utils.errors import AssignmentNotFoundError, AttributeNotFoundError

logger = logging.getLogger(__name__)


class _ImpactBuilder:
    """보고서 하나를 조립하는 동안의 상태"""

    def __init__(self, entity_type: str, entity_id: Optional[UUID], change_type: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.change_type = change_type
        self.details: List[ImpactDetail] = []
        self.actions: List[str] = []
        self.assignments = set()
        self.affected_by_class: Dict[UUID, int] = {}

    def add(self, detail: ImpactDetail, action: Optional[str] = None):
        self.details.append(detail)
        if detail.assignment_id is not None:
            self.assignments.add(detail.assignment_id)
        if detail.class_id is not None and detail.affected_instance_count:
            current = self.affected_by_class.get(detail.class_id, 0)
            self.affected_by_class[detail.class_id] = max(current, detail.affected_instance_count)
        if action and action not in self.actions:
            self.actions.append(action)

    def build(self, instance_counts: Dict[str, int]) -> ImpactReport:
        level = worst_level(detail.safety_level for detail in self.details)
        if level is SafetyLevel.WARNING and not self.actions:
            self.actions.append("기존 데이터는 유지되며 이후 입력부터 새 규칙이 적용됩니다.")
        return ImpactReport(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            change_type=self.change_type,
            safety_level=level,
            affected_assignment_count=len(self.assignments),
            affected_instance_count=sum(self.affected_by_class.values()),
            details=self.details,
            recommended_actions=self.actions,
            instance_counts=instance_counts,
        )


class EvolutionAnalyzer:
    """변경 영향 분석기"""

    def __init__(
        self,
        db: Session,
        ctx: TenantContext,
        instance_store: Optional[InstanceStore] = None,
    ):
        self.db = db
        self.ctx = ctx
        self.instance_store = instance_store
        self.attributes = AttributeRepository(db, ctx)
        self.assignments = AssignmentRepository(db, ctx)
        self.composer = SchemaComposer(db, ctx)
        self._counts: Dict[str, int] = {}

    # ========== 인스턴스 수 ==========

    def _timeout(self, operation: str) -> Optional[float]:
        return self.ctx.lookup_timeout(operation, settings.external_timeout_seconds)

    def _count_class(self, class_id: UUID) -> int:
        key = f"class:{class_id}"
        if key not in self._counts:
            if self.instance_store is None:
                self._counts[key] = 0
            else:
                self._counts[key] = self.instance_store.count_instances_of_class(
                    self.ctx.tenant_id, class_id, timeout=self._timeout("count_instances_of_class")
                )
        return self._counts[key]

    def _count_using(self, class_id: UUID, attribute_id: UUID) -> int:
        key = f"class:{class_id}:attribute:{attribute_id}"
        if key not in self._counts:
            if self.instance_store is None:
                self._counts[key] = 0
            else:
                self._counts[key] = self.instance_store.count_instances_using_attribute(
                    self.ctx.tenant_id, class_id, attribute_id,
                    timeout=self._timeout("count_instances_using_attribute"),
                )
        return self._counts[key]

    def _snapshot(self) -> Dict[str, int]:
        counts = dict(self._counts)
        self._counts = {}
        return counts

    # ========== 조회 ==========

    def _attribute(self, attribute_id: UUID) -> AttributeDefinition:
        attribute = self.attributes.get_by_id(attribute_id)
        if attribute is None:
            raise AttributeNotFoundError(
                f"속성을 찾을 수 없습니다: {attribute_id}",
                attribute_id=str(attribute_id),
            )
        return attribute

    def _assignment(self, assignment_id: UUID) -> AssignmentRecord:
        assignment = self.assignments.get_by_id(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(
                f"할당을 찾을 수 없습니다: {assignment_id}",
                assignment_id=str(assignment_id),
            )
        return assignment

    # ========== 규칙 변경 ==========

    def _rule_details(
        self,
        builder: _ImpactBuilder,
        attribute: AttributeDefinition,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
        assignment: Optional[AssignmentRecord] = None,
    ) -> None:
        """유효 규칙 before/after 비교 결과를 보고서에 추가"""
        for change in diff_rule_sets(attribute.data_type, before, after):
            class_id = assignment.class_id if assignment is not None else None
            assignment_id = assignment.assignment_id if assignment is not None else None

            if change.direction != NARROWED:
                builder.add(ImpactDetail(
                    field=change.rule, change=change.direction, old=change.old, new=change.new,
                    class_id=class_id, assignment_id=assignment_id,
                    safety_level=SafetyLevel.SAFE,
                    message=f"{change.rule} 규칙 {'완화' if change.direction == RELAXED else '변경'}",
                ))
                continue

            affected = self._count_using(class_id, attribute.attribute_id) if class_id is not None else 0
            level = SafetyLevel.BREAKING if affected > 0 else SafetyLevel.WARNING
            action = None
            if level is SafetyLevel.BREAKING:
                action = (
                    f"{attribute.name} 값을 가진 기존 인스턴스 {affected}개가 새 {change.rule} 규칙을 "
                    f"위반할 수 있습니다. 데이터를 정리한 후 적용하거나 force로 강제 적용하세요."
                )
            builder.add(ImpactDetail(
                field=change.rule, change=NARROWED, old=change.old, new=change.new,
                class_id=class_id, assignment_id=assignment_id,
                affected_instance_count=affected,
                safety_level=level,
                message=f"{change.rule} 규칙 축소",
            ), action)

    def analyze_attribute_change(self, attribute_id: UUID, changes: Mapping[str, Any]) -> ImpactReport:
        """
        속성 정의 변경 영향 분석

        참조하는 활성 할당마다 병합 전/후 유효 규칙을 비교 (override가 가리는 변경은 영향 없음)
        """
        # 이전 분석이 중간에 실패해 남은 수치는 버림
        self._counts = {}
        attribute = self._attribute(attribute_id)
        builder = _ImpactBuilder("attribute", attribute_id, "update")

        if changes.get("base_rules") is None:
            return builder.build(self._snapshot())

        new_base = normalize_rule_set(attribute.data_type, changes["base_rules"])
        assignments = self.assignments.list_for_attribute(attribute_id)

        if not assignments:
            self._rule_details(builder, attribute, attribute.base_rules or {}, new_base)
        for assignment in assignments:
            schema = self.composer.compose(assignment.class_id, bypass_cache=True)
            current = schema.get(attribute.name)
            before = current.rules if current is not None else merge_rules(
                attribute.data_type, attribute.base_rules, assignment.override_rules
            ).rules
            after = merge_rules(attribute.data_type, new_base, assignment.override_rules).rules
            self._rule_details(builder, attribute, before, after, assignment)

        report = builder.build(self._snapshot())
        logger.info(
            f"Attribute change analyzed: {attribute.name} -> {report.safety_level.value} "
            f"(assignments={report.affected_assignment_count}, instances={report.affected_instance_count})"
        )
        return report

    def analyze_assignment_change(self, assignment_id: UUID, changes: Mapping[str, Any]) -> ImpactReport:
        """할당 변경 영향 분석 (규칙 override, 필수 여부, 기본값, 정렬 위치, 표시 이름)"""
        self._counts = {}
        assignment = self._assignment(assignment_id)
        attribute = self._attribute(assignment.attribute_id)
        builder = _ImpactBuilder("assignment", assignment_id, "update")
        class_id = assignment.class_id

        # 규칙
        if changes.get("override_rules") is not None:
            schema = self.composer.compose(class_id, bypass_cache=True)
            current = schema.get(attribute.name)
            before = current.rules if current is not None else merge_rules(
                attribute.data_type, attribute.base_rules, assignment.override_rules
            ).rules
            new_overrides = normalize_rule_set(attribute.data_type, changes["override_rules"])
            after = merge_rules(attribute.data_type, attribute.base_rules, new_overrides).rules
            self._rule_details(builder, attribute, before, after, assignment)

        new_required = assignment.required if changes.get("required") is None else bool(changes["required"])
        new_default = changes["default_value"] if "default_value" in changes else assignment.default_value

        # 필수 여부
        if not assignment.required and new_required:
            missing = max(0, self._count_class(class_id) - self._count_using(class_id, attribute.attribute_id))
            action = None
            if missing == 0:
                level = SafetyLevel.WARNING
            elif new_default is not None:
                level = SafetyLevel.WARNING
                action = f"값이 없는 기존 인스턴스 {missing}개는 기본값으로 처리됩니다. 기존 데이터 반영 여부는 인스턴스 저장소 정책을 확인하세요."
            else:
                level = SafetyLevel.BREAKING
                action = f"값이 없는 기존 인스턴스 {missing}개가 있습니다. 기본값을 지정하거나 값을 채운 후 필수로 변경하세요."
            builder.add(ImpactDetail(
                field="required", change=NARROWED, old=False, new=True,
                class_id=class_id, assignment_id=assignment_id,
                affected_instance_count=missing, safety_level=level,
                message="optional → required",
            ), action)
        elif assignment.required and not new_required:
            builder.add(ImpactDetail(
                field="required", change=RELAXED, old=True, new=False,
                class_id=class_id, assignment_id=assignment_id,
                safety_level=SafetyLevel.SAFE, message="required → optional",
            ))

        # 기본값
        if "default_value" in changes and changes["default_value"] != assignment.default_value:
            removed = assignment.has_default and new_default is None
            level = SafetyLevel.WARNING if removed and assignment.required and new_required else SafetyLevel.SAFE
            builder.add(ImpactDetail(
                field="default_value", change="removed" if removed else "changed",
                old=assignment.default_value, new=new_default,
                class_id=class_id, assignment_id=assignment_id,
                safety_level=level,
                message="필수 속성의 기본값 제거" if level is SafetyLevel.WARNING else "기본값 변경",
            ), "이후 입력에서는 이 속성 값을 반드시 전달해야 합니다." if level is SafetyLevel.WARNING else None)

        # 표시 관련
        for field_name in ("sort_position", "display_name"):
            if field_name in changes and changes[field_name] is not None \
                    and changes[field_name] != getattr(assignment, field_name):
                builder.add(ImpactDetail(
                    field=field_name, change="changed",
                    old=getattr(assignment, field_name), new=changes[field_name],
                    class_id=class_id, assignment_id=assignment_id,
                    safety_level=SafetyLevel.SAFE, message=f"{field_name} 변경",
                ))

        report = builder.build(self._snapshot())
        logger.info(f"Assignment change analyzed: {assignment_id} -> {report.safety_level.value}")
        return report

    def analyze_assignment_creation(
        self,
        class_id: UUID,
        attribute_id: UUID,
        required: bool = False,
        override_rules: Optional[Mapping[str, Any]] = None,
        default_value: Any = None,
    ) -> ImpactReport:
        """새 할당 추가 영향 분석"""
        self._counts = {}
        attribute = self._attribute(attribute_id)
        builder = _ImpactBuilder("assignment", None, "create")

        if required:
            populated = self._count_class(class_id)
            action = None
            if populated == 0:
                level = SafetyLevel.SAFE
            elif default_value is not None:
                level = SafetyLevel.WARNING
                action = f"기존 인스턴스 {populated}개는 기본값으로 처리됩니다."
            else:
                level = SafetyLevel.BREAKING
                action = f"기존 인스턴스 {populated}개에 {attribute.name} 값이 없습니다. 기본값을 지정하거나 선택 속성으로 추가하세요."
            builder.add(ImpactDetail(
                field="assignment", change="added", new=attribute.name, class_id=class_id,
                affected_instance_count=populated if level is not SafetyLevel.SAFE else 0,
                safety_level=level, message="필수 속성 추가",
            ), action)
        else:
            builder.add(ImpactDetail(
                field="assignment", change="added", new=attribute.name, class_id=class_id,
                safety_level=SafetyLevel.SAFE, message="선택 속성 추가",
            ))

        return builder.build(self._snapshot())

    def analyze_assignment_removal(self, assignment_id: UUID) -> ImpactReport:
        """할당 제거 영향 분석 (저장된 값이 있으면 warning)"""
        self._counts = {}
        assignment = self._assignment(assignment_id)
        attribute = self._attribute(assignment.attribute_id)
        builder = _ImpactBuilder("assignment", assignment_id, "delete")

        stored = self._count_using(assignment.class_id, assignment.attribute_id)
        level = SafetyLevel.WARNING if stored > 0 else SafetyLevel.SAFE
        builder.add(ImpactDetail(
            field="assignment", change="removed", old=attribute.name,
            class_id=assignment.class_id, assignment_id=assignment_id,
            affected_instance_count=stored, safety_level=level,
            message="할당 제거",
        ), f"저장된 {attribute.name} 값 {stored}개는 더 이상 스키마에 포함되지 않습니다." if stored else None)

        return builder.build(self._snapshot())
