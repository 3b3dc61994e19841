"""
Evolution Analyzer 테스트
규칙/필수 여부/기본값/할당 추가·제거 변경의 안전도 분류
"""
import pytest

from dynaschema.schemas.assignment import AssignmentCreate
from dynaschema.schemas.evolution import SafetyLevel
from dynaschema.services.evolution_analyzer import EvolutionAnalyzer
from dynaschema.services.tenant_context import TenantContext
from dynaschema.utils.errors import AttributeNotFoundError, DeadlineExceededError, InvalidRuleSetError


@pytest.fixture
def age(make_attribute):
    return make_attribute("age", "integer", {"min": 0})


@pytest.fixture
def age_assignment(service, age, person_class):
    outcome = service.create_assignment(AssignmentCreate(
        class_id=person_class, attribute_id=age.attribute_id, required=True, sort_position=0,
    ))
    return outcome.entity


@pytest.fixture
def nickname_assignment(service, make_attribute, person_class):
    nickname = make_attribute("nickname", "string", {"max_length": 30})
    outcome = service.create_assignment(AssignmentCreate(
        class_id=person_class, attribute_id=nickname.attribute_id, sort_position=1,
    ))
    return outcome.entity


class TestAttributeChange:
    """속성 정의 규칙 변경 분석"""

    def test_narrowing_with_instances_is_breaking(self, service, instance_store, age, age_assignment, person_class):
        """인스턴스 3개, max 120 추가 → breaking, 영향 인스턴스 3"""
        instance_store.set_counts(person_class, 3, using={age.attribute_id: 3})

        report = service.analyze_attribute_change(age.attribute_id, {"base_rules": {"min": 0, "max": 120}})

        assert report.safety_level is SafetyLevel.BREAKING
        assert report.is_breaking
        assert report.affected_instance_count == 3
        assert report.affected_assignment_count == 1
        assert [(d.field, d.change) for d in report.details] == [("max", "narrowed")]
        assert report.recommended_actions
        assert report.instance_counts == {f"class:{person_class}:attribute:{age.attribute_id}": 3}

    def test_narrowing_without_instances_is_warning(self, service, age, age_assignment):
        report = service.analyze_attribute_change(age.attribute_id, {"base_rules": {"min": 5}})
        assert report.safety_level is SafetyLevel.WARNING
        assert report.affected_instance_count == 0
        assert report.recommended_actions

    def test_relaxing_is_safe(self, service, instance_store, age, age_assignment, person_class):
        instance_store.set_counts(person_class, 3, using={age.attribute_id: 3})
        report = service.analyze_attribute_change(age.attribute_id, {"base_rules": {}})
        assert report.safety_level is SafetyLevel.SAFE
        assert [(d.field, d.change) for d in report.details] == [("min", "relaxed")]

    def test_unreferenced_attribute_narrowing_is_warning(self, service, make_attribute):
        score = make_attribute("score", "integer")
        report = service.analyze_attribute_change(score.attribute_id, {"base_rules": {"max": 10}})
        assert report.safety_level is SafetyLevel.WARNING
        assert report.affected_assignment_count == 0

    def test_override_masks_base_change(self, service, instance_store, make_attribute, person_class):
        """override가 같은 규칙을 정하고 있으면 기본 규칙 변경은 영향 없음"""
        score = make_attribute("score", "integer", {"max": 100})
        service.create_assignment(AssignmentCreate(
            class_id=person_class, attribute_id=score.attribute_id, override_rules={"max": 10},
        ))
        instance_store.set_counts(person_class, 5, using={score.attribute_id: 5})

        report = service.analyze_attribute_change(score.attribute_id, {"base_rules": {"max": 50}})

        assert report.safety_level is SafetyLevel.SAFE
        assert report.details == []

    def test_description_only_is_safe(self, service, age, age_assignment):
        report = service.analyze_attribute_change(age.attribute_id, {"description": "나이"})
        assert report.safety_level is SafetyLevel.SAFE
        assert report.details == []

    def test_invalid_rules_rejected(self, service, age):
        with pytest.raises(InvalidRuleSetError):
            service.analyze_attribute_change(age.attribute_id, {"base_rules": {"min": 10, "max": 1}})

    def test_unknown_attribute(self, service):
        from uuid import uuid4

        with pytest.raises(AttributeNotFoundError):
            service.analyze_attribute_change(uuid4(), {"base_rules": {}})

    def test_counts_use_remaining_deadline(self, db_session, ctx, instance_store, age, age_assignment):
        analyzer = EvolutionAnalyzer(
            db_session, TenantContext.with_timeout(ctx.tenant_id, 30), instance_store
        )
        analyzer.analyze_attribute_change(age.attribute_id, {"base_rules": {"min": 1}})

        timeout = instance_store.calls[-1][-1]
        assert timeout is not None
        assert 0 < timeout <= 30


class TestAssignmentChange:
    """할당 변경 분석"""

    def test_optional_to_required_with_missing_values(self, service, instance_store, nickname_assignment, person_class):
        instance_store.set_counts(person_class, 10, using={nickname_assignment.attribute_id: 4})

        report = service.analyze_assignment_change(nickname_assignment.assignment_id, {"required": True})

        assert report.safety_level is SafetyLevel.BREAKING
        assert report.affected_instance_count == 6

    def test_optional_to_required_with_default_is_warning(self, service, instance_store, nickname_assignment, person_class):
        instance_store.set_counts(person_class, 10, using={nickname_assignment.attribute_id: 4})

        report = service.analyze_assignment_change(
            nickname_assignment.assignment_id, {"required": True, "default_value": "익명"}
        )

        assert report.safety_level is SafetyLevel.WARNING
        assert report.affected_instance_count == 6

    def test_optional_to_required_all_populated_is_warning(self, service, instance_store, nickname_assignment, person_class):
        instance_store.set_counts(person_class, 4, using={nickname_assignment.attribute_id: 4})
        report = service.analyze_assignment_change(nickname_assignment.assignment_id, {"required": True})
        assert report.safety_level is SafetyLevel.WARNING
        assert report.affected_instance_count == 0

    def test_required_to_optional_is_safe(self, service, instance_store, age_assignment, person_class):
        instance_store.set_counts(person_class, 3)
        report = service.analyze_assignment_change(age_assignment.assignment_id, {"required": False})
        assert report.safety_level is SafetyLevel.SAFE
        assert [(d.field, d.change) for d in report.details] == [("required", "relaxed")]

    def test_override_narrowing(self, service, instance_store, nickname_assignment, person_class):
        instance_store.set_counts(person_class, 2, using={nickname_assignment.attribute_id: 2})
        report = service.analyze_assignment_change(
            nickname_assignment.assignment_id, {"override_rules": {"max_length": 10}}
        )
        assert report.safety_level is SafetyLevel.BREAKING
        assert report.details[0].field == "max_length"
        assert report.details[0].class_id == person_class

    def test_display_changes_are_safe(self, service, nickname_assignment):
        report = service.analyze_assignment_change(
            nickname_assignment.assignment_id, {"display_name": "별명", "sort_position": 5}
        )
        assert report.safety_level is SafetyLevel.SAFE
        assert sorted(d.field for d in report.details) == ["display_name", "sort_position"]

    def test_removing_default_of_required_is_warning(self, service, make_attribute, person_class):
        status = make_attribute("status", "string")
        assignment = service.create_assignment(AssignmentCreate(
            class_id=person_class, attribute_id=status.attribute_id, required=True, default_value="new",
        )).entity

        report = service.analyze_assignment_change(assignment.assignment_id, {"default_value": None})

        assert report.safety_level is SafetyLevel.WARNING
        assert report.details[0].change == "removed"


class TestAssignmentCreation:
    """할당 추가 분석"""

    def test_required_on_populated_class_is_breaking(self, service, instance_store, age, person_class):
        instance_store.set_counts(person_class, 7)
        report = service.analyze_assignment_creation(AssignmentCreate(
            class_id=person_class, attribute_id=age.attribute_id, required=True,
        ))
        assert report.safety_level is SafetyLevel.BREAKING
        assert report.affected_instance_count == 7

    def test_required_with_default_is_warning(self, service, instance_store, age, person_class):
        instance_store.set_counts(person_class, 7)
        report = service.analyze_assignment_creation(AssignmentCreate(
            class_id=person_class, attribute_id=age.attribute_id, required=True, default_value=0,
        ))
        assert report.safety_level is SafetyLevel.WARNING

    def test_required_on_empty_class_is_safe(self, service, age, person_class):
        report = service.analyze_assignment_creation(AssignmentCreate(
            class_id=person_class, attribute_id=age.attribute_id, required=True,
        ))
        assert report.safety_level is SafetyLevel.SAFE

    def test_optional_is_safe(self, service, instance_store, age, person_class):
        instance_store.set_counts(person_class, 7)
        report = service.analyze_assignment_creation(AssignmentCreate(
            class_id=person_class, attribute_id=age.attribute_id,
        ))
        assert report.safety_level is SafetyLevel.SAFE


class TestAssignmentRemoval:
    """할당 제거 분석"""

    def test_stored_values_warn(self, service, instance_store, age, age_assignment, person_class):
        instance_store.set_counts(person_class, 3, using={age.attribute_id: 3})
        report = service.analyze_assignment_removal(age_assignment.assignment_id)
        assert report.safety_level is SafetyLevel.WARNING
        assert report.affected_instance_count == 3

    def test_no_stored_values_safe(self, service, age_assignment):
        report = service.analyze_assignment_removal(age_assignment.assignment_id)
        assert report.safety_level is SafetyLevel.SAFE


class TestWithoutInstanceStore:
    """인스턴스 저장소가 없으면 인스턴스 수 0으로 분류"""

    def test_counts_default_to_zero(self, db_session, ctx, age, age_assignment):
        analyzer = EvolutionAnalyzer(db_session, ctx)
        report = analyzer.analyze_attribute_change(age.attribute_id, {"base_rules": {"min": 0, "max": 120}})
        assert report.safety_level is SafetyLevel.WARNING
        assert report.affected_instance_count == 0


class _DeadlineStore:
    """속성 사용 수 조회만 deadline 초과로 실패하는 인스턴스 저장소"""

    def __init__(self):
        self.fail = True

    def count_instances_of_class(self, tenant_id, class_id, timeout=None):
        return 4

    def count_instances_using_attribute(self, tenant_id, class_id, attribute_id, timeout=None):
        if self.fail:
            raise DeadlineExceededError("count_instances_using_attribute 시간 초과")
        return 2


class TestCountsPerReport:
    """보고서마다 인스턴스 수를 새로 수집"""

    def test_failed_analysis_does_not_leak_counts(self, db_session, ctx, nickname_assignment, person_class):
        store = _DeadlineStore()
        analyzer = EvolutionAnalyzer(db_session, ctx, store)

        with pytest.raises(DeadlineExceededError):
            analyzer.analyze_assignment_change(nickname_assignment.assignment_id, {"required": True})

        store.fail = False
        report = analyzer.analyze_assignment_removal(nickname_assignment.assignment_id)

        assert report.instance_counts == {
            f"class:{person_class}:attribute:{nickname_assignment.attribute_id}": 2
        }
