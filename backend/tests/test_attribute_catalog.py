"""
Attribute Catalog 테스트
속성 정의 생성/조회/수정/비활성화
"""
from uuid import uuid4

import pytest

from dynaschema.models.core import EntityState
from dynaschema.schemas.assignment import AssignmentCreate
from dynaschema.schemas.attribute import AttributeUpdate
from dynaschema.services.attribute_catalog import AttributeCatalog
from dynaschema.services.tenant_context import TenantContext
from dynaschema.utils.errors import (
    AttributeNotFoundError,
    DefaultValueInvalidError,
    ImmutableFieldError,
    InUseError,
    InvalidRuleSetError,
    NameConflictError,
    VersionConflictError,
)


@pytest.fixture
def catalog(db_session, ctx, schema_cache):
    return AttributeCatalog(db_session, ctx, schema_cache)


class TestCreate:
    """속성 생성"""

    def test_create(self, catalog, ctx):
        attribute = catalog.create("age", "integer", {"min": 0}, "나이")
        assert attribute.version == 1
        assert attribute.status == EntityState.ACTIVE.value
        assert attribute.base_rules == {"min": 0}
        assert attribute.tenant_id == ctx.tenant_id
        assert attribute.created_by == ctx.actor_id

    def test_duplicate_name(self, catalog):
        catalog.create("age", "integer")
        with pytest.raises(NameConflictError):
            catalog.create("age", "string")

    def test_same_name_in_other_tenant(self, db_session, catalog):
        catalog.create("age", "integer")
        other = AttributeCatalog(db_session, TenantContext(tenant_id=uuid4()))
        assert other.create("age", "integer").name == "age"

    def test_name_reusable_after_deactivation(self, catalog):
        first = catalog.create("age", "integer")
        catalog.deactivate(first.attribute_id)
        second = catalog.create("age", "decimal")
        assert second.attribute_id != first.attribute_id

    @pytest.mark.parametrize("name", ["", "Age", "1age", "with space", "a" * 64])
    def test_invalid_name(self, catalog, name):
        with pytest.raises(InvalidRuleSetError):
            catalog.create(name, "string")

    def test_unknown_data_type(self, catalog):
        with pytest.raises(InvalidRuleSetError):
            catalog.create("price", "money")

    def test_invalid_rules(self, catalog):
        with pytest.raises(InvalidRuleSetError):
            catalog.create("code", "string", {"min_length": 5, "max_length": 1})

    def test_custom_name_pattern(self, db_session, ctx):
        catalog = AttributeCatalog(db_session, ctx, name_pattern=r"^[A-Z]+$")
        assert catalog.create("AGE", "integer").name == "AGE"


class TestQuery:
    """속성 조회"""

    def test_get_missing(self, catalog):
        with pytest.raises(AttributeNotFoundError):
            catalog.get(uuid4())

    def test_get_by_name(self, catalog):
        created = catalog.create("age", "integer")
        assert catalog.get_by_name("age").attribute_id == created.attribute_id
        with pytest.raises(AttributeNotFoundError):
            catalog.get_by_name("height")

    def test_list_by_type(self, catalog):
        catalog.create("age", "integer")
        catalog.create("name", "string")
        catalog.create("count", "integer")
        assert sorted(a.name for a in catalog.list(data_type="integer")) == ["age", "count"]

    def test_list_include_inactive(self, catalog):
        old = catalog.create("old", "string")
        catalog.create("new", "string")
        catalog.deactivate(old.attribute_id)
        assert [a.name for a in catalog.list()] == ["new"]
        assert sorted(a.name for a in catalog.list(include_inactive=True)) == ["new", "old"]

    def test_other_tenant_invisible(self, db_session, catalog):
        created = catalog.create("age", "integer")
        other = AttributeCatalog(db_session, TenantContext(tenant_id=uuid4()))
        with pytest.raises(AttributeNotFoundError):
            other.get(created.attribute_id)


class TestUpdate:
    """속성 수정"""

    def test_update_rules_bumps_version(self, catalog):
        created = catalog.create("age", "integer", {"min": 0})
        updated = catalog.update(created.attribute_id, {"base_rules": {"min": 0, "max": 150}}, 1)
        assert updated.version == 2
        assert updated.base_rules == {"max": 150, "min": 0}

    def test_update_description_only(self, catalog):
        created = catalog.create("age", "integer", {"min": 0})
        updated = catalog.update(created.attribute_id, {"description": "나이"}, 1)
        assert updated.description == "나이"
        assert updated.base_rules == {"min": 0}

    def test_stale_version(self, catalog):
        created = catalog.create("age", "integer")
        catalog.update(created.attribute_id, {"description": "v2"}, 1)
        with pytest.raises(VersionConflictError) as exc_info:
            catalog.update(created.attribute_id, {"description": "v3"}, 1)
        assert exc_info.value.details["current_version"] == 2

    def test_name_is_immutable(self, catalog):
        created = catalog.create("age", "integer")
        with pytest.raises(ImmutableFieldError):
            catalog.update(created.attribute_id, {"name": "years"}, 1)

    def test_data_type_is_immutable(self, catalog):
        created = catalog.create("age", "integer")
        with pytest.raises(ImmutableFieldError):
            catalog.update(created.attribute_id, AttributeUpdate(data_type="decimal").model_dump(exclude_unset=True), 1)

    def test_same_name_passes_immutable_check(self, catalog):
        created = catalog.create("age", "integer")
        update = AttributeUpdate(name="age", data_type="integer", description="나이")
        updated = catalog.update(created.attribute_id, update.model_dump(exclude_unset=True), 1)
        assert updated.version == 2

    def test_invalid_rules_rejected(self, catalog):
        created = catalog.create("age", "integer")
        with pytest.raises(InvalidRuleSetError):
            catalog.update(created.attribute_id, {"base_rules": {"min_length": 1}}, 1)
        assert catalog.get(created.attribute_id).version == 1

    def test_base_rules_checked_against_assignment_defaults(self, catalog, service, person_class):
        age = catalog.create("age", "integer")
        service.create_assignment(AssignmentCreate(
            class_id=person_class, attribute_id=age.attribute_id, default_value=5,
        ))

        with pytest.raises(DefaultValueInvalidError):
            catalog.update(age.attribute_id, {"base_rules": {"max": 3}}, 1)
        assert catalog.update(age.attribute_id, {"base_rules": {"max": 5}}, 1).version == 2

    def test_base_rules_checked_against_overrides(self, catalog, service, person_class):
        age = catalog.create("age", "integer")
        service.create_assignment(AssignmentCreate(
            class_id=person_class, attribute_id=age.attribute_id, override_rules={"min": 50},
        ))

        with pytest.raises(InvalidRuleSetError):
            catalog.update(age.attribute_id, {"base_rules": {"max": 10}}, 1)
        assert catalog.get(age.attribute_id).version == 1


class TestDeactivate:
    """속성 비활성화"""

    def test_deactivate_unused(self, catalog):
        created = catalog.create("age", "integer")
        deactivated = catalog.deactivate(created.attribute_id)
        assert deactivated.status == EntityState.DEACTIVATED.value
        assert deactivated.deactivated_at is not None
        with pytest.raises(AttributeNotFoundError):
            catalog.get(created.attribute_id)

    def test_deactivate_in_use(self, service, make_attribute, person_class):
        age = make_attribute("age", "integer")
        service.create_assignment(AssignmentCreate(class_id=person_class, attribute_id=age.attribute_id))

        with pytest.raises(InUseError) as exc_info:
            service.catalog.deactivate(age.attribute_id)
        assert exc_info.value.details["assignment_count"] == 1

    def test_deactivated_cannot_update(self, catalog):
        created = catalog.create("age", "integer")
        catalog.deactivate(created.attribute_id)
        with pytest.raises(AttributeNotFoundError):
            catalog.update(created.attribute_id, {"description": "x"}, 2)

    def test_referencing_classes(self, service, make_attribute, class_registry):
        age = make_attribute("age", "integer")
        first, second = class_registry.register(), class_registry.register()
        for class_id in (first, second):
            service.create_assignment(AssignmentCreate(class_id=class_id, attribute_id=age.attribute_id))

        assert sorted(service.referencing_class_ids(age.attribute_id), key=str) == sorted([first, second], key=str)
