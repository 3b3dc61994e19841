"""
DynaSchema - Test Configuration
================================
pytest fixtures and configuration for backend tests
Uses in-memory SQLite (StaticPool), created and dropped per test

External collaborators (instance store, class registry) are in-memory fakes
"""

import os
from typing import Dict, Optional, Set, Tuple
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Set test environment before importing dynaschema
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEMA_CACHE_BACKEND"] = "memory"
os.environ["LOG_FORMAT"] = "text"
os.environ.pop("REDIS_URL", None)
os.environ.pop("INSTANCE_STORE_URL", None)
os.environ.pop("CLASS_REGISTRY_URL", None)

# Now import dynaschema modules
from dynaschema.database import Base, engine_options
from dynaschema.models import core  # noqa: F401
from dynaschema.schemas.attribute import AttributeCreate
from dynaschema.services.collaborators import ClassRegistry, InstanceStore
from dynaschema.services.schema_cache import InMemorySchemaCache
from dynaschema.services.schema_service import SchemaService
from dynaschema.services.tenant_context import TenantContext


# Test database setup - in-memory SQLite
TEST_DATABASE_URL = "sqlite://"
test_engine = create_engine(TEST_DATABASE_URL, **engine_options(TEST_DATABASE_URL))
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeInstanceStore(InstanceStore):
    """인스턴스 수 고정값 제공 (호출 기록)"""

    def __init__(self):
        self.class_counts: Dict[UUID, int] = {}
        self.attribute_counts: Dict[Tuple[UUID, UUID], int] = {}
        self.calls = []

    def set_counts(self, class_id: UUID, total: int, using: Optional[Dict[UUID, int]] = None):
        self.class_counts[class_id] = total
        for attribute_id, count in (using or {}).items():
            self.attribute_counts[(class_id, attribute_id)] = count

    def count_instances_of_class(self, tenant_id, class_id, timeout=None):
        self.calls.append(("class", tenant_id, class_id, timeout))
        return self.class_counts.get(class_id, 0)

    def count_instances_using_attribute(self, tenant_id, class_id, attribute_id, timeout=None):
        self.calls.append(("attribute", tenant_id, class_id, attribute_id, timeout))
        return self.attribute_counts.get((class_id, attribute_id), 0)


class FakeClassRegistry(ClassRegistry):
    """등록된 클래스만 존재"""

    def __init__(self):
        self.classes: Set[UUID] = set()

    def register(self, class_id: Optional[UUID] = None) -> UUID:
        class_id = class_id or uuid4()
        self.classes.add(class_id)
        return class_id

    def class_exists(self, tenant_id, class_id, timeout=None):
        return class_id in self.classes


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        # Drop all tables after each test for isolation
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def ctx(tenant_id) -> TenantContext:
    return TenantContext(tenant_id=tenant_id, actor_id=uuid4())


@pytest.fixture
def instance_store() -> FakeInstanceStore:
    return FakeInstanceStore()


@pytest.fixture
def class_registry() -> FakeClassRegistry:
    return FakeClassRegistry()


@pytest.fixture
def schema_cache() -> InMemorySchemaCache:
    return InMemorySchemaCache(ttl=300, max_entries=100)


@pytest.fixture
def service(db_session, ctx, schema_cache, instance_store, class_registry) -> SchemaService:
    return SchemaService(
        db_session,
        ctx,
        cache=schema_cache,
        instance_store=instance_store,
        class_registry=class_registry,
    )


@pytest.fixture
def person_class(class_registry) -> UUID:
    """Person 클래스 ID (클래스 레지스트리에 등록됨)"""
    return class_registry.register()


@pytest.fixture
def make_attribute(service):
    """속성 정의 생성 헬퍼"""

    def _make(name: str, data_type: str, base_rules: Optional[dict] = None, description: Optional[str] = None):
        outcome = service.create_attribute(AttributeCreate(
            name=name,
            data_type=data_type,
            base_rules=base_rules or {},
            description=description,
        ))
        return outcome.entity

    return _make
