"""
외부 협력 서비스 클라이언트 테스트
httpx MockTransport로 인스턴스 저장소/클래스 레지스트리 응답 재현
"""
from types import SimpleNamespace
from uuid import uuid4

import httpx
import pytest

from dynaschema.services.collaborators import (
    HttpClassRegistry,
    HttpInstanceStore,
    build_class_registry,
    build_instance_store,
)


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestHttpInstanceStore:
    """인스턴스 저장소 클라이언트"""

    def test_count_instances_of_class(self):
        tenant_id, class_id = uuid4(), uuid4()
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"count": 42})

        store = HttpInstanceStore("http://instances/", http_client=_client(handler))
        assert store.count_instances_of_class(tenant_id, class_id, timeout=1.5) == 42
        assert seen[0].url.path == f"/tenants/{tenant_id}/classes/{class_id}/instances/count"
        assert seen[0].extensions["timeout"]["read"] == 1.5

    def test_count_instances_using_attribute(self):
        tenant_id, class_id, attribute_id = uuid4(), uuid4(), uuid4()

        def handler(request):
            assert request.url.path == (
                f"/tenants/{tenant_id}/classes/{class_id}/attributes/{attribute_id}/instances/count"
            )
            return httpx.Response(200, json={"count": "7"})

        store = HttpInstanceStore("http://instances", http_client=_client(handler))
        assert store.count_instances_using_attribute(tenant_id, class_id, attribute_id) == 7

    def test_default_timeout(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"count": 0})

        store = HttpInstanceStore("http://instances", http_client=_client(handler), default_timeout=3.0)
        store.count_instances_of_class(uuid4(), uuid4())
        assert seen[0].extensions["timeout"]["read"] == 3.0

    def test_server_error_propagates(self):
        store = HttpInstanceStore(
            "http://instances",
            http_client=_client(lambda request: httpx.Response(503)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            store.count_instances_of_class(uuid4(), uuid4())

    def test_close_keeps_injected_client(self):
        client = _client(lambda request: httpx.Response(200, json={"count": 1}))
        store = HttpInstanceStore("http://instances", http_client=client)
        store.close()
        assert not client.is_closed


class TestHttpClassRegistry:
    """클래스 레지스트리 클라이언트"""

    def test_exists(self):
        registry = HttpClassRegistry(
            "http://classes",
            http_client=_client(lambda request: httpx.Response(200, json={"status": "active"})),
        )
        assert registry.class_exists(uuid4(), uuid4()) is True

    def test_not_found(self):
        registry = HttpClassRegistry(
            "http://classes",
            http_client=_client(lambda request: httpx.Response(404)),
        )
        assert registry.class_exists(uuid4(), uuid4()) is False

    def test_deleted_class(self):
        registry = HttpClassRegistry(
            "http://classes",
            http_client=_client(lambda request: httpx.Response(200, json={"status": "deleted"})),
        )
        assert registry.class_exists(uuid4(), uuid4()) is False

    def test_server_error_propagates(self):
        registry = HttpClassRegistry(
            "http://classes",
            http_client=_client(lambda request: httpx.Response(500)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            registry.class_exists(uuid4(), uuid4())


class TestFactories:
    """설정 기반 생성"""

    def _config(self, **overrides):
        values = {"instance_store_url": None, "class_registry_url": None, "external_timeout_seconds": 2.0}
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_unconfigured(self):
        assert build_instance_store(self._config()) is None
        assert build_class_registry(self._config()) is None

    def test_configured(self):
        config = self._config(instance_store_url="http://instances", class_registry_url="http://classes")
        store = build_instance_store(config)
        registry = build_class_registry(config)
        assert isinstance(store, HttpInstanceStore)
        assert store.default_timeout == 2.0
        assert isinstance(registry, HttpClassRegistry)
