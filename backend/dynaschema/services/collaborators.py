"""
외부 협력 서비스 인터페이스

- InstanceStore: 인스턴스 저장소 (영향 분석용 인스턴스 수 조회)
- ClassRegistry: 클래스 템플릿 서비스 (할당 대상 클래스 존재 확인)

두 서비스 모두 엔진 외부 소유. 엔진은 호출자의 남은 deadline을 timeout으로 전달하고
재시도하지 않음 (재시도 정책은 클라이언트 쪽 책임)
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

import httpx

logger = logging.getLogger(__name__)


class InstanceStore(ABC):
    """인스턴스 수 제공자 (최근의 일관된 스냅샷이면 충분)"""

    @abstractmethod
    def count_instances_of_class(
        self,
        tenant_id: UUID,
        class_id: UUID,
        timeout: Optional[float] = None,
    ) -> int:
        """클래스의 저장된 인스턴스 수"""

    @abstractmethod
    def count_instances_using_attribute(
        self,
        tenant_id: UUID,
        class_id: UUID,
        attribute_id: UUID,
        timeout: Optional[float] = None,
    ) -> int:
        """클래스 인스턴스 중 해당 속성 값을 가진 인스턴스 수"""


class ClassRegistry(ABC):
    """클래스 템플릿 서비스"""

    @abstractmethod
    def class_exists(
        self,
        tenant_id: UUID,
        class_id: UUID,
        timeout: Optional[float] = None,
    ) -> bool:
        """활성 클래스 존재 여부 (삭제된 클래스는 False)"""


class _HttpCollaborator:
    """httpx 기반 공통 처리 (클라이언트 주입 가능)"""

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.Client] = None,
        default_timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_timeout = default_timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client()
        return self._http_client

    def close(self):
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def _get(self, path: str, timeout: Optional[float]) -> httpx.Response:
        url = f"{self.base_url}{path}"
        response = self.client.get(
            url,
            timeout=timeout if timeout is not None else self.default_timeout,
        )
        logger.debug(f"GET {url} -> {response.status_code}")
        return response


class HttpInstanceStore(_HttpCollaborator, InstanceStore):
    """
    인스턴스 저장소 HTTP 클라이언트

    GET /tenants/{tenant}/classes/{class}/instances/count -> {"count": n}
    GET /tenants/{tenant}/classes/{class}/attributes/{attribute}/instances/count -> {"count": n}
    """

    def count_instances_of_class(self, tenant_id, class_id, timeout=None) -> int:
        response = self._get(
            f"/tenants/{tenant_id}/classes/{class_id}/instances/count",
            timeout,
        )
        response.raise_for_status()
        return int(response.json()["count"])

    def count_instances_using_attribute(self, tenant_id, class_id, attribute_id, timeout=None) -> int:
        response = self._get(
            f"/tenants/{tenant_id}/classes/{class_id}/attributes/{attribute_id}/instances/count",
            timeout,
        )
        response.raise_for_status()
        return int(response.json()["count"])


class HttpClassRegistry(_HttpCollaborator, ClassRegistry):
    """
    클래스 템플릿 서비스 HTTP 클라이언트

    GET /tenants/{tenant}/classes/{class} -> 200 (status != deleted) 이면 존재, 404면 없음
    """

    def class_exists(self, tenant_id, class_id, timeout=None) -> bool:
        response = self._get(f"/tenants/{tenant_id}/classes/{class_id}", timeout)
        if response.status_code == 404:
            return False
        response.raise_for_status()
        payload = response.json()
        return payload.get("status", "active") != "deleted"


def build_instance_store(config=None) -> Optional[InstanceStore]:
    """설정 기반 인스턴스 저장소 클라이언트 (URL 미설정 시 None)"""
    if config is None:
        from dynaschema.config import settings as config
    if not config.instance_store_url:
        return None
    return HttpInstanceStore(
        config.instance_store_url,
        default_timeout=config.external_timeout_seconds,
    )


def build_class_registry(config=None) -> Optional[ClassRegistry]:
    """설정 기반 클래스 레지스트리 클라이언트 (URL 미설정 시 None)"""
    if config is None:
        from dynaschema.config import settings as config
    if not config.class_registry_url:
        return None
    return HttpClassRegistry(
        config.class_registry_url,
        default_timeout=config.external_timeout_seconds,
    )
