"""
DynaSchema - ComposedSchema 캐시
주입 가능한 캐시 추상화 (get / set / invalidate)

- 항목은 불변 스냅샷으로 저장되고 통째로 교체됨
- 쓰기 직후 작성자 자신의 조회는 동기 무효화로 최신 상태 보장
- 분산 캐시(Redis)는 다른 인스턴스에 대해 staleness_bound_seconds 이내의 지연을 허용
  (SchemaComposer는 버전 프로브로 한 번 더 확인)
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

import redis
from pydantic import ValidationError
from redis import ConnectionPool

from dynaschema.schemas.composed import ComposedSchema
from dynaschema.utils.metrics import track_cache_invalidation

logger = logging.getLogger(__name__)

KEY_PREFIX = "dynaschema:schema"


class SchemaCache(ABC):
    """ComposedSchema 캐시 인터페이스"""

    backend = "abstract"

    def __init__(self, ttl: int = 300):
        self.ttl = ttl

    @staticmethod
    def build_key(tenant_id: UUID, class_id: UUID) -> str:
        """캐시 키 생성 (테넌트 + 클래스)"""
        return f"{KEY_PREFIX}:{tenant_id}:{class_id}"

    @property
    def staleness_bound_seconds(self) -> float:
        """다른 작성자의 변경이 보이지 않을 수 있는 최대 시간 (초)"""
        return float(self.ttl)

    @abstractmethod
    def get(self, key: str) -> Optional[ComposedSchema]:
        ...

    @abstractmethod
    def set(self, key: str, schema: ComposedSchema) -> None:
        ...

    @abstractmethod
    def invalidate(self, key: str) -> bool:
        ...

    @abstractmethod
    def invalidate_tenant(self, tenant_id: UUID) -> int:
        ...


class NullSchemaCache(SchemaCache):
    """아무것도 저장하지 않는 캐시 (테스트, 캐시 비활성화)"""

    backend = "none"

    def __init__(self):
        super().__init__(ttl=0)

    def get(self, key: str) -> Optional[ComposedSchema]:
        return None

    def set(self, key: str, schema: ComposedSchema) -> None:
        return None

    def invalidate(self, key: str) -> bool:
        return False

    def invalidate_tenant(self, tenant_id: UUID) -> int:
        return 0


class InMemorySchemaCache(SchemaCache):
    """
    프로세스 로컬 LRU + TTL 캐시

    같은 프로세스의 작성자와 조회자는 항상 최신 상태를 봄
    """

    backend = "memory"

    def __init__(self, ttl: int = 300, max_entries: int = 10000):
        super().__init__(ttl=ttl)
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Tuple[float, ComposedSchema]]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "invalidations": 0}

    @property
    def staleness_bound_seconds(self) -> float:
        return 0.0

    def get(self, key: str) -> Optional[ComposedSchema]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            expires_at, schema = entry
            if self.ttl and expires_at <= time.monotonic():
                del self._entries[key]
                self._stats["misses"] += 1
                return None
            self._entries.move_to_end(key)
            self._stats["hits"] += 1
            return schema

    def set(self, key: str, schema: ComposedSchema) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic() + self.ttl, schema)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed:
                self._stats["invalidations"] += 1
        if removed:
            track_cache_invalidation(self.backend)
        return removed

    def invalidate_tenant(self, tenant_id: UUID) -> int:
        prefix = f"{KEY_PREFIX}:{tenant_id}:"
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            self._stats["invalidations"] += len(keys)
        track_cache_invalidation(self.backend, len(keys))
        return len(keys)

    def get_stats(self) -> Dict[str, Any]:
        """캐시 통계"""
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "size": len(self._entries),
                "hit_rate": round(self._stats["hits"] / total, 4) if total else 0.0,
            }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisSchemaCache(SchemaCache):
    """
    Redis 분산 캐시

    연결 장애는 감싸지 않고 전파 (상위 계층에서 backoff 재시도)
    손상된 항목은 삭제 후 miss로 처리
    """

    backend = "redis"

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        url: Optional[str] = None,
        ttl: int = 300,
        max_connections: int = 50,
    ):
        super().__init__(ttl=ttl)
        if client is None:
            if not url:
                raise ValueError("RedisSchemaCache requires a client or a redis url")
            pool = ConnectionPool.from_url(
                url,
                max_connections=max_connections,
                decode_responses=True,
            )
            client = redis.Redis(connection_pool=pool)
            logger.info("Redis schema cache connection pool created")
        self.client = client

    def get(self, key: str) -> Optional[ComposedSchema]:
        value = self.client.get(key)
        if value is None:
            logger.debug(f"Cache miss: {key}")
            return None
        try:
            schema = ComposedSchema.model_validate_json(value)
        except ValidationError as e:
            logger.warning(f"Corrupt schema cache entry {key}: {e}")
            self.client.delete(key)
            return None
        logger.debug(f"Cache hit: {key}")
        return schema

    def set(self, key: str, schema: ComposedSchema) -> None:
        self.client.setex(key, self.ttl, schema.model_dump_json())
        logger.debug(f"Cache set: {key} (TTL: {self.ttl}s)")

    def invalidate(self, key: str) -> bool:
        deleted = self.client.delete(key)
        if deleted:
            track_cache_invalidation(self.backend)
        return bool(deleted)

    def invalidate_tenant(self, tenant_id: UUID) -> int:
        keys = list(self.client.scan_iter(match=f"{KEY_PREFIX}:{tenant_id}:*"))
        if not keys:
            return 0
        deleted = self.client.delete(*keys)
        track_cache_invalidation(self.backend, deleted)
        logger.debug(f"Cache deleted {deleted} schema keys for tenant {tenant_id}")
        return deleted


def build_schema_cache(config=None) -> SchemaCache:
    """
    설정 기반 캐시 생성

    Args:
        config: Settings (None이면 전역 settings)
    """
    if config is None:
        from dynaschema.config import settings as config

    backend = (config.schema_cache_backend or "none").lower()
    if backend == "redis":
        return RedisSchemaCache(
            url=config.redis_url,
            ttl=config.schema_cache_ttl,
            max_connections=config.redis_max_connections,
        )
    if backend == "memory":
        return InMemorySchemaCache(
            ttl=config.schema_cache_ttl,
            max_entries=config.schema_cache_max_entries,
        )
    if backend != "none":
        logger.warning(f"Unknown schema cache backend '{backend}', caching disabled")
    return NullSchemaCache()
