"""
Concurrency Guard
낙관적 동시성 제어와 ComposedSchema 캐시 무효화

모든 변경은 expected_version 조건부 UPDATE 한 번으로 적용:
    UPDATE ... SET version = version + 1
    WHERE id = :id AND tenant_id = :t AND version = :expected AND status = 'active'

영향받은 행이 없으면 VersionConflictError (행이 없거나 비활성이면 NotFound).
엔진은 재시도하지 않음 - 호출자가 다시 읽고 재시도해야 함
"""
import logging
from typing import Any, Dict, Iterable, Type
from uuid import UUID

from sqlalchemy.orm import Session

from dynaschema.models.core import EntityState, utcnow
from dynaschema.services.schema_cache import NullSchemaCache, SchemaCache
from dynaschema.services.tenant_context import TenantContext, require_tenant
from dynaschema.utils.errors import NotFoundError, VersionConflictError
from dynaschema.utils.metrics import track_version_conflict

logger = logging.getLogger(__name__)


class ConcurrencyGuard:
    """버전 조건부 쓰기 + 캐시 무효화"""

    def __init__(self, db: Session, ctx: TenantContext, cache: SchemaCache = None):
        self.db = db
        self.ctx = ctx
        self.tenant_id = require_tenant(ctx)
        self.cache = cache or NullSchemaCache()

    def versioned_update(
        self,
        entity: str,
        model: Type[Any],
        id_column,
        entity_id: UUID,
        expected_version: int,
        values: Dict[str, Any],
        not_found_error: Type[NotFoundError] = NotFoundError,
    ) -> int:
        """
        조건부 UPDATE 실행

        Args:
            entity: 엔티티 종류 (attribute, assignment) - 로그/메트릭 라벨
            model: ORM 모델
            id_column: 기본키 컬럼
            entity_id: 대상 ID
            expected_version: 호출자가 읽은 버전
            values: 변경할 컬럼 값

        Returns:
            새 버전

        Raises:
            VersionConflictError: 저장된 버전이 expected_version과 다름
            NotFoundError: 행이 없거나 비활성
        """
        self.ctx.check_deadline(f"update_{entity}")

        payload = dict(values)
        payload["version"] = model.version + 1
        payload["updated_at"] = utcnow()

        rowcount = self.db.query(model).filter(
            id_column == entity_id,
            model.tenant_id == self.tenant_id,
            model.version == expected_version,
            model.status == EntityState.ACTIVE.value,
        ).update(payload, synchronize_session=False)

        if rowcount != 1:
            current = self.db.query(model.version, model.status).filter(
                id_column == entity_id,
                model.tenant_id == self.tenant_id,
            ).first()
            if current is None or current.status != EntityState.ACTIVE.value:
                raise not_found_error(
                    f"{entity}을(를) 찾을 수 없습니다: {entity_id}",
                    entity_id=str(entity_id),
                )
            track_version_conflict(entity)
            logger.warning(
                f"Version conflict on {entity} {entity_id}: "
                f"expected={expected_version}, current={current.version}"
            )
            raise VersionConflictError(
                f"{entity} 버전이 일치하지 않습니다 (expected={expected_version}, current={current.version})",
                entity_id=str(entity_id),
                expected_version=expected_version,
                current_version=current.version,
            )

        # 세션에 남아 있는 이전 상태 제거
        self.db.expire_all()
        return expected_version + 1

    def invalidate_classes(self, class_ids: Iterable[UUID]) -> int:
        """참조 클래스의 ComposedSchema 캐시 항목 무효화"""
        removed = 0
        for class_id in set(class_ids):
            if self.cache.invalidate(self.cache.build_key(self.tenant_id, class_id)):
                removed += 1
        if removed:
            logger.info(f"Invalidated {removed} composed schema(s) for tenant {self.tenant_id}")
        return removed
