"""
Schema Composer
클래스의 활성 할당을 정렬 위치순으로 읽고 규칙을 병합해 ComposedSchema 생성

캐시 항목은 버전 프로브(SchemaStamp)가 일치할 때만 사용:
1. 프로브 실행 (집계 쿼리 한 번)
2. 캐시 항목의 stamp와 비교 - 같으면 hit, 다르면 stale
3. 새로 조합한 스키마에는 조합 전에 읽은 stamp를 기록
   (조합 도중의 쓰기는 다음 프로브에서 stale로 잡힘)
"""
import hashlib
import json
import logging
import time
from datetime import datetime, timezone
from typing import Iterable, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from dynaschema.repositories.assignment_repository import AssignmentRepository
from dynaschema.schemas.composed import ComposedAttribute, ComposedSchema, SchemaStamp
from dynaschema.services.rule_merger import merge_rules
from dynaschema.services.schema_cache import NullSchemaCache, SchemaCache
from dynaschema.services.tenant_context import TenantContext, require_tenant
from dynaschema.utils.metrics import schema_compose_duration_seconds, track_compose

logger = logging.getLogger(__name__)


def compute_content_hash(entries: Iterable[Tuple[UUID, bool, int, int, int]]) -> str:
    """
    내용 해시 (attribute_id 순 정렬 - 로드 순서와 무관)

    entries: (attribute_id, required, sort_position, assignment_version, attribute_version)
    """
    rows = sorted(
        ([str(attribute_id), bool(required), int(position), int(a_version), int(d_version)]
         for attribute_id, required, position, a_version, d_version in entries),
        key=lambda row: row[0],
    )
    payload = json.dumps(rows, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class SchemaComposer:
    """ComposedSchema 조합 + 캐시"""

    def __init__(self, db: Session, ctx: TenantContext, cache: Optional[SchemaCache] = None):
        self.db = db
        self.ctx = ctx
        self.tenant_id = require_tenant(ctx)
        self.cache = cache or NullSchemaCache()
        self.assignments = AssignmentRepository(db, ctx)

    def probe(self, class_id: UUID) -> SchemaStamp:
        """버전 프로브"""
        return self.assignments.version_probe(class_id)

    def compose(self, class_id: UUID, *, bypass_cache: bool = False) -> ComposedSchema:
        """
        클래스 스키마 조합

        Args:
            class_id: 클래스 ID
            bypass_cache: True면 캐시를 읽지 않고 새로 조합 (EvolutionAnalyzer 등 최신성이 필요한 경우)

        Returns:
            ComposedSchema (할당이 없으면 빈 스키마)
        """
        key = self.cache.build_key(self.tenant_id, class_id)
        stamp = self.probe(class_id)

        if bypass_cache:
            result = "bypass"
        else:
            cached = self.cache.get(key)
            if cached is not None and cached.stamp == stamp:
                track_compose("hit")
                logger.debug(f"Composed schema cache hit: {key}")
                return cached
            result = "stale" if cached is not None else "miss"
            logger.debug(f"Composed schema cache {result}: {key}")

        start = time.perf_counter()
        schema = self._build(class_id, stamp)
        schema_compose_duration_seconds.observe(time.perf_counter() - start)
        track_compose(result)

        self.cache.set(key, schema)
        return schema

    def _build(self, class_id: UUID, stamp: SchemaStamp) -> ComposedSchema:
        rows = self.assignments.list_active_with_attributes(class_id)

        attributes = []
        last_modified: Optional[datetime] = None
        for assignment, attribute in rows:
            effective = merge_rules(attribute.data_type, attribute.base_rules, assignment.override_rules)
            attributes.append(ComposedAttribute(
                assignment_id=assignment.assignment_id,
                attribute_id=attribute.attribute_id,
                name=attribute.name,
                display_name=assignment.display_name,
                data_type=attribute.data_type,
                rules=effective.rules,
                narrowed_rules=effective.narrowed,
                required=assignment.required,
                sort_position=assignment.sort_position,
                default_value=assignment.default_value,
                assignment_version=assignment.version,
                attribute_version=attribute.version,
            ))
            for touched in (assignment.updated_at, attribute.updated_at):
                touched = _aware(touched)
                if touched is not None and (last_modified is None or touched > last_modified):
                    last_modified = touched

        content_hash = compute_content_hash(
            (a.attribute_id, a.required, a.sort_position, a.assignment_version, a.attribute_version)
            for a in attributes
        )
        required_count = sum(1 for a in attributes if a.required)

        logger.debug(
            f"Composed schema for class {class_id}: {len(attributes)} attribute(s), hash={content_hash[:12]}"
        )
        return ComposedSchema(
            tenant_id=self.tenant_id,
            class_id=class_id,
            attributes=tuple(attributes),
            content_hash=content_hash,
            required_count=required_count,
            optional_count=len(attributes) - required_count,
            last_modified=last_modified,
            stamp=stamp,
            composed_at=datetime.now(timezone.utc),
        )


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite는 tzinfo를 저장하지 않으므로 UTC로 간주"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
