# -*- coding: utf-8 -*-
"""
Evolution Repository
스키마 변경 이력 (append-only)
"""
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from dynaschema.models.core import EvolutionRecord
from dynaschema.repositories.base_repository import BaseRepository
from dynaschema.services.tenant_context import TenantContext


class EvolutionRepository(BaseRepository[EvolutionRecord]):
    """변경 이력 Repository - 추가와 조회만 제공"""

    def __init__(self, db: Session, ctx: TenantContext):
        super().__init__(db, EvolutionRecord, EvolutionRecord.evolution_id, ctx)

    def get_by_id(self, id: UUID, include_inactive: bool = False) -> Optional[EvolutionRecord]:
        """ID로 조회 (이력에는 상태가 없음)"""
        self._before_lookup("get_evolution_record")
        return self._scoped().filter(EvolutionRecord.evolution_id == id).first()

    def append(self, record: EvolutionRecord) -> EvolutionRecord:
        """이력 추가"""
        return self.create(record)

    def list(
        self,
        entity_id: Optional[UUID] = None,
        entity_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[EvolutionRecord]:
        """이력 목록 (최신순)"""
        self._before_lookup("list_evolution_records")
        query = self._scoped()
        if entity_id is not None:
            query = query.filter(EvolutionRecord.entity_id == entity_id)
        if entity_type:
            query = query.filter(EvolutionRecord.entity_type == entity_type)
        return query.order_by(
            EvolutionRecord.created_at.desc(),
            EvolutionRecord.entity_version.desc(),
        ).limit(limit).all()
