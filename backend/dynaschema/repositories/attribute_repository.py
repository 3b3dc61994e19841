# -*- coding: utf-8 -*-
"""
Attribute Repository
속성 정의 데이터 접근 계층
"""
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from dynaschema.models.core import AssignmentRecord, AttributeDefinition, EntityState
from dynaschema.repositories.base_repository import BaseRepository
from dynaschema.services.tenant_context import TenantContext


class AttributeRepository(BaseRepository[AttributeDefinition]):
    """속성 정의 Repository"""

    def __init__(self, db: Session, ctx: TenantContext):
        super().__init__(db, AttributeDefinition, AttributeDefinition.attribute_id, ctx)

    def get_active_by_name(self, name: str) -> Optional[AttributeDefinition]:
        """이름으로 활성 속성 조회"""
        self._before_lookup("get_attribute_by_name")
        return self._scoped().filter(
            AttributeDefinition.name == name,
            AttributeDefinition.status == EntityState.ACTIVE.value,
        ).first()

    def list(
        self,
        data_type: Optional[str] = None,
        include_inactive: bool = False,
    ) -> List[AttributeDefinition]:
        """속성 목록 (이름순)"""
        self._before_lookup("list_attributes")
        query = self._scoped()
        if data_type:
            query = query.filter(AttributeDefinition.data_type == data_type)
        if not include_inactive:
            query = query.filter(AttributeDefinition.status == EntityState.ACTIVE.value)
        return query.order_by(AttributeDefinition.name, AttributeDefinition.created_at).all()

    def count_active_assignments(self, attribute_id: UUID) -> int:
        """속성을 참조하는 활성 할당 수"""
        self._before_lookup("count_attribute_assignments")
        return self.db.query(AssignmentRecord).filter(
            AssignmentRecord.tenant_id == self.tenant_id,
            AssignmentRecord.attribute_id == attribute_id,
            AssignmentRecord.status == EntityState.ACTIVE.value,
        ).count()

    def referencing_class_ids(self, attribute_id: UUID) -> List[UUID]:
        """속성을 참조하는 활성 할당의 클래스 ID 목록 (역방향 조회)"""
        self._before_lookup("referencing_class_ids")
        rows = self.db.query(AssignmentRecord.class_id).filter(
            AssignmentRecord.tenant_id == self.tenant_id,
            AssignmentRecord.attribute_id == attribute_id,
            AssignmentRecord.status == EntityState.ACTIVE.value,
        ).distinct().all()
        return sorted((row[0] for row in rows), key=str)
