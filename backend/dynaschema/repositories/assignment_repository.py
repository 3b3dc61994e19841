# -*- coding: utf-8 -*-
"""
Assignment Repository
클래스-속성 할당 데이터 접근 계층
"""
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from dynaschema.models.core import AssignmentRecord, AttributeDefinition, EntityState
from dynaschema.repositories.base_repository import BaseRepository
from dynaschema.schemas.composed import SchemaStamp
from dynaschema.services.tenant_context import TenantContext

ACTIVE = EntityState.ACTIVE.value


class AssignmentRepository(BaseRepository[AssignmentRecord]):
    """할당 Repository"""

    def __init__(self, db: Session, ctx: TenantContext):
        super().__init__(db, AssignmentRecord, AssignmentRecord.assignment_id, ctx)

    def get_active(self, class_id: UUID, attribute_id: UUID) -> Optional[AssignmentRecord]:
        """(클래스, 속성)의 활성 할당"""
        self._before_lookup("get_active_assignment")
        return self._scoped().filter(
            AssignmentRecord.class_id == class_id,
            AssignmentRecord.attribute_id == attribute_id,
            AssignmentRecord.status == ACTIVE,
        ).first()

    def get_active_by_position(self, class_id: UUID, sort_position: int) -> Optional[AssignmentRecord]:
        """정렬 위치를 점유한 활성 할당"""
        self._before_lookup("get_assignment_by_position")
        return self._scoped().filter(
            AssignmentRecord.class_id == class_id,
            AssignmentRecord.sort_position == sort_position,
            AssignmentRecord.status == ACTIVE,
        ).first()

    def list_for_class(self, class_id: UUID, include_inactive: bool = False) -> List[AssignmentRecord]:
        """클래스의 할당 목록 (정렬 위치순)"""
        self._before_lookup("list_class_assignments")
        query = self._scoped().filter(AssignmentRecord.class_id == class_id)
        if not include_inactive:
            query = query.filter(AssignmentRecord.status == ACTIVE)
        return query.order_by(AssignmentRecord.sort_position, AssignmentRecord.created_at).all()

    def list_for_attribute(self, attribute_id: UUID, include_inactive: bool = False) -> List[AssignmentRecord]:
        """속성을 참조하는 할당 목록"""
        self._before_lookup("list_attribute_assignments")
        query = self._scoped().filter(AssignmentRecord.attribute_id == attribute_id)
        if not include_inactive:
            query = query.filter(AssignmentRecord.status == ACTIVE)
        return query.order_by(AssignmentRecord.class_id, AssignmentRecord.sort_position).all()

    def list_active_with_attributes(
        self,
        class_id: UUID,
    ) -> List[Tuple[AssignmentRecord, AttributeDefinition]]:
        """클래스의 활성 할당과 속성 정의 (정렬 위치순)

        ix_assignment_records_class_status_sort 인덱스 사용
        """
        self._before_lookup("load_class_schema")
        return self.db.query(AssignmentRecord, AttributeDefinition).join(
            AttributeDefinition,
            AttributeDefinition.attribute_id == AssignmentRecord.attribute_id,
        ).filter(
            AssignmentRecord.tenant_id == self.tenant_id,
            AssignmentRecord.class_id == class_id,
            AssignmentRecord.status == ACTIVE,
        ).order_by(AssignmentRecord.sort_position).all()

    def next_sort_position(self, class_id: UUID) -> int:
        """마지막 활성 정렬 위치 다음 값"""
        self._before_lookup("next_sort_position")
        current = self.db.query(func.max(AssignmentRecord.sort_position)).filter(
            AssignmentRecord.tenant_id == self.tenant_id,
            AssignmentRecord.class_id == class_id,
            AssignmentRecord.status == ACTIVE,
        ).scalar()
        return 0 if current is None else current + 1

    def version_probe(self, class_id: UUID) -> SchemaStamp:
        """
        캐시 유효성 확인용 집계 쿼리

        비활성 행도 포함 - 비활성화 역시 버전을 올리므로 합계가 변함
        """
        self._before_lookup("schema_version_probe")
        is_active = case((AssignmentRecord.status == ACTIVE, 1), else_=0)
        row = self.db.query(
            func.coalesce(func.sum(is_active), 0),
            func.coalesce(func.max(AssignmentRecord.version), 0),
            func.coalesce(func.sum(AssignmentRecord.version), 0),
            func.coalesce(func.max(AttributeDefinition.version), 0),
            func.coalesce(func.sum(AttributeDefinition.version), 0),
        ).select_from(AssignmentRecord).join(
            AttributeDefinition,
            AttributeDefinition.attribute_id == AssignmentRecord.attribute_id,
        ).filter(
            AssignmentRecord.tenant_id == self.tenant_id,
            AssignmentRecord.class_id == class_id,
        ).one()

        return SchemaStamp(
            assignment_count=int(row[0]),
            max_assignment_version=int(row[1]),
            assignment_version_sum=int(row[2]),
            max_attribute_version=int(row[3]),
            attribute_version_sum=int(row[4]),
        )
