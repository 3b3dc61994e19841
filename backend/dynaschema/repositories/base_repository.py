# -*- coding: utf-8 -*-
"""
Base Repository
테넌트 범위 Repository 기본 클래스
"""
from typing import Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Query, Session

from dynaschema.models.core import EntityState
from dynaschema.services.tenant_context import TenantContext, require_tenant

T = TypeVar('T')


class BaseRepository(Generic[T]):
    """
    기본 Repository 클래스
    모든 조회는 컨텍스트의 tenant_id로 격리
    """

    def __init__(self, db: Session, model: Type[T], id_column, ctx: TenantContext):
        self.db = db
        self.model = model
        self.id_column = id_column
        self.ctx = ctx
        self.tenant_id = require_tenant(ctx)

    def _before_lookup(self, operation: str):
        """
        조회 전 deadline 확인

        PostgreSQL에서는 남은 시간을 statement_timeout으로 전달
        """
        remaining = self.ctx.check_deadline(operation)
        if remaining is None:
            return
        bind = self.db.get_bind()
        if bind.dialect.name == "postgresql":
            timeout_ms = max(1, int(remaining * 1000))
            self.db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))

    def _scoped(self) -> Query:
        """테넌트 범위 쿼리"""
        return self.db.query(self.model).filter(
            self.model.tenant_id == self.tenant_id  # type: ignore
        )

    def get_by_id(self, id: UUID, include_inactive: bool = False) -> Optional[T]:
        """ID로 조회 (기본: 활성 행만)"""
        self._before_lookup(f"get_{self.model.__tablename__}")
        query = self._scoped().filter(self.id_column == id)
        if not include_inactive:
            query = query.filter(self.model.status == EntityState.ACTIVE.value)  # type: ignore
        return query.first()

    def create(self, obj: T) -> T:
        """생성 (tenant_id는 컨텍스트 값으로 고정)"""
        obj.tenant_id = self.tenant_id  # type: ignore
        self.db.add(obj)
        self.db.flush()
        return obj
