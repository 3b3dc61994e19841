# -*- coding: utf-8 -*-
"""
Tenant Context
모든 엔진 연산의 테넌트 범위 및 호출자 deadline

- 테넌트 범위는 모든 연산 진입 시 강제 (선택 사항 아님)
- deadline은 외부 조회(속성/할당 조회, 인스턴스 수, 클래스 존재 여부)에 전파
- 엔진 내부 재시도 없음
"""
import time
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from dynaschema.utils.errors import DeadlineExceededError, TenantScopeError


@dataclass(frozen=True)
class TenantContext:
    """
    요청 단위 테넌트 컨텍스트

    Attributes:
        tenant_id: 테넌트 ID
        actor_id: 요청 주체 (변경 이력에 기록)
        deadline: time.monotonic() 기준 절대 마감 시각 (None이면 제한 없음)
    """
    tenant_id: UUID
    actor_id: Optional[UUID] = None
    deadline: Optional[float] = None

    @classmethod
    def with_timeout(
        cls,
        tenant_id: UUID,
        timeout_seconds: float,
        actor_id: Optional[UUID] = None,
    ) -> "TenantContext":
        return cls(
            tenant_id=tenant_id,
            actor_id=actor_id,
            deadline=time.monotonic() + timeout_seconds,
        )

    def remaining(self) -> Optional[float]:
        """남은 시간 (초)"""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check_deadline(self, operation: str) -> Optional[float]:
        """deadline 확인 후 남은 시간 반환 (초과 시 DeadlineExceededError)"""
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceededError(
                f"요청 deadline을 초과했습니다: {operation}",
                operation=operation,
            )
        return remaining

    def lookup_timeout(self, operation: str, default: Optional[float]) -> Optional[float]:
        """외부 조회에 전달할 timeout (남은 시간과 기본값 중 작은 값)"""
        remaining = self.check_deadline(operation)
        if remaining is None:
            return default
        if default is None:
            return remaining
        return min(remaining, default)


def require_tenant(ctx: Optional[TenantContext]) -> UUID:
    """테넌트 범위 강제 - 컨텍스트 또는 tenant_id가 없으면 TenantScopeError"""
    tenant_id = getattr(ctx, "tenant_id", None)
    if ctx is None or tenant_id is None:
        raise TenantScopeError("테넌트 컨텍스트가 필요합니다")
    if not isinstance(tenant_id, UUID):
        raise TenantScopeError(f"tenant_id가 올바르지 않습니다: {tenant_id!r}")
    return tenant_id
