"""
Attribute Definition Pydantic Schemas
"""
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from dynaschema.schemas.rules import DataType


class AttributeBase(BaseModel):
    """속성 정의 기본 스키마"""

    name: str = Field(..., min_length=1, max_length=63, description="속성 이름 (테넌트 내 유일, 변경 불가)")
    data_type: DataType = Field(..., description="데이터 타입 (변경 불가)")
    base_rules: Dict[str, Any] = Field(default_factory=dict, description="기본 검증 규칙 세트")
    description: Optional[str] = Field(None, description="설명")


class AttributeCreate(AttributeBase):
    """속성 정의 생성 요청"""

    pass


class AttributeUpdate(BaseModel):
    """속성 정의 수정 요청

    name, data_type은 변경 불가 - 다른 값이 들어오면 ImmutableFieldError
    """

    name: Optional[str] = None
    data_type: Optional[DataType] = None
    base_rules: Optional[Dict[str, Any]] = None
    description: Optional[str] = None


class AttributeResponse(AttributeBase):
    """속성 정의 응답"""

    attribute_id: UUID
    tenant_id: UUID
    version: int
    status: str
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    deactivated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
