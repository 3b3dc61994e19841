"""
Assignment Record Pydantic Schemas
"""
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AssignmentCreate(BaseModel):
    """클래스-속성 할당 생성 요청"""

    class_id: UUID
    attribute_id: UUID
    required: bool = False
    sort_position: Optional[int] = Field(None, ge=0, description="미지정 시 마지막 위치 다음")
    display_name: Optional[str] = Field(None, max_length=255)
    override_rules: Dict[str, Any] = Field(default_factory=dict, description="할당 단위 규칙 override")
    default_value: Any = Field(None, description="병합된 유효 규칙을 만족해야 함")


class AssignmentUpdate(BaseModel):
    """할당 수정 요청

    명시적으로 전달된 필드만 변경 (model_fields_set 기준)
    default_value를 null로 전달하면 기본값 제거
    class_id, attribute_id는 변경 불가
    """

    class_id: Optional[UUID] = None
    attribute_id: Optional[UUID] = None
    required: Optional[bool] = None
    sort_position: Optional[int] = Field(None, ge=0)
    display_name: Optional[str] = Field(None, max_length=255)
    override_rules: Optional[Dict[str, Any]] = None
    default_value: Any = None


class AssignmentResponse(BaseModel):
    """할당 응답"""

    assignment_id: UUID
    tenant_id: UUID
    class_id: UUID
    attribute_id: UUID
    required: bool
    sort_position: int
    display_name: Optional[str] = None
    override_rules: Dict[str, Any] = Field(default_factory=dict)
    default_value: Any = None
    version: int
    status: str
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    deactivated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
