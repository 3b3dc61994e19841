"""
ComposedSchema Pydantic Schemas
클래스의 유효 스키마 (캐시 가능한 불변 스냅샷)
"""
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from dynaschema.schemas.rules import DataType


class ComposedAttribute(BaseModel):
    """조합된 속성 (속성 + 유효 규칙 + 필수 여부 + 기본값)"""

    model_config = ConfigDict(frozen=True)

    assignment_id: UUID
    attribute_id: UUID
    name: str
    display_name: Optional[str] = None
    data_type: DataType
    rules: Dict[str, Any] = Field(default_factory=dict, description="유효(병합된) 규칙 세트")
    narrowed_rules: Tuple[str, ...] = Field(default=(), description="override가 기본 규칙을 좁힌 필드 (참고용)")
    required: bool = False
    sort_position: int
    default_value: Any = None
    assignment_version: int
    attribute_version: int

    @property
    def has_default(self) -> bool:
        return self.default_value is not None

    @property
    def label(self) -> str:
        return self.display_name or self.name


class SchemaStamp(BaseModel):
    """캐시 유효성 확인용 버전 프로브 결과

    행 버전은 행마다 독립적으로 증가하므로 max만으로는 다른 행의 변경을
    놓칠 수 있어 합계를 함께 비교
    """

    model_config = ConfigDict(frozen=True)

    assignment_count: int = 0
    max_assignment_version: int = 0
    assignment_version_sum: int = 0
    max_attribute_version: int = 0
    attribute_version_sum: int = 0


class ComposedSchema(BaseModel):
    """클래스의 조합된 스키마"""

    model_config = ConfigDict(frozen=True)

    tenant_id: UUID
    class_id: UUID
    attributes: Tuple[ComposedAttribute, ...] = ()
    content_hash: str
    required_count: int = 0
    optional_count: int = 0
    last_modified: Optional[datetime] = None
    stamp: SchemaStamp = Field(default_factory=SchemaStamp)
    composed_at: datetime

    def get(self, name: str) -> Optional[ComposedAttribute]:
        """이름으로 속성 조회"""
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None

    @property
    def attribute_names(self) -> Tuple[str, ...]:
        return tuple(attribute.name for attribute in self.attributes)

    @property
    def is_empty(self) -> bool:
        return not self.attributes
