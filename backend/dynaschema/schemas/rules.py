"""
Validation Rule Set Schemas
데이터 타입별 검증 규칙 정의 및 구조 검증

규칙 세트는 정규화된 JSON 형태(dict)로 저장되고,
비교가 필요할 때만 필드 타입으로 변환합니다.
"""
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Literal, Mapping, Optional, Type, Union
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from dynaschema.utils.errors import InvalidRuleSetError


class DataType(str, Enum):
    """속성 데이터 타입 (생성 후 변경 불가)"""

    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    STRUCTURED = "structured"
    REFERENCE = "reference"


class RuleKind(str, Enum):
    """규칙 종류 - 축소(narrowing)/완화(relaxing) 판정 기준"""

    LOWER = "lower"                # 하한: 값이 커지면 축소
    UPPER = "upper"                # 상한: 값이 작아지면 축소
    ENUM = "enum"                  # 허용 값 집합: 원소가 빠지면 축소
    OPAQUE = "opaque"              # 비교 불가: 변경은 항상 축소
    MULTIPLE_OF = "multiple_of"    # 새 값이 기존 값의 약수면 완화
    CARDINALITY = "cardinality"    # many → one 은 축소
    SUPERSET = "superset"          # 필수 키 집합: 키가 늘면 축소
    NEUTRAL = "neutral"            # 제약이 아닌 설정 (timezone)


CARDINALITY_ORDER = {"one": 0, "many": 1}


def rule_field(kind: RuleKind, **kwargs: Any) -> Any:
    """규칙 필드 정의 (kind는 json_schema_extra에 기록)"""
    return Field(None, json_schema_extra={"kind": kind.value}, **kwargs)


def _ensure_ordered(lower: Any, upper: Any, lower_name: str, upper_name: str) -> None:
    if lower is not None and upper is not None and lower > upper:
        raise ValueError(f"{lower_name}({lower})은(는) {upper_name}({upper}) 이하여야 합니다")


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """naive datetime은 UTC로 간주"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RuleSetBase(BaseModel):
    """규칙 세트 기본 모델 (알 수 없는 키 금지)"""

    model_config = ConfigDict(extra="forbid")


class StringRules(RuleSetBase):
    min_length: Optional[int] = rule_field(RuleKind.LOWER, ge=0)
    max_length: Optional[int] = rule_field(RuleKind.UPPER, ge=0)
    pattern: Optional[str] = rule_field(RuleKind.OPAQUE)
    enum: Optional[List[str]] = rule_field(RuleKind.ENUM, min_length=1)

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"pattern을 컴파일할 수 없습니다: {e}")
        return value

    @model_validator(mode="after")
    def _check_bounds(self):
        _ensure_ordered(self.min_length, self.max_length, "min_length", "max_length")
        return self


class IntegerRules(RuleSetBase):
    min: Optional[int] = rule_field(RuleKind.LOWER)
    max: Optional[int] = rule_field(RuleKind.UPPER)
    multiple_of: Optional[int] = rule_field(RuleKind.MULTIPLE_OF, gt=0)
    enum: Optional[List[int]] = rule_field(RuleKind.ENUM, min_length=1)

    @model_validator(mode="after")
    def _check_bounds(self):
        _ensure_ordered(self.min, self.max, "min", "max")
        return self


class DecimalRules(RuleSetBase):
    min: Optional[Decimal] = rule_field(RuleKind.LOWER)
    max: Optional[Decimal] = rule_field(RuleKind.UPPER)
    multiple_of: Optional[Decimal] = rule_field(RuleKind.MULTIPLE_OF, gt=0)
    precision: Optional[int] = rule_field(RuleKind.UPPER, ge=1, le=38)
    scale: Optional[int] = rule_field(RuleKind.UPPER, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self):
        _ensure_ordered(self.min, self.max, "min", "max")
        _ensure_ordered(self.scale, self.precision, "scale", "precision")
        return self


class BooleanRules(RuleSetBase):
    pass


class DateRules(RuleSetBase):
    min: Optional[date] = rule_field(RuleKind.LOWER)
    max: Optional[date] = rule_field(RuleKind.UPPER)

    @model_validator(mode="after")
    def _check_bounds(self):
        _ensure_ordered(self.min, self.max, "min", "max")
        return self


class DateTimeRules(RuleSetBase):
    min: Optional[datetime] = rule_field(RuleKind.LOWER)
    max: Optional[datetime] = rule_field(RuleKind.UPPER)
    timezone: Optional[str] = rule_field(RuleKind.NEUTRAL)

    @field_validator("timezone")
    @classmethod
    def _timezone_resolvable(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ValueError(f"timezone을 찾을 수 없습니다: {value} ({e})")
        return value

    @model_validator(mode="after")
    def _check_bounds(self):
        _ensure_ordered(_as_aware(self.min), _as_aware(self.max), "min", "max")
        return self


class StructuredRules(RuleSetBase):
    max_depth: Optional[int] = rule_field(RuleKind.UPPER, ge=1, le=10)
    required_keys: Optional[List[str]] = rule_field(RuleKind.SUPERSET)


class ReferenceRules(RuleSetBase):
    cardinality: Optional[Literal["one", "many"]] = rule_field(RuleKind.CARDINALITY)
    target_class_id: Optional[UUID] = rule_field(RuleKind.OPAQUE)


RULE_MODELS: Dict[DataType, Type[RuleSetBase]] = {
    DataType.STRING: StringRules,
    DataType.INTEGER: IntegerRules,
    DataType.DECIMAL: DecimalRules,
    DataType.BOOLEAN: BooleanRules,
    DataType.DATE: DateRules,
    DataType.DATETIME: DateTimeRules,
    DataType.STRUCTURED: StructuredRules,
    DataType.REFERENCE: ReferenceRules,
}


def parse_data_type(value: Union[str, DataType]) -> DataType:
    """데이터 타입 파싱 (지원하지 않는 타입은 InvalidRuleSetError)"""
    try:
        return DataType(value)
    except ValueError:
        supported = ", ".join(t.value for t in DataType)
        raise InvalidRuleSetError(
            f"지원하지 않는 데이터 타입입니다: {value}",
            errors=[f"data_type: '{value}' is not one of {supported}"],
        )


def _format_validation_error(err: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in err.get("loc", ())) or "rules"
    return f"{location}: {err.get('msg')}"


def normalize_rule_set(
    data_type: Union[str, DataType],
    rules: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """
    규칙 세트 구조 검증 및 정규화

    Args:
        data_type: 속성 데이터 타입
        rules: 검증할 규칙 세트 (None이면 제약 없음)

    Returns:
        정규화된 JSON 형태의 규칙 세트 (None 값 제외)

    Raises:
        InvalidRuleSetError: 구조 검증 실패 (모든 문제를 errors에 포함)
    """
    dt = parse_data_type(data_type)
    if rules is None:
        return {}
    if not isinstance(rules, Mapping):
        raise InvalidRuleSetError(
            "규칙 세트는 객체여야 합니다",
            errors=[f"rules: expected an object, got {type(rules).__name__}"],
            data_type=dt.value,
        )

    model = RULE_MODELS[dt]
    try:
        parsed = model.model_validate(dict(rules))
    except ValidationError as e:
        errors = [_format_validation_error(err) for err in e.errors()]
        raise InvalidRuleSetError(
            f"{dt.value} 규칙 세트가 올바르지 않습니다",
            errors=errors,
            data_type=dt.value,
        )
    return parsed.model_dump(mode="json", exclude_none=True)


def coerce_data_type(value: Union[str, DataType]) -> Optional[DataType]:
    """데이터 타입 변환 (실패 시 None)"""
    try:
        return DataType(value)
    except ValueError:
        return None


@lru_cache(maxsize=None)
def rule_kinds(data_type: DataType) -> Dict[str, RuleKind]:
    """데이터 타입별 {규칙 이름: 규칙 종류}"""
    model = RULE_MODELS[data_type]
    return {
        name: RuleKind(field.json_schema_extra["kind"])
        for name, field in model.model_fields.items()
    }


@lru_cache(maxsize=None)
def _rule_adapter(data_type: DataType, key: str) -> TypeAdapter:
    return TypeAdapter(RULE_MODELS[data_type].model_fields[key].annotation)


def typed_rule_value(data_type: Optional[DataType], key: str, value: Any) -> Any:
    """
    저장된 JSON 규칙 값을 비교 가능한 타입으로 변환

    알 수 없는 타입/키는 원래 값을 그대로 반환
    """
    if value is None or data_type is None or key not in RULE_MODELS[data_type].model_fields:
        return value
    result = _rule_adapter(data_type, key).validate_python(value)
    if isinstance(result, datetime):
        return _as_aware(result)
    return result
