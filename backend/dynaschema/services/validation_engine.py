"""
Validation Engine
후보 속성 값 맵을 ComposedSchema로 검증

- 경계에서 한 번만 타입 변환 (TypedValue), 이후에는 변환된 값만 사용
- 데이터 타입별 변환 시도는 한 번 (숫자 문자열, ISO 날짜 문자열, JSON 텍스트, UUID 문자열, boolean 단어)
- 위반은 중단 없이 전부 수집 (한 번의 왕복으로 모든 문제 확인)
- 알 수 없는 속성은 조용히 버리지 않고 거부
- 저장 상태에 대한 부수 효과 없음
"""
import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo

from dynaschema.schemas.composed import ComposedSchema
from dynaschema.schemas.rules import DataType, coerce_data_type, typed_rule_value
from dynaschema.schemas.validation import ValidationResult, Violation
from dynaschema.utils.metrics import track_validation

logger = logging.getLogger(__name__)

TRUE_WORDS = {"true", "t", "yes", "y", "on", "1"}
FALSE_WORDS = {"false", "f", "no", "n", "off", "0"}

# 문자열 변환 정수 자릿수 상한 (int 문자열 변환 기본 한도와 동일)
MAX_INTEGER_DIGITS = 4300


@dataclass(frozen=True)
class TypedValue:
    """데이터 타입 태그가 붙은 변환된 값"""

    data_type: DataType
    value: Any


class CoercionError(ValueError):
    """타입 변환 실패 (rule: type 또는 cardinality)"""

    def __init__(self, message: str, rule: str = "type"):
        super().__init__(message)
        self.rule = rule


# ========== 타입 변환 ==========

def _coerce_string(value: Any, rules: Mapping[str, Any]) -> str:
    if isinstance(value, str):
        return value
    raise CoercionError("문자열이 아닙니다")


def _coerce_integer(value: Any, rules: Mapping[str, Any]) -> int:
    if isinstance(value, bool):
        raise CoercionError("boolean은 정수가 아닙니다")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise CoercionError("정수가 아닌 실수입니다")
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise CoercionError("정수로 변환할 수 없습니다")
    if isinstance(value, Decimal):
        if value.is_finite() and value.adjusted() >= MAX_INTEGER_DIGITS:
            raise CoercionError(f"정수 자릿수가 {MAX_INTEGER_DIGITS}자리를 넘습니다")
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        raise CoercionError("정수가 아닌 숫자입니다")
    raise CoercionError("정수가 아닙니다")


def _coerce_decimal(value: Any, rules: Mapping[str, Any]) -> Decimal:
    if isinstance(value, bool):
        raise CoercionError("boolean은 숫자가 아닙니다")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise CoercionError("숫자로 변환할 수 없습니다")
    else:
        raise CoercionError("숫자가 아닙니다")
    if not result.is_finite():
        raise CoercionError("유한한 숫자가 아닙니다")
    return result


def _coerce_boolean(value: Any, rules: Mapping[str, Any]) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
    raise CoercionError("boolean으로 변환할 수 없습니다")


def _coerce_date(value: Any, rules: Mapping[str, Any]) -> date:
    # datetime은 date의 하위 클래스이므로 먼저 거부
    if isinstance(value, datetime):
        raise CoercionError("날짜 필드에 시각이 포함되어 있습니다")
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            raise CoercionError("ISO 날짜 형식이 아닙니다")
    raise CoercionError("날짜가 아닙니다")


def _coerce_datetime(value: Any, rules: Mapping[str, Any]) -> datetime:
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            result = datetime.fromisoformat(text)
        except ValueError:
            raise CoercionError("ISO 시각 형식이 아닙니다")
    else:
        raise CoercionError("시각이 아닙니다")
    if result.tzinfo is None:
        tz_name = rules.get("timezone")
        result = result.replace(tzinfo=ZoneInfo(tz_name) if tz_name else timezone.utc)
    return result


def _coerce_structured(value: Any, rules: Mapping[str, Any]) -> Any:
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            raise CoercionError("JSON으로 해석할 수 없습니다")
        if isinstance(parsed, (dict, list)):
            return parsed
    raise CoercionError("객체 또는 배열이 아닙니다")


def _to_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    if isinstance(value, str):
        try:
            return UUID(value.strip())
        except ValueError:
            pass
    raise CoercionError("UUID가 아닙니다")


def _coerce_reference(value: Any, rules: Mapping[str, Any]) -> Any:
    cardinality = rules.get("cardinality")
    if isinstance(value, (list, tuple)):
        if cardinality == "one":
            raise CoercionError("단일 참조만 허용됩니다", rule="cardinality")
        return [_to_uuid(item) for item in value]
    reference = _to_uuid(value)
    if cardinality == "many":
        return [reference]
    return reference


COERCERS: Dict[DataType, Callable[[Any, Mapping[str, Any]], Any]] = {
    DataType.STRING: _coerce_string,
    DataType.INTEGER: _coerce_integer,
    DataType.DECIMAL: _coerce_decimal,
    DataType.BOOLEAN: _coerce_boolean,
    DataType.DATE: _coerce_date,
    DataType.DATETIME: _coerce_datetime,
    DataType.STRUCTURED: _coerce_structured,
    DataType.REFERENCE: _coerce_reference,
}


def to_typed_value(data_type: DataType, value: Any, rules: Mapping[str, Any]) -> TypedValue:
    """경계 변환 (실패 시 CoercionError)"""
    return TypedValue(data_type, COERCERS[data_type](value, rules))


# ========== 규칙 검사 ==========

def _depth(value: Any) -> int:
    """중첩 깊이 (빈 객체/배열도 1)"""
    if isinstance(value, dict):
        return 1 + max((_depth(item) for item in value.values()), default=0)
    if isinstance(value, list):
        return 1 + max((_depth(item) for item in value), default=0)
    return 0


def _strip_zeros(value: Decimal) -> Tuple[Tuple[int, ...], int]:
    """(계수 자릿수, 지수) - 끝자리 0 제거, normalize()와 달리 컨텍스트 정밀도로 반올림하지 않음"""
    _, digits, exponent = value.as_tuple()
    if not any(digits):
        return (0,), 0
    end = len(digits)
    while digits[end - 1] == 0:
        end -= 1
    return digits[:end], exponent + len(digits) - end


def _digits(value: Decimal) -> Tuple[int, int]:
    """(전체 자릿수, 소수 자릿수)"""
    digits, exponent = _strip_zeros(value)
    scale = max(0, -exponent)
    precision = len(digits) + max(0, exponent)
    return max(precision, scale), scale


def _is_multiple(value: Any, multiple_of: Any) -> bool:
    """
    정확한 배수 검사

    Decimal % 는 몫이 컨텍스트 정밀도(28자리)를 넘으면 InvalidOperation이므로
    계수/지수로 분해해 정수 나머지로 계산
    """
    if isinstance(value, int) and isinstance(multiple_of, int):
        return value % multiple_of == 0
    value_digits, value_exp = _strip_zeros(Decimal(value))
    step_digits, step_exp = _strip_zeros(Decimal(multiple_of))
    if value_digits == (0,):
        return True
    # 끝자리 0을 제거한 계수는 10의 배수가 아님
    if value_exp < step_exp:
        return False
    value_coef = int(Decimal((0, value_digits, 0)))
    step_coef = int(Decimal((0, step_digits, 0)))
    return value_coef % step_coef * pow(10, value_exp - step_exp, step_coef) % step_coef == 0


def _rule_checks(typed: TypedValue, rules: Mapping[str, Any]) -> List[Tuple[str, str]]:
    """(rule, message) 위반 목록"""
    dt = typed.data_type
    value = typed.value

    def rule(key: str) -> Any:
        return typed_rule_value(dt, key, rules.get(key))

    failures: List[Tuple[str, str]] = []

    if dt is DataType.STRING:
        if rule("min_length") is not None and len(value) < rule("min_length"):
            failures.append(("min_length", f"최소 길이 {rule('min_length')} 미만"))
        if rule("max_length") is not None and len(value) > rule("max_length"):
            failures.append(("max_length", f"최대 길이 {rule('max_length')} 초과"))
        if rule("pattern") is not None and re.search(rule("pattern"), value) is None:
            failures.append(("pattern", f"패턴 {rule('pattern')} 불일치"))

    if dt in (DataType.INTEGER, DataType.DECIMAL, DataType.DATE, DataType.DATETIME):
        if rule("min") is not None and value < rule("min"):
            failures.append(("min", f"최소값 {rules.get('min')} 미만"))
        if rule("max") is not None and value > rule("max"):
            failures.append(("max", f"최대값 {rules.get('max')} 초과"))

    if dt in (DataType.INTEGER, DataType.DECIMAL):
        multiple_of = rule("multiple_of")
        if multiple_of is not None and not _is_multiple(value, multiple_of):
            failures.append(("multiple_of", f"{rules.get('multiple_of')}의 배수가 아님"))

    if dt in (DataType.STRING, DataType.INTEGER):
        allowed = rule("enum")
        if allowed is not None and value not in allowed:
            failures.append(("enum", "허용된 값이 아님"))

    if dt is DataType.DECIMAL:
        precision, scale = _digits(value)
        if rule("precision") is not None and precision > rule("precision"):
            failures.append(("precision", f"전체 자릿수 {rule('precision')} 초과"))
        if rule("scale") is not None and scale > rule("scale"):
            failures.append(("scale", f"소수 자릿수 {rule('scale')} 초과"))

    if dt is DataType.STRUCTURED:
        if rule("max_depth") is not None and _depth(value) > rule("max_depth"):
            failures.append(("max_depth", f"최대 깊이 {rule('max_depth')} 초과"))
        required_keys = rule("required_keys")
        if required_keys:
            present = set(value) if isinstance(value, dict) else set()
            missing = [key for key in required_keys if key not in present]
            if missing:
                failures.append(("required_keys", f"필수 키 누락: {', '.join(missing)}"))

    return failures


def check_value(
    name: str,
    data_type: Any,
    rules: Optional[Mapping[str, Any]],
    value: Any,
) -> Tuple[Optional[TypedValue], List[Violation]]:
    """
    단일 값 검증 (기본값 검증에도 사용)

    Returns:
        (변환된 값 또는 None, 위반 목록)
    """
    rules = rules or {}
    dt = coerce_data_type(data_type)
    if dt is None:
        return None, [Violation(field=name, rule="type", value=value, message=f"알 수 없는 데이터 타입: {data_type}")]

    try:
        typed = to_typed_value(dt, value, rules)
    except CoercionError as e:
        return None, [Violation(field=name, rule=e.rule, value=value, message=str(e))]

    violations = [
        Violation(field=name, rule=rule, value=value, message=message)
        for rule, message in _rule_checks(typed, rules)
    ]
    return typed, violations


def validate_against_schema(schema: ComposedSchema, values: Any) -> ValidationResult:
    """
    ComposedSchema 기준 검증 (순수 함수)

    1. 필수 속성 누락 (null은 누락으로 간주, 기본값이 있으면 채움)
    2. 전달된 각 이름: 알 수 없는 속성 / 타입 변환 / 규칙 검사
    """
    if not isinstance(values, Mapping):
        return ValidationResult(
            class_id=schema.class_id,
            accepted=False,
            violations=[Violation(field="", rule="type", value=type(values).__name__,
                                  message="후보 값은 객체여야 합니다")],
            schema_hash=schema.content_hash,
        )

    by_name = {attribute.name: attribute for attribute in schema.attributes}
    violations: List[Violation] = []
    normalized: Dict[str, Any] = {}

    for attribute in schema.attributes:
        if values.get(attribute.name) is not None:
            continue
        if attribute.has_default:
            typed, default_violations = check_value(
                attribute.name, attribute.data_type, attribute.rules, attribute.default_value
            )
            violations.extend(default_violations)
            if typed is not None:
                normalized[attribute.name] = typed.value
        elif attribute.required:
            violations.append(Violation(field=attribute.name, rule="required", message="필수 속성 누락"))

    for name, value in values.items():
        attribute = by_name.get(name) if isinstance(name, str) else None
        if attribute is None:
            violations.append(Violation(
                field=str(name), rule="unknown_attribute", value=value,
                message="클래스에 할당되지 않은 속성",
            ))
            continue
        if value is None:
            continue
        typed, value_violations = check_value(name, attribute.data_type, attribute.rules, value)
        violations.extend(value_violations)
        if typed is not None:
            normalized[name] = typed.value

    accepted = not violations
    return ValidationResult(
        class_id=schema.class_id,
        accepted=accepted,
        violations=violations,
        normalized_values=normalized if accepted else {},
        schema_hash=schema.content_hash,
    )


class ValidationEngine:
    """클래스 단위 검증 (SchemaComposer에만 의존)"""

    def __init__(self, composer):
        self.composer = composer

    def validate(self, class_id: UUID, candidate_values: Any) -> ValidationResult:
        schema = self.composer.compose(class_id)
        result = validate_against_schema(schema, candidate_values)
        track_validation(result.accepted, [violation.rule for violation in result.violations])
        if result.rejected:
            logger.debug(
                f"Validation rejected for class {class_id}: "
                f"{[(v.field, v.rule) for v in result.violations]}"
            )
        return result
