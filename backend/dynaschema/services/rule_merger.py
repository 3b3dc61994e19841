"""
Rule Merger
속성 기본 규칙과 할당 override 규칙의 병합 (순수 함수, 실패하지 않음)

- override에 값이 있으면 기본 규칙을 대체
- override에 없으면 기본 규칙 상속
- 둘 다 없으면 제약 없음
- override가 기본 규칙을 좁히는 필드는 참고용으로 narrowed에 기록 (실패 아님)
"""
import copy
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from dynaschema.schemas.rules import (
    CARDINALITY_ORDER,
    DataType,
    RuleKind,
    coerce_data_type,
    rule_kinds,
    typed_rule_value,
)

NARROWED = "narrowed"
RELAXED = "relaxed"
NEUTRAL = "neutral"


@dataclass(frozen=True)
class EffectiveRuleSet:
    """병합된 유효 규칙 세트 (narrowed는 비교에서 제외)"""

    data_type: str
    rules: Dict[str, Any]
    narrowed: Tuple[str, ...] = field(default=(), compare=False)


@dataclass(frozen=True)
class RuleChange:
    """규칙 단위 변경 (direction: narrowed, relaxed, neutral)"""

    rule: str
    old: Any
    new: Any
    direction: str


def _kind_of(data_type: Optional[DataType], key: str) -> RuleKind:
    if data_type is None:
        return RuleKind.OPAQUE
    return rule_kinds(data_type).get(key, RuleKind.OPAQUE)


def _compare_present(kind: RuleKind, old: Any, new: Any) -> Optional[str]:
    """양쪽 모두 값이 있을 때 비교"""
    if kind in (RuleKind.ENUM, RuleKind.SUPERSET):
        old_set, new_set = set(old), set(new)
        if old_set == new_set:
            return None
        if kind is RuleKind.ENUM:
            return RELAXED if new_set >= old_set else NARROWED
        # 필수 키는 줄어들어야 완화
        return RELAXED if new_set <= old_set else NARROWED

    if old == new:
        return None

    if kind is RuleKind.LOWER:
        return NARROWED if new > old else RELAXED
    if kind is RuleKind.UPPER:
        return NARROWED if new < old else RELAXED
    if kind is RuleKind.MULTIPLE_OF:
        return RELAXED if Decimal(str(old)) % Decimal(str(new)) == 0 else NARROWED
    if kind is RuleKind.CARDINALITY:
        return NARROWED if CARDINALITY_ORDER[new] < CARDINALITY_ORDER[old] else RELAXED
    if kind is RuleKind.NEUTRAL:
        return NEUTRAL
    return NARROWED


def compare_rule(
    data_type: Union[str, DataType, None],
    key: str,
    old: Any,
    new: Any,
) -> Optional[str]:
    """
    규칙 하나의 변경 방향

    Returns:
        None (변경 없음), narrowed, relaxed, neutral
    """
    dt = coerce_data_type(data_type) if data_type is not None else None
    kind = _kind_of(dt, key)

    if old is None and new is None:
        return None
    if kind is RuleKind.NEUTRAL:
        return None if old == new else NEUTRAL
    if old is None:
        # 제약 없던 차원에 제약 추가
        return NARROWED
    if new is None:
        return RELAXED

    try:
        return _compare_present(
            kind,
            typed_rule_value(dt, key, old),
            typed_rule_value(dt, key, new),
        )
    except (ValidationError, TypeError, ValueError, KeyError, ArithmeticError):
        # 비교할 수 없는 값은 보수적으로 축소로 판정
        return None if old == new else NARROWED


def merge_rules(
    data_type: Union[str, DataType],
    base: Optional[Mapping[str, Any]],
    override: Optional[Mapping[str, Any]],
) -> EffectiveRuleSet:
    """기본 규칙 + override 병합"""
    base = base or {}
    override = override or {}

    merged: Dict[str, Any] = {
        key: copy.deepcopy(value) for key, value in base.items() if value is not None
    }
    narrowed: List[str] = []
    for key, value in override.items():
        if value is None:
            continue
        if compare_rule(data_type, key, base.get(key), value) == NARROWED:
            narrowed.append(key)
        merged[key] = copy.deepcopy(value)

    dt_value = data_type.value if isinstance(data_type, DataType) else str(data_type)
    return EffectiveRuleSet(
        data_type=dt_value,
        rules={key: merged[key] for key in sorted(merged)},
        narrowed=tuple(sorted(narrowed)),
    )


def diff_rule_sets(
    data_type: Union[str, DataType],
    old: Optional[Mapping[str, Any]],
    new: Optional[Mapping[str, Any]],
) -> List[RuleChange]:
    """두 유효 규칙 세트의 차이 (규칙 이름순)"""
    old = old or {}
    new = new or {}
    changes = []
    for key in sorted(set(old) | set(new)):
        direction = compare_rule(data_type, key, old.get(key), new.get(key))
        if direction is not None:
            changes.append(RuleChange(key, old.get(key), new.get(key), direction))
    return changes
