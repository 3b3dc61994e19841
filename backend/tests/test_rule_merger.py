"""
Rule Merger 테스트
기본 규칙 + override 병합, 규칙 변경 방향 판정
"""
import pytest

from dynaschema.services.rule_merger import (
    NARROWED,
    NEUTRAL,
    RELAXED,
    EffectiveRuleSet,
    compare_rule,
    diff_rule_sets,
    merge_rules,
)


class TestMergeRules:
    """merge_rules 테스트"""

    def test_override_replaces_base(self):
        merged = merge_rules("integer", {"min": 0, "max": 100}, {"max": 50})
        assert merged.rules == {"max": 50, "min": 0}

    def test_absent_override_inherits(self):
        merged = merge_rules("string", {"max_length": 20}, {})
        assert merged.rules == {"max_length": 20}

    def test_both_absent_unconstrained(self):
        merged = merge_rules("string", None, None)
        assert merged.rules == {}
        assert merged.narrowed == ()

    def test_null_override_does_not_remove(self):
        merged = merge_rules("integer", {"min": 0}, {"min": None})
        assert merged.rules == {"min": 0}

    def test_narrowed_is_advisory(self):
        merged = merge_rules("integer", {"min": 0, "max": 100}, {"max": 50, "min": -5})
        assert merged.narrowed == ("max",)
        assert merged.rules == {"max": 50, "min": -5}

    def test_adding_constraint_is_narrowing(self):
        merged = merge_rules("string", {}, {"pattern": "^x"})
        assert merged.narrowed == ("pattern",)

    def test_narrowed_excluded_from_equality(self):
        a = EffectiveRuleSet("integer", {"min": 1}, narrowed=("min",))
        b = EffectiveRuleSet("integer", {"min": 1}, narrowed=())
        assert a == b

    def test_inputs_not_mutated(self):
        base = {"enum": ["a", "b"]}
        override = {"max_length": 3}
        merged = merge_rules("string", base, override)
        merged.rules["enum"].append("c")
        assert base == {"enum": ["a", "b"]}

    @pytest.mark.parametrize("data_type,base,override", [
        ("integer", {"min": 0, "max": 100}, {"max": 50}),
        ("string", {"enum": ["a", "b"]}, {"enum": ["a"], "max_length": 1}),
        ("decimal", {"precision": 10, "scale": 2}, {"scale": 4}),
        ("datetime", {"timezone": "UTC"}, {"timezone": "Asia/Seoul"}),
        ("reference", {"cardinality": "many"}, {"cardinality": "one"}),
        ("money", {"x": 1}, {"y": 2}),
        ("boolean", {}, {}),
    ])
    def test_merge_idempotent(self, data_type, base, override):
        once = merge_rules(data_type, base, override)
        twice = merge_rules(data_type, once.rules, override)
        assert twice == once

    def test_unknown_data_type_never_fails(self):
        merged = merge_rules("money", {"x": 1}, {"x": 2})
        assert merged.rules == {"x": 2}
        assert merged.narrowed == ("x",)


class TestCompareRule:
    """규칙 변경 방향 판정 테스트"""

    def test_lower_bound(self):
        assert compare_rule("integer", "min", 0, 5) == NARROWED
        assert compare_rule("integer", "min", 5, 0) == RELAXED
        assert compare_rule("integer", "min", 5, 5) is None

    def test_upper_bound(self):
        assert compare_rule("string", "max_length", 10, 5) == NARROWED
        assert compare_rule("string", "max_length", 5, 10) == RELAXED

    def test_added_and_removed(self):
        assert compare_rule("string", "max_length", None, 10) == NARROWED
        assert compare_rule("string", "max_length", 10, None) == RELAXED

    def test_enum_set_semantics(self):
        assert compare_rule("string", "enum", ["a", "b"], ["b", "a"]) is None
        assert compare_rule("string", "enum", ["a"], ["a", "b"]) == RELAXED
        assert compare_rule("string", "enum", ["a", "b"], ["a"]) == NARROWED

    def test_multiple_of(self):
        assert compare_rule("integer", "multiple_of", 4, 2) == RELAXED
        assert compare_rule("integer", "multiple_of", 2, 4) == NARROWED
        assert compare_rule("decimal", "multiple_of", "0.5", "0.25") == RELAXED

    def test_decimal_bounds_compared_numerically(self):
        assert compare_rule("decimal", "max", "10.0", "9.5") == NARROWED
        assert compare_rule("decimal", "max", "10", "10.00") is None

    def test_date_bounds(self):
        assert compare_rule("date", "min", "2020-01-01", "2021-01-01") == NARROWED
        assert compare_rule("datetime", "max", "2024-01-01T00:00:00Z", "2023-01-01T00:00:00Z") == NARROWED

    def test_cardinality(self):
        assert compare_rule("reference", "cardinality", "many", "one") == NARROWED
        assert compare_rule("reference", "cardinality", "one", "many") == RELAXED

    def test_required_keys(self):
        assert compare_rule("structured", "required_keys", ["a"], ["a", "b"]) == NARROWED
        assert compare_rule("structured", "required_keys", ["a", "b"], ["a"]) == RELAXED

    def test_opaque(self):
        assert compare_rule("string", "pattern", "^a", "^b") == NARROWED

    def test_timezone_is_neutral(self):
        assert compare_rule("datetime", "timezone", "UTC", "Asia/Seoul") == NEUTRAL
        assert compare_rule("datetime", "timezone", None, "UTC") == NEUTRAL
        assert compare_rule("datetime", "timezone", "UTC", None) == NEUTRAL

    def test_uncomparable_values_are_narrowing(self):
        assert compare_rule("integer", "min", "abc", 3) == NARROWED


class TestDiffRuleSets:
    """diff_rule_sets 테스트"""

    def test_diff_sorted_by_rule(self):
        changes = diff_rule_sets("integer", {"min": 0}, {"min": 0, "max": 120})
        assert [(c.rule, c.direction) for c in changes] == [("max", NARROWED)]

    def test_relaxing_diff(self):
        changes = diff_rule_sets("string", {"max_length": 10, "min_length": 1}, {"min_length": 1})
        assert [(c.rule, c.direction) for c in changes] == [("max_length", RELAXED)]

    def test_no_changes(self):
        assert diff_rule_sets("string", {"enum": ["a", "b"]}, {"enum": ["b", "a"]}) == []
