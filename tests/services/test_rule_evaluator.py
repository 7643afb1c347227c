"""
Tests for services/rule_engine/rule_evaluator.py

Tests cover:
- All comparison operators: gt, lt, eq, gte, lte
- Threshold monotonicity
- AND/OR condition groups, OR across groups
- Unknown metric/operator values resolve to False
"""
import pytest

from automation_core.models import (
    AutomationRule,
    CampaignMetrics,
    Condition,
    ConditionGroup,
)
from services.rule_engine import evaluate_condition, evaluate_condition_group, evaluate_rule


def condition(metric, operator, threshold):
    return Condition(metric=metric, operator=operator, threshold=threshold)


def group(operator, *conditions):
    return ConditionGroup(operator=operator, conditions=list(conditions))


def rule(*groups, action="pause_campaign"):
    return AutomationRule(id="rule-1", name="Rule", action=action, condition_groups=list(groups))


# =============================================================================
# CONDITION TESTS
# =============================================================================

class TestConditionEvaluation:
    """Tests for single condition comparison"""

    @pytest.mark.parametrize("operator,threshold,expected", [
        ("gt", 1000, True),
        ("gt", 1500, False),
        ("lt", 2000, True),
        ("lt", 1500, False),
        ("eq", 1500, True),
        ("eq", 1500.01, False),
        ("gte", 1500, True),
        ("gte", 1500.5, False),
        ("lte", 1500, True),
        ("lte", 1499.99, False),
    ])
    def test_operators_on_spend(self, sample_metrics, operator, threshold, expected):
        """Test each operator against spend=1500"""
        assert evaluate_condition(condition("spend", operator, threshold), sample_metrics) is expected

    def test_integer_metric_compared_to_float_threshold(self, sample_metrics):
        """Test clicks (int) compared with a float threshold"""
        assert evaluate_condition(condition("clicks", "gt", 99.5), sample_metrics) is True
        assert evaluate_condition(condition("clicks", "eq", 100.0), sample_metrics) is True

    def test_eq_uses_exact_float_equality(self):
        """Test eq has no tolerance: 0.1 + 0.2 is not 0.3"""
        metrics = CampaignMetrics(ctr=0.1 + 0.2)
        assert evaluate_condition(condition("ctr", "eq", 0.3), metrics) is False
        assert evaluate_condition(condition("ctr", "eq", 0.1 + 0.2), metrics) is True

    def test_gt_flips_when_threshold_passes_value(self, sample_metrics):
        """Raising the threshold past the value flips gt from True to False"""
        results = [
            evaluate_condition(condition("ctr", "gt", threshold), sample_metrics)
            for threshold in (0.0, 0.005, 0.0099, 0.01, 0.02, 1.0)
        ]
        assert results == [True, True, True, False, False, False]

    def test_lt_flips_when_threshold_passes_value(self, sample_metrics):
        """Raising the threshold past the value flips lt from False to True"""
        results = [
            evaluate_condition(condition("cpc", "lt", threshold), sample_metrics)
            for threshold in (0.5, 1.5, 1.51, 10)
        ]
        assert results == [False, False, True, True]

    def test_unknown_metric_is_false(self, sample_metrics):
        """Test unrecognized metric never matches"""
        bad = Condition.model_construct(id="c1", metric="conversions", operator="gt", threshold=0)
        assert evaluate_condition(bad, sample_metrics) is False

    def test_unknown_operator_is_false(self, sample_metrics):
        """Test unrecognized operator never matches"""
        bad = Condition.model_construct(id="c1", metric="spend", operator="between", threshold=0)
        assert evaluate_condition(bad, sample_metrics) is False

    def test_malformed_stored_condition_is_false(self, sample_metrics):
        """Test conditions loaded from bad stored rows never match"""
        stored = Condition.from_storage({
            'id': 'c1', 'group_id': 'g1', 'metric': 'spend', 'operator': 'ne',
            'threshold': 10, 'sort_order': 0
        })
        assert stored.operator == 'ne'
        assert evaluate_condition(stored, sample_metrics) is False


# =============================================================================
# CONDITION GROUP TESTS
# =============================================================================

class TestConditionGroupEvaluation:
    """Tests for AND/OR condition groups"""

    def test_and_all_true(self, sample_metrics):
        g = group("AND", condition("spend", "gt", 1000), condition("ctr", "lt", 0.02))
        assert evaluate_condition_group(g, sample_metrics) is True

    def test_and_one_false(self, sample_metrics):
        g = group("AND", condition("spend", "gt", 1000), condition("ctr", "gt", 0.02))
        assert evaluate_condition_group(g, sample_metrics) is False

    def test_or_one_true(self, sample_metrics):
        g = group("OR", condition("spend", "gt", 5000), condition("ctr", "lt", 0.02))
        assert evaluate_condition_group(g, sample_metrics) is True

    def test_or_all_false(self, sample_metrics):
        g = group("OR", condition("spend", "gt", 5000), condition("ctr", "gt", 0.02))
        assert evaluate_condition_group(g, sample_metrics) is False

    def test_empty_and_group_is_vacuously_true(self, sample_metrics):
        """Documented edge case: an AND group with no conditions is True"""
        assert evaluate_condition_group(group("AND"), sample_metrics) is True

    def test_empty_or_group_is_false(self, sample_metrics):
        assert evaluate_condition_group(group("OR"), sample_metrics) is False

    def test_unknown_group_operator_combines_with_or(self, sample_metrics):
        g = ConditionGroup.model_construct(
            operator="XOR",
            conditions=[condition("spend", "gt", 5000), condition("ctr", "lt", 0.02)]
        )
        assert evaluate_condition_group(g, sample_metrics) is True


# =============================================================================
# RULE TESTS
# =============================================================================

class TestRuleEvaluation:
    """Tests for OR across condition groups"""

    def test_rule_without_groups_never_triggers(self, sample_metrics):
        assert evaluate_rule(rule(), sample_metrics) is False

    def test_rule_triggers_when_any_group_true(self):
        """Scenario: [spend gt 1000] is false at spend=500, [ctr lt 0.02] is true"""
        metrics = CampaignMetrics(spend=500, ctr=0.01)
        r = rule(
            group("AND", condition("spend", "gt", 1000)),
            group("AND", condition("ctr", "lt", 0.02)),
        )
        assert evaluate_rule(r, metrics) is True

    def test_rule_false_when_all_groups_false(self):
        metrics = CampaignMetrics(spend=500, ctr=0.05)
        r = rule(
            group("AND", condition("spend", "gt", 1000)),
            group("OR", condition("ctr", "lt", 0.02), condition("cpc", "gt", 3)),
        )
        assert evaluate_rule(r, metrics) is False

    def test_many_false_groups_do_not_block_one_true_group(self, sample_metrics):
        falses = [group("AND", condition("reach", "gt", 10_000_000)) for _ in range(5)]
        r = rule(*falses, group("AND", condition("impressions", "gte", 10000)))
        assert evaluate_rule(r, sample_metrics) is True

    def test_snapshot_can_be_evaluated_directly(self, sample_snapshot):
        r = rule(group("AND", condition("frequency", "eq", 2.0)))
        assert evaluate_rule(r, sample_snapshot) is True
