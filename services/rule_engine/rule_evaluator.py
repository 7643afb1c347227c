"""
Automation Rule Evaluator - Condition Group Evaluation Engine
=============================================================
Operators: gt, lt, eq, gte, lte

Rule semantics:
- A condition compares one campaign metric against a threshold
- A condition group combines its conditions with AND or OR
- A rule triggers when ANY of its condition groups is true
- A rule without condition groups never triggers

Malformed stored data (unknown metric or operator) never raises; it
resolves to False so bad rule data cannot trigger an action.
"""
import logging
import operator
from typing import Callable, Dict, Union

from automation_core.models import (
    AutomationRule,
    CampaignMetrics,
    ComparisonOperator,
    Condition,
    ConditionGroup,
    GroupOperator,
    Metric,
)

logger = logging.getLogger(__name__)

Number = Union[int, float]

COMPARATORS: Dict[ComparisonOperator, Callable[[Number, Number], bool]] = {
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.EQ: operator.eq,  # exact float equality, no epsilon
    ComparisonOperator.GTE: operator.ge,
    ComparisonOperator.LTE: operator.le,
}


def evaluate_condition(condition: Condition, metrics: CampaignMetrics) -> bool:
    """
    Evaluate one condition against a metrics snapshot.

    Args:
        condition: Condition with metric, operator and threshold
        metrics: Campaign metrics (a CampaignSnapshot works too)

    Returns:
        True if the comparison holds, False otherwise (including unknown
        metric or operator values)
    """
    try:
        metric = Metric(condition.metric)
    except ValueError:
        logger.warning(f"Unknown metric in condition {condition.id}: {condition.metric!r}")
        return False

    try:
        comparison = ComparisonOperator(condition.operator)
    except ValueError:
        logger.warning(f"Unknown operator in condition {condition.id}: {condition.operator!r}")
        return False

    value = metrics.value_of(metric)

    try:
        return bool(COMPARATORS[comparison](value, condition.threshold))
    except (TypeError, ValueError) as e:
        logger.error(f"Error comparing {metric.value}={value} with {condition.threshold!r}: {e}")
        return False


def evaluate_condition_group(group: ConditionGroup, metrics: CampaignMetrics) -> bool:
    """
    Evaluate a condition group.

    Every condition is evaluated, then the results are reduced with AND when
    the group operator is AND, otherwise with OR. An empty group is True
    under AND (vacuous truth) and False under OR.
    """
    results = [evaluate_condition(condition, metrics) for condition in group.conditions]

    if group.operator == GroupOperator.AND:
        return all(results)
    return any(results)


def evaluate_rule(rule: AutomationRule, metrics: CampaignMetrics) -> bool:
    """
    Evaluate a complete rule.

    Args:
        rule: Rule with its condition groups loaded
        metrics: Campaign metrics to evaluate against

    Returns:
        True if at least one condition group is true (OR across groups)
    """
    if not rule.condition_groups:
        return False

    group_results = [
        evaluate_condition_group(group, metrics)
        for group in rule.condition_groups
    ]
    return any(group_results)
