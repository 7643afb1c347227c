"""
Rule Engine - Condition Evaluation and Action Execution
=======================================================

Usage:
    from services.rule_engine import ActionExecutor, evaluate_rule

    executor = ActionExecutor(repository)
    logs = executor.check_and_execute_rules(metrics, campaign_id='120231398059670228')
"""

from services.rule_engine.action_executor import ActionExecutor
from services.rule_engine.rule_evaluator import (
    evaluate_condition,
    evaluate_condition_group,
    evaluate_rule,
)

__all__ = [
    'ActionExecutor',
    'evaluate_condition',
    'evaluate_condition_group',
    'evaluate_rule',
]
