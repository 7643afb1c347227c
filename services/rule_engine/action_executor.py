"""
Action Executor - Rule Triggering and Action Logging
====================================================
Runs every active rule against a metrics snapshot and records an action
log for each rule that triggers.

Idempotency:
- pause_campaign, increase_budget and decrease_budget succeed at most once
  per (rule, campaign); later triggers are skipped
- send_notification is logged on every trigger

Actions are simulated: a log is written, nothing is sent to the ad platform.
"""
import logging
from datetime import datetime
from typing import List, Optional

from automation_core.models import (
    ActionLog,
    ActionStatus,
    AutomationRule,
    CampaignMetrics,
    DEFAULT_ACTION_VALUE,
    NON_REPEATABLE_ACTIONS,
)
from automation_core.repository import AutomationRepository
from services.rule_engine.rule_evaluator import evaluate_rule

logger = logging.getLogger(__name__)


class ActionExecutor:
    """Evaluates active rules and executes (logs) their actions"""

    def __init__(self, repository: AutomationRepository):
        self.repository = repository

    # =========================================================================
    # DEDUPLICATION
    # =========================================================================

    def _already_executed(self, rule: AutomationRule, campaign_id: str) -> bool:
        """True if a non-repeatable action already succeeded for this rule and campaign"""
        if rule.action not in NON_REPEATABLE_ACTIONS:
            return False

        existing = self.repository.find_action_log(
            rule.id, campaign_id, rule.action, ActionStatus.SUCCESS
        )
        if existing is not None:
            logger.debug(
                f"Action {rule.action.value} already executed for rule {rule.id} "
                f"on campaign {campaign_id} (log {existing.id})"
            )
            return True
        return False

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def execute_action(
        self,
        rule: AutomationRule,
        metrics: CampaignMetrics,
        campaign_id: str
    ) -> Optional[ActionLog]:
        """
        Execute a triggered rule's action.

        Args:
            rule: Rule that triggered
            metrics: Metrics the rule was evaluated against
            campaign_id: External campaign identifier

        Returns:
            The recorded ActionLog, or None if skipped as already executed
        """
        if self._already_executed(rule, campaign_id):
            logger.info(f"Skipping {rule.action.value} for rule {rule.id}: already executed")
            return None

        now = datetime.utcnow()
        log = ActionLog(
            rule_id=rule.id,
            campaign_id=campaign_id,
            action=rule.action,
            action_value=rule.action_value or DEFAULT_ACTION_VALUE,
            status=ActionStatus.SUCCESS,
            metrics=metrics.to_metrics(),
            triggered_at=now,
            completed_at=now,
        )

        # Log insert and trigger counter update happen in one store call
        recorded = self.repository.record_execution(log)
        if recorded is not None:
            logger.info(
                f"Executed {rule.action.value} ({log.action_value}) for rule "
                f"'{rule.name}' on campaign {campaign_id}"
            )
        return recorded

    def check_and_execute_rules(
        self,
        metrics: CampaignMetrics,
        campaign_id: str
    ) -> List[ActionLog]:
        """
        Evaluate all active rules and execute the ones that trigger.

        A failure on one rule is logged and does not stop the others.

        Returns:
            Action logs created during this pass
        """
        executed: List[ActionLog] = []
        rules = self.repository.get_active_rules()
        logger.info(f"Evaluating {len(rules)} active rules for campaign {campaign_id}")

        for rule in rules:
            try:
                if not evaluate_rule(rule, metrics):
                    continue

                log = self.execute_action(rule, metrics, campaign_id)
                if log is not None:
                    executed.append(log)

            except Exception as e:
                logger.error(f"Error processing rule {rule.id} ({rule.name}): {e}", exc_info=True)

        logger.info(f"Executed {len(executed)} actions for campaign {campaign_id}")
        return executed
