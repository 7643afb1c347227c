"""
In-memory repository

Same contract as PostgresAutomationRepository, kept in process memory.
Used for local runs (AUTOMATION_STORAGE=memory) and the test suite.
"""
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from automation_core.models import (
    ActionLog,
    ActionStatus,
    ActionType,
    AutomationRule,
    CampaignSnapshot,
    CampaignWithActions,
    Condition,
    ConditionGroup,
    ConditionGroupCreate,
    NON_REPEATABLE_ACTIONS,
    RuleCreate,
    RuleUpdate,
    RuleWithLogs,
)
from automation_core.repository import AutomationRepository, RuleNotFoundError, new_id

logger = logging.getLogger(__name__)


class InMemoryAutomationRepository(AutomationRepository):
    """Thread-safe dictionary-backed store"""

    def __init__(self):
        self._lock = threading.RLock()
        self._campaigns: Dict[str, CampaignSnapshot] = {}
        self._rules: Dict[str, AutomationRule] = {}
        self._logs: List[ActionLog] = []

    # Campaign snapshots

    def upsert_campaign(self, snapshot: CampaignSnapshot) -> CampaignSnapshot:
        with self._lock:
            now = datetime.utcnow()
            existing = self._campaigns.get(snapshot.campaign_id)
            stored = snapshot.model_copy(update={
                'id': existing.id if existing else (snapshot.id or new_id()),
                'created_at': existing.created_at if existing else now,
                'updated_at': now,
            })
            self._campaigns[snapshot.campaign_id] = stored
            return stored

    def get_latest_campaign(self) -> Optional[CampaignSnapshot]:
        with self._lock:
            if not self._campaigns:
                return None
            return max(self._campaigns.values(), key=lambda c: c.synced_at)

    def get_latest_campaign_with_actions(self, limit: int = 5) -> Optional[CampaignWithActions]:
        with self._lock:
            campaign = self.get_latest_campaign()
            if campaign is None:
                return None
            logs = [log for log in self._newest_logs() if log.campaign_id == campaign.campaign_id]
            return CampaignWithActions(**dict(campaign), action_logs=logs[:limit])

    # Rules

    def create_rule(self, rule_create: RuleCreate, created_by: Optional[str] = None) -> AutomationRule:
        with self._lock:
            rule_id = new_id()
            now = datetime.utcnow()
            rule = AutomationRule(
                id=rule_id,
                name=rule_create.name,
                description=rule_create.description,
                action=rule_create.action,
                action_value=rule_create.action_value,
                is_active=rule_create.is_active,
                created_by=created_by,
                created_at=now,
                updated_at=now,
                condition_groups=self._build_groups(rule_id, rule_create.condition_groups),
            )
            self._rules[rule_id] = rule
            logger.info(f"Created rule {rule_id} ({rule.name})")
            return self._with_count(rule)

    def get_rule(self, rule_id: str, recent_actions: int = 10) -> Optional[RuleWithLogs]:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return None
            logs = [log for log in self._newest_logs() if log.rule_id == rule_id]
            return RuleWithLogs(**dict(self._with_count(rule)), recent_actions=logs[:recent_actions])

    def list_rules(self) -> List[AutomationRule]:
        with self._lock:
            rules = sorted(self._rules.values(), key=lambda r: r.created_at, reverse=True)
            return [self._with_count(rule) for rule in rules]

    def update_rule(self, rule_id: str, update: RuleUpdate) -> AutomationRule:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise RuleNotFoundError(rule_id)

            changes = update.model_dump(exclude_none=True, exclude={'condition_groups'})
            if update.condition_groups is not None:
                changes['condition_groups'] = self._build_groups(rule_id, update.condition_groups)
            changes['updated_at'] = datetime.utcnow()

            updated = rule.model_copy(update=changes)
            self._rules[rule_id] = updated
            return self._with_count(updated)

    def delete_rule(self, rule_id: str) -> None:
        with self._lock:
            if self._rules.pop(rule_id, None) is None:
                raise RuleNotFoundError(rule_id)
            self._logs = [log for log in self._logs if log.rule_id != rule_id]
            logger.info(f"Deleted rule {rule_id}")

    def set_rule_active(self, rule_id: str, is_active: bool) -> AutomationRule:
        return self.update_rule(rule_id, RuleUpdate(is_active=is_active))

    def get_active_rules(self) -> List[AutomationRule]:
        with self._lock:
            rules = sorted(
                (rule for rule in self._rules.values() if rule.is_active),
                key=lambda r: r.created_at
            )
            return list(rules)

    # Action logs

    def find_action_log(
        self,
        rule_id: str,
        campaign_id: str,
        action: ActionType,
        status: ActionStatus = ActionStatus.SUCCESS
    ) -> Optional[ActionLog]:
        with self._lock:
            for log in self._newest_logs():
                if (log.rule_id == rule_id and log.campaign_id == campaign_id
                        and log.action == action and log.status == status):
                    return log
            return None

    def list_action_logs(self, rule_id: Optional[str] = None, limit: int = 50) -> List[ActionLog]:
        with self._lock:
            logs = self._newest_logs()
            if rule_id:
                logs = [log for log in logs if log.rule_id == rule_id]
            return logs[:limit]

    def record_execution(self, log: ActionLog) -> Optional[ActionLog]:
        with self._lock:
            rule = self._rules.get(log.rule_id)
            if rule is None:
                raise RuleNotFoundError(log.rule_id)

            if (log.action in NON_REPEATABLE_ACTIONS and log.status == ActionStatus.SUCCESS
                    and self.find_action_log(log.rule_id, log.campaign_id, log.action) is not None):
                logger.info(
                    f"Action {log.action.value} already recorded for rule {log.rule_id} "
                    f"and campaign {log.campaign_id}"
                )
                return None

            stored = log.model_copy(update={'id': log.id or new_id()})
            self._logs.append(stored)
            self._rules[rule.id] = rule.model_copy(update={
                'trigger_count': rule.trigger_count + 1,
                'last_triggered': log.triggered_at,
                'updated_at': datetime.utcnow(),
            })
            return self._decorate(stored)

    # Helpers

    def _build_groups(self, rule_id: str, groups: List[ConditionGroupCreate]) -> List[ConditionGroup]:
        built = []
        for group_order, group in enumerate(groups):
            group_id = new_id()
            built.append(ConditionGroup(
                id=group_id,
                rule_id=rule_id,
                operator=group.operator,
                order=group_order,
                conditions=[
                    Condition(
                        id=new_id(),
                        group_id=group_id,
                        metric=condition.metric,
                        operator=condition.operator,
                        threshold=condition.threshold,
                        order=condition_order,
                    )
                    for condition_order, condition in enumerate(group.conditions)
                ],
            ))
        return built

    def _newest_logs(self) -> List[ActionLog]:
        # Newest first; equal timestamps fall back to insertion order
        ordered = sorted(
            enumerate(self._logs),
            key=lambda item: (item[1].triggered_at, item[0]),
            reverse=True
        )
        return [self._decorate(log) for _, log in ordered]

    def _decorate(self, log: ActionLog) -> ActionLog:
        rule = self._rules.get(log.rule_id)
        campaign = self._campaigns.get(log.campaign_id)
        return log.model_copy(update={
            'rule_name': rule.name if rule else None,
            'campaign_name': campaign.name if campaign else None,
        })

    def _with_count(self, rule: AutomationRule) -> AutomationRule:
        count = sum(1 for log in self._logs if log.rule_id == rule.id)
        return rule.model_copy(update={'action_log_count': count})
