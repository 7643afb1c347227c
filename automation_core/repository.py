"""
Repository for campaign snapshots, automation rules and action logs
Defines the store interface and its PostgreSQL implementation
"""
import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from pydantic import ValidationError

from automation_core.models import (
    ActionLog,
    ActionStatus,
    ActionType,
    AutomationRule,
    CampaignMetrics,
    CampaignSnapshot,
    CampaignWithActions,
    Condition,
    ConditionGroup,
    ConditionGroupCreate,
    RuleCreate,
    RuleUpdate,
    RuleWithLogs,
)

logger = logging.getLogger(__name__)


class RuleNotFoundError(LookupError):
    """Raised when a rule id does not exist"""

    def __init__(self, rule_id: str):
        super().__init__(f"Rule not found: {rule_id}")
        self.rule_id = rule_id


def new_id() -> str:
    """Generate a new row id"""
    return str(uuid.uuid4())


class AutomationRepository(ABC):
    """Store operations used by the engine, the scheduler and the API"""

    # Campaign snapshots

    @abstractmethod
    def upsert_campaign(self, snapshot: CampaignSnapshot) -> CampaignSnapshot:
        """Create or overwrite the snapshot row for snapshot.campaign_id"""

    @abstractmethod
    def get_latest_campaign(self) -> Optional[CampaignSnapshot]:
        """Most recently synced snapshot, or None"""

    @abstractmethod
    def get_latest_campaign_with_actions(self, limit: int = 5) -> Optional[CampaignWithActions]:
        """Most recently synced snapshot with its newest action logs"""

    # Rules

    @abstractmethod
    def create_rule(self, rule_create: RuleCreate, created_by: Optional[str] = None) -> AutomationRule:
        """Create a rule with its condition groups and conditions"""

    @abstractmethod
    def get_rule(self, rule_id: str, recent_actions: int = 10) -> Optional[RuleWithLogs]:
        """Get one rule with groups, conditions and recent action logs"""

    @abstractmethod
    def list_rules(self) -> List[AutomationRule]:
        """All rules, newest first, with action_log_count filled in"""

    @abstractmethod
    def update_rule(self, rule_id: str, update: RuleUpdate) -> AutomationRule:
        """Apply a partial update; raises RuleNotFoundError"""

    @abstractmethod
    def delete_rule(self, rule_id: str) -> None:
        """Delete a rule and everything it owns; raises RuleNotFoundError"""

    @abstractmethod
    def set_rule_active(self, rule_id: str, is_active: bool) -> AutomationRule:
        """Toggle a rule; raises RuleNotFoundError"""

    @abstractmethod
    def get_active_rules(self) -> List[AutomationRule]:
        """Active rules with condition groups and conditions ordered by order"""

    # Action logs

    @abstractmethod
    def find_action_log(
        self,
        rule_id: str,
        campaign_id: str,
        action: ActionType,
        status: ActionStatus = ActionStatus.SUCCESS
    ) -> Optional[ActionLog]:
        """Newest log matching (rule, campaign, action, status), or None"""

    @abstractmethod
    def list_action_logs(self, rule_id: Optional[str] = None, limit: int = 50) -> List[ActionLog]:
        """Newest action logs first, optionally for one rule"""

    @abstractmethod
    def record_execution(self, log: ActionLog) -> Optional[ActionLog]:
        """
        Insert an action log and bump the rule's trigger counters together.

        Returns the stored log, or None when a successful non-repeatable log
        for the same (rule, campaign, action) already exists.
        """

    def initialize_schema(self) -> None:
        """Create storage structures if the backend needs them"""


# ============================================================================
# POSTGRESQL
# ============================================================================

SCHEMA_SQL = """
CREATE SCHEMA IF NOT EXISTS automation;

CREATE TABLE IF NOT EXISTS automation.campaigns (
    id TEXT PRIMARY KEY,
    campaign_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    spend DOUBLE PRECISION NOT NULL DEFAULT 0,
    clicks INTEGER NOT NULL DEFAULT 0,
    reach INTEGER NOT NULL DEFAULT 0,
    impressions INTEGER NOT NULL DEFAULT 0,
    inline_link_clicks INTEGER NOT NULL DEFAULT 0,
    cost_per_inline_link_click DOUBLE PRECISION NOT NULL DEFAULT 0,
    frequency DOUBLE PRECISION NOT NULL DEFAULT 0,
    cpc DOUBLE PRECISION NOT NULL DEFAULT 0,
    ctr DOUBLE PRECISION NOT NULL DEFAULT 0,
    synced_at TIMESTAMP NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS automation.automation_rules (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    action TEXT NOT NULL,
    action_value TEXT,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    trigger_count INTEGER NOT NULL DEFAULT 0,
    last_triggered TIMESTAMP,
    created_by TEXT,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS automation.condition_groups (
    id TEXT PRIMARY KEY,
    rule_id TEXT NOT NULL REFERENCES automation.automation_rules(id) ON DELETE CASCADE,
    operator TEXT NOT NULL DEFAULT 'AND',
    sort_order INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS automation.conditions (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL REFERENCES automation.condition_groups(id) ON DELETE CASCADE,
    metric TEXT NOT NULL,
    operator TEXT NOT NULL,
    threshold DOUBLE PRECISION NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS automation.action_logs (
    id TEXT PRIMARY KEY,
    rule_id TEXT NOT NULL REFERENCES automation.automation_rules(id) ON DELETE CASCADE,
    campaign_id TEXT NOT NULL,
    action TEXT NOT NULL,
    action_value TEXT NOT NULL,
    status TEXT NOT NULL,
    metrics JSONB NOT NULL,
    triggered_at TIMESTAMP NOT NULL,
    completed_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_action_logs_rule_triggered
    ON automation.action_logs (rule_id, triggered_at DESC);

CREATE UNIQUE INDEX IF NOT EXISTS uq_action_logs_non_repeatable
    ON automation.action_logs (rule_id, campaign_id, action)
    WHERE status = 'success'
      AND action IN ('pause_campaign', 'increase_budget', 'decrease_budget');
"""

ACTION_LOG_SELECT = """
    SELECT l.*, r.name AS rule_name, c.name AS campaign_name
    FROM automation.action_logs l
    LEFT JOIN automation.automation_rules r ON r.id = l.rule_id
    LEFT JOIN automation.campaigns c ON c.campaign_id = l.campaign_id
"""


class PostgresAutomationRepository(AutomationRepository):
    """Repository backed by PostgreSQL through psycopg2"""

    def __init__(self, dsn: str):
        """Initialize repository with database connection"""
        self.dsn = dsn
        # Test connection
        conn = self._get_connection()
        conn.close()

    def _get_connection(self):
        """Get database connection"""
        return psycopg2.connect(self.dsn)

    def initialize_schema(self) -> None:
        """Create schema, tables and indexes if they do not exist"""
        conn = self._get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
            logger.info("Automation schema initialized")
        finally:
            conn.close()

    # =========================================================================
    # CAMPAIGN SNAPSHOTS
    # =========================================================================

    def upsert_campaign(self, snapshot: CampaignSnapshot) -> CampaignSnapshot:
        """Insert or overwrite the row for this campaign identifier"""
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    INSERT INTO automation.campaigns (
                        id, campaign_id, name,
                        spend, clicks, reach, impressions, inline_link_clicks,
                        cost_per_inline_link_click, frequency, cpc, ctr,
                        synced_at, created_at, updated_at
                    ) VALUES (
                        %s, %s, %s,
                        %s, %s, %s, %s, %s,
                        %s, %s, %s, %s,
                        %s, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP
                    )
                    ON CONFLICT (campaign_id) DO UPDATE SET
                        name = EXCLUDED.name,
                        spend = EXCLUDED.spend,
                        clicks = EXCLUDED.clicks,
                        reach = EXCLUDED.reach,
                        impressions = EXCLUDED.impressions,
                        inline_link_clicks = EXCLUDED.inline_link_clicks,
                        cost_per_inline_link_click = EXCLUDED.cost_per_inline_link_click,
                        frequency = EXCLUDED.frequency,
                        cpc = EXCLUDED.cpc,
                        ctr = EXCLUDED.ctr,
                        synced_at = EXCLUDED.synced_at,
                        updated_at = CURRENT_TIMESTAMP
                    RETURNING *
                """, (
                    snapshot.id or new_id(),
                    snapshot.campaign_id,
                    snapshot.name,
                    snapshot.spend,
                    snapshot.clicks,
                    snapshot.reach,
                    snapshot.impressions,
                    snapshot.inline_link_clicks,
                    snapshot.cost_per_inline_link_click,
                    snapshot.frequency,
                    snapshot.cpc,
                    snapshot.ctr,
                    snapshot.synced_at,
                ))
                row = cur.fetchone()
                conn.commit()
                return CampaignSnapshot(**dict(row))
        finally:
            conn.close()

    def get_latest_campaign(self) -> Optional[CampaignSnapshot]:
        """Get the most recently synced snapshot"""
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT * FROM automation.campaigns
                    ORDER BY synced_at DESC
                    LIMIT 1
                """)
                row = cur.fetchone()
                if row:
                    return CampaignSnapshot(**dict(row))
                return None
        finally:
            conn.close()

    def get_latest_campaign_with_actions(self, limit: int = 5) -> Optional[CampaignWithActions]:
        """Latest snapshot plus its newest action logs"""
        campaign = self.get_latest_campaign()
        if campaign is None:
            return None

        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(ACTION_LOG_SELECT + """
                    WHERE l.campaign_id = %s
                    ORDER BY l.triggered_at DESC
                    LIMIT %s
                """, (campaign.campaign_id, limit))
                logs = [self._row_to_action_log(dict(row)) for row in cur.fetchall()]
        finally:
            conn.close()

        return CampaignWithActions(**dict(campaign), action_logs=logs)

    # =========================================================================
    # RULES
    # =========================================================================

    def create_rule(self, rule_create: RuleCreate, created_by: Optional[str] = None) -> AutomationRule:
        """Create a rule with its groups and conditions in one transaction"""
        rule_id = new_id()
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    INSERT INTO automation.automation_rules (
                        id, name, description, action, action_value,
                        is_active, trigger_count, created_by,
                        created_at, updated_at
                    ) VALUES (
                        %s, %s, %s, %s, %s,
                        %s, 0, %s,
                        CURRENT_TIMESTAMP, CURRENT_TIMESTAMP
                    )
                """, (
                    rule_id,
                    rule_create.name,
                    rule_create.description,
                    rule_create.action.value,
                    rule_create.action_value,
                    rule_create.is_active,
                    created_by,
                ))
                self._insert_groups(cur, rule_id, rule_create.condition_groups)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info(f"Created rule {rule_id} ({rule_create.name})")
        return self._load_rule(rule_id)

    def _insert_groups(self, cur, rule_id: str, groups: List[ConditionGroupCreate]) -> None:
        """Insert condition groups and conditions, order taken from list position"""
        for group_order, group in enumerate(groups):
            group_id = new_id()
            cur.execute("""
                INSERT INTO automation.condition_groups (id, rule_id, operator, sort_order)
                VALUES (%s, %s, %s, %s)
            """, (group_id, rule_id, group.operator.value, group_order))

            for condition_order, condition in enumerate(group.conditions):
                cur.execute("""
                    INSERT INTO automation.conditions (
                        id, group_id, metric, operator, threshold, sort_order
                    ) VALUES (%s, %s, %s, %s, %s, %s)
                """, (
                    new_id(),
                    group_id,
                    condition.metric.value,
                    condition.operator.value,
                    condition.threshold,
                    condition_order,
                ))

    def get_rule(self, rule_id: str, recent_actions: int = 10) -> Optional[RuleWithLogs]:
        """Get rule by ID with its most recent action logs"""
        rule = self._load_rule(rule_id)
        if rule is None:
            return None

        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(ACTION_LOG_SELECT + """
                    WHERE l.rule_id = %s
                    ORDER BY l.triggered_at DESC
                    LIMIT %s
                """, (rule_id, recent_actions))
                logs = [self._row_to_action_log(dict(row)) for row in cur.fetchall()]
        finally:
            conn.close()

        return RuleWithLogs(**dict(rule), recent_actions=logs)

    def list_rules(self) -> List[AutomationRule]:
        """All rules, newest first"""
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT r.*, COUNT(l.id) AS action_log_count
                    FROM automation.automation_rules r
                    LEFT JOIN automation.action_logs l ON l.rule_id = r.id
                    GROUP BY r.id
                    ORDER BY r.created_at DESC
                """)
                rows = [dict(row) for row in cur.fetchall()]
                groups = self._fetch_groups(cur, [row['id'] for row in rows])
        finally:
            conn.close()

        return self._rows_to_rules(rows, groups)

    def update_rule(self, rule_id: str, update: RuleUpdate) -> AutomationRule:
        """Update an existing rule, replacing its groups when supplied"""
        update_fields = []
        values: List[Any] = []

        if update.name is not None:
            update_fields.append("name = %s")
            values.append(update.name)

        if update.description is not None:
            update_fields.append("description = %s")
            values.append(update.description)

        if update.action is not None:
            update_fields.append("action = %s")
            values.append(update.action.value)

        if update.action_value is not None:
            update_fields.append("action_value = %s")
            values.append(update.action_value)

        if update.is_active is not None:
            update_fields.append("is_active = %s")
            values.append(update.is_active)

        update_fields.append("updated_at = CURRENT_TIMESTAMP")
        values.append(rule_id)

        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"""
                    UPDATE automation.automation_rules
                    SET {', '.join(update_fields)}
                    WHERE id = %s
                    RETURNING id
                """, values)
                if cur.fetchone() is None:
                    conn.rollback()
                    raise RuleNotFoundError(rule_id)

                if update.condition_groups is not None:
                    # Conditions go with their groups (ON DELETE CASCADE)
                    cur.execute(
                        "DELETE FROM automation.condition_groups WHERE rule_id = %s",
                        (rule_id,)
                    )
                    self._insert_groups(cur, rule_id, update.condition_groups)
            conn.commit()
        except RuleNotFoundError:
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        return self._load_rule(rule_id)

    def delete_rule(self, rule_id: str) -> None:
        """Delete a rule; groups, conditions and logs cascade"""
        conn = self._get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM automation.automation_rules WHERE id = %s",
                    (rule_id,)
                )
                deleted = cur.rowcount
            conn.commit()
        finally:
            conn.close()

        if not deleted:
            raise RuleNotFoundError(rule_id)
        logger.info(f"Deleted rule {rule_id}")

    def set_rule_active(self, rule_id: str, is_active: bool) -> AutomationRule:
        """Toggle rule active status"""
        return self.update_rule(rule_id, RuleUpdate(is_active=is_active))

    def get_active_rules(self) -> List[AutomationRule]:
        """Active rules with ordered groups and conditions"""
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT * FROM automation.automation_rules
                    WHERE is_active = TRUE
                    ORDER BY created_at ASC
                """)
                rows = [dict(row) for row in cur.fetchall()]
                groups = self._fetch_groups(cur, [row['id'] for row in rows])
        finally:
            conn.close()

        return self._rows_to_rules(rows, groups)

    def _load_rule(self, rule_id: str) -> Optional[AutomationRule]:
        """Load a single rule with its groups"""
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT r.*, (
                        SELECT COUNT(*) FROM automation.action_logs l WHERE l.rule_id = r.id
                    ) AS action_log_count
                    FROM automation.automation_rules r
                    WHERE r.id = %s
                """, (rule_id,))
                row = cur.fetchone()
                if not row:
                    return None
                groups = self._fetch_groups(cur, [rule_id])
        finally:
            conn.close()

        return self._row_to_rule(dict(row), groups.get(rule_id, []))

    def _fetch_groups(self, cur, rule_ids: List[str]) -> Dict[str, List[ConditionGroup]]:
        """Fetch condition groups with conditions for a set of rules"""
        if not rule_ids:
            return {}

        cur.execute("""
            SELECT * FROM automation.condition_groups
            WHERE rule_id = ANY(%s)
            ORDER BY rule_id, sort_order ASC
        """, (rule_ids,))
        group_rows = [dict(row) for row in cur.fetchall()]

        conditions_by_group: Dict[str, List[Condition]] = {}
        group_ids = [row['id'] for row in group_rows]
        if group_ids:
            cur.execute("""
                SELECT * FROM automation.conditions
                WHERE group_id = ANY(%s)
                ORDER BY group_id, sort_order ASC
            """, (group_ids,))
            for row in cur.fetchall():
                condition = Condition.from_storage(dict(row))
                conditions_by_group.setdefault(condition.group_id, []).append(condition)

        groups: Dict[str, List[ConditionGroup]] = {}
        for row in group_rows:
            groups.setdefault(row['rule_id'], []).append(ConditionGroup(
                id=row['id'],
                rule_id=row['rule_id'],
                operator=row['operator'],
                order=row['sort_order'],
                conditions=conditions_by_group.get(row['id'], []),
            ))
        return groups

    # =========================================================================
    # ACTION LOGS
    # =========================================================================

    def find_action_log(
        self,
        rule_id: str,
        campaign_id: str,
        action: ActionType,
        status: ActionStatus = ActionStatus.SUCCESS
    ) -> Optional[ActionLog]:
        """Newest log for (rule, campaign, action, status)"""
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(ACTION_LOG_SELECT + """
                    WHERE l.rule_id = %s
                      AND l.campaign_id = %s
                      AND l.action = %s
                      AND l.status = %s
                    ORDER BY l.triggered_at DESC
                    LIMIT 1
                """, (rule_id, campaign_id, ActionType(action).value, ActionStatus(status).value))
                row = cur.fetchone()
                if row:
                    return self._row_to_action_log(dict(row))
                return None
        finally:
            conn.close()

    def list_action_logs(self, rule_id: Optional[str] = None, limit: int = 50) -> List[ActionLog]:
        """Query action logs, newest first"""
        where_sql = ""
        values: List[Any] = []
        if rule_id:
            where_sql = "WHERE l.rule_id = %s"
            values.append(rule_id)
        values.append(limit)

        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(ACTION_LOG_SELECT + f"""
                    {where_sql}
                    ORDER BY l.triggered_at DESC
                    LIMIT %s
                """, values)
                return [self._row_to_action_log(dict(row)) for row in cur.fetchall()]
        finally:
            conn.close()

    def record_execution(self, log: ActionLog) -> Optional[ActionLog]:
        """
        Insert the action log and update the rule counters in one transaction.

        The partial unique index drops a second successful non-repeatable log
        for the same (rule, campaign, action); counters are then left alone.
        """
        log_id = log.id or new_id()
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    INSERT INTO automation.action_logs (
                        id, rule_id, campaign_id, action, action_value,
                        status, metrics, triggered_at, completed_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT DO NOTHING
                    RETURNING *
                """, (
                    log_id,
                    log.rule_id,
                    log.campaign_id,
                    log.action.value,
                    log.action_value,
                    log.status.value,
                    Json(log.metrics.model_dump()),
                    log.triggered_at,
                    log.completed_at,
                ))
                row = cur.fetchone()
                if row is None:
                    conn.rollback()
                    logger.info(
                        f"Action {log.action.value} already recorded for rule {log.rule_id} "
                        f"and campaign {log.campaign_id}"
                    )
                    return None

                cur.execute("""
                    UPDATE automation.automation_rules
                    SET trigger_count = trigger_count + 1,
                        last_triggered = %s,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = %s
                """, (log.triggered_at, log.rule_id))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        return self._row_to_action_log(dict(row))

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    def _row_to_rule(self, row: Dict[str, Any], groups: List[ConditionGroup]) -> AutomationRule:
        """Convert database row to AutomationRule"""
        return AutomationRule(
            id=row['id'],
            name=row['name'],
            description=row.get('description'),
            action=row['action'],
            action_value=row.get('action_value'),
            is_active=row['is_active'],
            trigger_count=row.get('trigger_count') or 0,
            last_triggered=row.get('last_triggered'),
            created_by=row.get('created_by'),
            created_at=row.get('created_at'),
            updated_at=row.get('updated_at'),
            condition_groups=groups,
            action_log_count=row.get('action_log_count'),
        )

    def _rows_to_rules(self, rows: List[Dict[str, Any]],
                       groups: Dict[str, List[ConditionGroup]]) -> List[AutomationRule]:
        """Convert rule rows, skipping any that no longer validate"""
        rules = []
        for row in rows:
            try:
                rules.append(self._row_to_rule(row, groups.get(row['id'], [])))
            except ValidationError as e:
                logger.warning(f"Skipping malformed stored rule {row.get('id')}: {e}")
        return rules

    def _row_to_action_log(self, row: Dict[str, Any]) -> ActionLog:
        """Convert database row to ActionLog"""
        metrics = row.get('metrics') or {}
        if isinstance(metrics, str):
            metrics = json.loads(metrics)

        return ActionLog(
            id=row['id'],
            rule_id=row['rule_id'],
            campaign_id=row['campaign_id'],
            action=row['action'],
            action_value=row['action_value'],
            status=row['status'],
            metrics=CampaignMetrics(**metrics),
            triggered_at=row['triggered_at'],
            completed_at=row.get('completed_at'),
            rule_name=row.get('rule_name'),
            campaign_name=row.get('campaign_name'),
        )
