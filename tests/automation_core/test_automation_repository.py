"""
Tests for PostgresAutomationRepository (MOCK MODE)

Database operations are exercised against patched psycopg2 connections.
"""

import pytest
from unittest.mock import Mock, MagicMock, patch
from datetime import datetime
import json

from automation_core.repository import (
    PostgresAutomationRepository,
    RuleNotFoundError,
    SCHEMA_SQL,
)
from automation_core.models import (
    ActionLog,
    ActionStatus,
    ActionType,
    CampaignMetrics,
    CampaignSnapshot,
    RuleUpdate,
)
from services.rule_engine import ActionExecutor


@pytest.fixture
def mock_connect():
    with patch('automation_core.repository.psycopg2.connect') as mock_connect:
        mock_conn = MagicMock()
        mock_cursor = MagicMock()
        mock_connect.return_value = mock_conn
        mock_conn.cursor.return_value.__enter__.return_value = mock_cursor
        yield mock_connect, mock_conn, mock_cursor


@pytest.fixture
def campaign_row():
    return {
        'id': 'campaign-row-1',
        'campaign_id': '120231398059670228',
        'name': 'Meta Ads Campaign',
        'spend': 1500.0,
        'clicks': 100,
        'reach': 5000,
        'impressions': 10000,
        'inline_link_clicks': 50,
        'cost_per_inline_link_click': 2.5,
        'frequency': 2.0,
        'cpc': 1.5,
        'ctr': 0.01,
        'synced_at': datetime(2024, 11, 15, 12, 0),
        'created_at': datetime(2024, 11, 15, 12, 0),
        'updated_at': datetime(2024, 11, 15, 12, 0),
    }


@pytest.fixture
def action_log_row():
    return {
        'id': 'log-1',
        'rule_id': 'rule-1',
        'campaign_id': '120231398059670228',
        'action': 'pause_campaign',
        'action_value': 'default',
        'status': 'success',
        'metrics': json.dumps({'spend': 1500.0, 'ctr': 0.01, 'clicks': 100}),
        'triggered_at': datetime(2024, 11, 15, 12, 0),
        'completed_at': datetime(2024, 11, 15, 12, 0),
        'rule_name': 'Pause rule',
        'campaign_name': 'Meta Ads Campaign',
    }


@pytest.fixture
def sample_log():
    return ActionLog(
        rule_id='rule-1',
        campaign_id='120231398059670228',
        action=ActionType.PAUSE_CAMPAIGN,
        metrics=CampaignMetrics(spend=1500.0, ctr=0.01, clicks=100),
        triggered_at=datetime(2024, 11, 15, 12, 0),
        completed_at=datetime(2024, 11, 15, 12, 0),
    )


class TestPostgresAutomationRepository:
    """Test PostgresAutomationRepository"""

    def test_init_connects_to_database(self, mock_db_dsn):
        """Test repository initialization connects to database"""
        with patch('automation_core.repository.psycopg2.connect') as mock_connect:
            mock_conn = Mock()
            mock_connect.return_value = mock_conn

            repo = PostgresAutomationRepository(mock_db_dsn)

            assert repo.dsn == mock_db_dsn
            mock_connect.assert_called_once_with(mock_db_dsn)
            mock_conn.close.assert_called_once()

    def test_initialize_schema(self, mock_db_dsn, mock_connect):
        """Test schema creation runs the DDL and commits"""
        _, mock_conn, mock_cursor = mock_connect

        repo = PostgresAutomationRepository(mock_db_dsn)
        repo.initialize_schema()

        mock_cursor.execute.assert_called_once_with(SCHEMA_SQL)
        mock_conn.commit.assert_called_once()

    def test_schema_has_partial_unique_index_for_non_repeatable_actions(self):
        assert 'CREATE UNIQUE INDEX IF NOT EXISTS uq_action_logs_non_repeatable' in SCHEMA_SQL
        assert "WHERE status = 'success'" in SCHEMA_SQL
        for action in ('pause_campaign', 'increase_budget', 'decrease_budget'):
            assert f"'{action}'" in SCHEMA_SQL
        assert "'send_notification'" not in SCHEMA_SQL

    def test_upsert_campaign(self, mock_db_dsn, mock_connect, campaign_row):
        """Test snapshot upsert keyed by campaign identifier"""
        _, mock_conn, mock_cursor = mock_connect
        mock_cursor.fetchone.return_value = campaign_row

        repo = PostgresAutomationRepository(mock_db_dsn)
        snapshot = CampaignSnapshot(campaign_id='120231398059670228', spend=1500.0)
        result = repo.upsert_campaign(snapshot)

        assert isinstance(result, CampaignSnapshot)
        assert result.id == 'campaign-row-1'
        sql = mock_cursor.execute.call_args[0][0]
        assert 'ON CONFLICT (campaign_id) DO UPDATE' in sql
        mock_conn.commit.assert_called_once()
        mock_conn.close.assert_called()

    def test_get_latest_campaign_none(self, mock_db_dsn, mock_connect):
        _, _, mock_cursor = mock_connect
        mock_cursor.fetchone.return_value = None

        repo = PostgresAutomationRepository(mock_db_dsn)
        assert repo.get_latest_campaign() is None

    def test_get_latest_campaign(self, mock_db_dsn, mock_connect, campaign_row):
        _, _, mock_cursor = mock_connect
        mock_cursor.fetchone.return_value = campaign_row

        repo = PostgresAutomationRepository(mock_db_dsn)
        result = repo.get_latest_campaign()

        assert result.campaign_id == '120231398059670228'
        assert result.clicks == 100
        assert 'ORDER BY synced_at DESC' in mock_cursor.execute.call_args[0][0]

    def test_find_action_log_parses_json_metrics(self, mock_db_dsn, mock_connect, action_log_row):
        _, _, mock_cursor = mock_connect
        mock_cursor.fetchone.return_value = action_log_row

        repo = PostgresAutomationRepository(mock_db_dsn)
        log = repo.find_action_log('rule-1', '120231398059670228', ActionType.PAUSE_CAMPAIGN)

        assert log.action == ActionType.PAUSE_CAMPAIGN
        assert log.status == ActionStatus.SUCCESS
        assert log.metrics.spend == 1500.0
        assert log.rule_name == 'Pause rule'
        params = mock_cursor.execute.call_args[0][1]
        assert params == ('rule-1', '120231398059670228', 'pause_campaign', 'success')

    def test_list_action_logs_filters_by_rule(self, mock_db_dsn, mock_connect, action_log_row):
        _, _, mock_cursor = mock_connect
        mock_cursor.fetchall.return_value = [action_log_row]

        repo = PostgresAutomationRepository(mock_db_dsn)
        logs = repo.list_action_logs(rule_id='rule-1', limit=5)

        assert len(logs) == 1
        sql, params = mock_cursor.execute.call_args[0]
        assert 'WHERE l.rule_id = %s' in sql
        assert params == ['rule-1', 5]

    def test_record_execution_inserts_and_updates_counters(self, mock_db_dsn, mock_connect,
                                                           action_log_row, sample_log):
        """Test log insert and counter update share one transaction"""
        _, mock_conn, mock_cursor = mock_connect
        mock_cursor.fetchone.return_value = action_log_row

        repo = PostgresAutomationRepository(mock_db_dsn)
        result = repo.record_execution(sample_log)

        assert result.id == 'log-1'
        assert mock_cursor.execute.call_count == 2
        insert_sql = mock_cursor.execute.call_args_list[0][0][0]
        update_sql = mock_cursor.execute.call_args_list[1][0][0]
        assert 'ON CONFLICT DO NOTHING' in insert_sql
        assert 'trigger_count = trigger_count + 1' in update_sql
        mock_conn.commit.assert_called_once()
        mock_conn.rollback.assert_not_called()

    def test_record_execution_duplicate_returns_none(self, mock_db_dsn, mock_connect, sample_log):
        """Test a conflicting non-repeatable log leaves counters untouched"""
        _, mock_conn, mock_cursor = mock_connect
        mock_cursor.fetchone.return_value = None

        repo = PostgresAutomationRepository(mock_db_dsn)
        result = repo.record_execution(sample_log)

        assert result is None
        assert mock_cursor.execute.call_count == 1
        mock_conn.rollback.assert_called_once()
        mock_conn.commit.assert_not_called()

    def test_record_execution_rolls_back_on_error(self, mock_db_dsn, mock_connect, sample_log):
        import psycopg2

        _, mock_conn, mock_cursor = mock_connect
        mock_cursor.execute.side_effect = psycopg2.OperationalError("connection lost")

        repo = PostgresAutomationRepository(mock_db_dsn)
        with pytest.raises(psycopg2.OperationalError):
            repo.record_execution(sample_log)

        mock_conn.rollback.assert_called_once()
        mock_conn.close.assert_called()

    def test_delete_missing_rule_raises(self, mock_db_dsn, mock_connect):
        _, _, mock_cursor = mock_connect
        mock_cursor.rowcount = 0

        repo = PostgresAutomationRepository(mock_db_dsn)
        with pytest.raises(RuleNotFoundError):
            repo.delete_rule('missing')

    def test_update_missing_rule_raises(self, mock_db_dsn, mock_connect):
        _, mock_conn, mock_cursor = mock_connect
        mock_cursor.fetchone.return_value = None

        repo = PostgresAutomationRepository(mock_db_dsn)
        with pytest.raises(RuleNotFoundError):
            repo.update_rule('missing', RuleUpdate(name='Renamed'))

        mock_conn.rollback.assert_called_once()
        mock_conn.commit.assert_not_called()

    def test_get_active_rules_builds_ordered_groups(self, mock_db_dsn, mock_connect):
        """Test rules, groups and conditions are assembled from three queries"""
        _, _, mock_cursor = mock_connect
        now = datetime(2024, 11, 15, 12, 0)
        mock_cursor.fetchall.side_effect = [
            [{'id': 'rule-1', 'name': 'Rule', 'description': None, 'action': 'send_notification',
              'action_value': None, 'is_active': True, 'trigger_count': 0, 'last_triggered': None,
              'created_by': None, 'created_at': now, 'updated_at': now}],
            [{'id': 'group-1', 'rule_id': 'rule-1', 'operator': 'OR', 'sort_order': 0}],
            [
                {'id': 'c1', 'group_id': 'group-1', 'metric': 'spend', 'operator': 'gt',
                 'threshold': 1000.0, 'sort_order': 0},
                {'id': 'c2', 'group_id': 'group-1', 'metric': 'unknown_metric', 'operator': 'lt',
                 'threshold': 0.02, 'sort_order': 1},
            ],
        ]

        repo = PostgresAutomationRepository(mock_db_dsn)
        rules = repo.get_active_rules()

        assert len(rules) == 1
        group = rules[0].condition_groups[0]
        assert group.operator == 'OR'
        assert [c.id for c in group.conditions] == ['c1', 'c2']
        assert [c.order for c in group.conditions] == [0, 1]
        assert group.conditions[1].metric == 'unknown_metric'

    def test_get_active_rules_skips_malformed_rule_row(self, mock_db_dsn, mock_connect):
        """Test a stored rule that no longer validates does not block the others"""
        _, _, mock_cursor = mock_connect
        now = datetime(2024, 11, 15, 12, 0)
        mock_cursor.fetchall.side_effect = [
            [
                {'id': 'rule-bad', 'name': 'Archive rule', 'description': None,
                 'action': 'archive_campaign', 'action_value': None, 'is_active': True,
                 'trigger_count': 0, 'last_triggered': None, 'created_by': None,
                 'created_at': now, 'updated_at': now},
                {'id': 'rule-good', 'name': 'Notify rule', 'description': None,
                 'action': 'send_notification', 'action_value': None, 'is_active': True,
                 'trigger_count': 0, 'last_triggered': None, 'created_by': None,
                 'created_at': now, 'updated_at': now},
            ],
            [
                {'id': 'group-bad', 'rule_id': 'rule-bad', 'operator': 'AND', 'sort_order': 0},
                {'id': 'group-good', 'rule_id': 'rule-good', 'operator': 'AND', 'sort_order': 0},
            ],
            [
                {'id': 'c1', 'group_id': 'group-bad', 'metric': 'spend', 'operator': 'gt',
                 'threshold': 1.0, 'sort_order': 0},
                {'id': 'c2', 'group_id': 'group-good', 'metric': 'spend', 'operator': 'gt',
                 'threshold': 1.0, 'sort_order': 0},
            ],
        ]

        repo = PostgresAutomationRepository(mock_db_dsn)
        rules = repo.get_active_rules()

        assert [rule.id for rule in rules] == ['rule-good']

    def test_malformed_rule_row_does_not_abort_rule_pass(self, mock_db_dsn, mock_connect):
        """Test the executor still runs valid rules next to a malformed stored one"""
        _, _, mock_cursor = mock_connect
        now = datetime(2024, 11, 15, 12, 0)
        mock_cursor.fetchall.side_effect = [
            [
                {'id': 'rule-bad', 'name': '', 'description': None,
                 'action': 'pause_campaign', 'action_value': None, 'is_active': True,
                 'trigger_count': 0, 'last_triggered': None, 'created_by': None,
                 'created_at': now, 'updated_at': now},
                {'id': 'rule-good', 'name': 'Notify rule', 'description': None,
                 'action': 'send_notification', 'action_value': None, 'is_active': True,
                 'trigger_count': 0, 'last_triggered': None, 'created_by': None,
                 'created_at': now, 'updated_at': now},
            ],
            [{'id': 'group-good', 'rule_id': 'rule-good', 'operator': 'AND', 'sort_order': 0}],
            [{'id': 'c1', 'group_id': 'group-good', 'metric': 'spend', 'operator': 'gt',
              'threshold': 1.0, 'sort_order': 0}],
        ]

        repo = PostgresAutomationRepository(mock_db_dsn)
        with patch.object(repo, 'record_execution', side_effect=lambda log: log) as mock_record:
            logs = ActionExecutor(repo).check_and_execute_rules(CampaignMetrics(spend=10), 'c')

        assert len(logs) == 1
        assert logs[0].rule_id == 'rule-good'
        mock_record.assert_called_once()
