"""
Tests for automation_core/cli.py
"""
import os
from unittest.mock import patch

from automation_core import cli
from automation_core.memory_repository import InMemoryAutomationRepository
from automation_core.models import SyncResult


MEMORY_ENV = {'AUTOMATION_STORAGE': 'memory'}


class TestCli:

    def test_no_command_prints_help(self):
        assert cli.main([]) == 1

    def test_main_loads_dotenv_before_reading_config(self):
        def fake_load_dotenv():
            os.environ['AUTOMATION_STORAGE'] = 'memory'

        with patch.dict(os.environ, {'AUTOMATION_STORAGE': 'postgres'}), \
                patch('automation_core.cli.load_dotenv', side_effect=fake_load_dotenv) as mock_load, \
                patch('automation_core.cli.PostgresAutomationRepository') as mock_repo:
            assert cli.main(['rules']) == 0

        mock_load.assert_called_once()
        mock_repo.assert_not_called()

    def test_get_repository_memory(self, config):
        assert isinstance(cli.get_repository(config), InMemoryAutomationRepository)

    def test_get_repository_postgres_initializes_schema(self, config):
        with patch('automation_core.cli.PostgresAutomationRepository') as mock_repo:
            repo = cli.get_repository(config.model_copy(update={'storage_backend': 'postgres'}))

        assert repo is mock_repo.return_value
        mock_repo.return_value.initialize_schema.assert_called_once()

    def test_rules_command(self, capsys):
        with patch.dict(os.environ, MEMORY_ENV):
            assert cli.main(['rules']) == 0
        assert "No rules defined" in capsys.readouterr().out

    def test_logs_command(self, capsys):
        with patch.dict(os.environ, MEMORY_ENV):
            assert cli.main(['logs', '--limit', '5']) == 0
        assert "0 log(s)" in capsys.readouterr().out

    def test_sync_failure_returns_one(self):
        with patch.dict(os.environ, dict(MEMORY_ENV, META_API_TOKEN='')):
            assert cli.main(['sync']) == 1

    def test_sync_success(self, sample_snapshot, capsys):
        result = SyncResult(success=True, campaign=sample_snapshot, executed_actions=0)
        with patch.dict(os.environ, MEMORY_ENV), \
                patch('scheduler.sync_service.SyncService.sync_campaign_data', return_value=result):
            assert cli.main(['sync']) == 0
        assert "Actions executed: 0" in capsys.readouterr().out
