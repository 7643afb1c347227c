"""
CLI interface for the campaign automation engine
"""
import sys
import argparse
import logging

from dotenv import load_dotenv

from automation_core.config import AutomationConfig
from automation_core.repository import AutomationRepository, PostgresAutomationRepository

logger = logging.getLogger(__name__)


def get_repository(config: AutomationConfig) -> AutomationRepository:
    """Build the repository for the configured storage backend"""
    if config.uses_memory_storage():
        from automation_core.memory_repository import InMemoryAutomationRepository
        logger.info("Using in-memory automation storage")
        return InMemoryAutomationRepository()

    repository = PostgresAutomationRepository(config.automation_dsn)
    repository.initialize_schema()
    return repository


def cmd_init_db(args):
    """Create the automation schema"""
    config = AutomationConfig()
    repo = PostgresAutomationRepository(config.automation_dsn)
    repo.initialize_schema()
    print("Automation schema initialized")
    return 0


def cmd_sync(args):
    """Run one sync cycle"""
    from scheduler.sync_service import SyncService

    config = AutomationConfig()
    service = SyncService(get_repository(config), config=config)

    result = service.sync_campaign_data(campaign_id=args.campaign_id)

    print("\n" + "=" * 60)
    print("CAMPAIGN SYNC RESULTS")
    print("=" * 60)
    print(f"Campaign: {result.campaign.name} ({result.campaign.campaign_id})")
    print(f"Spend: {result.campaign.spend:.2f}")
    print(f"Clicks: {result.campaign.clicks}")
    print(f"CTR: {result.campaign.ctr}")
    print(f"Actions executed: {result.executed_actions}")
    for log in result.action_logs:
        print(f"  {log.rule_name or log.rule_id}: {log.action.value} ({log.action_value})")
    print("=" * 60)

    return 0


def cmd_rules(args):
    """List automation rules"""
    config = AutomationConfig()
    repo = get_repository(config)

    rules = repo.list_rules()

    print("\n" + "=" * 60)
    print("AUTOMATION RULES")
    print("=" * 60)
    if not rules:
        print("No rules defined")
    for rule in rules:
        state = "active" if rule.is_active else "inactive"
        print(f"{rule.name} [{state}] -> {rule.action.value}")
        print(f"  id: {rule.id}")
        print(f"  triggered: {rule.trigger_count} times, last: {rule.last_triggered or 'never'}")
        for group in rule.condition_groups:
            joiner = f" {getattr(group.operator, 'value', group.operator)} "
            parts = [
                f"{getattr(c.metric, 'value', c.metric)} {getattr(c.operator, 'value', c.operator)} {c.threshold}"
                for c in group.conditions
            ]
            print(f"  ({joiner.join(parts)})")
    print("=" * 60)

    return 0


def cmd_logs(args):
    """Show recent action logs"""
    config = AutomationConfig()
    repo = get_repository(config)

    logs = repo.list_action_logs(rule_id=args.rule_id, limit=args.limit)

    print("\n" + "=" * 60)
    print("ACTION LOGS")
    print("=" * 60)
    for log in logs:
        print(
            f"{log.triggered_at:%Y-%m-%d %H:%M:%S}  {log.rule_name or log.rule_id}  "
            f"{log.action.value}={log.action_value}  [{log.status.value}]"
        )
    print(f"\n{len(logs)} log(s)")
    print("=" * 60)

    return 0


def main(argv=None):
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description='Campaign Automation CLI')
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # init-db command
    init_parser = subparsers.add_parser('init-db', help='Create automation schema')
    init_parser.set_defaults(func=cmd_init_db)

    # sync command
    sync_parser = subparsers.add_parser('sync', help='Fetch metrics and evaluate rules once')
    sync_parser.add_argument('--campaign-id', type=str, help='Campaign identifier (default: META_CAMPAIGN_ID)')
    sync_parser.set_defaults(func=cmd_sync)

    # rules command
    rules_parser = subparsers.add_parser('rules', help='List automation rules')
    rules_parser.set_defaults(func=cmd_rules)

    # logs command
    logs_parser = subparsers.add_parser('logs', help='Show recent action logs')
    logs_parser.add_argument('--rule-id', type=str, help='Filter by rule')
    logs_parser.add_argument('--limit', type=int, default=50, help='Maximum logs to show')
    logs_parser.set_defaults(func=cmd_logs)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except Exception as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
