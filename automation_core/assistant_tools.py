"""
Assistant tools

Read and sync operations exposed to the conversational assistant. Every tool
returns a plain dict; failures come back as an ``error`` field, never raised.
"""
import logging
from typing import Any, Dict

from automation_core.repository import AutomationRepository

logger = logging.getLogger(__name__)

DEFAULT_LOG_LIMIT = 10


def _value(item: Any) -> Any:
    return getattr(item, 'value', item)


class AssistantToolkit:
    """Tools backed by the repository and the sync service"""

    def __init__(self, repository: AutomationRepository, sync_service):
        self.repository = repository
        self.sync_service = sync_service

    def get_campaign_data(self) -> Dict[str, Any]:
        """Latest campaign performance data"""
        try:
            campaign = self.repository.get_latest_campaign()
            if campaign is None:
                return {
                    'error': "No campaign data found. Please sync campaign data first.",
                    'last_synced': None,
                }

            data = {'campaign_id': campaign.campaign_id, 'name': campaign.name}
            data.update(campaign.metrics_dict())
            data['last_synced'] = campaign.synced_at.isoformat()
            return data

        except Exception as e:
            logger.error(f"get_campaign_data failed: {e}")
            return {'error': "Failed to fetch campaign data", 'details': str(e)}

    def get_automation_rules(self) -> Dict[str, Any]:
        """All rules with conditions and their five most recent actions"""
        try:
            rules = []
            for rule in self.repository.list_rules():
                recent = self.repository.list_action_logs(rule_id=rule.id, limit=5)
                rules.append({
                    'id': rule.id,
                    'name': rule.name,
                    'description': rule.description,
                    'is_active': rule.is_active,
                    'action': rule.action.value,
                    'action_value': rule.action_value,
                    'trigger_count': rule.trigger_count,
                    'last_triggered': rule.last_triggered.isoformat() if rule.last_triggered else None,
                    'condition_groups': [
                        {
                            'operator': _value(group.operator),
                            'conditions': [
                                {
                                    'metric': _value(condition.metric),
                                    'operator': _value(condition.operator),
                                    'threshold': condition.threshold,
                                }
                                for condition in group.conditions
                            ],
                        }
                        for group in rule.condition_groups
                    ],
                    'recent_actions': [
                        {
                            'action': log.action.value,
                            'status': log.status.value,
                            'triggered_at': log.triggered_at.isoformat(),
                        }
                        for log in recent
                    ],
                })
            return {'rules': rules}

        except Exception as e:
            logger.error(f"get_automation_rules failed: {e}")
            return {'error': "Failed to fetch automation rules", 'details': str(e)}

    def get_action_logs(self, limit: int = DEFAULT_LOG_LIMIT) -> Dict[str, Any]:
        """Most recent action logs"""
        try:
            logs = self.repository.list_action_logs(limit=limit)
            return {
                'logs': [
                    {
                        'id': log.id,
                        'rule_name': log.rule_name,
                        'action': log.action.value,
                        'action_value': log.action_value,
                        'status': log.status.value,
                        'campaign_name': log.campaign_name,
                        'triggered_at': log.triggered_at.isoformat(),
                        'completed_at': log.completed_at.isoformat() if log.completed_at else None,
                        'metrics': {
                            'spend': log.metrics.spend,
                            'clicks': log.metrics.clicks,
                            'reach': log.metrics.reach,
                            'impressions': log.metrics.impressions,
                            'ctr': log.metrics.ctr,
                            'cpc': log.metrics.cpc,
                        },
                    }
                    for log in logs
                ]
            }

        except Exception as e:
            logger.error(f"get_action_logs failed: {e}")
            return {'error': "Failed to fetch action logs", 'details': str(e)}

    def sync_campaign_data(self) -> Dict[str, Any]:
        """Trigger a manual campaign sync"""
        try:
            result = self.sync_service.sync_campaign_data()
            return {
                'success': result.success,
                'message': "Campaign data synced successfully",
                'executed_actions': result.executed_actions,
            }

        except Exception as e:
            logger.error(f"sync_campaign_data failed: {e}")
            return {
                'success': False,
                'error': "Failed to sync campaign data",
                'details': str(e),
            }
