"""
Meta Ads Insights Client

Fetches campaign insights from the Meta Ads API proxy and turns them into
CampaignSnapshot models.

The upstream returns every metric as a string, e.g.:
    {"data": [{"spend": "1523.40", "clicks": "812", "ctr": "1.92", ...}]}

Example:
    client = MetaAdsClient(config)
    snapshot = client.fetch_campaign_metrics()
"""
import logging
import math
from datetime import datetime
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from automation_core.config import AutomationConfig
from automation_core.models import CampaignSnapshot, Metric

logger = logging.getLogger(__name__)

INSIGHT_FIELDS = [
    'inline_link_clicks',
    'cost_per_inline_link_click',
    'reach',
    'frequency',
    'cpc',
    'spend',
    'clicks',
    'impressions',
    'ctr',
]

INTEGER_METRICS = {
    Metric.CLICKS,
    Metric.REACH,
    Metric.IMPRESSIONS,
    Metric.INLINE_LINK_CLICKS,
}


class MetricsSourceError(Exception):
    """The metrics source failed or returned unusable data"""


class MetricsConfigurationError(MetricsSourceError):
    """The metrics source is not configured (missing API token)"""


def _parse_number(metric: Metric, raw: Any) -> Any:
    text = "0" if raw is None else str(raw).strip()
    try:
        value = float(text)
    except ValueError:
        raise MetricsSourceError(f"Invalid value for {metric.value}: {raw!r}")

    if not math.isfinite(value):
        raise MetricsSourceError(f"Invalid value for {metric.value}: {raw!r}")

    if metric in INTEGER_METRICS:
        return int(value)
    return value


def parse_insights(
    payload: Any,
    campaign_id: str,
    name: str = "Meta Ads Campaign"
) -> CampaignSnapshot:
    """
    Build a snapshot from an insights response body.

    Args:
        payload: Decoded JSON body; ``data`` may be a list (first entry is
            used) or a single object
        campaign_id: External campaign identifier
        name: Display name stored with the snapshot

    Returns:
        CampaignSnapshot with synced_at set to now

    Raises:
        MetricsSourceError: No data in the body or a value is not a valid number
    """
    data = payload.get('data') if isinstance(payload, dict) else payload
    insights = data[0] if isinstance(data, list) and data else data

    if not insights or not isinstance(insights, dict):
        raise MetricsSourceError("No campaign data found in response")

    values = {
        metric.value: _parse_number(metric, insights.get(metric.value))
        for metric in Metric
    }

    try:
        return CampaignSnapshot(
            campaign_id=campaign_id,
            name=name,
            synced_at=datetime.utcnow(),
            **values
        )
    except ValidationError as e:
        raise MetricsSourceError(f"Invalid campaign metrics: {e}")


class MetaAdsClient:
    """
    Client for the Meta Ads insights endpoint

    One GET per campaign, bearer-token authenticated.
    """

    def __init__(self, config: Optional[AutomationConfig] = None):
        self.config = config or AutomationConfig()
        self.base_url = self.config.meta_api_base_url.rstrip('/')
        self.timeout = self.config.meta_api_timeout

    def insights_url(self, campaign_id: str) -> str:
        return f"{self.base_url}/{campaign_id}/insights"

    def fetch_insights(self, campaign_id: str) -> Dict[str, Any]:
        """
        Fetch the raw insights body for one campaign.

        Raises:
            MetricsConfigurationError: META_API_TOKEN is not set
            MetricsSourceError: Network failure, non-2xx status or non-JSON body
        """
        token = self.config.meta_api_token
        if not token:
            raise MetricsConfigurationError(
                "Meta API token not configured. Set META_API_TOKEN in your .env file."
            )

        url = self.insights_url(campaign_id)
        headers = {
            'Content-Type': 'application/json',
            'Authorization': f'Bearer {token}',
        }
        params = {'fields': ','.join(INSIGHT_FIELDS)}

        try:
            response = requests.get(url, headers=headers, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Request to metrics source failed: {e}")
            raise MetricsSourceError(f"Failed to fetch campaign data: {e}")

        if not response.ok:
            raise MetricsSourceError(
                f"Failed to fetch campaign data: {response.status_code} {response.reason} - {response.text}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise MetricsSourceError(f"Invalid JSON from metrics source: {e}")

        logger.debug(f"Insights response for {campaign_id}: {body}")
        return body

    def fetch_campaign_metrics(
        self,
        campaign_id: Optional[str] = None,
        name: Optional[str] = None
    ) -> CampaignSnapshot:
        """Fetch and parse the current metrics for a campaign"""
        campaign_id = campaign_id or self.config.meta_campaign_id
        name = name or self.config.meta_campaign_name

        body = self.fetch_insights(campaign_id)
        snapshot = parse_insights(body, campaign_id, name)
        logger.info(
            f"Fetched metrics for campaign {campaign_id}: "
            f"spend={snapshot.spend}, clicks={snapshot.clicks}, ctr={snapshot.ctr}"
        )
        return snapshot
