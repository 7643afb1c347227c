"""
Meta Ads Insights Ingestor Module
"""

from .meta_ads_client import (
    MetaAdsClient,
    MetricsConfigurationError,
    MetricsSourceError,
    parse_insights,
)

__all__ = [
    'MetaAdsClient',
    'MetricsConfigurationError',
    'MetricsSourceError',
    'parse_insights',
]
