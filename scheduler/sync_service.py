"""
Campaign Sync Service

One sync cycle: fetch metrics from the source, persist the snapshot, then run
every active rule against it.

    idle -> fetching -> persisting -> evaluating -> idle
    any working state -> error -> idle

Each cycle gets its own SyncCycle, so a manual sync and a timer-driven sync
never share state.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import List, Optional

from automation_core.config import AutomationConfig
from automation_core.models import (
    CampaignMetrics,
    RuleExecutionResult,
    SyncResult,
)
from automation_core.repository import AutomationRepository
from ingestors.meta_ads import MetaAdsClient
from services.rule_engine import ActionExecutor

logger = logging.getLogger(__name__)


class SyncStateError(Exception):
    """Raised when an invalid sync state transition is attempted."""
    pass


class SyncState(Enum):
    """Sync cycle states."""
    IDLE = "idle"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    EVALUATING = "evaluating"
    ERROR = "error"


class SyncCycle:
    """State machine for a single sync cycle."""

    # Valid state transitions
    VALID_TRANSITIONS = {
        SyncState.IDLE: [SyncState.FETCHING],
        SyncState.FETCHING: [SyncState.PERSISTING, SyncState.ERROR],
        SyncState.PERSISTING: [SyncState.EVALUATING, SyncState.ERROR],
        SyncState.EVALUATING: [SyncState.IDLE, SyncState.ERROR],
        SyncState.ERROR: [SyncState.IDLE],
    }

    def __init__(self):
        self.state = SyncState.IDLE
        self.history: List[SyncState] = [SyncState.IDLE]

    def transition(self, target_state: SyncState) -> None:
        """
        Move to target_state.

        Raises:
            SyncStateError: If the transition is not allowed from the current state
        """
        if target_state not in self.VALID_TRANSITIONS.get(self.state, []):
            raise SyncStateError(
                f"Invalid transition from {self.state.value} to {target_state.value}"
            )
        logger.debug(f"Sync state {self.state.value} -> {target_state.value}")
        self.state = target_state
        self.history.append(target_state)


class SyncService:
    """Fetches, persists and evaluates campaign metrics"""

    def __init__(
        self,
        repository: AutomationRepository,
        metrics_client: Optional[MetaAdsClient] = None,
        config: Optional[AutomationConfig] = None,
        executor: Optional[ActionExecutor] = None
    ):
        self.config = config or AutomationConfig()
        self.repository = repository
        self.metrics_client = metrics_client or MetaAdsClient(self.config)
        self.executor = executor or ActionExecutor(repository)

        self.last_state: SyncState = SyncState.IDLE
        self.last_result: Optional[SyncResult] = None
        self.last_error: Optional[str] = None

    def sync_campaign_data(self, campaign_id: Optional[str] = None) -> SyncResult:
        """
        Run one full sync cycle.

        Errors from the metrics source or the store are logged, the cycle
        passes through the error state back to idle, and the error is re-raised.

        Returns:
            SyncResult with the stored snapshot and number of executed actions
        """
        campaign_id = campaign_id or self.config.meta_campaign_id
        cycle = SyncCycle()
        started_at = datetime.utcnow()

        logger.info("=" * 60)
        logger.info(f"Starting campaign sync for {campaign_id}")
        logger.info("=" * 60)

        try:
            cycle.transition(SyncState.FETCHING)
            self.last_state = cycle.state
            snapshot = self.metrics_client.fetch_campaign_metrics(campaign_id)

            cycle.transition(SyncState.PERSISTING)
            self.last_state = cycle.state
            campaign = self.repository.upsert_campaign(snapshot)
            logger.info(f"Campaign snapshot stored for {campaign.campaign_id}")

            cycle.transition(SyncState.EVALUATING)
            self.last_state = cycle.state
            logs = self.executor.check_and_execute_rules(campaign, campaign.campaign_id)

            cycle.transition(SyncState.IDLE)
            self.last_state = cycle.state

        except Exception as e:
            cycle.transition(SyncState.ERROR)
            logger.error(f"Campaign sync failed: {e}")
            self.last_error = str(e)
            cycle.transition(SyncState.IDLE)
            self.last_state = cycle.state
            self.last_result = SyncResult(
                success=False,
                started_at=started_at,
                completed_at=datetime.utcnow(),
            )
            raise

        result = SyncResult(
            success=True,
            campaign=campaign,
            executed_actions=len(logs),
            action_logs=logs,
            started_at=started_at,
            completed_at=datetime.utcnow(),
        )
        self.last_result = result
        self.last_error = None

        logger.info(f"Campaign sync complete: {result.executed_actions} actions executed")
        return result

    def execute_rules(
        self,
        metrics: Optional[CampaignMetrics] = None,
        campaign_id: Optional[str] = None
    ) -> RuleExecutionResult:
        """
        Run active rules without fetching.

        Args:
            metrics: Synthetic metrics to evaluate against; the latest stored
                snapshot is used when omitted
            campaign_id: Campaign the logs are recorded against; defaults to
                the latest stored campaign, then the configured campaign

        Raises:
            LookupError: No metrics given and no snapshot stored yet
        """
        latest = self.repository.get_latest_campaign()

        if metrics is None:
            if latest is None:
                raise LookupError("No campaign data found. Please sync campaign data first.")
            metrics = latest

        if campaign_id is None:
            campaign_id = latest.campaign_id if latest else self.config.meta_campaign_id

        logger.info(f"Manual rule execution for campaign {campaign_id}")
        logs = self.executor.check_and_execute_rules(metrics, campaign_id)

        return RuleExecutionResult(
            success=True,
            campaign_id=campaign_id,
            executed_actions=len(logs),
            action_logs=logs,
        )
