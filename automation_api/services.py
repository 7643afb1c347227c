"""
Service container shared by the API routers
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from automation_core.assistant_tools import AssistantToolkit
from automation_core.cli import get_repository
from automation_core.config import AutomationConfig
from automation_core.repository import AutomationRepository
from ingestors.meta_ads import MetaAdsClient
from scheduler.scheduler import SyncScheduler
from scheduler.sync_service import SyncService

logger = logging.getLogger(__name__)


@dataclass
class AutomationServices:
    """Everything a request handler needs, built once per app"""
    config: AutomationConfig
    repository: AutomationRepository
    sync_service: SyncService
    scheduler: SyncScheduler
    assistant: AssistantToolkit


def build_services(
    config: Optional[AutomationConfig] = None,
    repository: Optional[AutomationRepository] = None,
    metrics_client: Optional[MetaAdsClient] = None
) -> AutomationServices:
    """Wire repository, metrics client, sync service, scheduler and assistant tools"""
    config = config or AutomationConfig()
    repository = repository or get_repository(config)
    sync_service = SyncService(
        repository,
        metrics_client=metrics_client or MetaAdsClient(config),
        config=config
    )
    return AutomationServices(
        config=config,
        repository=repository,
        sync_service=sync_service,
        scheduler=SyncScheduler(sync_service, config),
        assistant=AssistantToolkit(repository, sync_service),
    )


def get_services(request: Request) -> AutomationServices:
    """FastAPI dependency returning the app's service container"""
    return request.app.state.services
