"""
Campaign API Routes

Endpoints:
- GET  /api/v1/campaigns/latest          - Latest campaign snapshot
- GET  /api/v1/campaigns/latest/actions  - Latest snapshot with 5 recent action logs
- POST /api/v1/campaigns/sync            - Fetch metrics now and evaluate rules
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from automation_core.models import CampaignSnapshot, CampaignWithActions, SyncResult
from automation_api.services import AutomationServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/campaigns", tags=["campaigns"])


@router.get("/latest", response_model=Optional[CampaignSnapshot])
def get_latest(services: AutomationServices = Depends(get_services)):
    """Most recently synced snapshot, null if none yet."""
    return services.repository.get_latest_campaign()


@router.get("/latest/actions", response_model=Optional[CampaignWithActions])
def get_latest_with_actions(services: AutomationServices = Depends(get_services)):
    return services.repository.get_latest_campaign_with_actions(limit=5)


@router.post("/sync", response_model=SyncResult)
def sync_campaign(services: AutomationServices = Depends(get_services)):
    """Run one sync cycle on this request."""
    try:
        return services.sync_service.sync_campaign_data()
    except Exception as e:
        logger.error(f"Manual sync failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to sync campaign data: {e}")
