"""
Scheduler API Routes

Endpoints:
- GET  /api/v1/scheduler/status   - Scheduler status
- POST /api/v1/scheduler/start    - Start the interval job
- POST /api/v1/scheduler/stop     - Stop future runs
- POST /api/v1/scheduler/trigger  - Run one sync now
"""
import logging

from fastapi import APIRouter, Depends

from automation_api.services import AutomationServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/scheduler", tags=["scheduler"])


@router.get("/status")
async def get_status(services: AutomationServices = Depends(get_services)):
    return services.scheduler.status()


@router.post("/start")
async def start_scheduler(services: AutomationServices = Depends(get_services)):
    started = services.scheduler.start()
    return {
        "success": True,
        "message": "Scheduler started" if started else "Scheduler is already running",
        "status": services.scheduler.status(),
    }


@router.post("/stop")
async def stop_scheduler(services: AutomationServices = Depends(get_services)):
    stopped = services.scheduler.stop()
    return {
        "success": True,
        "message": "Scheduler stopped" if stopped else "Scheduler is not running",
        "status": services.scheduler.status(),
    }


@router.post("/trigger")
def trigger_sync(services: AutomationServices = Depends(get_services)):
    """Run a sync now; failures are reported in the body, not as an error status."""
    try:
        result = services.scheduler.trigger_sync()
    except Exception as e:
        logger.error(f"Triggered sync failed: {e}")
        return {"success": False, "error": str(e)}

    return {
        "success": True,
        "executed_actions": result.executed_actions,
        "campaign_id": result.campaign.campaign_id if result.campaign else None,
    }
