"""
Automation Rule API Routes
==========================
API endpoints for managing automation rules and running them manually.

Endpoints:
- GET    /api/v1/automation/rules              - List rules (newest first)
- GET    /api/v1/automation/rules/{rule_id}    - Rule with its 10 most recent action logs
- POST   /api/v1/automation/rules              - Create a rule
- PATCH  /api/v1/automation/rules/{rule_id}    - Update a rule
- DELETE /api/v1/automation/rules/{rule_id}    - Delete a rule
- POST   /api/v1/automation/rules/{rule_id}/toggle - Activate/deactivate a rule
- GET    /api/v1/automation/action-logs        - Recent action logs
- POST   /api/v1/automation/execute            - Run active rules now
- GET    /api/v1/automation/metrics            - Metrics available to conditions
- GET    /api/v1/automation/actions            - Available actions
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from automation_core.models import (
    AVAILABLE_ACTIONS,
    AVAILABLE_METRICS,
    ActionLog,
    AutomationRule,
    CampaignMetrics,
    RuleCreate,
    RuleExecutionResult,
    RuleUpdate,
    RuleWithLogs,
)
from automation_core.repository import RuleNotFoundError
from automation_api.services import AutomationServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/automation", tags=["automation"])


# ============================================================================
# REQUEST MODELS
# ============================================================================

class ToggleRequest(BaseModel):
    """Request model for toggling a rule."""
    is_active: bool


class ExecuteRulesRequest(BaseModel):
    """Request model for a manual rule run."""
    metrics: Optional[CampaignMetrics] = Field(
        None, description="Synthetic metrics; the latest stored snapshot is used when omitted"
    )
    campaign_id: Optional[str] = Field(None, min_length=1)


# ============================================================================
# RULES
# ============================================================================

@router.get("/rules", response_model=List[AutomationRule])
def list_rules(services: AutomationServices = Depends(get_services)):
    """List all rules, newest first, with action log counts."""
    return services.repository.list_rules()


@router.get("/rules/{rule_id}", response_model=RuleWithLogs)
def get_rule(
    rule_id: str = Path(..., description="Rule ID"),
    services: AutomationServices = Depends(get_services)
):
    """Get one rule with its most recent action logs."""
    rule = services.repository.get_rule(rule_id, recent_actions=10)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Rule not found: {rule_id}")
    return rule


@router.post("/rules", response_model=AutomationRule, status_code=201)
def create_rule(
    rule: RuleCreate,
    services: AutomationServices = Depends(get_services)
):
    """Create a rule with its condition groups."""
    created = services.repository.create_rule(rule, created_by=services.config.default_rule_owner)
    logger.info(f"Rule created via API: {created.id}")
    return created


@router.patch("/rules/{rule_id}", response_model=AutomationRule)
def update_rule(
    update: RuleUpdate,
    rule_id: str = Path(..., description="Rule ID"),
    services: AutomationServices = Depends(get_services)
):
    """Update a rule; condition_groups replaces all existing groups."""
    try:
        return services.repository.update_rule(rule_id, update)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/rules/{rule_id}")
def delete_rule(
    rule_id: str = Path(..., description="Rule ID"),
    services: AutomationServices = Depends(get_services)
):
    """Delete a rule with its conditions and action logs."""
    try:
        services.repository.delete_rule(rule_id)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "rule_id": rule_id}


@router.post("/rules/{rule_id}/toggle", response_model=AutomationRule)
def toggle_rule(
    request: ToggleRequest,
    rule_id: str = Path(..., description="Rule ID"),
    services: AutomationServices = Depends(get_services)
):
    """Activate or deactivate a rule."""
    try:
        return services.repository.set_rule_active(rule_id, request.is_active)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ============================================================================
# ACTION LOGS & EXECUTION
# ============================================================================

@router.get("/action-logs", response_model=List[ActionLog])
def list_action_logs(
    rule_id: Optional[str] = Query(None, description="Filter by rule"),
    limit: int = Query(50, ge=1, le=100, description="Maximum logs to return"),
    services: AutomationServices = Depends(get_services)
):
    """Recent action logs, newest first."""
    return services.repository.list_action_logs(rule_id=rule_id, limit=limit)


@router.post("/execute", response_model=RuleExecutionResult)
def execute_rules(
    request: Optional[ExecuteRulesRequest] = None,
    services: AutomationServices = Depends(get_services)
):
    """Run all active rules against synthetic metrics or the latest snapshot."""
    request = request or ExecuteRulesRequest()
    try:
        return services.sync_service.execute_rules(
            metrics=request.metrics,
            campaign_id=request.campaign_id
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Manual rule execution failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to execute rules: {e}")


# ============================================================================
# METADATA
# ============================================================================

@router.get("/metrics")
async def available_metrics() -> List[Dict[str, Any]]:
    """Metrics a condition can compare."""
    return AVAILABLE_METRICS


@router.get("/actions")
async def available_actions() -> List[Dict[str, Any]]:
    """Actions a rule can fire."""
    return AVAILABLE_ACTIONS
