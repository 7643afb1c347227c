"""
Assistant Tool API Routes

Exposes the assistant toolkit through a single tool-call envelope:
    POST /api/v1/assistant/call-tool  {"tool": "get_action_logs", "arguments": {"limit": 5}}
"""
import logging
import time
from typing import Any, Callable, Dict

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError

from automation_core.assistant_tools import AssistantToolkit, DEFAULT_LOG_LIMIT
from automation_api.services import AutomationServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/assistant", tags=["assistant"])


class NoArguments(BaseModel):
    model_config = {"extra": "forbid"}


class ActionLogsArguments(BaseModel):
    limit: int = Field(DEFAULT_LOG_LIMIT, ge=1, le=100, description="Number of recent logs to fetch")

    model_config = {"extra": "forbid"}


class ToolSpec:
    def __init__(self, call: Callable[[AssistantToolkit, BaseModel], Dict[str, Any]],
                 model, description: str):
        self.call = call
        self.model = model
        self.description = description


_TOOL_REGISTRY: Dict[str, ToolSpec] = {
    "get_campaign_data": ToolSpec(
        call=lambda toolkit, args: toolkit.get_campaign_data(),
        model=NoArguments,
        description="Get the latest campaign performance data including spend, clicks, reach, impressions, and other metrics"
    ),
    "get_automation_rules": ToolSpec(
        call=lambda toolkit, args: toolkit.get_automation_rules(),
        model=NoArguments,
        description="Get all automation rules with their conditions and actions"
    ),
    "get_action_logs": ToolSpec(
        call=lambda toolkit, args: toolkit.get_action_logs(limit=args.limit),
        model=ActionLogsArguments,
        description="Get recent action logs showing when automation rules were triggered"
    ),
    "sync_campaign_data": ToolSpec(
        call=lambda toolkit, args: toolkit.sync_campaign_data(),
        model=NoArguments,
        description="Manually trigger a campaign data sync from the Meta Ads API"
    ),
}


@router.get("/tools")
async def list_tools():
    """Available tools sorted by name, with parameter schemas."""
    return {
        "tools": [
            {
                "name": name,
                "description": _TOOL_REGISTRY[name].description,
                "parameters": _TOOL_REGISTRY[name].model.model_json_schema().get("properties", {}),
            }
            for name in sorted(_TOOL_REGISTRY)
        ]
    }


@router.post("/call-tool")
def call_tool(
    payload: Dict[str, Any] = Body(...),
    services: AutomationServices = Depends(get_services)
):
    """Invoke a tool with {"tool": name, "arguments": {...}}."""
    tool_name = payload.get("tool")
    arguments = payload.get("arguments") or {}
    if not tool_name:
        raise HTTPException(status_code=422, detail={"error": "Missing 'tool' in request"})

    spec = _TOOL_REGISTRY.get(tool_name)
    if not spec:
        raise HTTPException(status_code=404, detail={"error": f"Unknown tool: {tool_name}"})

    try:
        args = spec.model(**arguments)
    except ValidationError as ve:
        errors = [
            {
                "loc": ["arguments"] + list(err["loc"]),
                "msg": err["msg"],
                "type": err["type"]
            }
            for err in ve.errors()
        ]
        raise HTTPException(status_code=422, detail=errors)

    start_ts = time.perf_counter()
    result = spec.call(services.assistant, args)
    duration_ms = int((time.perf_counter() - start_ts) * 1000)

    if "error" in result:
        logger.warning(f"Tool {tool_name} reported an error: {result['error']}")

    return {
        "tool": tool_name,
        "result": result,
        "metadata": {"execution_time_ms": duration_ms}
    }
