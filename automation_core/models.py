"""
Pydantic models for the campaign automation engine
Defines snapshots, rules, condition groups, conditions and action logs
"""
import logging
import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class Metric(str, Enum):
    """Campaign metric a condition can compare"""
    SPEND = "spend"
    CLICKS = "clicks"
    REACH = "reach"
    IMPRESSIONS = "impressions"
    INLINE_LINK_CLICKS = "inline_link_clicks"
    COST_PER_INLINE_LINK_CLICK = "cost_per_inline_link_click"
    FREQUENCY = "frequency"
    CPC = "cpc"
    CTR = "ctr"


class ComparisonOperator(str, Enum):
    """Comparison applied between a metric value and a threshold"""
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    GTE = "gte"
    LTE = "lte"


class GroupOperator(str, Enum):
    """How conditions inside one group are combined"""
    AND = "AND"
    OR = "OR"


class ActionType(str, Enum):
    """Action fired when a rule triggers"""
    PAUSE_CAMPAIGN = "pause_campaign"
    INCREASE_BUDGET = "increase_budget"
    DECREASE_BUDGET = "decrease_budget"
    SEND_NOTIFICATION = "send_notification"


class ActionStatus(str, Enum):
    """Outcome of an action execution attempt"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# May only succeed once per (rule, campaign)
NON_REPEATABLE_ACTIONS = frozenset({
    ActionType.PAUSE_CAMPAIGN,
    ActionType.INCREASE_BUDGET,
    ActionType.DECREASE_BUDGET,
})

DEFAULT_ACTION_VALUE = "default"

AVAILABLE_METRICS = [
    {"value": Metric.SPEND.value, "label": "Spend", "unit": "USD"},
    {"value": Metric.CLICKS.value, "label": "Clicks", "unit": "count"},
    {"value": Metric.REACH.value, "label": "Reach", "unit": "count"},
    {"value": Metric.IMPRESSIONS.value, "label": "Impressions", "unit": "count"},
    {"value": Metric.INLINE_LINK_CLICKS.value, "label": "Link Clicks", "unit": "count"},
    {"value": Metric.COST_PER_INLINE_LINK_CLICK.value, "label": "Cost per Link Click", "unit": "USD"},
    {"value": Metric.FREQUENCY.value, "label": "Frequency", "unit": "count"},
    {"value": Metric.CPC.value, "label": "Cost per Click", "unit": "USD"},
    {"value": Metric.CTR.value, "label": "Click-through Rate", "unit": "%"},
]

AVAILABLE_ACTIONS = [
    {"value": ActionType.PAUSE_CAMPAIGN.value, "label": "Pause Campaign"},
    {"value": ActionType.INCREASE_BUDGET.value, "label": "Increase Budget"},
    {"value": ActionType.DECREASE_BUDGET.value, "label": "Decrease Budget"},
    {"value": ActionType.SEND_NOTIFICATION.value, "label": "Send Notification"},
]


class CampaignMetrics(BaseModel):
    """The nine metric values of one campaign reading"""
    spend: float = Field(0.0, ge=0)
    clicks: int = Field(0, ge=0)
    reach: int = Field(0, ge=0)
    impressions: int = Field(0, ge=0)
    inline_link_clicks: int = Field(0, ge=0)
    cost_per_inline_link_click: float = Field(0.0, ge=0)
    frequency: float = Field(0.0, ge=0)
    cpc: float = Field(0.0, ge=0)
    ctr: float = Field(0.0, ge=0)

    def value_of(self, metric: Metric) -> Union[int, float]:
        """Return the value recorded for a metric"""
        return getattr(self, metric.value)

    def metrics_dict(self) -> Dict[str, Union[int, float]]:
        """Only the metric values, keyed by metric name"""
        return {metric.value: self.value_of(metric) for metric in Metric}

    def to_metrics(self) -> 'CampaignMetrics':
        """Copy of just the metric values (drops identity fields on subclasses)"""
        return CampaignMetrics(**self.metrics_dict())


class CampaignSnapshot(CampaignMetrics):
    """Most recent stored reading for one campaign identifier"""
    id: Optional[str] = None
    campaign_id: str = Field(..., min_length=1)
    name: str = "Meta Ads Campaign"
    synced_at: datetime = Field(default_factory=datetime.utcnow)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================================================
# CONDITIONS
# ============================================================================

class ConditionCreate(BaseModel):
    """One comparison supplied by a caller"""
    metric: Metric
    operator: ComparisonOperator
    threshold: float

    @field_validator('threshold')
    @classmethod
    def threshold_must_be_finite(cls, value: float) -> float:
        if math.isnan(value) or math.isinf(value):
            raise ValueError("Threshold must be a finite number")
        return value


class Condition(BaseModel):
    """
    Stored comparison

    metric/operator hold the enum members for anything created through
    ConditionCreate. Rows read back from storage with an unrecognized value
    keep the raw string (see Condition.from_storage) and never match.
    """
    id: Optional[str] = None
    group_id: Optional[str] = None
    metric: Union[Metric, str]
    operator: Union[ComparisonOperator, str]
    threshold: float
    order: int = 0

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> 'Condition':
        """Build a condition from stored data, tolerating unknown enum values"""
        try:
            return cls(
                id=data.get('id'),
                group_id=data.get('group_id'),
                metric=Metric(data['metric']),
                operator=ComparisonOperator(data['operator']),
                threshold=float(data['threshold']),
                order=data.get('order', data.get('sort_order', 0)) or 0,
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Stored condition {data.get('id')} is malformed ({e}); it will never match")
            return cls.model_construct(
                id=data.get('id'),
                group_id=data.get('group_id'),
                metric=data.get('metric'),
                operator=data.get('operator'),
                threshold=data.get('threshold'),
                order=data.get('order', data.get('sort_order', 0)) or 0,
            )


class ConditionGroupCreate(BaseModel):
    """Conditions combined by one operator"""
    operator: GroupOperator = GroupOperator.AND
    conditions: List[ConditionCreate] = Field(..., min_length=1)


class ConditionGroup(BaseModel):
    """Stored condition group"""
    id: Optional[str] = None
    rule_id: Optional[str] = None
    operator: Union[GroupOperator, str] = GroupOperator.AND
    order: int = 0
    conditions: List[Condition] = Field(default_factory=list)


# ============================================================================
# RULES
# ============================================================================

class RuleBase(BaseModel):
    """Fields shared by rule creation and stored rules"""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    action: ActionType
    action_value: Optional[str] = None

    @field_validator('name')
    @classmethod
    def name_must_not_be_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Rule name is required")
        return value.strip()


class RuleCreate(RuleBase):
    """Data for creating a new rule"""
    is_active: bool = True
    condition_groups: List[ConditionGroupCreate] = Field(..., min_length=1)


class RuleUpdate(BaseModel):
    """Partial rule update; condition_groups replaces all groups when given"""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    action: Optional[ActionType] = None
    action_value: Optional[str] = None
    is_active: Optional[bool] = None
    condition_groups: Optional[List[ConditionGroupCreate]] = Field(None, min_length=1)

    model_config = {"extra": "forbid"}

    @field_validator('name')
    @classmethod
    def name_must_not_be_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("Rule name is required")
        return value.strip() if value is not None else value


class AutomationRule(RuleBase):
    """Complete rule with its condition groups and trigger counters"""
    id: str
    is_active: bool = True
    trigger_count: int = Field(0, ge=0)
    last_triggered: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    condition_groups: List[ConditionGroup] = Field(default_factory=list)
    action_log_count: Optional[int] = None


# ============================================================================
# ACTION LOGS
# ============================================================================

class ActionLog(BaseModel):
    """Immutable record of one action execution attempt"""
    id: Optional[str] = None
    rule_id: str
    campaign_id: str
    action: ActionType
    action_value: str = DEFAULT_ACTION_VALUE
    status: ActionStatus = ActionStatus.SUCCESS
    metrics: CampaignMetrics
    triggered_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    # Joined for display, not stored on the log row
    rule_name: Optional[str] = None
    campaign_name: Optional[str] = None

    model_config = {"frozen": True}


class RuleWithLogs(AutomationRule):
    """Rule plus its most recent action logs"""
    recent_actions: List[ActionLog] = Field(default_factory=list)


class CampaignWithActions(CampaignSnapshot):
    """Latest snapshot plus the most recent action logs against it"""
    action_logs: List[ActionLog] = Field(default_factory=list)


# ============================================================================
# RESULTS
# ============================================================================

class SyncResult(BaseModel):
    """Summary of one sync cycle"""
    success: bool
    campaign: Optional[CampaignSnapshot] = None
    executed_actions: int = 0
    action_logs: List[ActionLog] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class RuleExecutionResult(BaseModel):
    """Summary of a manual rule execution"""
    success: bool = True
    campaign_id: str
    executed_actions: int = 0
    action_logs: List[ActionLog] = Field(default_factory=list)

