"""Structured payloads returned by the AI, validated before anything touches the database."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class AIPayload(BaseModel):
    """Accepts camelCase keys from the model and snake_case from our own code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _lenient_datetime(value: Any) -> Optional[Any]:
    if value in (None, "", "null"):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


class LeadFields(AIPayload):
    contacted: Optional[bool] = None
    replied: Optional[bool] = None
    interested: Optional[bool] = None
    status: Optional[str] = None
    next_step: Optional[str] = None
    next_followup: Optional[datetime] = None
    notes: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("next_followup", mode="before")
    @classmethod
    def parse_followup(cls, value):
        return _lenient_datetime(value)


class SalesSuggestion(AIPayload):
    type: Optional[str] = None
    suggestion: str = ""
    reason: Optional[str] = None
    priority: Optional[str] = None


class LeadUpdate(AIPayload):
    action: Literal["create", "update", "view", "query", "delete", "summary", "conversation"]
    contextual_opening: Optional[str] = None
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    updates: LeadFields = Field(default_factory=LeadFields)
    suggestions: list[SalesSuggestion] = Field(default_factory=list)
    sales_wisdom: Optional[str] = None
    smart_advice: list[str] = Field(default_factory=list)

    @field_validator("updates", mode="before")
    @classmethod
    def default_updates(cls, value):
        return value if value is not None else {}

    @field_validator("suggestions", "smart_advice", mode="before")
    @classmethod
    def default_lists(cls, value):
        return value if value is not None else []


class TransactionFields(AIPayload):
    id: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[float] = None
    category: Optional[str] = None
    babylon_principle: Optional[str] = None
    date: Optional[datetime] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value):
        return _lenient_datetime(value)


class AccountFields(AIPayload):
    id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    current_balance: Optional[float] = None
    target_amount: Optional[float] = None


class FinanceSuggestion(AIPayload):
    action: str = ""
    reason: Optional[str] = None


class FinanceUpdate(AIPayload):
    action: Literal[
        "add_transaction",
        "update_account",
        "check_goal",
        "summary",
        "delete_transaction",
        "delete_account",
        "timeline",
        "edit_transaction",
        "conversation",
    ]
    contextual_opening: Optional[str] = None
    transaction: Optional[TransactionFields] = None
    account: Optional[AccountFields] = None
    babylon_wisdom: Optional[str] = None
    suggestions: list[FinanceSuggestion] = Field(default_factory=list)
    smart_advice: list[str] = Field(default_factory=list)
    grouping: Literal["week", "month"] = "week"

    @field_validator("suggestions", "smart_advice", mode="before")
    @classmethod
    def default_lists(cls, value):
        return value if value is not None else []

    @field_validator("grouping", mode="before")
    @classmethod
    def default_grouping(cls, value):
        return value if value in ("week", "month") else "week"


class DuplicateDetection(AIPayload):
    result: Literal["DUPLICATE", "UNIQUE"]
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = ""
    matched_lead: Optional[str] = None
    matched_transaction: Optional[str] = None

    @field_validator("result", mode="before")
    @classmethod
    def normalise_result(cls, value):
        return value.strip().upper() if isinstance(value, str) else value


class ProgressDetection(AIPayload):
    is_progress_request: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""


class Recommendation(AIPayload):
    action: str
    priority: str = "medium"
    reason: str = ""
    expected_impact: str = ""


class Trends(AIPayload):
    positive: list[str] = Field(default_factory=list)
    concerning: list[str] = Field(default_factory=list)
    neutral: list[str] = Field(default_factory=list)


class ProgressReport(AIPayload):
    type: Literal["sales", "finance"]
    summary: str
    metrics: dict[str, Any] = Field(default_factory=dict)
    insights: list[str] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    trends: Trends = Field(default_factory=Trends)
    next_steps: list[str] = Field(default_factory=list)


class SetupAction(AIPayload):
    action: Literal["set_username", "set_name", "set_notifications"]
    value: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ToolCall(AIPayload):
    tool: Literal["sales", "finance"]


class RouterReply(AIPayload):
    response: str = ""
    context: Literal["general", "sales", "finance"] = "general"
    setup_actions: list[SetupAction] = Field(default_factory=list)
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @field_validator("context", mode="before")
    @classmethod
    def default_context(cls, value):
        return value if value in ("general", "sales", "finance") else "general"

    @field_validator("setup_actions", "tool_calls", mode="before")
    @classmethod
    def default_lists(cls, value):
        return value if value is not None else []

    @field_validator("response", mode="before")
    @classmethod
    def default_response(cls, value):
        return value if value is not None else ""
