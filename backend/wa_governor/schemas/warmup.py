"""Pydantic schemas for warmup owner actions and ledger reads."""
from datetime import datetime
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, Field


class ForceCooldownRequest(BaseModel):
    hours: int
    reason: str = Field(..., min_length=1, max_length=500)


class ResumeRequest(BaseModel):
    force: bool = False


class WarmupView(BaseModel):
    connection_id: int
    state: str
    previous_state: Optional[str] = None
    state_changed_at: Optional[datetime] = None
    number_age_days: int
    daily_limit: int
    hourly_limit: int
    sent_today: int = 0
    sent_this_hour: int = 0
    force_cooldown: bool = False
    cooldown_until: Optional[datetime] = None
    cooldown_reason: Optional[str] = None


class BlockedEventRequest(BaseModel):
    severity: Literal["low", "medium", "high", "critical"] = "high"
    reason: Optional[str] = Field(None, max_length=500)


class HighFailureEventRequest(BaseModel):
    failure_rate: float = Field(..., ge=0, le=100)


class WebhookEventResponse(WarmupView):
    transitioned: bool


class SendCapacityResponse(BaseModel):
    connection_id: int
    state: str
    can_send: bool
    errors: List[str] = []
    remaining_today: int
    remaining_hour: int
    wait_seconds: Optional[int] = None


class ResetActionsResponse(BaseModel):
    connection_id: int
    score: Optional[float] = None
    cleared: List[str]
    forced: bool
    warning: Optional[str] = None


class HistoryPage(BaseModel):
    kind: str
    items: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int
    pages: int
