"""Pydantic schemas for health scores and recalculation."""
from datetime import datetime
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, ConfigDict, Field


class RecalculateRequest(BaseModel):
    """Recalculate one connection, or every active one when connection_id is null."""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: Optional[int] = None
    window: Literal["24h", "7d", "30d"] = "24h"
    run_async: bool = Field(False, alias="async")


class HealthScoreResponse(BaseModel):
    """Current health score of a connection."""
    model_config = ConfigDict(from_attributes=True)

    connection_id: int
    score: float
    status: str
    previous_status: Optional[str] = None
    delivery_rate: float
    failure_rate: float
    block_rate: float
    report_rate: float
    delivery_score: float
    failure_score: float
    user_signal_score: float
    pattern_score: float
    template_mix_score: float
    total_sent: int
    total_delivered: int
    total_failed: int
    total_read: int
    send_spike_factor: float
    unique_templates_used: Optional[int] = None
    calculation_window: str
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    batch_size_reduced: bool
    delay_added: bool
    campaign_paused: bool
    warmup_paused: bool
    reconnect_blocked: bool
    calculated_at: datetime


class BatchItemResult(BaseModel):
    connection_id: int
    success: bool
    score: Optional[float] = None
    status: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None


class BatchRecalculateResponse(BaseModel):
    run_id: int
    window: str
    total: int
    succeeded: int
    failed: int
    errors: Dict[str, int] = {}
    results: List[BatchItemResult]


class QueuedResponse(BaseModel):
    queued: bool = True
    connection_id: Optional[int] = None
    window: str


class TrendPoint(BaseModel):
    recorded_at: datetime
    score: float
    status: str
    grade: str


class TrendResponse(BaseModel):
    connection_id: int
    days: int
    direction: Literal["improving", "declining", "flat"]
    change: float
    points: List[TrendPoint]


class SummaryResponse(BaseModel):
    total_connections: int
    average_score: Optional[float] = None
    by_status: Dict[str, int]
    by_warmup_state: Dict[str, int]
    needs_attention: List[Dict[str, Any]]
