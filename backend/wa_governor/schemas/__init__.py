"""Pydantic schemas package."""
from wa_governor.schemas.health import (
    RecalculateRequest, HealthScoreResponse, BatchItemResult, BatchRecalculateResponse,
    QueuedResponse, TrendPoint, TrendResponse, SummaryResponse,
)
from wa_governor.schemas.warmup import (
    ForceCooldownRequest, ResumeRequest, WarmupView, ResetActionsResponse, HistoryPage,
    BlockedEventRequest, HighFailureEventRequest, WebhookEventResponse, SendCapacityResponse,
)

__all__ = [
    "RecalculateRequest",
    "HealthScoreResponse",
    "BatchItemResult",
    "BatchRecalculateResponse",
    "QueuedResponse",
    "TrendPoint",
    "TrendResponse",
    "SummaryResponse",
    "ForceCooldownRequest",
    "ResumeRequest",
    "WarmupView",
    "ResetActionsResponse",
    "HistoryPage",
    "BlockedEventRequest",
    "HighFailureEventRequest",
    "WebhookEventResponse",
    "SendCapacityResponse",
]
