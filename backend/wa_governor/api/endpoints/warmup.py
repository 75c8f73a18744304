"""Warmup owner actions, provider events, send capacity and ledger history."""
from typing import Literal
from fastapi import APIRouter, Depends, Query

from wa_governor.api.deps import get_actor, get_governor
from wa_governor.schemas.warmup import (
    ForceCooldownRequest, ResumeRequest, WarmupView, ResetActionsResponse, HistoryPage,
    BlockedEventRequest, HighFailureEventRequest, WebhookEventResponse, SendCapacityResponse,
)
from wa_governor.services.governor import Governor, Actor

router = APIRouter(prefix="/governor/connections", tags=["Warmup"])


@router.post("/{connection_id}/force-cooldown", response_model=WarmupView)
def force_cooldown(
    connection_id: int,
    request: ForceCooldownRequest,
    governor: Governor = Depends(get_governor),
    actor: Actor = Depends(get_actor),
):
    return governor.force_cooldown(connection_id, actor, request.hours, request.reason)


@router.post("/{connection_id}/resume", response_model=WarmupView)
def resume(
    connection_id: int,
    request: ResumeRequest = ResumeRequest(),
    governor: Governor = Depends(get_governor),
    actor: Actor = Depends(get_actor),
):
    """Resume a cooldown/suspended number. ``force`` bypasses the score gate."""
    return governor.resume(connection_id, actor, force=request.force)


@router.post("/{connection_id}/reset-actions", response_model=ResetActionsResponse)
def reset_actions(
    connection_id: int,
    governor: Governor = Depends(get_governor),
    actor: Actor = Depends(get_actor),
):
    return governor.reset_actions(connection_id, actor)


@router.post("/{connection_id}/force-reset-actions", response_model=ResetActionsResponse)
def force_reset_actions(
    connection_id: int,
    governor: Governor = Depends(get_governor),
    actor: Actor = Depends(get_actor),
):
    """Emergency override. Actions may re-apply on the next recalculation."""
    return governor.force_reset_actions(connection_id, actor)


@router.get("/{connection_id}/history/{kind}", response_model=HistoryPage)
def get_history(
    connection_id: int,
    kind: Literal["states", "limits", "blocks"],
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    governor: Governor = Depends(get_governor),
):
    return governor.history(connection_id, kind, page, page_size)


@router.get("/{connection_id}/send-capacity", response_model=SendCapacityResponse)
def send_capacity(
    connection_id: int,
    count: int = Query(1, ge=1),
    governor: Governor = Depends(get_governor),
):
    """Can ``count`` more messages go out now, and if not, how long to wait."""
    return governor.validate_send(connection_id, count)


@router.post("/{connection_id}/events/blocked", response_model=WebhookEventResponse)
def blocked_event(
    connection_id: int,
    request: BlockedEventRequest,
    governor: Governor = Depends(get_governor),
):
    """Provider block notification."""
    return governor.handle_blocked_event(connection_id, request.severity, request.reason)


@router.post("/{connection_id}/events/high-failure", response_model=WebhookEventResponse)
def high_failure_event(
    connection_id: int,
    request: HighFailureEventRequest,
    governor: Governor = Depends(get_governor),
):
    return governor.handle_high_failure_event(connection_id, request.failure_rate)
