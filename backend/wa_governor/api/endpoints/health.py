"""Health governor API endpoints - scores, trends and recalculation."""
from typing import Optional, Union
from fastapi import APIRouter, BackgroundTasks, Depends, Query
import structlog

from wa_governor.api.deps import get_actor, get_governor
from wa_governor.core.exceptions import GovernorError
from wa_governor.schemas.health import (
    RecalculateRequest, HealthScoreResponse, BatchRecalculateResponse, QueuedResponse,
    TrendResponse, SummaryResponse,
)
from wa_governor.services.governor import Governor, Actor
from wa_governor.services.governor.scheduler import get_scheduler_status

logger = structlog.get_logger()

router = APIRouter(prefix="/governor", tags=["Health Governor"])


def _run_recalculation(governor: Governor, connection_id: Optional[int], window: str, triggered_by: str):
    """Queued form of POST /recalculate; same Governor calls as the inline path."""
    try:
        if connection_id is None:
            governor.recalculate_all(window, triggered_by=triggered_by)
        else:
            governor.recalculate(connection_id, window)
    except GovernorError as e:
        logger.warning("Queued recalculation failed", connection_id=connection_id,
                       error=e.code, message=e.message)


@router.get("/summary", response_model=SummaryResponse)
def get_summary(governor: Governor = Depends(get_governor)):
    """Connection counts per status grade plus those below the "good" threshold."""
    return governor.summary()


@router.get("/config")
def get_config(governor: Governor = Depends(get_governor)):
    return governor.get_config()


@router.get("/connections/{connection_id}")
def get_connection(connection_id: int, governor: Governor = Depends(get_governor)):
    """Current score, action flags, warmup state and limits."""
    return governor.connection_detail(connection_id)


@router.get("/connections/{connection_id}/trend", response_model=TrendResponse)
def get_trend(
    connection_id: int,
    days: int = Query(7),
    governor: Governor = Depends(get_governor),
):
    return governor.trend(connection_id, days)


@router.post(
    "/recalculate",
    response_model=Union[HealthScoreResponse, BatchRecalculateResponse, QueuedResponse],
)
def recalculate(
    request: RecalculateRequest,
    background_tasks: BackgroundTasks,
    governor: Governor = Depends(get_governor),
    actor: Actor = Depends(get_actor),
):
    """Recalculate one connection or all active ones, inline or queued."""
    if request.run_async:
        background_tasks.add_task(_run_recalculation, governor, request.connection_id,
                                  request.window, actor.id)
        return QueuedResponse(connection_id=request.connection_id, window=request.window)

    if request.connection_id is None:
        result = governor.recalculate_all(request.window, triggered_by=actor.id)
        return BatchRecalculateResponse.model_validate(result)

    health = governor.recalculate(request.connection_id, request.window)
    return HealthScoreResponse.model_validate(health)


@router.get("/runs")
def list_runs(
    limit: int = Query(20, ge=1, le=100),
    governor: Governor = Depends(get_governor),
):
    """Recent batch runs and scheduler status."""
    return {"runs": governor.recent_runs(limit), "scheduler": get_scheduler_status()}
