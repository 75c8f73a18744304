"""History/Event Ledger - append-only audit records for warmup and health.

All writes go through the caller's session and are flushed immediately so a
failure surfaces inside the caller's transaction as LedgerWriteFailed. The
caller rolls the whole operation back; nothing here commits.
"""
import json
import math
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from wa_governor.core.exceptions import LedgerWriteFailed, InvalidParameter
from wa_governor.db.models.health_score import HealthScoreHistory
from wa_governor.db.models.warmup import NumberWarmup, WarmupState
from wa_governor.db.models.warmup_ledger import (
    WarmupStateEvent, WarmupLimitChange, WarmupAutoBlock,
    TriggerType, LimitType, LimitChangeReason, BlockType, BlockSeverity, ResolvedByType,
)

logger = structlog.get_logger()

METADATA_VERSION = 1

HISTORY_MODELS = {
    "states": WarmupStateEvent,
    "limits": WarmupLimitChange,
    "blocks": WarmupAutoBlock,
}


class Ledger:
    """Ledger bound to one session (one operation)."""

    def __init__(self, db: Session):
        self.db = db

    def _append(self, record):
        self.db.add(record)
        self._flush(record)
        return record

    def _flush(self, record) -> None:
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            connection_id = getattr(record, "connection_id", None)
            logger.error("Ledger write failed", record=type(record).__name__,
                         connection_id=connection_id, error=str(e))
            raise LedgerWriteFailed(f"Ledger write failed: {e}", connection_id=connection_id)

    # -- writes ------------------------------------------------------------

    def record_transition(
        self,
        warmup: NumberWarmup,
        from_state: WarmupState,
        to_state: WarmupState,
        trigger: TriggerType,
        description: str,
        health_score: Optional[float],
        old_daily_limit: Optional[int],
        new_daily_limit: Optional[int],
        actor_id: Optional[str] = None,
        actor_role: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> WarmupStateEvent:
        payload = {"v": METADATA_VERSION}
        payload.update(metadata or {})
        return self._append(WarmupStateEvent(
            warmup_id=warmup.id,
            connection_id=warmup.connection_id,
            from_state=from_state,
            to_state=to_state,
            trigger_type=trigger,
            trigger_description=description,
            health_score_at_event=health_score,
            number_age_days_at_event=warmup.number_age_days,
            old_daily_limit=old_daily_limit,
            new_daily_limit=new_daily_limit,
            actor_id=actor_id,
            actor_role=actor_role,
            metadata_json=json.dumps(payload, default=str),
            created_at=now or datetime.utcnow(),
        ))

    def record_limit_change(
        self,
        warmup: NumberWarmup,
        limit_type: LimitType,
        old_value: Optional[int],
        new_value: Optional[int],
        reason: LimitChangeReason,
        detail: Optional[str] = None,
        health_score: Optional[float] = None,
        actor_id: Optional[str] = None,
    ) -> Optional[WarmupLimitChange]:
        """Append a limit change; no-op when the value did not change."""
        if old_value == new_value:
            return None
        return self._append(WarmupLimitChange(
            warmup_id=warmup.id,
            connection_id=warmup.connection_id,
            limit_type=limit_type,
            old_value=old_value,
            new_value=new_value,
            reason=reason,
            reason_detail=detail,
            warmup_state_at_change=warmup.state,
            health_score_at_change=health_score,
            actor_id=actor_id,
        ))

    def open_block(
        self,
        warmup: NumberWarmup,
        block_type: BlockType,
        severity: BlockSeverity,
        trigger_event: str,
        now: datetime,
        blocked_until: Optional[datetime] = None,
    ) -> WarmupAutoBlock:
        return self._append(WarmupAutoBlock(
            warmup_id=warmup.id,
            connection_id=warmup.connection_id,
            block_type=block_type,
            severity=severity,
            trigger_event=trigger_event,
            blocked_at=now,
            blocked_until=blocked_until,
        ))

    def resolve_blocks(
        self,
        connection_id: int,
        block_type: BlockType,
        now: datetime,
        resolved_by: ResolvedByType,
        resolved_by_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> List[WarmupAutoBlock]:
        """Resolve every open block of a type. Resolution fields are the only update allowed."""
        blocks = self.open_blocks(connection_id, block_type)
        for block in blocks:
            block.is_resolved = True
            block.resolved_at = now
            block.resolved_by_type = resolved_by
            block.resolved_by_id = resolved_by_id
            block.resolution_note = note
        if blocks:
            self._flush(blocks[0])
        return blocks

    def add_blocked_messages(self, connection_id: int, count: int) -> int:
        """Bump the blocked-message counter on every open block of the connection."""
        blocks = self.open_blocks(connection_id)
        for block in blocks:
            block.messages_blocked = (block.messages_blocked or 0) + count
        if blocks:
            self._flush(blocks[0])
        return len(blocks)

    def record_score(self, connection_id: int, score: float, status: str, grade: str,
                     window: str, now: datetime) -> HealthScoreHistory:
        return self._append(HealthScoreHistory(
            connection_id=connection_id,
            score=score,
            status=status,
            grade=grade,
            calculation_window=window,
            recorded_at=now,
        ))

    # -- reads -------------------------------------------------------------

    def open_blocks(self, connection_id: int, block_type: Optional[BlockType] = None) -> List[WarmupAutoBlock]:
        query = self.db.query(WarmupAutoBlock).filter(
            WarmupAutoBlock.connection_id == connection_id,
            WarmupAutoBlock.is_resolved == False,
        )
        if block_type is not None:
            query = query.filter(WarmupAutoBlock.block_type == block_type)
        return query.order_by(WarmupAutoBlock.id).all()

    def count_health_drop_cooldowns(self, connection_id: int, since: datetime) -> int:
        return self.db.query(WarmupStateEvent).filter(
            WarmupStateEvent.connection_id == connection_id,
            WarmupStateEvent.to_state == WarmupState.COOLDOWN,
            WarmupStateEvent.trigger_type == TriggerType.HEALTH_DROP,
            WarmupStateEvent.created_at >= since,
        ).count()

    def score_points(self, connection_id: int, since: datetime) -> List[HealthScoreHistory]:
        return (
            self.db.query(HealthScoreHistory)
            .filter(
                HealthScoreHistory.connection_id == connection_id,
                HealthScoreHistory.recorded_at >= since,
            )
            .order_by(HealthScoreHistory.recorded_at, HealthScoreHistory.id)
            .all()
        )

    def history(self, connection_id: int, kind: str, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        """Newest-first page of one ledger table."""
        model = HISTORY_MODELS.get(kind)
        if model is None:
            raise InvalidParameter(f"Unknown history kind '{kind}'", connection_id=connection_id)
        if page < 1 or page_size < 1:
            raise InvalidParameter("page and page_size must be positive", connection_id=connection_id)

        query = self.db.query(model).filter(model.connection_id == connection_id)
        total = query.count()
        items = (
            query.order_by(desc(model.id))
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {
            "items": items,
            "total": total,
            "page": page,
            "page_size": page_size,
            "pages": math.ceil(total / page_size) if total else 0,
        }
