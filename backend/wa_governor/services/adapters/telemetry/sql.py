"""SQL telemetry source reading the message_logs table."""
from collections import Counter
from datetime import datetime
from typing import Callable
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from wa_governor.core.exceptions import TelemetryUnavailable
from wa_governor.db.base import SessionLocal
from wa_governor.db.models.message_log import MessageLog, MessageStatus
from wa_governor.services.adapters.base import TelemetrySourceAdapter, MessageStats

logger = structlog.get_logger()

FAILED_STATUSES = (MessageStatus.FAILED.value, MessageStatus.UNDELIVERED.value)
DELIVERED_STATUSES = (MessageStatus.DELIVERED.value, MessageStatus.READ.value)


class SqlTelemetrySource(TelemetrySourceAdapter):
    """Aggregates message_logs rows. Opens its own session per read."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def test_connection(self) -> bool:
        db = self.session_factory()
        try:
            db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False
        finally:
            db.close()

    def get_message_stats(self, connection_id: int, window_start: datetime, window_end: datetime) -> MessageStats:
        db = self.session_factory()
        try:
            in_window = (
                MessageLog.connection_id == connection_id,
                MessageLog.sent_at >= window_start,
                MessageLog.sent_at < window_end,
            )
            by_status = dict(
                db.query(MessageLog.status, func.count(MessageLog.id))
                .filter(*in_window)
                .group_by(MessageLog.status)
                .all()
            )
            reported = db.query(func.count(MessageLog.id)).filter(
                *in_window, MessageLog.reported_spam == True
            ).scalar() or 0
            templated = db.query(func.count(MessageLog.id)).filter(
                *in_window, MessageLog.template_id.isnot(None)
            ).scalar() or 0
            unique_templates = db.query(func.count(func.distinct(MessageLog.template_id))).filter(
                *in_window, MessageLog.template_id.isnot(None)
            ).scalar() or 0
            sent_times = db.query(MessageLog.sent_at).filter(*in_window).all()
        except SQLAlchemyError as e:
            logger.error("Telemetry SQL read failed", connection_id=connection_id, error=str(e))
            raise TelemetryUnavailable(f"Message log read failed: {e}", connection_id=connection_id)
        finally:
            db.close()

        hourly = Counter(t.replace(minute=0, second=0, microsecond=0) for (t,) in sent_times)

        return MessageStats(
            sent=sum(by_status.values()),
            delivered=sum(by_status.get(s, 0) for s in DELIVERED_STATUSES),
            failed=sum(by_status.get(s, 0) for s in FAILED_STATUSES),
            read=by_status.get(MessageStatus.READ.value, 0),
            blocked=by_status.get(MessageStatus.BLOCKED.value, 0),
            reported=reported,
            unique_templates=unique_templates if templated else None,
            hourly_counts=[hourly[h] for h in sorted(hourly)],
        )
