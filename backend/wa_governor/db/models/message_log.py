"""Message log model - one row per outbound message, written by the sender."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
import enum

from wa_governor.db.base import Base


class MessageStatus(str, enum.Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    UNDELIVERED = "undelivered"
    BLOCKED = "blocked"


class MessageLog(Base):
    """Outbound message log. Read-only for the governor."""

    __tablename__ = "message_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(Integer, ForeignKey('whatsapp_connections.id'), nullable=False)
    status = Column(String(20), nullable=False, default=MessageStatus.SENT.value)
    error_code = Column(String(50), nullable=True)
    template_id = Column(String(100), nullable=True)
    reported_spam = Column(Boolean, default=False, nullable=False)
    sent_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_message_conn_sent', 'connection_id', 'sent_at'),
    )
