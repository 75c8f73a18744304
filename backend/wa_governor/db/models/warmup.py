"""Number warmup model - per-connection warmup state and current limits."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, Float, Text, Enum, ForeignKey
import enum

from wa_governor.db.base import Base


class WarmupState(str, enum.Enum):
    """Warmup lifecycle state."""
    NEW = "new"
    WARMING = "warming"
    STABLE = "stable"
    COOLDOWN = "cooldown"
    SUSPENDED = "suspended"


class NumberWarmup(Base):
    """One row per connection holding its warmup state and send limits."""

    __tablename__ = "whatsapp_warmups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(Integer, ForeignKey('whatsapp_connections.id'), nullable=False, unique=True)

    state = Column(Enum(WarmupState), default=WarmupState.NEW, nullable=False)
    previous_state = Column(Enum(WarmupState), nullable=True)
    state_changed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    number_age_days = Column(Integer, default=0, nullable=False)

    current_daily_limit = Column(Integer, default=0, nullable=False)
    current_hourly_limit = Column(Integer, default=0, nullable=False)

    # Soft target enforced by the sending pipeline
    sent_today = Column(Integer, default=0, nullable=False)
    sent_today_date = Column(Date, nullable=True)
    sent_this_hour = Column(Integer, default=0, nullable=False)
    hour_started_at = Column(DateTime, nullable=True)
    last_sent_at = Column(DateTime, nullable=True)

    force_cooldown = Column(Boolean, default=False, nullable=False)
    force_cooldown_by = Column(String(100), nullable=True)
    cooldown_until = Column(DateTime, nullable=True)
    cooldown_reason = Column(Text, nullable=True)

    last_health_score = Column(Float, nullable=True)
    last_health_grade = Column(String(1), nullable=True)

    def __repr__(self) -> str:
        return f"<NumberWarmup(connection_id={self.connection_id}, state='{self.state}', daily={self.current_daily_limit})>"
