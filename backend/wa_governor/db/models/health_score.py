"""Health score models - current score per connection plus trend history."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Text, ForeignKey, Index
import enum

from wa_governor.db.base import Base


class HealthStatus(str, enum.Enum):
    """Status grade derived from the score; ordered worst to best."""
    CRITICAL = "critical"
    WARNING = "warning"
    GOOD = "good"
    EXCELLENT = "excellent"


GRADE_BY_STATUS = {
    HealthStatus.EXCELLENT: "A",
    HealthStatus.GOOD: "B",
    HealthStatus.WARNING: "C",
    HealthStatus.CRITICAL: "D",
}


class HealthScore(Base):
    """Latest health score of a connection. Overwritten on every recompute."""

    __tablename__ = "whatsapp_health_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(Integer, ForeignKey('whatsapp_connections.id'), nullable=False, unique=True)

    score = Column(Float, nullable=False)
    status = Column(String(20), nullable=False)
    previous_status = Column(String(20), nullable=True)

    # Rates (percent)
    delivery_rate = Column(Float, default=0.0)
    failure_rate = Column(Float, default=0.0)
    block_rate = Column(Float, default=0.0)
    report_rate = Column(Float, default=0.0)

    # Sub-scores
    delivery_score = Column(Float, default=0.0)
    failure_score = Column(Float, default=0.0)
    user_signal_score = Column(Float, default=0.0)
    pattern_score = Column(Float, default=0.0)
    template_mix_score = Column(Float, default=0.0)

    # Raw counts
    total_sent = Column(Integer, default=0)
    total_delivered = Column(Integer, default=0)
    total_failed = Column(Integer, default=0)
    total_read = Column(Integer, default=0)
    total_blocked = Column(Integer, default=0)
    total_reported = Column(Integer, default=0)

    # Cadence
    send_spike_factor = Column(Float, default=1.0)
    unique_templates_used = Column(Integer, nullable=True)
    peak_hourly_sends = Column(Integer, default=0)
    avg_hourly_sends = Column(Float, default=0.0)

    calculation_window = Column(String(10), nullable=False, default="24h")
    window_start = Column(DateTime, nullable=True)
    window_end = Column(DateTime, nullable=True)

    # Action flags currently applied
    batch_size_reduced = Column(Boolean, default=False, nullable=False)
    delay_added = Column(Boolean, default=False, nullable=False)
    campaign_paused = Column(Boolean, default=False, nullable=False)
    warmup_paused = Column(Boolean, default=False, nullable=False)
    reconnect_blocked = Column(Boolean, default=False, nullable=False)

    recommendations_json = Column(Text, nullable=True)
    calculated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<HealthScore(connection_id={self.connection_id}, score={self.score}, status='{self.status}')>"


class HealthScoreHistory(Base):
    """Append-only score history used for trends."""

    __tablename__ = "whatsapp_health_score_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(Integer, ForeignKey('whatsapp_connections.id'), nullable=False)
    score = Column(Float, nullable=False)
    status = Column(String(20), nullable=False)
    grade = Column(String(1), nullable=False)
    calculation_window = Column(String(10), nullable=False, default="24h")
    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_score_history_conn_recorded', 'connection_id', 'recorded_at'),
    )
