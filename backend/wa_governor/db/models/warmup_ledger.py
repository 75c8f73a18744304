"""Append-only warmup ledger models: state events, limit changes, auto-blocks."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Text, Enum, ForeignKey, Index
import enum

from wa_governor.db.base import Base
from wa_governor.db.models.warmup import WarmupState


class TriggerType(str, enum.Enum):
    HEALTH_DROP = "health_drop"
    HEALTH_RECOVERY = "health_recovery"
    TIME_ELAPSED = "time_elapsed"
    OWNER_FORCE = "owner_force"
    OWNER_RESUME = "owner_resume"
    WEBHOOK_BLOCK = "webhook_block"
    WEBHOOK_FAIL = "webhook_fail"


class LimitType(str, enum.Enum):
    DAILY = "daily"
    HOURLY = "hourly"
    BATCH_SIZE = "batch_size"
    DELAY_MS = "delay_ms"


class LimitChangeReason(str, enum.Enum):
    STATE_TRANSITION = "state_transition"
    AGE_PROGRESSION = "age_progression"
    HEALTH_DROP = "health_drop"
    HEALTH_RECOVERY = "health_recovery"
    OWNER_OVERRIDE = "owner_override"
    COOLDOWN_START = "cooldown_start"
    COOLDOWN_END = "cooldown_end"


class BlockType(str, enum.Enum):
    CAMPAIGN_DISABLED = "campaign_disabled"
    WARMUP_PAUSED = "warmup_paused"
    RECONNECT_BLOCKED = "reconnect_blocked"
    COOLDOWN_ENFORCED = "cooldown_enforced"
    SUSPENDED = "suspended"


class BlockSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ResolvedByType(str, enum.Enum):
    AUTO = "auto"
    OWNER = "owner"


class WarmupStateEvent(Base):
    """One row per warmup state transition."""

    __tablename__ = "warmup_state_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    warmup_id = Column(Integer, ForeignKey('whatsapp_warmups.id'), nullable=False)
    connection_id = Column(Integer, ForeignKey('whatsapp_connections.id'), nullable=False)
    from_state = Column(Enum(WarmupState), nullable=False)
    to_state = Column(Enum(WarmupState), nullable=False)
    trigger_type = Column(Enum(TriggerType), nullable=False)
    trigger_description = Column(Text, nullable=True)
    health_score_at_event = Column(Float, nullable=True)
    number_age_days_at_event = Column(Integer, nullable=True)
    old_daily_limit = Column(Integer, nullable=True)
    new_daily_limit = Column(Integer, nullable=True)
    actor_id = Column(String(100), nullable=True)
    actor_role = Column(String(50), nullable=True)
    metadata_json = Column(Text, nullable=True)  # {"v": 1, ...}

    __table_args__ = (
        Index('idx_state_event_conn', 'connection_id', 'created_at'),
    )


class WarmupLimitChange(Base):
    """One row per numeric limit change. Null values mean unrestricted."""

    __tablename__ = "warmup_limit_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    warmup_id = Column(Integer, ForeignKey('whatsapp_warmups.id'), nullable=False)
    connection_id = Column(Integer, ForeignKey('whatsapp_connections.id'), nullable=False)
    limit_type = Column(Enum(LimitType), nullable=False)
    old_value = Column(Integer, nullable=True)
    new_value = Column(Integer, nullable=True)
    reason = Column(Enum(LimitChangeReason), nullable=False)
    reason_detail = Column(Text, nullable=True)
    warmup_state_at_change = Column(Enum(WarmupState), nullable=True)
    health_score_at_change = Column(Float, nullable=True)
    actor_id = Column(String(100), nullable=True)

    __table_args__ = (
        Index('idx_limit_change_conn', 'connection_id', 'created_at'),
    )


class WarmupAutoBlock(Base):
    """Protective block. Opened once, later resolved; never otherwise edited."""

    __tablename__ = "warmup_auto_blocks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    warmup_id = Column(Integer, ForeignKey('whatsapp_warmups.id'), nullable=False)
    connection_id = Column(Integer, ForeignKey('whatsapp_connections.id'), nullable=False)
    block_type = Column(Enum(BlockType), nullable=False)
    severity = Column(Enum(BlockSeverity), nullable=False)
    trigger_event = Column(Text, nullable=True)
    blocked_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    blocked_until = Column(DateTime, nullable=True)

    is_resolved = Column(Boolean, default=False, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by_type = Column(Enum(ResolvedByType), nullable=True)
    resolved_by_id = Column(String(100), nullable=True)
    resolution_note = Column(Text, nullable=True)
    messages_blocked = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index('idx_auto_block_conn_open', 'connection_id', 'is_resolved'),
    )
