"""WhatsApp connection model - the outbound number being governed."""
from sqlalchemy import Column, Integer, String, Enum, Boolean, DateTime, Float, Index
import enum

from wa_governor.db.base import Base


class ConnectionStatus(str, enum.Enum):
    """Connection lifecycle status, owned by the connection service."""
    PENDING = "pending"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    BANNED = "banned"


class WhatsappConnection(Base):
    """Outbound WhatsApp number of a tenant.

    Identity and status belong to the connection service; the governor only
    writes the throttling fields and the denormalized health/warmup mirror.
    """

    __tablename__ = "whatsapp_connections"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    phone_number = Column(String(32), nullable=False, unique=True)
    display_name = Column(String(255), nullable=True)
    status = Column(Enum(ConnectionStatus), default=ConnectionStatus.ACTIVE, nullable=False)
    activated_at = Column(DateTime, nullable=True)
    plan_daily_limit = Column(Integer, nullable=True)  # null = governor default

    # Throttling fields read by the sending pipeline
    reduced_batch_size = Column(Integer, nullable=True)
    added_delay_ms = Column(Integer, nullable=True)
    is_paused_by_health = Column(Boolean, default=False, nullable=False)
    warmup_paused = Column(Boolean, default=False, nullable=False)
    reconnect_blocked = Column(Boolean, default=False, nullable=False)
    reconnect_blocked_until = Column(DateTime, nullable=True)

    # Denormalized mirror
    health_score = Column(Float, nullable=True)
    health_status = Column(String(20), nullable=True)
    health_updated_at = Column(DateTime, nullable=True)
    warmup_state = Column(String(20), nullable=True)
    warmup_daily_limit = Column(Integer, nullable=True)

    __table_args__ = (
        Index('idx_connection_status', 'status'),
    )

    def __repr__(self) -> str:
        return f"<WhatsappConnection(id={self.id}, phone='{self.phone_number}', status='{self.status}')>"
