"""HealthAlert model - in-app notifications raised by the governor."""
from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey, Enum
import enum

from wa_governor.db.base import Base


class AlertType(str, enum.Enum):
    HEALTH_DROP = 'health_drop'
    AUTO_ACTION = 'auto_action'
    STATUS_CHANGE = 'status_change'
    FORCED_OVERRIDE = 'forced_override'


class AlertSeverity(str, enum.Enum):
    INFO = 'info'
    WARNING = 'warning'
    CRITICAL = 'critical'


class HealthAlert(Base):
    """Health notification for the connection owner."""

    __tablename__ = 'health_alerts'

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    connection_id = Column(Integer, ForeignKey('whatsapp_connections.id'), nullable=True, index=True)
    alert_type = Column(Enum(AlertType), nullable=False)
    severity = Column(Enum(AlertSeverity), default=AlertSeverity.INFO)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    details_json = Column(Text, nullable=True)
    is_read = Column(Boolean, default=False, index=True)
