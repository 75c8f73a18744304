"""Health alerts raised alongside governor decisions."""
import json
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from wa_governor.db.models.connection import WhatsappConnection
from wa_governor.db.models.health_alert import HealthAlert, AlertType, AlertSeverity
from wa_governor.db.models.health_score import HealthStatus

STATUS_RANK = {
    HealthStatus.CRITICAL.value: 0,
    HealthStatus.WARNING.value: 1,
    HealthStatus.GOOD.value: 2,
    HealthStatus.EXCELLENT.value: 3,
}

ACTION_LABELS = {
    "reduce_batch": "batch size reduced",
    "add_delay": "send delay added",
    "pause_campaign": "campaigns paused",
    "pause_warmup": "warmup paused",
    "block_reconnect": "reconnect blocked",
}


def _add(db: Session, connection: WhatsappConnection, alert_type: AlertType, severity: AlertSeverity,
         title: str, message: str, details: Optional[Dict[str, Any]] = None) -> HealthAlert:
    alert = HealthAlert(
        connection_id=connection.id,
        alert_type=alert_type,
        severity=severity,
        title=title,
        message=message,
        details_json=json.dumps(details, default=str) if details else None,
    )
    db.add(alert)
    return alert


def status_changed(db: Session, connection: WhatsappConnection, old_status: Optional[str],
                   new_status: str, score: float) -> Optional[HealthAlert]:
    if old_status is None or old_status == new_status:
        return None
    worse = STATUS_RANK[new_status] < STATUS_RANK[old_status]
    if worse:
        alert_type = AlertType.HEALTH_DROP
        severity = AlertSeverity.CRITICAL if new_status == HealthStatus.CRITICAL.value else AlertSeverity.WARNING
        title = f"Health dropped to {new_status} for {connection.phone_number}"
    else:
        alert_type = AlertType.STATUS_CHANGE
        severity = AlertSeverity.INFO
        title = f"Health improved to {new_status} for {connection.phone_number}"
    return _add(db, connection, alert_type, severity, title,
                f"Health score is now {score} ({old_status} -> {new_status}).",
                {"old_status": old_status, "new_status": new_status, "score": score})


def actions_changed(db: Session, connection: WhatsappConnection, applied: List[str],
                    cleared: List[str], score: float) -> Optional[HealthAlert]:
    if not applied and not cleared:
        return None
    parts = []
    if applied:
        parts.append("Applied: " + ", ".join(ACTION_LABELS[a] for a in applied) + ".")
    if cleared:
        parts.append("Cleared: " + ", ".join(ACTION_LABELS[a] for a in cleared) + ".")
    severity = AlertSeverity.CRITICAL if "block_reconnect" in applied else (
        AlertSeverity.WARNING if applied else AlertSeverity.INFO
    )
    return _add(db, connection, AlertType.AUTO_ACTION, severity,
                f"Protective actions updated for {connection.phone_number}",
                " ".join(parts),
                {"applied": applied, "cleared": cleared, "score": score})


def forced_override(db: Session, connection: WhatsappConnection, action: str, actor_id: str,
                    message: str, severity: AlertSeverity = AlertSeverity.WARNING,
                    details: Optional[Dict[str, Any]] = None) -> HealthAlert:
    payload = {"action": action, "actor_id": actor_id}
    payload.update(details or {})
    return _add(db, connection, AlertType.FORCED_OVERRIDE, severity,
                f"Owner override '{action}' on {connection.phone_number}",
                message, payload)
