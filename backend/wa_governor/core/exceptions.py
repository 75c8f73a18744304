"""Governor error taxonomy.

Every error carries a machine-readable ``code``, a human readable
``message``, the connection it is attributed to and, for owner actions, the
acting owner. The HTTP layer maps ``http_status`` straight onto the response.
"""
from typing import Optional, Dict, Any


class GovernorError(Exception):
    """Base class for all governor errors."""

    code = "governor_error"
    http_status = 500

    def __init__(
        self,
        message: str,
        connection_id: Optional[int] = None,
        actor_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.connection_id = connection_id
        self.actor_id = actor_id

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": False,
            "error": self.code,
            "message": self.message,
            "connection_id": self.connection_id,
        }
        if self.actor_id:
            data["actor_id"] = self.actor_id
        return data


class ConnectionNotFound(GovernorError):
    code = "connection_not_found"
    http_status = 404


class InsufficientData(GovernorError):
    """Zero messages were sent in the scoring window."""
    code = "insufficient_data"
    http_status = 422


class TelemetryUnavailable(GovernorError):
    """Telemetry read failed or timed out. Retryable."""
    code = "telemetry_unavailable"
    http_status = 503


class InvalidTransition(GovernorError):
    code = "invalid_transition"
    http_status = 409


class ScoreTooLowError(GovernorError):
    """An owner action was refused by the health score gate."""
    code = "score_too_low"
    http_status = 409

    def __init__(self, message: str, connection_id: Optional[int] = None,
                 actor_id: Optional[str] = None, score: Optional[float] = None,
                 required: Optional[float] = None):
        super().__init__(message, connection_id=connection_id, actor_id=actor_id)
        self.score = score
        self.required = required

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["score"] = self.score
        data["required_score"] = self.required
        return data


class LedgerWriteFailed(GovernorError):
    """An append to the event ledger failed; the whole operation rolls back."""
    code = "ledger_write_failed"
    http_status = 500


class ConnectionBusy(GovernorError):
    """Another operation holds the connection's lock."""
    code = "connection_busy"
    http_status = 409


class InvalidParameter(GovernorError):
    code = "invalid_parameter"
    http_status = 400
