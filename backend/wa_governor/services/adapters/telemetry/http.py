"""HTTP telemetry source backed by an external message-log service."""
from datetime import datetime
from typing import Optional
import httpx
from pydantic import ValidationError

from wa_governor.core.config import settings
from wa_governor.core.exceptions import TelemetryUnavailable
from wa_governor.services.adapters.base import TelemetrySourceAdapter, MessageStats


class HttpTelemetrySource(TelemetrySourceAdapter):
    """Adapter for the message-log service stats API.

    Expects ``GET {base_url}/connections/{id}/stats?start=..&end=..`` to return
    the MessageStats fields as JSON.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = (base_url or settings.TELEMETRY_HTTP_URL).rstrip("/")
        self.api_key = api_key or settings.TELEMETRY_HTTP_API_KEY
        self.timeout = timeout or settings.TELEMETRY_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.Client:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.Client(base_url=self.base_url, headers=headers,
                            timeout=self.timeout, transport=self.transport)

    def test_connection(self) -> bool:
        if not self.base_url:
            return False
        try:
            with self._client() as client:
                response = client.get("/health")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

    def get_message_stats(self, connection_id: int, window_start: datetime, window_end: datetime) -> MessageStats:
        if not self.base_url:
            raise TelemetryUnavailable("Telemetry service URL not configured", connection_id=connection_id)

        try:
            with self._client() as client:
                response = client.get(
                    f"/connections/{connection_id}/stats",
                    params={
                        "start": window_start.isoformat(),
                        "end": window_end.isoformat(),
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise TelemetryUnavailable(f"Telemetry service error: {e}", connection_id=connection_id)
        except ValueError as e:
            raise TelemetryUnavailable(f"Telemetry service returned invalid JSON: {e}", connection_id=connection_id)

        try:
            return MessageStats.model_validate(data)
        except ValidationError as e:
            raise TelemetryUnavailable(f"Telemetry payload rejected: {e}", connection_id=connection_id)
