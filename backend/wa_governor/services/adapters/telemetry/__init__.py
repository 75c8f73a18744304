"""Telemetry source adapters package."""
from typing import Optional

from wa_governor.core.config import settings
from wa_governor.services.adapters.base import TelemetrySourceAdapter
from wa_governor.services.adapters.telemetry.mock import MockTelemetrySource
from wa_governor.services.adapters.telemetry.sql import SqlTelemetrySource
from wa_governor.services.adapters.telemetry.http import HttpTelemetrySource


def get_telemetry_source(provider: Optional[str] = None) -> TelemetrySourceAdapter:
    """Get the configured telemetry source adapter."""
    provider = provider or settings.TELEMETRY_PROVIDER

    if provider == "http":
        return HttpTelemetrySource()
    elif provider == "sql":
        return SqlTelemetrySource()
    else:
        return MockTelemetrySource()


__all__ = [
    "MockTelemetrySource",
    "SqlTelemetrySource",
    "HttpTelemetrySource",
    "get_telemetry_source",
]
