"""Base adapter interfaces for all provider types."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class BaseAdapter(ABC):
    """Base class for all adapters."""

    @abstractmethod
    def test_connection(self) -> bool:
        """Test connection to the provider."""
        pass


class MessageStats(BaseModel):
    """Aggregated message counts for one connection over one window.

    ``delivered`` includes read messages. ``blocked``/``reported`` and
    ``unique_templates`` are None when the source has no such signal.
    """
    sent: int = Field(0, ge=0)
    delivered: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    read: int = Field(0, ge=0)
    blocked: Optional[int] = Field(None, ge=0)
    reported: Optional[int] = Field(None, ge=0)
    unique_templates: Optional[int] = Field(None, ge=0)
    hourly_counts: List[int] = Field(default_factory=list)


class TelemetrySourceAdapter(BaseAdapter):
    """Base adapter for message telemetry sources."""

    @abstractmethod
    def get_message_stats(
        self,
        connection_id: int,
        window_start: datetime,
        window_end: datetime
    ) -> MessageStats:
        """
        Aggregate outbound message counts for a connection.

        Raises TelemetryUnavailable on transport or storage failure.
        """
        pass
