"""Mock telemetry source for tests and local development."""
import time
from datetime import datetime
from typing import Dict, Optional

from wa_governor.services.adapters.base import TelemetrySourceAdapter, MessageStats

HEALTHY_STATS = MessageStats(
    sent=200, delivered=196, failed=2, read=150,
    blocked=0, reported=0, unique_templates=6,
    hourly_counts=[20, 22, 19, 21, 20, 18, 20, 21, 19, 20],
)


class MockTelemetrySource(TelemetrySourceAdapter):
    """Returns canned stats per connection; unknown ids get healthy stats."""

    def __init__(self, stats: Optional[Dict[int, MessageStats]] = None,
                 default: Optional[MessageStats] = HEALTHY_STATS, delay_seconds: float = 0.0):
        self.stats = dict(stats or {})
        self.default = default
        self.delay_seconds = delay_seconds
        self.calls = 0

    def set_stats(self, connection_id: int, stats: MessageStats) -> None:
        self.stats[connection_id] = stats

    def test_connection(self) -> bool:
        """Mock always returns successful connection."""
        return True

    def get_message_stats(self, connection_id: int, window_start: datetime, window_end: datetime) -> MessageStats:
        self.calls += 1
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        stats = self.stats.get(connection_id, self.default)
        return stats if stats is not None else MessageStats()
