"""API endpoints package."""
from wa_governor.api.endpoints import health, warmup

__all__ = ["health", "warmup"]
