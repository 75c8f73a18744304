"""API dependencies package."""
from wa_governor.api.deps.actor import get_actor
from wa_governor.api.deps.governor import get_governor

__all__ = ["get_actor", "get_governor"]
