"""Health governor services package."""
from wa_governor.services.governor.governor import Governor, Actor

__all__ = ["Governor", "Actor"]
