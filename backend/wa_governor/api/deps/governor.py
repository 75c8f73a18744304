"""Governor dependency - one shared instance per process."""
from functools import lru_cache

from wa_governor.services.governor import Governor


@lru_cache
def get_governor() -> Governor:
    return Governor()
