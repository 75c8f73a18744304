"""Actor identity dependency.

Identity comes from upstream headers and is used for audit attribution only;
authorization happens before requests reach this service.
"""
from typing import Optional
from fastapi import Header

from wa_governor.services.governor import Actor


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    return Actor(id=x_actor_id or "anonymous", role=x_actor_role or "owner")
