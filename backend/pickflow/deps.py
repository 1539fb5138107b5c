"""FastAPI dependencies shared across routers.

Dependencies:
  get_actor   → who is acting, from the X-Actor-Id header ("system" if absent)

Authentication lives in front of this service; the gateway forwards the
authenticated worker or dispatcher id.  The value is only used for audit.
"""

from fastapi import Header

DEFAULT_ACTOR = "system"


async def get_actor(
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> str:
    if x_actor_id and x_actor_id.strip():
        return x_actor_id.strip()[:100]
    return DEFAULT_ACTOR
