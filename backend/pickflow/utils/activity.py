"""Lightweight helper for recording activity log entries.

Usage:
    await log_activity(
        db, actor, action="completed", entity_type="pick_list",
        entity_id=pick_list.id, entity_code=order.order_number,
        summary="Completed pick list for SO-1042",
    )

The row is added to the current session and committed with the
enclosing transaction; no extra flush is performed.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.models.activity_log import ActivityLog


async def log_activity(
    db: AsyncSession,
    actor: str,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    entity_code: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> None:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_code=entity_code,
        summary=summary,
        details=details,
    )
    db.add(entry)
