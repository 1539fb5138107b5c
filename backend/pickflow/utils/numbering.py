"""Sequence numbers backed by the ``sequence_counters`` table.

Each counter is advanced with one atomic statement:

    UPDATE sequence_counters SET value = value + 1
     WHERE name = :name RETURNING value

so two request handlers can never receive the same value.  A counter row is
inserted on first use; a concurrent first insert is resolved by retrying
the UPDATE.

Formats:
  pick list sequence:  1, 2, 3, ...          (counter "pick_list")
  load code:           LOAD-{date}-{seq:3}    (counter "load:{date}", daily)
"""

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.models.sequence_counter import SequenceCounter

PICK_LIST_COUNTER = "pick_list"


async def next_value(db: AsyncSession, name: str) -> int:
    """Atomically advance counter ``name`` and return its new value."""
    stmt = (
        update(SequenceCounter)
        .where(SequenceCounter.name == name)
        .values(value=SequenceCounter.value + 1)
        .returning(SequenceCounter.value)
        .execution_options(synchronize_session=False)
    )
    value = (await db.execute(stmt)).scalar_one_or_none()
    if value is not None:
        return value

    try:
        async with db.begin_nested():
            db.add(SequenceCounter(name=name, value=1))
        return 1
    except IntegrityError:
        # Another handler created the row first
        return (await db.execute(stmt)).scalar_one()


async def next_pick_list_sequence(db: AsyncSession) -> int:
    return await next_value(db, PICK_LIST_COUNTER)


async def generate_load_code(db: AsyncSession, run_date: date | None = None) -> str:
    """Generate a load code, e.g. "LOAD-20260218-001"."""
    date_str = (run_date or date.today()).strftime("%Y%m%d")
    seq_num = await next_value(db, f"load:{date_str}")
    return f"LOAD-{date_str}-{seq_num:03d}"
