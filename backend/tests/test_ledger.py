"""Inventory batch ledger tests."""

import asyncio

import pytest
from sqlalchemy import select

from pickflow.middleware.exceptions import InsufficientStock, ResourceNotFoundError
from pickflow.models.batch import InventoryBatch
from pickflow.services import ledger


async def _available(db, batch_id: str) -> int:
    return await db.scalar(
        select(InventoryBatch.available_quantity).where(InventoryBatch.id == batch_id)
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestReserve:

    async def test_reserve_decrements_and_syncs_loaded_batch(self, db_session, make_batch):
        batch = await make_batch(30)

        remaining = await ledger.reserve(db_session, batch.id, 12)

        assert remaining == 18
        assert await _available(db_session, batch.id) == 18
        # The loaded instance reflects the UPDATE without a refresh
        assert batch.available_quantity == 18

    async def test_reserve_exact_balance_reaches_zero(self, db_session, make_batch):
        batch = await make_batch(30)
        assert await ledger.reserve(db_session, batch.id, 30) == 0

    async def test_overdraw_is_refused_without_change(self, db_session, make_batch):
        batch = await make_batch(10)

        with pytest.raises(InsufficientStock) as exc:
            await ledger.reserve(db_session, batch.id, 11)

        assert exc.value.error_code == "InsufficientStock"
        assert exc.value.details == {"batch_id": batch.id, "available": 10, "requested": 11}
        assert await _available(db_session, batch.id) == 10

    async def test_unknown_batch(self, db_session):
        with pytest.raises(ResourceNotFoundError):
            await ledger.reserve(db_session, "no-such-batch", 1)

    async def test_non_positive_quantity_rejected(self, db_session, make_batch):
        batch = await make_batch(10)
        with pytest.raises(ValueError):
            await ledger.reserve(db_session, batch.id, 0)
        with pytest.raises(ValueError):
            await ledger.release(db_session, batch.id, -3)


@pytest.mark.unit
@pytest.mark.asyncio
class TestRelease:

    async def test_release_restores_stock(self, db_session, make_batch):
        batch = await make_batch(20)
        await ledger.reserve(db_session, batch.id, 15)

        assert await ledger.release(db_session, batch.id, 15) == 20
        assert batch.available_quantity == 20

    async def test_release_unknown_batch(self, db_session):
        with pytest.raises(ResourceNotFoundError):
            await ledger.release(db_session, "no-such-batch", 5)


@pytest.mark.integration
@pytest.mark.asyncio
class TestCompetingSessions:

    async def test_committed_reservation_limits_next_session(
        self, session_factory, make_batch, db_session
    ):
        batch = await make_batch(30)
        await db_session.commit()

        async with session_factory() as first:
            await ledger.reserve(first, batch.id, 20)
            await first.commit()

        async with session_factory() as second:
            with pytest.raises(InsufficientStock):
                await ledger.reserve(second, batch.id, 20)
            await second.rollback()

        async with session_factory() as check:
            assert await _available(check, batch.id) == 10

    async def test_two_pickers_never_overdraw(self, session_factory, make_batch, db_session):
        batch = await make_batch(30)
        await db_session.commit()
        batch_id = batch.id

        async def pick() -> bool:
            async with session_factory() as session:
                try:
                    await ledger.reserve(session, batch_id, 20)
                except InsufficientStock:
                    await session.rollback()
                    return False
                await session.commit()
                return True

        results = await asyncio.gather(pick(), pick())

        assert sorted(results) == [False, True]
        async with session_factory() as check:
            assert await _available(check, batch_id) == 10
