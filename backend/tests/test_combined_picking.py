"""Combined picking: grouping and oldest-first distribution."""

import pytest
from sqlalchemy import select

from pickflow.middleware.exceptions import (
    InsufficientStock,
    InvalidStateTransition,
    OverAllocation,
    ResourceNotFoundError,
)
from pickflow.models.batch import InventoryBatch
from pickflow.services import combined_picking, picking
from pickflow.services.combined_picking import GroupKey

HEBE = GroupKey("tunnel-1", "hebe-green", "2L")


async def _available(db, batch_id: str) -> int:
    return await db.scalar(
        select(InventoryBatch.available_quantity).where(InventoryBatch.id == batch_id)
    )


@pytest.fixture
def pick_lists(db_session, make_order):
    """Factory: one pick list per order, each from a list of lines."""

    async def _make(*orders):
        created = []
        for lines in orders:
            order = await make_order(lines)
            pick_list, _ = await picking.create_pick_list_from_order(db_session, order.id, "tester")
            created.append(pick_list)
        return created

    return _make


@pytest.mark.unit
@pytest.mark.asyncio
class TestGroups:

    async def test_items_grouped_by_location_product_size(self, db_session, pick_lists):
        first, second = await pick_lists(
            [("hebe-green", 10), ("lavender", 4)],
            [("hebe-green", 6), ("lavender", 2, "tunnel-2")],
        )

        groups = await combined_picking.get_groups(db_session, [first.id, second.id])

        summary = [
            (g.key.location_key, g.key.product_key, g.total_remaining, len(g.items))
            for g in groups
        ]
        assert summary == [
            ("tunnel-1", "hebe-green", 16, 2),
            ("tunnel-1", "lavender", 4, 1),
            ("tunnel-2", "lavender", 2, 1),
        ]

    async def test_items_follow_pick_list_sequence(self, db_session, pick_lists):
        first, second, third = await pick_lists(
            [("hebe-green", 1)], [("hebe-green", 2)], [("hebe-green", 3)],
        )
        await picking.reorder_pick_lists(db_session, [third.id, first.id, second.id], "tester")

        groups = await combined_picking.get_groups(db_session, [first.id, second.id, third.id])

        assert [i.pick_list_id for i in groups[0].items] == [third.id, first.id, second.id]

    async def test_completed_lists_and_done_items_excluded(
        self, db_session, make_batch, pick_lists
    ):
        await make_batch(100)
        done, busy = await pick_lists([("hebe-green", 5)], [("hebe-green", 5), ("lavender", 3)])
        await picking.allocate_pick_item(db_session, done.items[0].id, "tester")
        await picking.complete_pick_list(db_session, done.id, "tester")
        await picking.allocate_pick_item(db_session, busy.items[0].id, "tester")

        groups = await combined_picking.get_groups(db_session, [done.id, busy.id])

        assert [g.key.product_key for g in groups] == ["lavender"]

    async def test_no_ids(self, db_session):
        assert await combined_picking.get_groups(db_session, []) == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestConfirmPick:

    async def test_earlier_list_filled_first(self, db_session, make_batch, pick_lists):
        batch = await make_batch(100)
        first, second = await pick_lists([("hebe-green", 10)], [("hebe-green", 10)])

        result = await combined_picking.confirm_pick(
            db_session, [second.id, first.id], HEBE, 15, "tester",
        )

        assert result.allocated == 15
        assert result.shortfall == 0
        assert [(s.pick_list_id, s.quantity, s.status) for s in result.distributions] == [
            (first.id, 10, "picked"),
            (second.id, 5, "pending"),
        ]
        assert first.items[0].picked_qty == 10
        assert second.items[0].picked_qty == 5
        assert await _available(db_session, batch.id) == 85
        assert first.status == picking.IN_PROGRESS
        assert second.status == picking.IN_PROGRESS

    async def test_more_than_group_needs_changes_nothing(
        self, db_session, make_batch, pick_lists
    ):
        batch = await make_batch(100)
        first, second = await pick_lists([("hebe-green", 10)], [("hebe-green", 10)])

        with pytest.raises(OverAllocation) as exc:
            await combined_picking.confirm_pick(
                db_session, [first.id, second.id], HEBE, 25, "tester",
            )

        assert exc.value.details == {"requested": 25, "remaining": 20}
        assert await _available(db_session, batch.id) == 100
        assert first.items[0].picked_qty == 0

    async def test_shortfall_falls_on_later_lists(self, db_session, make_batch, pick_lists):
        await make_batch(12)
        first, second = await pick_lists([("hebe-green", 10)], [("hebe-green", 10)])

        result = await combined_picking.confirm_pick(
            db_session, [first.id, second.id], HEBE, 15, "tester",
        )

        assert result.allocated == 12
        assert result.shortfall == 3
        assert [s.quantity for s in result.distributions] == [10, 2]

    async def test_cancelled_order_skipped_and_its_share_returned(
        self, db_session, make_batch, pick_lists
    ):
        batch = await make_batch(100)
        first, second = await pick_lists([("hebe-green", 10)], [("hebe-green", 10)])
        first.order.status = "cancelled"
        await db_session.flush()

        result = await combined_picking.confirm_pick(
            db_session, [first.id, second.id], HEBE, 15, "tester",
        )

        assert [(s.pick_list_id, s.quantity) for s in result.distributions] == [(second.id, 10)]
        assert [(e["pick_item_id"], e["code"]) for e in result.errors] == [
            (first.items[0].id, "InvalidStateTransition"),
        ]
        assert result.allocated == 10
        assert result.shortfall == 5
        assert first.items[0].picked_qty == 0
        assert await _available(db_session, batch.id) == 90

    async def test_nothing_applied_releases_everything(self, db_session, make_batch, pick_lists):
        batch = await make_batch(100)
        first, = await pick_lists([("hebe-green", 10)])
        first.order.status = "cancelled"
        await db_session.flush()

        with pytest.raises(InvalidStateTransition) as exc:
            await combined_picking.confirm_pick(db_session, [first.id], HEBE, 10, "tester")

        assert exc.value.details["errors"][0]["pick_item_id"] == first.items[0].id
        assert await _available(db_session, batch.id) == 100

    async def test_share_split_across_batches(self, db_session, make_batch, pick_lists):
        old = await make_batch(8, received_days_ago=20)
        new = await make_batch(12, received_days_ago=5)
        first, second = await pick_lists([("hebe-green", 10)], [("hebe-green", 10)])

        await combined_picking.confirm_pick(
            db_session, [first.id, second.id], HEBE, 15, "tester",
        )

        first_picks = sorted((bp.batch_id, bp.quantity) for bp in first.items[0].batch_picks)
        assert first_picks == sorted([(old.id, 8), (new.id, 2)])
        assert [(bp.batch_id, bp.quantity) for bp in second.items[0].batch_picks] == [(new.id, 5)]
        assert await _available(db_session, old.id) == 0
        assert await _available(db_session, new.id) == 5

    async def test_no_stock(self, db_session, pick_lists):
        first, = await pick_lists([("hebe-green", 10)])
        with pytest.raises(InsufficientStock):
            await combined_picking.confirm_pick(db_session, [first.id], HEBE, 5, "tester")

    async def test_unknown_group(self, db_session, pick_lists):
        first, = await pick_lists([("hebe-green", 10)])
        with pytest.raises(ResourceNotFoundError):
            await combined_picking.confirm_pick(
                db_session, [first.id], GroupKey("tunnel-1", "box-hedge", "2L"), 5, "tester",
            )
