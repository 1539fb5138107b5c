"""Load building, readiness, dispatch and recall."""

from datetime import date

import pytest
from sqlalchemy import select

from pickflow.middleware.exceptions import (
    DispatchFailed,
    InvalidStateTransition,
    LoadActive,
    LoadNotEmpty,
    NotDispatched,
    NotReady,
    OrderAlreadyLoaded,
)
from pickflow.models.activity_log import ActivityLog
from pickflow.models.delivery_run import DeliveryRun
from pickflow.models.order import Order
from pickflow.services import dispatch as dispatch_service
from pickflow.services import picking


async def _order_status(db, order_id: str) -> str:
    return await db.scalar(select(Order.status).where(Order.id == order_id))


async def _load_status(db, load_id: str) -> str:
    return await db.scalar(select(DeliveryRun.status).where(DeliveryRun.id == load_id))


@pytest.fixture
def new_load(db_session):
    async def _make(**kwargs):
        kwargs.setdefault("run_date", date(2026, 3, 2))
        return await dispatch_service.create_load(db_session, "tester", **kwargs)

    return _make


@pytest.fixture
def picked_order(db_session, make_batch, make_order):
    """Factory: an order whose pick list has been fully picked and completed."""

    async def _make(qty: int = 10, trolleys: int | None = None):
        await make_batch(qty)
        order = await make_order([("hebe-green", qty)])
        pick_list, _ = await picking.create_pick_list_from_order(db_session, order.id, "tester")
        await picking.allocate_pick_item(db_session, pick_list.items[0].id, "tester")
        await picking.complete_pick_list(
            db_session, pick_list.id, "tester",
            trolley_info={"count": trolleys} if trolleys is not None else None,
        )
        return order

    return _make


@pytest.mark.unit
@pytest.mark.asyncio
class TestLoadBuilding:

    async def test_load_codes_are_daily_sequences(self, new_load):
        first = await new_load()
        second = await new_load()
        other_day = await new_load(run_date=date(2026, 3, 3))

        assert first.load_code == "LOAD-20260302-001"
        assert second.load_code == "LOAD-20260302-002"
        assert other_day.load_code == "LOAD-20260303-001"

    async def test_capacity_fill(self, db_session, new_load, make_order):
        load = await new_load(vehicle_capacity=20)
        order_a = await make_order([("hebe-green", 5)])
        order_b = await make_order([("hebe-green", 5)])
        await dispatch_service.add_order(db_session, load.id, order_a.id, "tester", trolley_count=10)
        await dispatch_service.add_order(db_session, load.id, order_b.id, "tester", trolley_count=5)

        summary = dispatch_service.summarize(load)

        assert summary.trolley_total == 15
        assert summary.capacity == 20
        assert summary.fill_percentage == 75.0
        assert summary.order_count == 2

    async def test_default_capacity_used(self, new_load):
        load = await new_load()
        summary = dispatch_service.summarize(load)
        assert summary.capacity > 0
        assert summary.fill_percentage == 0.0

    async def test_trolleys_taken_from_pick_list(self, db_session, new_load, picked_order):
        order = await picked_order(trolleys=3)
        load = await new_load()

        item = await dispatch_service.add_order(db_session, load.id, order.id, "tester")

        assert item.trolley_count == 3
        assert item.sequence_number == 1

    async def test_order_on_one_active_load_only(self, db_session, new_load, make_order):
        order = await make_order([("hebe-green", 5)])
        load_a = await new_load()
        load_b = await new_load()
        await dispatch_service.add_order(db_session, load_a.id, order.id, "tester")

        with pytest.raises(OrderAlreadyLoaded) as exc:
            await dispatch_service.add_order(db_session, load_b.id, order.id, "tester")
        assert exc.value.details == {"load_code": load_a.load_code}

    async def test_cancelled_order_cannot_be_loaded(self, db_session, new_load, make_order):
        order = await make_order([("hebe-green", 5)], status="cancelled")
        load = await new_load()
        with pytest.raises(InvalidStateTransition):
            await dispatch_service.add_order(db_session, load.id, order.id, "tester")

    async def test_remove_closes_sequence_gap(self, db_session, new_load, make_order):
        load = await new_load()
        orders = [await make_order([("hebe-green", 1)]) for _ in range(3)]
        for order in orders:
            await dispatch_service.add_order(db_session, load.id, order.id, "tester")

        load = await dispatch_service.remove_order(db_session, load.id, orders[0].id, "tester")

        assert [(i.order_id, i.sequence_number) for i in load.items] == [
            (orders[1].id, 1),
            (orders[2].id, 2),
        ]

    async def test_reorder_items(self, db_session, new_load, make_order):
        load = await new_load()
        orders = [await make_order([("hebe-green", 1)]) for _ in range(2)]
        items = [
            await dispatch_service.add_order(db_session, load.id, o.id, "tester") for o in orders
        ]

        load = await dispatch_service.reorder_items(
            db_session, load.id, [items[1].id, items[0].id], "tester",
        )

        assert [i.order_id for i in load.items] == [orders[1].id, orders[0].id]

    async def test_status_update_limited(self, db_session, new_load):
        load = await new_load()
        load = await dispatch_service.update_load(db_session, load.id, "tester", {"status": "loading"})
        assert load.status == "loading"

        with pytest.raises(InvalidStateTransition):
            await dispatch_service.update_load(db_session, load.id, "tester", {"status": "in_transit"})


@pytest.mark.unit
@pytest.mark.asyncio
class TestDeleteLoad:

    async def test_non_empty_load(self, db_session, new_load, make_order):
        load = await new_load()
        order = await make_order([("hebe-green", 1)])
        await dispatch_service.add_order(db_session, load.id, order.id, "tester")

        with pytest.raises(LoadNotEmpty):
            await dispatch_service.delete_load(db_session, load.id, "tester")

    async def test_dispatched_load(self, db_session, new_load, picked_order):
        order = await picked_order()
        load = await new_load()
        await dispatch_service.add_order(db_session, load.id, order.id, "tester")
        await dispatch_service.dispatch(db_session, load.id, "tester")

        with pytest.raises(LoadActive):
            await dispatch_service.delete_load(db_session, load.id, "tester")

    async def test_empty_planned_load(self, db_session, new_load):
        load = await new_load()
        load_id = load.id

        await dispatch_service.delete_load(db_session, load_id, "tester")

        assert await db_session.get(DeliveryRun, load_id) is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestDispatch:

    async def test_not_ready_orders_listed_and_nothing_changes(
        self, db_session, new_load, picked_order, make_order
    ):
        ready = await picked_order()
        waiting = await make_order([("hebe-green", 5)])
        load = await new_load()
        for order in (ready, waiting):
            await dispatch_service.add_order(db_session, load.id, order.id, "tester")

        with pytest.raises(NotReady) as exc:
            await dispatch_service.dispatch(db_session, load.id, "tester")

        assert [o["order_id"] for o in exc.value.details["orders"]] == [waiting.id]
        assert await _load_status(db_session, load.id) == "planned"
        assert await _order_status(db_session, ready.id) == "ready_for_dispatch"

    async def test_dispatch_moves_load_and_orders(
        self, db_session, new_load, picked_order, published_events
    ):
        orders = [await picked_order(), await picked_order()]
        load = await new_load()
        for order in orders:
            await dispatch_service.add_order(db_session, load.id, order.id, "tester")

        result = await dispatch_service.dispatch(db_session, load.id, "driver-1")

        assert result.orders_dispatched == 2
        assert result.forced is False
        assert load.status == "in_transit"
        assert load.dispatched_by == "driver-1"
        assert load.dispatch_override_reason is None
        for order in orders:
            assert await _order_status(db_session, order.id) == "dispatched"
        assert {i.previous_order_status for i in load.items} == {"ready_for_dispatch"}
        # Not committed, so nothing published yet
        assert published_events == []

    async def test_second_dispatch_is_noop(self, db_session, new_load, picked_order):
        order = await picked_order()
        load = await new_load()
        await dispatch_service.add_order(db_session, load.id, order.id, "tester")
        await dispatch_service.dispatch(db_session, load.id, "tester")

        again = await dispatch_service.dispatch(db_session, load.id, "tester")

        assert again.already_dispatched is True
        assert again.orders_dispatched == 0

    async def test_forced_dispatch_records_override(
        self, db_session, new_load, make_order
    ):
        order = await make_order([("hebe-green", 5)])
        load = await new_load()
        await dispatch_service.add_order(db_session, load.id, order.id, "tester")

        result = await dispatch_service.dispatch(
            db_session, load.id, "yard-lead", force=True, override_reason="customer collecting",
        )

        assert result.forced is True
        assert [o["order_id"] for o in result.not_ready] == [order.id]
        assert load.dispatch_override_reason == "customer collecting"
        assert await _order_status(db_session, order.id) == "dispatched"
        actions = (
            await db_session.execute(
                select(ActivityLog.action).where(ActivityLog.entity_id == load.id)
            )
        ).scalars().all()
        assert "force_dispatched" in actions

    async def test_failed_order_rolls_back_whole_dispatch(
        self, db_session, new_load, picked_order, make_order
    ):
        ready = await picked_order()
        doomed = await make_order([("hebe-green", 5)])
        load = await new_load()
        for order in (ready, doomed):
            await dispatch_service.add_order(db_session, load.id, order.id, "tester")
        doomed.status = "cancelled"
        await db_session.flush()
        load_id, ready_id, doomed_id = load.id, ready.id, doomed.id

        # the savepoint rollback expires every object the dispatch touched
        with pytest.raises(DispatchFailed):
            await dispatch_service.dispatch(
                db_session, load_id, "tester", force=True, override_reason="late truck",
            )

        assert await _load_status(db_session, load_id) == "planned"
        assert await _order_status(db_session, ready_id) == "ready_for_dispatch"
        assert await _order_status(db_session, doomed_id) == "cancelled"

    async def test_empty_load_refused(self, db_session, new_load):
        load = await new_load()
        with pytest.raises(InvalidStateTransition):
            await dispatch_service.dispatch(db_session, load.id, "tester")

    async def test_claim_succeeds_once(self, db_session, new_load):
        load = await new_load()
        assert await dispatch_service._claim(db_session, load.id, ("planned",), "in_transit")
        assert not await dispatch_service._claim(db_session, load.id, ("planned",), "in_transit")


@pytest.mark.integration
@pytest.mark.asyncio
class TestRecallAndComplete:

    async def test_recall_restores_previous_statuses(
        self, db_session, new_load, picked_order, make_order
    ):
        ready = await picked_order()
        early = await make_order([("hebe-green", 5)])
        load = await new_load()
        for order in (ready, early):
            await dispatch_service.add_order(db_session, load.id, order.id, "tester")
        await dispatch_service.dispatch(db_session, load.id, "tester", force=True, override_reason="x")

        load, recalled = await dispatch_service.recall(db_session, load.id, "tester")

        assert recalled == 2
        assert load.status == "planned"
        assert load.dispatched_at is None
        assert await _order_status(db_session, ready.id) == "ready_for_dispatch"
        assert await _order_status(db_session, early.id) == "confirmed"

    async def test_recall_requires_in_transit(self, db_session, new_load):
        load = await new_load()
        with pytest.raises(NotDispatched):
            await dispatch_service.recall(db_session, load.id, "tester")

    async def test_complete_delivers_orders(self, db_session, new_load, picked_order):
        order = await picked_order()
        load = await new_load()
        await dispatch_service.add_order(db_session, load.id, order.id, "tester")
        await dispatch_service.dispatch(db_session, load.id, "tester")

        load = await dispatch_service.complete_load(db_session, load.id, "tester")
        again = await dispatch_service.complete_load(db_session, load.id, "tester")

        assert again.status == "completed"
        assert await _order_status(db_session, order.id) == "delivered"

    async def test_delivered_order_cannot_be_reloaded(
        self, db_session, new_load, picked_order
    ):
        order = await picked_order()
        load = await new_load()
        await dispatch_service.add_order(db_session, load.id, order.id, "tester")
        await dispatch_service.dispatch(db_session, load.id, "tester")
        await dispatch_service.complete_load(db_session, load.id, "tester")

        with pytest.raises(InvalidStateTransition):
            await dispatch_service.add_order(db_session, (await new_load()).id, order.id, "tester")
