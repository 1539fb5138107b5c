"""HTTP API tests: routes, error envelopes and idempotent replay."""

import pytest
import redis.asyncio as redis

from pickflow.utils import idempotency


class FakeRedis:
    """Just enough of redis.asyncio.Redis for idempotency keys."""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()

    async def _get_redis():
        return fake

    monkeypatch.setattr(idempotency, "get_redis", _get_redis)
    return fake


async def _seed(client, quantity=50, stock=(30, 40), order_number="SO-2001"):
    for n, qty in enumerate(stock, start=1):
        resp = await client.post("/api/batches/", json={
            "product_key": "hebe-green",
            "size_key": "2L",
            "location_key": "tunnel-1",
            "quantity": qty,
            "batch_number": f"{order_number}-B{n}",
            "received_at": f"2026-01-{10 + n:02d}",
        })
        assert resp.status_code == 201
    resp = await client.post("/api/orders/", json={
        "order_number": order_number,
        "customer_name": "Riverside Garden Centre",
        "lines": [{
            "product_key": "hebe-green",
            "size_key": "2L",
            "location_key": "tunnel-1",
            "quantity": quantity,
        }],
    })
    assert resp.status_code == 201
    order = resp.json()
    resp = await client.post(f"/api/pick-lists/from-order/{order['id']}")
    assert resp.status_code == 201
    return order, resp.json()


@pytest.mark.api
@pytest.mark.asyncio
class TestHealth:

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


@pytest.mark.api
@pytest.mark.asyncio
class TestPickingFlow:

    async def test_pick_complete_load_dispatch_recall(self, client, published_events):
        order, pick_list = await _seed(client)
        item_id = pick_list["items"][0]["id"]

        resp = await client.post(f"/api/pick-lists/from-order/{order['id']}")
        assert resp.status_code == 200
        assert resp.json()["id"] == pick_list["id"]

        resp = await client.post(f"/api/pick-items/{item_id}/allocate", json={})
        assert resp.status_code == 200
        body = resp.json()
        assert [a["quantity"] for a in body["allocations"]] == [30, 20]
        assert body["item"]["status"] == "picked"

        resp = await client.patch(f"/api/pick-lists/{pick_list['id']}", json={
            "action": "complete", "trolley_info": {"count": 3},
        })
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"

        resp = await client.get(f"/api/orders/{order['id']}")
        assert resp.json()["status"] == "ready_for_dispatch"

        resp = await client.post("/api/loads/", json={
            "run_date": "2026-03-02",
            "vehicle_capacity": 12,
            "order_ids": [order["id"]],
        })
        assert resp.status_code == 201
        load = resp.json()
        assert load["trolley_total"] == 3
        assert load["fill_percentage"] == 25.0

        resp = await client.post(f"/api/loads/{load['id']}/dispatch", json={})
        assert resp.status_code == 200
        assert resp.json()["orders_dispatched"] == 1

        resp = await client.post(f"/api/loads/{load['id']}/recall")
        assert resp.status_code == 200
        assert resp.json()["orders_recalled"] == 1
        assert resp.json()["load"]["status"] == "planned"

        names = [e.name for e in published_events]
        assert "PickListCompleted" in names
        assert names.index("LoadDispatched") < names.index("LoadRecalled")
        assert all(e.payload.get("forced") is False for e in published_events if e.name == "LoadDispatched")

    async def test_allocate_then_remove_batch_pick(self, client):
        _, pick_list = await _seed(client, quantity=50, stock=(30, 40))
        item_id = pick_list["items"][0]["id"]

        resp = await client.post(f"/api/pick-items/{item_id}/allocate", json={"quantity": 35})
        assert resp.status_code == 200
        batch_picks = resp.json()["item"]["batch_picks"]
        assert sorted(bp["quantity"] for bp in batch_picks) == [5, 30]
        assert all(bp["id"] and bp["created_at"] for bp in batch_picks)

        partial = next(bp for bp in batch_picks if bp["quantity"] == 5)
        resp = await client.delete(f"/api/pick-items/{item_id}/batches/{partial['id']}")
        assert resp.status_code == 200
        assert resp.json()["picked_qty"] == 30
        assert [bp["quantity"] for bp in resp.json()["batch_picks"]] == [30]

    async def test_combined_pick(self, client):
        _, first = await _seed(client, quantity=10, stock=(100,), order_number="SO-3001")
        _, second = await _seed(client, quantity=10, stock=(), order_number="SO-3002")

        resp = await client.get(
            "/api/combined-picking/", params={"ids": f"{second['id']},{first['id']}"},
        )
        assert resp.status_code == 200
        groups = resp.json()
        assert len(groups) == 1
        assert groups[0]["total_remaining"] == 20
        assert [i["pick_list_id"] for i in groups[0]["items"]] == [first["id"], second["id"]]

        resp = await client.post("/api/combined-picking/confirm-pick", json={
            "pick_list_ids": [first["id"], second["id"]],
            "group_key": groups[0]["group_key"],
            "quantity": 15,
        })
        assert resp.status_code == 200
        assert [d["quantity"] for d in resp.json()["distributions"]] == [10, 5]


@pytest.mark.api
@pytest.mark.asyncio
class TestErrorEnvelope:

    async def test_not_found(self, client):
        resp = await client.get("/api/pick-lists/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "ResourceNotFound"

    async def test_validation(self, client):
        resp = await client.post("/api/orders/", json={"order_number": "SO-1", "lines": []})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_over_allocation(self, client):
        _, pick_list = await _seed(client, quantity=10)
        resp = await client.post(
            f"/api/pick-items/{pick_list['items'][0]['id']}/allocate", json={"quantity": 11},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "OverAllocation"

    async def test_not_ready_lists_orders(self, client):
        order, _ = await _seed(client, quantity=10)
        resp = await client.post("/api/loads/", json={
            "run_date": "2026-03-02", "order_ids": [order["id"]],
        })
        load = resp.json()

        resp = await client.post(f"/api/loads/{load['id']}/dispatch", json={})

        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "NotReady"
        assert [o["order_id"] for o in error["details"]["orders"]] == [order["id"]]

        resp = await client.get(f"/api/loads/{load['id']}")
        assert resp.json()["status"] == "planned"

    async def test_failed_request_rolls_back(self, client):
        _, pick_list = await _seed(client, quantity=10, stock=(30,))
        item_id = pick_list["items"][0]["id"]

        resp = await client.patch("/api/pick-items/", json={
            "pick_item_id": item_id, "picked_qty": 10, "picked_batch_id": "no-such-batch",
        })
        assert resp.status_code == 404

        resp = await client.get("/api/batches/")
        assert [b["available_quantity"] for b in resp.json()["items"]] == [30]


@pytest.mark.api
@pytest.mark.asyncio
class TestIdempotency:

    async def test_retry_replays_without_reserving_twice(self, client, fake_redis):
        _, pick_list = await _seed(client, quantity=20, stock=(100,))
        item_id = pick_list["items"][0]["id"]
        headers = {"Idempotency-Key": "scan-42"}

        first = await client.post(
            f"/api/pick-items/{item_id}/allocate", json={"quantity": 10}, headers=headers,
        )
        retry = await client.post(
            f"/api/pick-items/{item_id}/allocate", json={"quantity": 10}, headers=headers,
        )

        assert first.status_code == retry.status_code == 200
        assert retry.json() == first.json()
        resp = await client.get("/api/batches/")
        assert resp.json()["items"][0]["available_quantity"] == 90

    async def test_failed_request_is_not_remembered(self, client, fake_redis):
        _, pick_list = await _seed(client, quantity=20, stock=(100,))
        item_id = pick_list["items"][0]["id"]
        headers = {"Idempotency-Key": "scan-43"}

        resp = await client.post(
            f"/api/pick-items/{item_id}/allocate", json={"quantity": 25}, headers=headers,
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "OverAllocation"
        assert fake_redis.store == {}

    async def test_redis_down_executes_normally(self, client, monkeypatch):
        async def _unreachable():
            raise redis.ConnectionError("connection refused")

        monkeypatch.setattr(idempotency, "get_redis", _unreachable)
        _, pick_list = await _seed(client, quantity=20, stock=(100,))

        resp = await client.post(
            f"/api/pick-items/{pick_list['items'][0]['id']}/allocate",
            json={"quantity": 5},
            headers={"Idempotency-Key": "scan-44"},
        )
        assert resp.status_code == 200
