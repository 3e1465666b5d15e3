"""End-to-end client behaviour: optimistic edits, offline queueing, replay and resync."""

import asyncio
import json

import httpx
import pytest

from conftest import make_counter_payload
from sync_counter.client.exceptions import InvalidInputError
from sync_counter.client.session import SyncCounterClient
from sync_counter.client.subscriber import StreamCallbacks, StreamSubscriber
from sync_counter.client.connectivity import ConnectivityMonitor
from sync_counter.services.broadcast import BroadcastHub
from sync_counter.services.counter_store import today_key


class FakeServer:
    """Answers the counter endpoints from an in-memory dict and records calls."""

    def __init__(self, counters=()):
        self.counters = {c["id"]: dict(c) for c in counters}
        self.calls = []
        self.down = False
        # path suffix -> number of 503 answers still to give
        self.failures = {}
        self.clock = 10_000

    def calls_to(self, suffix):
        return [c for c in self.calls if c[1].endswith(suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, path, body))
        if self.down:
            raise httpx.ConnectError("server down", request=request)
        for suffix, remaining in self.failures.items():
            if remaining and path.endswith(suffix):
                self.failures[suffix] = remaining - 1
                return httpx.Response(503, json={"error": "Service Unavailable"})

        if path == "/health":
            return httpx.Response(200, json={"status": "ok", "subscribers": 0})
        if path == "/api/sync":
            initial = {"type": "initial", "counters": list(self.counters.values())}
            return httpx.Response(200, content=f"data: {json.dumps(initial)}\n\n".encode())
        if path == "/api/counters" and request.method == "GET":
            return httpx.Response(200, json={"counters": list(self.counters.values()), "timestamp": self.clock})
        if path == "/api/counters" and request.method == "POST":
            if not body["name"].strip():
                return httpx.Response(400, json={"error": "Counter name is required"})
            counter = make_counter_payload(body["id"], value=body.get("value", 0), name=body["name"],
                                           last_updated=self._tick())
            self.counters[counter["id"]] = counter
            return httpx.Response(201, json={"counter": counter, "timestamp": self.clock})

        counter_id, _, action = path[len("/api/counters/"):].partition("/")
        counter = self.counters.get(counter_id)
        if counter is None:
            return httpx.Response(404, json={"error": "Counter not found"})
        delta = {"increment": 1, "decrement": -1, "adjust": (body or {}).get("delta")}.get(action)
        if delta is not None:
            counter["value"] += delta
        elif request.method == "PUT":
            counter.update(name=body["name"], value=body["value"])
        elif request.method == "DELETE":
            del self.counters[counter_id]
        counter["lastUpdated"] = self._tick()
        return httpx.Response(200, json={"counter": counter, "timestamp": self.clock})

    def _tick(self):
        # server timestamps stay ahead of optimistic local ones
        self.clock += 1
        return 2**41 + self.clock


def _session(server, queue_url, online=True, username="prabh"):
    client = SyncCounterClient(
        base_url="http://test",
        username=username,
        queue_url=queue_url,
        transport=httpx.MockTransport(server.handler),
        online=online,
    )
    return client


@pytest.mark.asyncio
async def test_offline_increments_replay_as_one_call_then_resync(queue_url):
    server = FakeServer([make_counter_payload("c1", value=0)])
    client = _session(server, queue_url, online=False)
    client.state.replace_all([make_counter_payload("c1", value=0)])

    for _ in range(3):
        await client.increment("c1")

    assert client.state.get("c1")["value"] == 3
    assert client.pending_count == 1
    assert server.calls == []

    client.monitor.set_online(True)
    await client.monitor.wait_idle()

    adjusts = server.calls_to("/adjust")
    assert adjusts == [("POST", "/api/counters/c1/adjust", {"delta": 3, "user": "Prabh", "day": today_key()})]
    assert client.pending_count == 0
    assert ("GET", "/api/counters", None) in server.calls
    assert client.state.get("c1")["value"] == 3
    await client.stop()


@pytest.mark.asyncio
async def test_transient_failure_queues_and_goes_offline(queue_url):
    server = FakeServer([make_counter_payload("c1", value=0)])
    client = _session(server, queue_url)
    client.state.replace_all([make_counter_payload("c1", value=0)])
    server.down = True

    counter = await client.increment("c1")

    assert counter["value"] == 1
    assert client.monitor.is_offline
    assert client.pending_count == 1

    # further mutations go straight to the queue
    await client.increment("c1")
    assert len(server.calls_to("/increment")) == 1
    assert [p.delta for p in client.queue.pending()] == [2]

    server.down = False
    assert await client.monitor.check()
    await client.monitor.wait_idle()

    assert server.calls_to("/adjust")[-1][2]["delta"] == 2
    assert server.counters["c1"]["value"] == 2
    assert client.pending_count == 0
    await client.stop()


@pytest.mark.asyncio
async def test_failed_replay_is_retried_after_next_probe(queue_url):
    server = FakeServer([make_counter_payload("c1", value=0)])
    client = _session(server, queue_url, online=False)
    client.state.replace_all([make_counter_payload("c1", value=0)])
    await client.increment("c1")
    server.failures["/adjust"] = 1

    client.monitor.set_online(True)
    await client.monitor.wait_idle()

    assert client.monitor.is_offline
    assert client.pending_count == 1

    # later edits keep coalescing while the replay waits for the server
    await client.increment("c1")
    assert await client.monitor.check()
    await client.monitor.wait_idle()

    assert client.monitor.is_online
    assert client.pending_count == 0
    assert server.calls_to("/adjust")[-1][2]["delta"] == 2
    assert server.counters["c1"]["value"] == 2

    # with the queue drained, mutations go straight to the server again
    await client.increment("c1")
    assert server.calls_to("/increment")
    assert server.counters["c1"]["value"] == 3
    await client.stop()


@pytest.mark.asyncio
async def test_online_mutation_reconciles_with_server_copy(queue_url):
    server = FakeServer([make_counter_payload("c1", value=5)])
    client = _session(server, queue_url)
    client.state.replace_all([make_counter_payload("c1", value=5)])

    counter = await client.decrement("c1")

    assert counter["value"] == 4
    assert server.calls_to("/decrement")
    assert client.pending_count == 0
    await client.stop()


@pytest.mark.asyncio
async def test_invalid_input_is_surfaced_not_queued(queue_url):
    server = FakeServer()
    client = _session(server, queue_url)

    with pytest.raises(InvalidInputError):
        await client.create("   ")

    assert client.pending_count == 0
    await client.stop()


@pytest.mark.asyncio
async def test_offline_create_then_increment_replays_in_order(queue_url):
    server = FakeServer()
    client = _session(server, queue_url, online=False)

    counter = await client.create("Laps")
    await client.increment(counter["id"])

    assert [p.operation.value for p in client.queue.pending()] == ["create", "increment"]

    client.monitor.set_online(True)
    await client.monitor.wait_idle()

    assert [c[0] + " " + c[1] for c in server.calls if c[1].startswith("/api/counters")][:2] == [
        "POST /api/counters",
        f"POST /api/counters/{counter['id']}/adjust",
    ]
    assert server.counters[counter["id"]]["value"] == 1
    await client.stop()


@pytest.mark.asyncio
async def test_replay_drops_changes_for_deleted_counter(queue_url):
    server = FakeServer()
    client = _session(server, queue_url, online=False)
    client.state.replace_all([make_counter_payload("gone", value=0)])

    await client.increment("gone")
    client.monitor.set_online(True)
    await client.monitor.wait_idle()

    assert client.pending_count == 0
    assert [d.counter_id for d in client.dropped] == ["gone"]
    assert "gone" not in client.state
    await client.stop()


@pytest.mark.asyncio
async def test_start_opens_stream_and_applies_initial(queue_url):
    server = FakeServer([make_counter_payload("c1", value=8)])
    client = _session(server, queue_url)

    await client.start(probe=False)
    task = client.subscriber._task
    if task is not None:
        await task

    assert client.state.get("c1")["value"] == 8
    assert ("GET", "/api/sync", None) in server.calls
    await client.stop()


async def _until(condition, timeout=2.0):
    for _ in range(int(timeout / 0.01)):
        if condition():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not met in time")


@pytest.mark.asyncio
async def test_second_client_observes_broadcast_increment(app, hub: BroadcastHub):
    """Client A increments through the API; client B's live stream reflects value 1."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        created = await http.post("/api/counters", json={"id": "c1", "name": "Pushups"})
        assert created.status_code == 201

        b_state = {}
        b_subscriber = StreamSubscriber(http, "/api/sync", ConnectivityMonitor(online=True), StreamCallbacks(
            on_initial=lambda counters: b_state.update({c["id"]: c for c in counters}),
            on_incremented=lambda counter: b_state.update({counter["id"]: counter}),
        ))
        assert b_subscriber.connect()
        await _until(lambda: hub.subscriber_count == 1)

        # client A
        response = await http.post("/api/counters/c1/increment", json={"user": "prabh"})
        assert response.status_code == 200

        # the in-process transport hands the body over once the server side
        # ends, so let the stream pick up the event before shutting it down
        (connection,) = hub.connections
        await _until(lambda: connection.pending == 0)
        hub.close_all()
        await _until(lambda: not b_subscriber.is_connected)

        assert b_state["c1"]["value"] == 1
        assert b_state["c1"]["users"] == {"Prabh": 1}
