import asyncio

import pytest

from surreal_client.config import ClientSettings
from surreal_client.network import Connection, ConnectionClosedError, ConnectionStatus, MemoryTransport
from surreal_client.protocol import CloseDetail, LiveAction


def _notification(subscription_id: str, action: str, result) -> dict:
    return {"result": {"id": subscription_id, "action": action, "result": result}}


@pytest.mark.asyncio
async def test_early_notifications_replay_in_order_to_first_listener(settings, silent_recorder, wait_for):
    conn = Connection(settings, silent_recorder)
    await conn.open()
    transport = silent_recorder.current

    transport.feed(_notification("uuid-1", "CREATE", {"n": 1}))
    transport.feed(_notification("uuid-1", "UPDATE", {"n": 2}))
    assert await wait_for(lambda: len(conn._early_arrivals.get("uuid-1", [])) == 2)

    received = []
    await conn.listen_live("uuid-1", received.append)

    assert [(event.action, event.result) for event in received] == [("CREATE", {"n": 1}), ("UPDATE", {"n": 2})]
    assert "uuid-1" not in conn._early_arrivals

    transport.feed(_notification("uuid-1", "DELETE", {"n": 3}))
    assert await wait_for(lambda: len(received) == 3)
    assert received[-1].action == LiveAction.DELETE.value
    await conn.close()


@pytest.mark.asyncio
async def test_second_listener_only_sees_new_notifications(settings, silent_recorder, wait_for):
    conn = Connection(settings, silent_recorder)
    await conn.open()
    transport = silent_recorder.current

    transport.feed(_notification("uuid-1", "CREATE", {"n": 1}))
    assert await wait_for(lambda: "uuid-1" in conn._early_arrivals)

    first, second = [], []
    await conn.listen_live("uuid-1", first.append)
    await conn.listen_live("uuid-1", second.append)
    assert len(first) == 1
    assert second == []

    transport.feed(_notification("uuid-1", "UPDATE", {"n": 2}))
    assert await wait_for(lambda: len(first) == 2 and len(second) == 1)
    await conn.close()


@pytest.mark.asyncio
async def test_notifications_for_other_ids_stay_buffered(settings, silent_recorder, wait_for):
    conn = Connection(settings, silent_recorder)
    await conn.open()
    transport = silent_recorder.current
    received = []
    await conn.listen_live("uuid-1", received.append)

    transport.feed(_notification("uuid-2", "CREATE", {"n": 1}))
    assert await wait_for(lambda: "uuid-2" in conn._early_arrivals)

    assert received == []
    await conn.close()


@pytest.mark.asyncio
async def test_async_listeners_finish_before_next_notification(settings, silent_recorder, wait_for):
    conn = Connection(settings, silent_recorder)
    await conn.open()
    transport = silent_recorder.current
    log = []

    async def slow(event):
        log.append(("start", event.result["n"]))
        await asyncio.sleep(0.01)
        log.append(("end", event.result["n"]))

    await conn.listen_live("uuid-1", slow)
    await conn.listen_live("uuid-1", slow)
    transport.feed(_notification("uuid-1", "CREATE", {"n": 1}))
    transport.feed(_notification("uuid-1", "UPDATE", {"n": 2}))

    assert await wait_for(lambda: len(log) == 8)
    assert [n for _, n in log] == [1, 1, 1, 1, 2, 2, 2, 2]
    await conn.close()


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_others(settings, silent_recorder, wait_for):
    conn = Connection(settings, silent_recorder)
    await conn.open()
    transport = silent_recorder.current
    received = []

    def broken(event):
        raise RuntimeError("listener bug")

    await conn.listen_live("uuid-1", broken)
    await conn.listen_live("uuid-1", received.append)
    transport.feed(_notification("uuid-1", "CREATE", {"n": 1}))
    transport.feed(_notification("uuid-1", "UPDATE", {"n": 2}))

    assert await wait_for(lambda: len(received) == 2)
    assert conn.connection_status is ConnectionStatus.OPEN
    await conn.close()


@pytest.mark.asyncio
async def test_kill_notifies_listeners_before_sending_request(settings):
    order = []

    def responder(message):
        order.append(("request", message["method"], message["params"]))
        return {"id": message["id"], "result": None}

    conn = Connection(settings, lambda url: MemoryTransport(url, responder=responder))
    await conn.open()
    await conn.listen_live("uuid-1", lambda event: order.append(("event", event.action, event.detail)))

    reply = await conn.kill("uuid-1")

    assert reply.result is None
    assert order == [
        ("event", "CLOSE", CloseDetail.QUERY_KILLED.value),
        ("request", "kill", ["uuid-1"]),
    ]
    assert "uuid-1" not in conn._listeners
    await conn.close()


@pytest.mark.asyncio
async def test_notifications_racing_kill_are_discarded(settings, silent_recorder, wait_for):
    conn = Connection(settings, silent_recorder)
    await conn.open()
    transport = silent_recorder.current
    received = []
    await conn.listen_live("uuid-1", received.append)

    kill_task = asyncio.create_task(conn.kill("uuid-1"))
    assert await wait_for(lambda: transport.sent)
    transport.feed(_notification("uuid-1", "UPDATE", {"n": 9}))
    assert await wait_for(lambda: "uuid-1" in conn._early_arrivals)

    transport.feed({"id": transport.sent[0]["id"], "result": None})
    await kill_task

    assert [event.detail for event in received] == [CloseDetail.QUERY_KILLED.value]
    assert "uuid-1" not in conn._early_arrivals
    await conn.close()


@pytest.mark.asyncio
async def test_unsolicited_close_notifies_each_listener_once(silent_recorder, wait_for):
    settings = ClientSettings(url="http://db.test:8000", transport="memory", reconnect_delay_seconds=5)
    conn = Connection(settings, silent_recorder)
    await conn.open()
    transport = silent_recorder.current
    first, second = [], []
    await conn.listen_live("uuid-1", first.append)
    await conn.listen_live("uuid-2", second.append)
    transport.feed(_notification("uuid-3", "CREATE", {"n": 1}))
    assert await wait_for(lambda: "uuid-3" in conn._early_arrivals)
    pending = asyncio.create_task(conn.send("query", ["SLEEP 10s"]))
    assert await wait_for(lambda: transport.sent)

    transport.drop()

    with pytest.raises(ConnectionClosedError):
        await pending
    assert conn.connection_status is ConnectionStatus.RECONNECTING
    assert [(event.action, event.detail) for event in first] == [("CLOSE", CloseDetail.SOCKET_CLOSED.value)]
    assert [(event.action, event.detail) for event in second] == [("CLOSE", CloseDetail.SOCKET_CLOSED.value)]
    assert conn._listeners == {}
    assert conn._early_arrivals == {}
    assert conn._pending == {}
    await conn.close()


@pytest.mark.asyncio
async def test_explicit_close_notifies_listeners(settings, silent_recorder):
    conn = Connection(settings, silent_recorder)
    await conn.open()
    received = []
    await conn.listen_live("uuid-1", received.append)

    await conn.close()

    assert [event.detail for event in received] == [CloseDetail.SOCKET_CLOSED.value]
    assert conn._listeners == {}


@pytest.mark.asyncio
async def test_buffer_cap_drops_oldest_notification(silent_recorder, wait_for):
    settings = ClientSettings(url="http://db.test:8000", transport="memory", live_buffer_max=2)
    conn = Connection(settings, silent_recorder)
    await conn.open()
    transport = silent_recorder.current

    for n in (1, 2, 3):
        transport.feed(_notification("uuid-1", "CREATE", {"n": n}))
    assert await wait_for(lambda: [event.result["n"] for event in conn._early_arrivals.get("uuid-1", [])] == [2, 3])
    await conn.close()


@pytest.mark.asyncio
async def test_listener_may_send_requests_and_subscribe(settings, recorder, wait_for):
    conn = Connection(settings, recorder)
    await conn.open()
    transport = recorder.current
    replies, nested = [], []

    async def on_event(event):
        reply = await conn.send("select", [event.result["id"]])
        replies.append(reply.result)
        await conn.listen_live("uuid-2", nested.append)

    await conn.listen_live("uuid-1", on_event)
    transport.feed(_notification("uuid-2", "CREATE", {"id": "person:2"}))
    assert await wait_for(lambda: "uuid-2" in conn._early_arrivals)
    transport.feed(_notification("uuid-1", "CREATE", {"id": "person:1"}))

    assert await wait_for(lambda: replies == ["select"] and len(nested) == 1)
    assert nested[0].result == {"id": "person:2"}
    await conn.close()

@pytest.mark.asyncio
async def test_kill_discards_notification_queued_behind_slow_listener(settings, silent_recorder, wait_for):
    conn = Connection(settings, silent_recorder)
    await conn.open()
    transport = silent_recorder.current
    gate = asyncio.Event()
    other = []

    async def slow(event):
        other.append(event)
        await gate.wait()

    await conn.listen_live("other", slow)
    await conn.listen_live("uuid-1", lambda event: None)

    kill_task = asyncio.create_task(conn.kill("uuid-1"))
    assert await wait_for(lambda: transport.sent)
    transport.feed(_notification("other", "UPDATE", {"n": 0}))
    assert await wait_for(lambda: other)
    transport.feed(_notification("uuid-1", "UPDATE", {"n": 1}))
    transport.feed({"id": transport.sent[0]["id"], "result": None})
    await asyncio.sleep(0.02)
    assert not kill_task.done()

    gate.set()
    await asyncio.wait_for(kill_task, timeout=1)

    assert conn._early_arrivals == {}
    await conn.close()


@pytest.mark.asyncio
async def test_kill_from_listener_purges_after_dispatch(settings, recorder, wait_for):
    conn = Connection(settings, recorder)
    await conn.open()
    transport = recorder.current
    replies = []

    async def stop_on_first(event):
        if not event.is_close:
            replies.append(await conn.kill("uuid-1"))

    await conn.listen_live("uuid-1", stop_on_first)
    transport.feed(_notification("uuid-1", "CREATE", {"n": 1}))
    transport.feed(_notification("uuid-1", "UPDATE", {"n": 2}))

    assert await wait_for(lambda: replies and "uuid-1" not in conn._early_arrivals)
    assert [message["method"] for message in transport.sent] == ["kill"]
    await conn.close()
