import asyncio
import json

import pytest
from websockets.asyncio.client import connect

from chatrelay.config import Settings
from chatrelay.server.runtime import MAX_CLOSE_REASON_BYTES, Connection, ServerRuntime, close_reason


def make_settings(**extra):
    data = {"listen": "127.0.0.1:0", "synthetic": {"enabled": False}}
    data.update(extra)
    return Settings.model_validate(data)


async def recv_until(ws, type_, timeout=5.0):
    async def _loop():
        while True:
            frame = json.loads(await ws.recv())
            if frame["type"] == type_:
                return frame

    return await asyncio.wait_for(_loop(), timeout)


async def http_get(port, path):
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"GET {path} HTTP/1.1\r\nHost: 127.0.0.1:{port}\r\n\r\n".encode())
    await writer.drain()
    raw = await asyncio.wait_for(reader.read(), 5.0)
    writer.close()
    head, _, body = raw.partition(b"\r\n\r\n")
    return head.decode(), body


@pytest.mark.asyncio
async def test_join_and_chat_over_websocket():
    runtime = ServerRuntime(make_settings())
    await runtime.start()
    try:
        url = f"ws://127.0.0.1:{runtime.port}"
        async with connect(url) as alice, connect(url) as bob:
            await alice.send(json.dumps({"type": "join", "name": "Alice", "gender": "Female", "country": "US"}))
            accepted = await recv_until(alice, "join_accepted")
            assert accepted["payload"]["room"] == "global"

            await bob.send(json.dumps({"type": "join", "name": "Bob", "gender": "Male", "country": "GB"}))
            await recv_until(bob, "join_accepted")

            await bob.send(json.dumps({"type": "send_message", "content": "hello alice"}))
            message = await recv_until(alice, "message")
            assert message["payload"]["content"] == "hello alice"
            assert message["payload"]["username"] == "Bob"
            assert "address" not in message["payload"]
    finally:
        await runtime.stop()


@pytest.mark.asyncio
async def test_invalid_json_gets_bad_frame():
    runtime = ServerRuntime(make_settings())
    await runtime.start()
    try:
        async with connect(f"ws://127.0.0.1:{runtime.port}") as ws:
            await ws.send("{not json")
            error = await recv_until(ws, "error")
            assert error["payload"]["code"] == "BAD_FRAME"

            # the connection stays usable
            await ws.send(json.dumps({"type": "join", "name": "Alice", "gender": "Female", "country": "US"}))
            await recv_until(ws, "join_accepted")
    finally:
        await runtime.stop()


@pytest.mark.asyncio
async def test_disconnect_releases_session():
    runtime = ServerRuntime(make_settings())
    await runtime.start()
    try:
        async with connect(f"ws://127.0.0.1:{runtime.port}") as ws:
            await ws.send(json.dumps({"type": "join", "name": "Alice", "gender": "Female", "country": "US"}))
            await recv_until(ws, "join_accepted")
            assert len(runtime.state.sessions) == 1

        for _ in range(100):
            if len(runtime.state.sessions) == 0:
                break
            await asyncio.sleep(0.01)
        assert len(runtime.state.sessions) == 0
    finally:
        await runtime.stop()


@pytest.mark.asyncio
async def test_health_and_countries_routes():
    runtime = ServerRuntime(make_settings())
    await runtime.start()
    try:
        head, body = await http_get(runtime.port, "/health")
        assert head.startswith("HTTP/1.1 200")
        assert json.loads(body) == {"status": "healthy"}

        head, body = await http_get(runtime.port, "/api/countries")
        assert head.startswith("HTTP/1.1 200")
        codes = [c["code"] for c in json.loads(body)]
        assert "US" in codes
    finally:
        await runtime.stop()


def test_close_reason_is_cut_on_utf8_boundaries():
    reason = close_reason("спам " * 30)
    encoded = reason.encode("utf-8")
    assert len(encoded) <= MAX_CLOSE_REASON_BYTES
    assert reason.startswith("спам спам")
    assert close_reason("short") == "short"


async def login_admin(url):
    admin = await connect(url)
    await admin.send(json.dumps({"type": "admin_login", "username": "admin", "password": "admin123"}))
    await recv_until(admin, "admin_snapshot")
    return admin


@pytest.mark.asyncio
async def test_ban_with_long_non_ascii_reason_closes_socket():
    runtime = ServerRuntime(make_settings())
    await runtime.start()
    try:
        url = f"ws://127.0.0.1:{runtime.port}"
        async with connect(url) as alice:
            await alice.send(json.dumps({"type": "join", "name": "Alice", "gender": "Female", "country": "US"}))
            await recv_until(alice, "join_accepted")

            admin = await login_admin(url)
            reason = "спам " * 30
            await admin.send(json.dumps({"type": "admin_ban", "name": "Alice", "reason": reason}))

            notice = await recv_until(alice, "banned")
            assert notice["payload"]["reason"] == reason
            await asyncio.wait_for(alice.wait_closed(), 5.0)
            assert alice.close_code == 1008
            await admin.close()
    finally:
        await runtime.stop()


@pytest.mark.asyncio
async def test_stop_waits_for_writer_tasks():
    runtime = ServerRuntime(make_settings())
    await runtime.start()
    async with connect(f"ws://127.0.0.1:{runtime.port}") as ws:
        await ws.send(json.dumps({"type": "join", "name": "Alice", "gender": "Female", "country": "US"}))
        await recv_until(ws, "join_accepted")
        writers = [conn.writer for conn in runtime._connections.values()]

        await runtime.stop()

    assert writers
    assert all(writer.done() for writer in writers)


@pytest.mark.asyncio
async def test_frames_queued_behind_a_close_are_dropped():
    runtime = ServerRuntime(make_settings())
    await runtime.start()
    try:
        conn = Connection(connection_id="c-closing", websocket=None, address="10.0.0.1")
        runtime._connections[conn.connection_id] = conn
        runtime.close(conn.connection_id, "You have been banned")

        runtime._deliver(conn, {"type": "join", "name": "Mallory", "gender": "Male", "country": "US"})

        assert runtime.state.sessions.lookup("c-closing") is None
        assert len(runtime.state.sessions) == 0
        runtime._connections.pop(conn.connection_id)
    finally:
        await runtime.stop()
