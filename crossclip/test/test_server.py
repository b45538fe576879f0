"""端到端测试：在临时端口上启动真实的中继服务器"""

import asyncio
import json
import urllib.error
import urllib.request

import pytest
import websockets
from websockets.exceptions import ConnectionClosed

from crossclip.client import RelayClient, key_hash
from crossclip.exceptions import ClientError, ValidationError
from crossclip.hub import RelayServer
from crossclip.protocol import decode_burst
from crossclip.utils import RelayConfig

TIMEOUT = 5.0


def _run(scenario, **overrides):
    """启动服务器，执行场景，最后停止服务器"""

    async def runner():
        config = RelayConfig(host="127.0.0.1", port=0, **overrides)
        server = RelayServer(config)
        await server.start()
        try:
            await scenario(server, f"ws://127.0.0.1:{server.port}{config.ws_path}")
        finally:
            await server.stop()

    asyncio.run(runner())


async def _recv(websocket):
    return decode_burst(await asyncio.wait_for(websocket.recv(), timeout=TIMEOUT))


async def _register(websocket, key: str = "abc"):
    await websocket.send(json.dumps({"type": "register", "keyHash": key}))
    assert await _recv(websocket) == [
        {"type": "register_success", "message": "registered"}
    ]


def _fetch(url: str):
    with urllib.request.urlopen(url, timeout=TIMEOUT) as response:
        return response.status, response.headers["Content-Type"], json.loads(response.read())


def test_register_and_relay():
    async def scenario(server, url):
        async with websockets.connect(url) as a, websockets.connect(url) as b:
            await _register(a)
            await _register(b)

            await a.send(
                json.dumps({"type": "message", "keyHash": "abc", "encryptedMessage": "X"})
            )
            assert await _recv(b) == [{"type": "message", "encryptedMessage": "X"}]

            await a.send(
                json.dumps({"type": "message", "keyHash": "xyz", "encryptedMessage": "Y"})
            )
            assert await _recv(a) == [{"type": "error", "message": "key mismatch"}]

            # 错误之后连接仍然可用
            await b.send(
                json.dumps({"type": "message", "keyHash": "abc", "encryptedMessage": "Z"})
            )
            assert await _recv(a) == [{"type": "message", "encryptedMessage": "Z"}]

    _run(scenario)


def test_health_endpoint():
    async def scenario(server, url):
        base = f"http://127.0.0.1:{server.port}"

        async with websockets.connect(url) as a:
            await _register(a)
            status, content_type, body = await asyncio.to_thread(_fetch, f"{base}/health")

        assert status == 200
        assert content_type == "application/json"
        assert body["status"] == "ok"
        assert body["clients"] == 1
        assert isinstance(body["timestamp"], int)

        with pytest.raises(urllib.error.HTTPError) as exc_info:
            await asyncio.to_thread(_fetch, f"{base}/missing")
        assert exc_info.value.code == 404

    _run(scenario)


def test_disconnect_unregisters():
    async def scenario(server, url):
        async with websockets.connect(url) as a:
            await _register(a)
            assert server.hub.live_count() == 1

        for _ in range(50):
            if server.hub.live_count() == 0:
                break
            await asyncio.sleep(0.05)

        assert server.hub.live_count() == 0
        assert server.hub.group_count() == 0

        stats = server.get_stats()
        assert stats["server"]["port"] == server.port
        assert stats["hub"]["metrics"]["connections_closed"] == 1

    _run(scenario)


def test_connection_limit():
    async def scenario(server, url):
        async with websockets.connect(url) as a:
            await _register(a)

            async with websockets.connect(url) as b:
                with pytest.raises(ConnectionClosed):
                    await asyncio.wait_for(b.recv(), timeout=TIMEOUT)
                assert b.close_code == 1013

        assert server.hub.metrics.connections_rejected == 1

    _run(scenario, max_connections=1)


def test_oversized_frame_closes_connection():
    async def scenario(server, url):
        async with websockets.connect(url) as a:
            await _register(a)
            oversized = {"type": "message", "keyHash": "abc", "encryptedMessage": "x" * 4096}
            await a.send(json.dumps(oversized))

            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(a.recv(), timeout=TIMEOUT)
            assert a.close_code == 1009

    _run(scenario, max_message_size=1024)


def test_pong_keeps_connection_alive():
    """客户端回应 ping 时，空闲超过读超时也不会被断开"""

    async def scenario(server, url):
        async with websockets.connect(url) as a:
            await _register(a)
            await asyncio.sleep(1.5)

            await a.send(json.dumps({"type": "register", "keyHash": "abc"}))
            assert await _recv(a) == [
                {"type": "register_success", "message": "registered"}
            ]

    _run(scenario, ping_interval=0.2, read_timeout=0.8, sweep_interval=0.3)


def test_relay_client_round_trip():
    async def scenario(server, url):
        alice = RelayClient(url)
        bob = RelayClient(url)
        received = asyncio.Queue()

        @bob.on_message()
        async def on_message(encrypted_message):
            await received.put(("message", encrypted_message))

        @bob.on_copy()
        def on_copy(encrypted_content, content_type):
            received.put_nowait(("copy", encrypted_content, content_type))

        await alice.connect()
        await bob.connect()
        try:
            key = key_hash("secret")
            await alice.register(key)
            await bob.register(key)

            await alice.send_message("X")
            assert await asyncio.wait_for(received.get(), TIMEOUT) == ("message", "X")

            reply = await alice.send_copy("C", "image", timeout=TIMEOUT)
            assert reply["success"] is True
            assert await asyncio.wait_for(received.get(), TIMEOUT) == ("copy", "C", "image")

            alice.key_hash = "other"
            with pytest.raises(ClientError) as exc_info:
                await alice.send_copy("C", timeout=TIMEOUT)
            assert exc_info.value.message == "key mismatch"
        finally:
            await alice.disconnect()
            await bob.disconnect()

        assert not alice.connected

    _run(scenario)


def test_key_hash_matches_browser_digest():
    assert key_hash("secret") == "5ebe2294ecd0e0f08eab7690d2a6ee69"


def test_serve_forever_stops_on_event():
    async def scenario():
        server = RelayServer(RelayConfig(host="127.0.0.1", port=0))
        stop_event = asyncio.Event()
        task = asyncio.create_task(server.serve_forever(stop_event))

        for _ in range(50):
            if server.running:
                break
            await asyncio.sleep(0.02)
        assert server.running

        stop_event.set()
        await asyncio.wait_for(task, timeout=TIMEOUT)
        assert not server.running
        assert not server.hub.running

    asyncio.run(scenario())


def test_connection_limit_concurrent_connects():
    async def scenario(server, url):
        async def attempt():
            websocket = await websockets.connect(url)
            try:
                await websocket.send(json.dumps({"type": "register", "keyHash": "abc"}))
                await _recv(websocket)
                return websocket
            except ConnectionClosed:
                assert websocket.close_code == 1013
                return None

        results = await asyncio.gather(*(attempt() for _ in range(10)))
        accepted = [ws for ws in results if ws is not None]
        try:
            assert len(accepted) == 1
            assert server.hub.live_count() == 1
            assert server.hub.metrics.connections_rejected == 9
        finally:
            for websocket in accepted:
                await websocket.close()

    _run(scenario, max_connections=1)


def test_relay_client_error_without_waiter():
    """被拒绝的 message 帧交给 on_error，不影响后续请求"""

    async def scenario(server, url):
        client = RelayClient(url)
        errors = []

        @client.on_error()
        def on_error(message):
            errors.append(message)

        await client.connect()
        try:
            await client.send_message("before register")

            await client.register("abc", timeout=TIMEOUT)
            assert errors == ["register first"]

            client.key_hash = "xyz"
            await client.send_message("X")
            reply = await client.register("abc", timeout=TIMEOUT)

            assert reply["type"] == "register_success"
            assert errors == ["register first", "key mismatch"]

            with pytest.raises(ValidationError):
                await client.register("")
        finally:
            await client.disconnect()

    _run(scenario)
