"""测试连接的读写任务"""

import asyncio

from crossclip.hub import Connection, Hub, MessageHandler


class FakeWebSocket:
    """只记录写出内容、从不主动收到数据的连接"""

    remote_address = ("127.0.0.1", 0)

    def __init__(self):
        self.sent = []
        self.closed = False
        self.incoming = asyncio.Queue()

    async def recv(self):
        return await self.incoming.get()

    async def send(self, data):
        self.sent.append(data)

    async def close(self, code=1000, reason=""):
        self.closed = True

    async def ping(self):
        return asyncio.get_running_loop().create_future()


def test_silent_peer_hits_read_deadline():
    """对端既不发帧也不回 pong 时，读超时后连接被注销"""

    async def scenario():
        hub = Hub()
        connection = Connection(FakeWebSocket())
        await hub.register(connection)

        await asyncio.wait_for(
            connection.read_pump(hub, MessageHandler(hub), read_timeout=0.2), timeout=5.0
        )

        assert not hub.is_live(connection)
        assert connection.closed
        assert hub.metrics.keepalive_expired == 1

    asyncio.run(scenario())


def test_frames_extend_read_deadline():
    async def scenario():
        hub = Hub()
        websocket = FakeWebSocket()
        connection = Connection(websocket)
        await hub.register(connection)
        reader = asyncio.create_task(
            connection.read_pump(hub, MessageHandler(hub), read_timeout=0.3)
        )

        for _ in range(4):
            await asyncio.sleep(0.15)
            websocket.incoming.put_nowait('{"type":"register","keyHash":"abc"}')

        # 持续收到有效帧，超过单个读超时仍然存活
        await asyncio.sleep(0.05)
        assert hub.is_live(connection)

        await asyncio.wait_for(reader, timeout=5.0)
        assert not hub.is_live(connection)

    asyncio.run(scenario())


def test_read_deadline_after_eviction_not_counted():
    """已被其他路径注销的连接读超时时不重复计入保活过期"""

    async def scenario():
        hub = Hub()
        connection = Connection(FakeWebSocket())
        await hub.register(connection)
        await hub.unregister(connection, reason="backpressure")

        await asyncio.wait_for(
            connection.read_pump(hub, MessageHandler(hub), read_timeout=0.1), timeout=5.0
        )

        assert hub.metrics.keepalive_expired == 0
        assert hub.metrics.connections_closed == 1

    asyncio.run(scenario())


def test_write_pump_coalesces_and_drains_before_close():
    """同时排队的帧合并为一次写出，关闭前写完剩余帧"""

    async def scenario():
        hub = Hub()
        websocket = FakeWebSocket()
        connection = Connection(websocket)
        await hub.register(connection)

        for frame in ("1", "2", "3"):
            connection.outbox.put(frame)
        await hub.unregister(connection)

        await asyncio.wait_for(connection.write_pump(hub), timeout=5.0)

        assert websocket.sent == ["1\n2\n3"]
        assert websocket.closed

    asyncio.run(scenario())


def test_write_pump_sends_pings():
    async def scenario():
        hub = Hub()
        websocket = FakeWebSocket()
        pings = []

        async def ping():
            pong = asyncio.get_running_loop().create_future()
            pong.set_result(0.0)
            pings.append(pong)
            return pong

        websocket.ping = ping
        connection = Connection(websocket)
        await hub.register(connection)
        connection.last_seen -= 10

        writer = asyncio.create_task(connection.write_pump(hub, ping_interval=0.05))
        await asyncio.sleep(0.2)

        assert pings
        # pong 刷新活跃时间
        assert connection.idle_for() < 1

        await hub.unregister(connection)
        await asyncio.wait_for(writer, timeout=5.0)
        assert websocket.closed

    asyncio.run(scenario())
