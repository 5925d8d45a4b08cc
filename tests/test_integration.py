"""
端到端集成测试
真实 websockets 服务端 + 客户端，在本机随机端口上运行
"""

import asyncio
import json

import pytest
import pytest_asyncio
from websockets.asyncio.client import connect

from relay.client import ConnectionManager, ConnectionState
from relay.server import RelayServer


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def server():
    srv = RelayServer(host="127.0.0.1", port=0, tick_interval=0.02)
    await srv.start()
    yield srv
    await srv.stop()


def _url(srv: RelayServer, path: str = "/ws") -> str:
    return f"ws://127.0.0.1:{srv.port}{path}"


@pytest.mark.asyncio
async def test_state_propagates_between_clients(server):
    alice = ConnectionManager(_url(server))
    bob = ConnectionManager(_url(server))
    assert await alice.connect("alice")
    assert await bob.connect("bob")
    await _wait_for(lambda: alice.connection_id and bob.connection_id)

    await alice.send_state(segments=[{"x": 1, "y": 1}], color="#ff0000", money=5)

    def bob_sees_alice():
        gs = bob.game_state
        p = gs.find(alice.connection_id) if gs else None
        return p is not None and p["color"] == "#ff0000"

    await _wait_for(bob_sees_alice)
    mine = bob.game_state.find(bob.connection_id)
    assert mine == {"id": bob.connection_id, "segments": [], "color": "#d55400", "money": 1.0}
    assert bob.game_state.find(alice.connection_id)["segments"] == [{"x": 1.0, "y": 1.0}]

    await alice.disconnect()
    await bob.disconnect()


@pytest.mark.asyncio
async def test_disconnect_removes_player(server):
    alice = ConnectionManager(_url(server))
    bob = ConnectionManager(_url(server))
    await alice.connect("alice")
    await bob.connect("bob")
    await _wait_for(lambda: alice.connection_id and bob.connection_id)
    alice_id = alice.connection_id

    await alice.disconnect()
    assert alice.state == ConnectionState.DISCONNECTED
    assert alice.close_code == 1000

    await _wait_for(lambda: alice_id not in server.registry)

    def alice_gone_for_bob():
        gs = bob.game_state
        return gs is not None and gs.find(alice_id) is None and gs.find(bob.connection_id)

    await _wait_for(alice_gone_for_bob)
    await bob.disconnect()
    await _wait_for(lambda: server.player_count == 0)


@pytest.mark.asyncio
async def test_wrong_path_rejected(server):
    manager = ConnectionManager(_url(server, "/other"))
    assert await manager.connect("eve") is False
    assert manager.state == ConnectionState.DISCONNECTED
    assert server.player_count == 0


@pytest.mark.asyncio
async def test_malformed_frame_keeps_connection(server):
    async with connect(_url(server)) as ws:
        welcome = json.loads(await ws.recv())
        assert welcome["type"] == "welcome"
        conn_id = welcome["payload"]["connectionId"]

        await ws.send("not json")
        while True:
            frame = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
            if frame["type"] == "error":
                break
        assert frame["payload"]["code"] == 400

        # 连接仍然可用，后续上报正常生效
        await ws.send(json.dumps({"color": "#00ff00"}))
        await _wait_for(lambda: server.registry.get(conn_id).color == "#00ff00")


@pytest.mark.asyncio
async def test_no_clients_no_ticks(server):
    await asyncio.sleep(0.1)
    assert server.broadcaster.ticks == 0
