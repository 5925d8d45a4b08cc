"""WebSocket 客户端连接管理器

功能:
- 每个用户维护一条 WebSocket 连接
- 连接打开后立即发送 authenticate (不等待服务端确认)
- 把本地意图 (join / move / leave / 状态上报) 转换为上行消息
- 收到快照类消息时整体替换本地 GameState，并通知观察者

自动重连不在本类中实现，见 relay/reconnect.py。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosedError

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

from i18n import get_available_locales, set_locale
from i18n import t as _t

from .exceptions import NotConnectedError, ProtocolError
from .protocol import SNAPSHOT_TYPES, Message, MsgType

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "ws://localhost:3000/ws"
NORMAL_CLOSURE = 1000


class ConnectionState(Enum):
    """连接状态"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


@dataclass(frozen=True)
class GameState:
    """本地游戏状态: 最近一次收到的快照，每次整体覆盖"""
    players: tuple[dict[str, Any], ...] = ()
    payload: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    received_at: float = 0.0

    @classmethod
    def from_message(cls, msg: Message) -> GameState:
        players = msg.payload.get("players")
        if not isinstance(players, list):
            players = []
        return cls(
            players=tuple(p for p in players if isinstance(p, dict)),
            payload=msg.payload,
            source=msg.type.value,
            received_at=time.time(),
        )

    def find(self, player_id: str) -> dict[str, Any] | None:
        for p in self.players:
            if p.get("id") == player_id:
                return p
        return None


Observer = Callable[[ConnectionState, "GameState | None"], Any]


class ConnectionManager:
    """贪吃蛇 WebSocket 客户端

    职责:
    1. 维护与服务端的 WebSocket 连接
    2. 发送身份声明和玩家意图
    3. 把收到的快照暴露为 (state, game_state) 并通知观察者
    """

    def __init__(self, server_url: str = DEFAULT_SERVER_URL):
        self.server_url = server_url
        self.user_id: str | None = None
        self.connection_id: str | None = None  # 服务端 welcome 告知
        self.close_code: int | None = None

        self._ws: ClientConnection | None = None
        self._state = ConnectionState.DISCONNECTED
        self._game_state: GameState | None = None
        self._observers: list[Observer] = []
        self._receive_task: asyncio.Task | None = None
        self._closed = asyncio.Event()
        self._closed.set()

    # ==================== 可观察状态 ====================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def game_state(self) -> GameState | None:
        return self._game_state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._ws is not None

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """注册观察者，返回取消订阅函数"""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    async def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                result = observer(self._state, self._game_state)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"观察者回调异常: {e}")

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug(f"连接状态 {self._state.value} → {state.value}")
        self._state = state
        await self._notify()

    # ==================== 连接管理 ====================

    async def connect(self, user_id: str) -> bool:
        """连接服务端并声明身份，成功返回 True"""
        if self.is_connected:
            if user_id == self.user_id:
                return True
            await self.disconnect()

        self.user_id = user_id
        self.connection_id = None
        await self._set_state(ConnectionState.CONNECTING)
        try:
            self._ws = await ws_connect(self.server_url)
        except Exception as e:
            logger.error(f"连接失败: {e}")
            self._ws = None
            await self._set_state(ConnectionState.DISCONNECTED)
            return False

        self.close_code = None
        self._closed.clear()
        logger.info(f"已连接到 {self.server_url}")
        await self._set_state(ConnectionState.CONNECTED)
        # 不等待服务端确认
        await self.send(Message.authenticate(user_id))
        self._receive_task = asyncio.create_task(self._receive_loop())
        return True

    async def disconnect(self) -> None:
        """正常关闭连接 (关闭码 1000)"""
        ws = self._ws
        if ws is None:
            await self._set_state(ConnectionState.DISCONNECTED)
            return
        await self._set_state(ConnectionState.CLOSING)
        try:
            await ws.close(NORMAL_CLOSURE, _t("client.user_disconnected"))
        except Exception as e:
            logger.debug(f"关闭连接时出错: {e}")
        task = self._receive_task
        if task is not None and task is not asyncio.current_task():
            await task
        logger.info("已断开连接")

    async def wait_closed(self) -> int | None:
        """等待连接关闭，返回关闭码"""
        await self._closed.wait()
        return self.close_code

    # ==================== 消息收发 ====================

    async def send(self, msg: Message, strict: bool = False) -> bool:
        """发送消息；未连接时记录并返回 False (strict 时抛出 NotConnectedError)"""
        if not self.is_connected:
            if strict:
                raise NotConnectedError(msg_type=msg.type.value)
            logger.warning(f"未连接，无法发送 {msg.type.value}")
            return False
        try:
            await self._ws.send(msg.to_json())
            return True
        except Exception as e:
            logger.warning(f"发送失败: {e}")
            return False

    async def _receive_loop(self) -> None:
        """消息接收循环，连接关闭后转入 disconnected"""
        ws = self._ws
        try:
            async for raw in ws:
                await self._dispatch(raw)
        except ConnectionClosedError as e:
            logger.warning(f"连接异常关闭: {e}")
        except Exception as e:
            logger.warning(f"接收循环中断: {e}")
        finally:
            if getattr(ws, "close_code", None) is None:
                # 循环因本地异常退出时套接字仍然打开
                try:
                    await ws.close()
                except Exception as e:
                    logger.debug(f"关闭连接时出错: {e}")
            self.close_code = getattr(ws, "close_code", None)
            if self._ws is ws:
                self._ws = None
            await self._set_state(ConnectionState.DISCONNECTED)
            self._closed.set()

    async def _dispatch(self, raw: str | bytes) -> None:
        """分发收到的消息；解析失败只记录，不影响后续消息"""
        try:
            msg = Message.from_json(raw)
        except ProtocolError as e:
            logger.warning(f"无法解析服务端消息: {e}")
            return
        except Exception as e:
            logger.exception(f"解析服务端消息异常: {e}")
            return

        if msg.type in SNAPSHOT_TYPES:
            self._game_state = GameState.from_message(msg)
            await self._notify()
        elif msg.type == MsgType.WELCOME:
            self.connection_id = msg.payload.get("connectionId")
            logger.info(f"服务端分配连接 ID: {self.connection_id}")
        elif msg.type == MsgType.ERROR:
            logger.warning(f"服务端报告错误: {msg.payload.get('message')}")
        else:
            logger.debug(f"未处理的消息类型: {msg.type.value}")

    # ==================== 便捷操作方法 ====================

    async def join_game(self, game_id: str) -> bool:
        """加入游戏"""
        logger.info(f"加入游戏: {game_id}")
        return await self.send(Message.join_game(game_id))

    async def leave_game(self) -> bool:
        """离开游戏"""
        return await self.send(Message.leave_game())

    async def send_move(self, direction: str) -> bool:
        """移动意图"""
        return await self.send(Message.move(direction))

    async def send_state(self, segments: list[dict[str, float]] | None = None,
                         color: str | None = None,
                         money: float | None = None) -> bool:
        """上报完整状态，替换服务端上本连接的条目"""
        return await self.send(Message.update(segments, color, money))


# ==================== CLI 客户端 ====================


async def cli_client_main(server_url: str, user_id: str, reconnect: bool = True) -> None:
    """无界面客户端: 连接后定期打印快照摘要"""
    from .config import get_config
    from .reconnect import ReconnectingClient, ReconnectPolicy

    manager = ConnectionManager(server_url)
    cli_log = logging.getLogger("snake_relay.cli")
    last_count = -1

    def on_change(state: ConnectionState, game_state: GameState | None) -> None:
        nonlocal last_count
        count = len(game_state.players) if game_state else 0
        if count != last_count:
            last_count = count
            cli_log.info(_t("cli.snapshot", state=state.value, count=count))

    manager.subscribe(on_change)

    if not reconnect:
        if await manager.connect(user_id):
            await manager.wait_closed()
        return

    client = ReconnectingClient(manager, ReconnectPolicy.from_config(get_config()))
    await client.run(user_id)


def main(argv: list[str] | None = None) -> None:
    """命令行客户端入口"""
    import argparse

    from logging_config import setup_logging

    from .config import get_config

    parser = argparse.ArgumentParser(description=_t("cli.client_description"))
    parser.add_argument("--server", default=DEFAULT_SERVER_URL, help="服务端地址")
    parser.add_argument("--user", default="guest", help="用户 ID")
    parser.add_argument("--no-reconnect", action="store_true", help="断线后不重连")
    args = parser.parse_args(argv)

    cfg = get_config()
    if cfg.locale in get_available_locales():
        set_locale(cfg.locale)
    setup_logging(enable_console=True, console_level="INFO")
    try:
        asyncio.run(cli_client_main(args.server, args.user, not args.no_reconnect))
    except KeyboardInterrupt:
        logging.getLogger(__name__).info(_t("cli.interrupted"))


if __name__ == "__main__":
    main()
