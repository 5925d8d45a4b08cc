"""WebSocket 中继服务端
基于 asyncio 的贪吃蛇多人同步中继

功能:
- 连接生命周期管理 (Connecting → Open → Closed)
- 玩家状态注册表写入 (唯一写入方)
- 周期性快照广播 (BroadcastLoop)
- 连接数 / 单 IP / 消息速率限制
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import TYPE_CHECKING

from pydantic import BaseModel
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosedError

if TYPE_CHECKING:
    from websockets.asyncio.server import Server, ServerConnection
    from websockets.http11 import Request, Response

    from .config import RelayConfig

from i18n import set_locale
from i18n import t as _t

from .broadcaster import DEFAULT_TICK_INTERVAL, BroadcastLoop
from .exceptions import ConnectionLimitError, ProtocolError
from .models import (
    AuthenticateData,
    JoinGameData,
    MoveData,
    PlayerUpdateData,
    validate_client_message,
)
from .protocol import Message, MsgType
from .rate_limiter import ConnectionRateLimiter
from .registry import DEFAULT_MAX_SEGMENTS, PlayerRegistry, PlayerState
from .security import (
    CLOSE_POLICY_VIOLATION,
    CLOSE_TRY_AGAIN_LATER,
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_MAX_CONNECTIONS_PER_IP,
    DEFAULT_MAX_MESSAGE_SIZE,
    ConnectionIdFactory,
    IPConnectionTracker,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_PATH = "/ws"


# ==================== 数据模型 ====================

@dataclass
class ConnectedPlayer:
    """一个打开的连接及其元数据 (玩家状态本身存放在注册表)"""
    connection_id: str
    websocket: ServerConnection
    remote_ip: str = ""
    user_id: str | None = None      # authenticate 声明的身份，未校验
    game_id: str | None = None      # join_game 记录，不做房间隔离
    last_direction: str | None = None
    connected_at: float = field(default_factory=time.time)
    messages: int = 0


Handler = Callable[[ConnectedPlayer, BaseModel], Awaitable[None]]


# ==================== 服务端核心 ====================

class RelayServer:
    """贪吃蛇 WebSocket 中继服务端

    职责:
    1. 接受 / 关闭 WebSocket 连接
    2. 解析上行消息并写入注册表
    3. 驱动广播循环把快照扇出给所有连接
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                 path: str | None = DEFAULT_PATH,
                 registry: PlayerRegistry | None = None,
                 tick_interval: float = DEFAULT_TICK_INTERVAL,
                 max_segments: int = DEFAULT_MAX_SEGMENTS,
                 max_connections: int = DEFAULT_MAX_CONNECTIONS,
                 max_connections_per_ip: int = DEFAULT_MAX_CONNECTIONS_PER_IP,
                 max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
                 rate_limit: float = 60.0,
                 rate_burst: int = 120):
        self.host = host
        self.port = port
        self.path = path
        self.max_segments = max_segments
        self._max_connections = max_connections
        self._max_message_size = max_message_size
        # 共享状态: 注入的注册表
        self.registry = registry if registry is not None else PlayerRegistry()
        # 连接管理
        self.connections: dict[str, ConnectedPlayer] = {}  # connection_id → player
        self._new_id = ConnectionIdFactory()
        # 安全组件
        self._ip_tracker = IPConnectionTracker(max_per_ip=max_connections_per_ip)
        self._rate_limiter = ConnectionRateLimiter(rate=rate_limit, burst=rate_burst)
        # 广播
        self.broadcaster = BroadcastLoop(
            self.registry,
            self._broadcast_targets,
            interval=tick_interval,
            on_send_failure=self._on_send_failure,
        )
        # 消息路由表
        self._handlers: dict[MsgType, Handler] = {
            MsgType.AUTHENTICATE: self._handle_authenticate,
            MsgType.JOIN_GAME: self._handle_join_game,
            MsgType.MOVE: self._handle_move,
            MsgType.LEAVE_GAME: self._handle_leave_game,
            MsgType.UPDATE: self._handle_update,
        }
        # 服务端状态
        self._server: Server | None = None
        self._broadcast_task: asyncio.Task | None = None
        self._closing_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, cfg: RelayConfig,
                    registry: PlayerRegistry | None = None) -> RelayServer:
        return cls(
            host=cfg.host,
            port=cfg.port,
            path=cfg.path,
            registry=registry,
            tick_interval=cfg.tick_interval,
            max_segments=cfg.max_segments,
            max_connections=cfg.max_connections,
            max_connections_per_ip=cfg.max_connections_per_ip,
            max_message_size=cfg.max_message_size,
            rate_limit=cfg.rate_limit,
            rate_burst=cfg.rate_burst,
        )

    @property
    def player_count(self) -> int:
        return len(self.connections)

    # ==================== 连接管理 ====================

    def _get_remote_ip(self, websocket: ServerConnection) -> str:
        """获取客户端 IP 地址"""
        try:
            peer = websocket.remote_address
            if isinstance(peer, tuple) and peer:
                return str(peer[0])
        except Exception:
            pass
        return "unknown"

    def _check_limits(self, remote_ip: str) -> None:
        """连接数检查，超限时抛出 ConnectionLimitError"""
        if len(self.connections) >= self._max_connections:
            raise ConnectionLimitError(
                _t("server.full"), remote_ip=remote_ip,
                close_code=CLOSE_TRY_AGAIN_LATER,
            )
        if not self._ip_tracker.can_connect(remote_ip):
            raise ConnectionLimitError(
                _t("server.ip_limit"), remote_ip=remote_ip,
                close_code=CLOSE_POLICY_VIOLATION,
            )

    async def _register(self, websocket: ServerConnection) -> ConnectedPlayer | None:
        """注册新连接: 分配 ID、创建默认条目、发送欢迎消息"""
        remote_ip = self._get_remote_ip(websocket)
        try:
            self._check_limits(remote_ip)
        except ConnectionLimitError as e:
            logger.warning(f"拒绝连接 {remote_ip}: {e}")
            await websocket.close(e.close_code, e.message)
            return None

        conn_id = self._new_id()
        player = ConnectedPlayer(
            connection_id=conn_id,
            websocket=websocket,
            remote_ip=remote_ip,
        )
        self.connections[conn_id] = player
        self.registry.add(conn_id)
        self._ip_tracker.add(remote_ip)

        await self._send(player, Message.welcome(conn_id))
        self.broadcaster.wake()
        logger.info(f"连接 {conn_id} 已建立 (IP: {remote_ip}, 在线 {self.player_count})")
        return player

    async def _unregister(self, conn_id: str) -> None:
        """注销连接 (幂等): 移除注册表条目并释放限额"""
        self.registry.remove(conn_id)
        player = self.connections.pop(conn_id, None)
        if player is None:
            return
        self._ip_tracker.remove(player.remote_ip)
        self._rate_limiter.remove(conn_id)
        logger.info(f"连接 {conn_id} 已断开 (在线 {self.player_count})")

    async def _on_send_failure(self, conn_id: str) -> None:
        """广播发送失败: 立即注销，后台关闭套接字"""
        player = self.connections.get(conn_id)
        await self._unregister(conn_id)
        if player is None:
            return
        task = asyncio.create_task(self._close_quietly(player.websocket))
        self._closing_tasks.add(task)
        task.add_done_callback(self._closing_tasks.discard)

    async def _close_quietly(self, websocket: ServerConnection) -> None:
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"关闭失效连接时出错: {e}")

    def _broadcast_targets(self) -> list[tuple[str, ServerConnection]]:
        return [(cid, p.websocket) for cid, p in self.connections.items()]

    # ==================== 消息收发 ====================

    async def _send(self, player: ConnectedPlayer, msg: Message) -> None:
        """发送消息给单个连接"""
        try:
            await player.websocket.send(msg.to_json())
        except Exception as e:
            logger.warning(f"发送消息失败 (连接 {player.connection_id}): {e}")

    # ==================== 消息路由 ====================

    async def _handle_message(self, player: ConnectedPlayer, raw: str | bytes) -> None:
        """路由消息到对应处理器（含 Pydantic 校验）

        任何格式问题只丢弃该条消息，连接保持打开。
        """
        if player.connection_id not in self.connections:
            return
        player.messages += 1

        if not self._rate_limiter.check(player.connection_id):
            if self._rate_limiter.first_drop(player.connection_id):
                logger.warning(f"速率限制: 连接 {player.connection_id} 消息过快，开始丢弃")
                await self._send(player, Message.error(_t("error.rate_limited"), code=429))
            return

        try:
            type_str, data = validate_client_message(raw)
        except ProtocolError as e:
            logger.warning(f"连接 {player.connection_id} 消息被丢弃: {e}")
            await self._send(player, Message.error(_t("error.invalid_format")))
            return
        except Exception as e:
            # 单条消息的任何解析异常都不能断开连接
            logger.exception(f"解析消息异常 (连接 {player.connection_id}): {e}")
            await self._send(player, Message.error(_t("error.invalid_format")))
            return

        try:
            msg_type = MsgType(type_str)
        except ValueError:
            logger.info(f"连接 {player.connection_id} 发送了未知消息类型: {type_str}")
            return

        handler = self._handlers.get(msg_type)
        if handler is None or data is None:
            logger.info(f"连接 {player.connection_id} 发送了不接受的消息类型: {type_str}")
            return
        try:
            await handler(player, data)
        except Exception as e:
            logger.exception(f"处理消息异常 (连接 {player.connection_id}): {e}")

    # ==================== 消息处理器 ====================

    async def _handle_update(self, player: ConnectedPlayer,
                             data: PlayerUpdateData) -> None:
        """完整状态上报: 整体替换注册表条目"""
        state = PlayerState.from_update(player.connection_id, data, self.max_segments)
        self.registry.upsert(player.connection_id, state)

    async def _handle_authenticate(self, player: ConnectedPlayer,
                                   data: AuthenticateData) -> None:
        # 信任边界: userId 原样接受，不作为准入条件
        player.user_id = data.user_id
        logger.info(f"连接 {player.connection_id} 声明身份 {data.user_id} (未校验)")

    async def _handle_join_game(self, player: ConnectedPlayer,
                                data: JoinGameData) -> None:
        # 只有一个隐式全局房间，game_id 仅作记录
        player.game_id = data.game_id
        logger.info(f"连接 {player.connection_id} 请求加入游戏 {data.game_id}")

    async def _handle_move(self, player: ConnectedPlayer, data: MoveData) -> None:
        player.last_direction = data.direction
        logger.debug(f"连接 {player.connection_id} 移动: {data.direction}")

    async def _handle_leave_game(self, player: ConnectedPlayer,
                                 data: BaseModel) -> None:
        logger.info(f"连接 {player.connection_id} 离开游戏 {player.game_id}")
        player.game_id = None

    # ==================== 服务端生命周期 ====================

    def _process_request(self, connection: ServerConnection,
                         request: Request) -> Response | None:
        """握手阶段: 只接受配置的路径"""
        if self.path is None:
            return None
        req_path = request.path.split("?", 1)[0]
        if req_path != self.path:
            logger.info(f"拒绝握手: 路径 {req_path}")
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    async def _connection_handler(self, websocket: ServerConnection) -> None:
        """处理单个 WebSocket 连接"""
        player = await self._register(websocket)
        if player is None:
            return  # 连接被拒绝
        try:
            async for raw_message in websocket:
                await self._handle_message(player, raw_message)
        except ConnectionClosedError as e:
            logger.info(f"连接 {player.connection_id} 异常关闭: {e}")
        except Exception as e:
            logger.warning(f"连接异常 (连接 {player.connection_id}): {e}")
        finally:
            await self._unregister(player.connection_id)

    async def start(self) -> None:
        """启动监听和广播任务"""
        self._server = await serve(
            self._connection_handler,
            self.host,
            self.port,
            max_size=self._max_message_size,
            process_request=self._process_request,
        )
        sockets = self._server.sockets
        if sockets:
            self.port = sockets[0].getsockname()[1]
        self._broadcast_task = asyncio.create_task(self.broadcaster.run())
        logger.info(f"中继服务端启动: ws://{self.host}:{self.port}{self.path or ''}")

    async def serve_forever(self) -> None:
        """启动并一直运行，直到被取消"""
        if self._server is None:
            await self.start()
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """停止服务端"""
        self.broadcaster.stop()
        if self._broadcast_task and not self._broadcast_task.done():
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        for conn_id in list(self.connections):
            await self._unregister(conn_id)
        logger.info("服务端停止")


# ==================== CLI 入口 ====================

def main(argv: list[str] | None = None) -> None:
    """命令行启动服务端"""
    import argparse

    from logging_config import setup_logging

    from .config import get_config

    cfg = get_config()
    parser = argparse.ArgumentParser(description=_t("cli.server_description"))
    parser.add_argument("--host", default=cfg.host, help="监听地址")
    parser.add_argument("--port", type=int, default=cfg.port, help="监听端口")
    parser.add_argument("--path", default=cfg.path, help="WebSocket 路径")
    parser.add_argument("--tick", type=float, default=cfg.tick_interval,
                        help="广播间隔 (秒)")
    parser.add_argument("-v", "--verbose", action="store_true", help="详细日志")
    args = parser.parse_args(argv)

    setup_logging(
        level="DEBUG" if args.verbose else cfg.log_level,
        enable_console=True,
        console_level="DEBUG" if args.verbose else "INFO",
    )

    errors = cfg.validate()
    if errors:
        for err in errors:
            logger.error(f"配置错误: {err}")
        raise SystemExit(2)

    set_locale(cfg.locale)
    server = RelayServer.from_config(cfg)
    server.host = args.host
    server.port = args.port
    server.path = args.path
    server.broadcaster.interval = args.tick
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        logger.info(_t("cli.interrupted"))


if __name__ == "__main__":
    main()
