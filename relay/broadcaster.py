"""快照广播循环

固定间隔把注册表快照扇出给所有打开的连接:
快照 → 序列化一次 → 并发发送同一帧。

- 没有连接时挂起等待唤醒，不空转、不报错
- 单个连接发送失败不影响同一 tick 内其他连接，也不会抛出循环
- 发送失败的连接交给 on_send_failure 处理 (移除条目 / 关闭套接字)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING

from websockets.exceptions import ConnectionClosed

from .protocol import encode_snapshot

if TYPE_CHECKING:
    from websockets.asyncio.server import ServerConnection

    from .registry import PlayerRegistry

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL: float = 0.05  # 50 ms

# 返回当前所有 (连接 ID, websocket) 的回调
TargetProvider = Callable[[], Iterable[tuple[str, "ServerConnection"]]]
FailureHandler = Callable[[str], Awaitable[None] | None]


class BroadcastLoop:
    """周期性快照广播任务

    循环本身不含任何玩家逻辑，只是把注册表当前内容原样扇出。
    """

    def __init__(self, registry: PlayerRegistry, targets: TargetProvider,
                 interval: float = DEFAULT_TICK_INTERVAL,
                 on_send_failure: FailureHandler | None = None):
        self._registry = registry
        self._targets = targets
        self.interval = interval
        self._on_send_failure = on_send_failure
        self._wakeup = asyncio.Event()
        self._running = False
        # 统计
        self.ticks: int = 0
        self.frames_sent: int = 0
        self.send_failures: int = 0

    @property
    def running(self) -> bool:
        return self._running

    def wake(self) -> None:
        """有新连接时唤醒挂起的循环"""
        self._wakeup.set()

    def stop(self) -> None:
        self._running = False
        self._wakeup.set()

    async def run(self) -> None:
        """主循环: 有连接时按固定间隔 tick，无连接时挂起"""
        self._running = True
        loop = asyncio.get_running_loop()
        logger.info("广播循环启动 (间隔 %.0f ms)", self.interval * 1000)
        try:
            while self._running:
                if not list(self._targets()):
                    self._wakeup.clear()
                    logger.debug("无连接，广播挂起")
                    await self._wakeup.wait()
                    continue
                started = loop.time()
                await self.tick()
                elapsed = loop.time() - started
                await asyncio.sleep(max(0.0, self.interval - elapsed))
        finally:
            self._running = False
            logger.info("广播循环停止 (共 %d tick)", self.ticks)

    async def tick(self) -> int:
        """执行一次广播，返回成功送达的连接数"""
        targets = list(self._targets())
        if not targets:
            return 0
        frame = encode_snapshot(self._registry.snapshot())
        results = await asyncio.gather(
            *(self._send(conn_id, ws, frame) for conn_id, ws in targets)
        )
        self.ticks += 1
        delivered = sum(results)
        self.frames_sent += delivered
        return delivered

    async def _send(self, conn_id: str, websocket: ServerConnection,
                    frame: str) -> bool:
        """向单个连接发送；任何失败都就地吸收"""
        try:
            await websocket.send(frame)
            return True
        except ConnectionClosed:
            # 本 tick 与关闭事件赛跑，属于正常情况
            logger.debug("连接 %s 已关闭，跳过广播", conn_id)
        except Exception as e:
            logger.warning(f"广播发送失败 (连接 {conn_id}): {e}")
        self.send_failures += 1
        await self._handle_failure(conn_id)
        return False

    async def _handle_failure(self, conn_id: str) -> None:
        self._registry.remove(conn_id)
        if self._on_send_failure is None:
            return
        try:
            result = self._on_send_failure(conn_id)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"发送失败回调异常 (连接 {conn_id}): {e}")
