"""断线重连策略

重连不放在 ConnectionManager 内部，而是作为独立一层:
- ReconnectPolicy: 纯计算的指数退避 (可单独测试)
- ReconnectingClient: 监听连接关闭，按策略重新 connect
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .client import NORMAL_CLOSURE

if TYPE_CHECKING:
    from .client import ConnectionManager
    from .config import RelayConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconnectPolicy:
    """指数退避: 第 n 次重连前等待 base_delay * factor^(n-1)，不超过 max_delay"""
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    max_attempts: int = 5

    @classmethod
    def from_config(cls, cfg: RelayConfig) -> ReconnectPolicy:
        return cls(base_delay=cfg.reconnect_base_delay,
                   max_attempts=cfg.max_reconnect_attempts)

    def delay(self, attempt: int) -> float:
        """第 attempt 次 (从 1 开始) 重连前的等待秒数"""
        if attempt < 1:
            raise ValueError(f"attempt 从 1 开始: {attempt}")
        return min(self.max_delay, self.base_delay * self.factor ** (attempt - 1))

    def delays(self) -> Iterator[float]:
        for attempt in range(1, self.max_attempts + 1):
            yield self.delay(attempt)

    def should_retry(self, close_code: int | None) -> bool:
        """正常关闭 (1000) 不重连"""
        return close_code != NORMAL_CLOSURE


class ReconnectingClient:
    """在 ConnectionManager 之上按策略自动重连

    连接成功后尝试计数清零；用户主动 stop() 或正常关闭时不再重连。
    """

    def __init__(self, manager: ConnectionManager,
                 policy: ReconnectPolicy | None = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.manager = manager
        self.policy = policy or ReconnectPolicy()
        self.attempts: int = 0
        self._sleep = sleep
        self._stopped = False

    async def run(self, user_id: str) -> None:
        """连接并保持，直到停止、正常关闭或重连次数用尽"""
        self._stopped = False
        while not self._stopped:
            if await self.manager.connect(user_id):
                self.attempts = 0
                code = await self.manager.wait_closed()
                if self._stopped or not self.policy.should_retry(code):
                    logger.info(f"连接已结束 (关闭码 {code})，不再重连")
                    return
            if self._stopped:
                return
            if self.attempts >= self.policy.max_attempts:
                logger.error("重连失败，已达最大尝试次数")
                return
            self.attempts += 1
            delay = self.policy.delay(self.attempts)
            logger.info(f"{delay:.1f} 秒后重连 "
                        f"({self.attempts}/{self.policy.max_attempts})...")
            await self._sleep(delay)

    async def stop(self) -> None:
        self._stopped = True
        await self.manager.disconnect()
