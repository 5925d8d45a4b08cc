"""上行消息速率限制

客户端通常每 50 ms 上报一次完整状态，默认速率留有余量，
只拦截明显异常的洪泛。被限流的消息直接丢弃，连接保持打开。
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class TokenBucket:
    """令牌桶

    以 rate 个/秒的速度补充令牌，最多积攒 burst 个。
    """
    rate: float = 60.0
    burst: int = 120
    tokens: float = -1.0
    last_refill: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        if self.tokens < 0:
            self.tokens = float(self.burst)

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.burst, self.tokens + (now - self.last_refill) * self.rate)
        self.last_refill = now

    def consume(self, n: int = 1) -> bool:
        """尝试取出 n 个令牌，不足时返回 False 且不扣减"""
        self._refill()
        if self.tokens >= n:
            self.tokens -= n
            return True
        return False

    @property
    def available(self) -> float:
        """当前可用令牌数（不消耗）"""
        elapsed = time.monotonic() - self.last_refill
        return min(self.burst, self.tokens + elapsed * self.rate)


class ConnectionRateLimiter:
    """每个连接一只令牌桶，并统计被丢弃的消息数"""

    def __init__(self, rate: float = 60.0, burst: int = 120) -> None:
        self._rate = rate
        self._burst = burst
        self._buckets: dict[str, TokenBucket] = {}
        self._dropped: dict[str, int] = {}

    def check(self, conn_id: str) -> bool:
        """允许则返回 True；拒绝时累计丢弃数"""
        bucket = self._buckets.get(conn_id)
        if bucket is None:
            bucket = self._buckets[conn_id] = TokenBucket(self._rate, self._burst)
        if bucket.consume():
            return True
        self._dropped[conn_id] = self._dropped.get(conn_id, 0) + 1
        return False

    def dropped(self, conn_id: str) -> int:
        return self._dropped.get(conn_id, 0)

    def first_drop(self, conn_id: str) -> bool:
        """是否刚刚发生该连接的第一次丢弃 (用于只记一条告警)"""
        return self._dropped.get(conn_id, 0) == 1

    def remove(self, conn_id: str) -> None:
        """断开连接时清理"""
        self._buckets.pop(conn_id, None)
        dropped = self._dropped.pop(conn_id, 0)
        if dropped:
            logger.info("连接 %s 共有 %d 条消息因限流被丢弃", conn_id, dropped)

    @property
    def active_connections(self) -> int:
        return len(self._buckets)
