"""网络安全模块

提供:
- ConnectionIdFactory: 计数器 + secrets 随机数的连接 ID 生成
- IPConnectionTracker: 单 IP 连接计数
- 安全相关常量

注意: authenticate 中的 userId 不做任何校验，原样信任；
这是一条明确的信任边界，身份校验属于宿主应用的会话层。
"""
from __future__ import annotations

import itertools
import secrets
import threading


# ==================== 安全常量 ====================

# WebSocket 消息体最大字节数
DEFAULT_MAX_MESSAGE_SIZE: int = 65_536  # 64 KB

# 连接限制
DEFAULT_MAX_CONNECTIONS: int = 200        # 服务器总连接上限
DEFAULT_MAX_CONNECTIONS_PER_IP: int = 8   # 单 IP 连接上限

# 连接 ID 随机部分的字节数 (8 bytes → 16 个十六进制字符)
CONNECTION_ID_BYTES: int = 8

# 关闭码
CLOSE_TRY_AGAIN_LATER: int = 1013
CLOSE_POLICY_VIOLATION: int = 1008


# ==================== 连接 ID ====================

class ConnectionIdFactory:
    """生成不可猜测、并发下不冲突的连接 ID。

    格式: ``"{序号}-{随机十六进制}"``。序号保证同一进程内唯一，
    随机部分保证不可预测。
    """

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            seq = next(self._counter)
        return f"{seq}-{secrets.token_hex(CONNECTION_ID_BYTES)}"


# ==================== IP 连接计数 ====================

class IPConnectionTracker:
    """跟踪每个 IP 的活跃连接数。"""

    def __init__(self, max_per_ip: int = DEFAULT_MAX_CONNECTIONS_PER_IP):
        self._max_per_ip = max_per_ip
        self._counts: dict[str, int] = {}

    def can_connect(self, ip: str) -> bool:
        """检查该 IP 是否还能建立新连接。"""
        return self._counts.get(ip, 0) < self._max_per_ip

    def add(self, ip: str) -> None:
        self._counts[ip] = self._counts.get(ip, 0) + 1

    def remove(self, ip: str) -> None:
        count = self._counts.get(ip, 0)
        if count <= 1:
            self._counts.pop(ip, None)
        else:
            self._counts[ip] = count - 1

    def get_count(self, ip: str) -> int:
        return self._counts.get(ip, 0)
