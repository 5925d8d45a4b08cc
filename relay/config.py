"""中继服务配置中心 (SSOT - 单一事实来源)

所有可配置的网络参数在此定义，支持从环境变量覆盖。
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from i18n import get_available_locales


def _get_env_float(key: str, default: float) -> float:
    """从环境变量获取浮点数配置"""
    value = os.environ.get(key)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            pass
    return default


def _get_env_int(key: str, default: int) -> int:
    """从环境变量获取整数配置"""
    value = os.environ.get(key)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            pass
    return default


def _get_env_str(key: str, default: str) -> str:
    value = os.environ.get(key, "").strip()
    return value or default


@dataclass(frozen=True)
class RelayConfig:
    """中继配置类 (不可变)

    所有配置项支持通过环境变量覆盖：
    - SNAKE_RELAY_PORT: 监听端口
    - SNAKE_RELAY_TICK: 广播间隔秒数
    - SNAKE_RELAY_MAX_SEGMENTS: 单条蛇身最大段数
    - SNAKE_RELAY_RATE: 单连接每秒消息数上限
    """
    # ==================== 监听 ====================
    host: str = field(
        default_factory=lambda: _get_env_str("SNAKE_RELAY_HOST", "0.0.0.0")
    )
    port: int = field(
        default_factory=lambda: _get_env_int("SNAKE_RELAY_PORT", 3000)
    )
    path: str = field(
        default_factory=lambda: _get_env_str("SNAKE_RELAY_PATH", "/ws")
    )

    # ==================== 广播 ====================
    tick_interval: float = field(
        default_factory=lambda: _get_env_float("SNAKE_RELAY_TICK", 0.05)
    )
    max_segments: int = field(
        default_factory=lambda: _get_env_int("SNAKE_RELAY_MAX_SEGMENTS", 100)
    )

    # ==================== 网络安全 ====================
    max_connections: int = field(
        default_factory=lambda: _get_env_int("SNAKE_RELAY_MAX_CONN", 200)
    )
    max_connections_per_ip: int = field(
        default_factory=lambda: _get_env_int("SNAKE_RELAY_MAX_CONN_PER_IP", 8)
    )
    max_message_size: int = field(
        default_factory=lambda: _get_env_int("SNAKE_RELAY_MAX_MSG_SIZE", 65_536)
    )
    rate_limit: float = field(
        default_factory=lambda: _get_env_float("SNAKE_RELAY_RATE", 60.0)
    )
    rate_burst: int = field(
        default_factory=lambda: _get_env_int("SNAKE_RELAY_RATE_BURST", 120)
    )

    # ==================== 客户端重连 ====================
    reconnect_base_delay: float = field(
        default_factory=lambda: _get_env_float("SNAKE_RELAY_RECONNECT_DELAY", 1.0)
    )
    max_reconnect_attempts: int = field(
        default_factory=lambda: _get_env_int("SNAKE_RELAY_MAX_RECONNECT", 5)
    )

    # ==================== 日志与本地化 ====================
    log_level: str = field(
        default_factory=lambda: _get_env_str("SNAKE_RELAY_LOG_LEVEL", "INFO")
    )
    locale: str = field(
        default_factory=lambda: _get_env_str("SNAKE_RELAY_LOCALE", "zh_CN")
    )

    @classmethod
    def from_env(cls) -> RelayConfig:
        """从环境变量创建配置实例"""
        return cls()

    def validate(self) -> list[str]:
        """检查配置取值，返回错误描述列表 (为空表示合法)"""
        errors: list[str] = []
        if not 0 <= self.port <= 65535:
            errors.append(f"port 超出范围: {self.port}")
        if not self.path.startswith("/"):
            errors.append(f"path 必须以 / 开头: {self.path!r}")
        if self.tick_interval <= 0:
            errors.append(f"tick_interval 必须为正数: {self.tick_interval}")
        if self.max_segments < 0:
            errors.append(f"max_segments 不能为负: {self.max_segments}")
        if self.max_connections < 1:
            errors.append(f"max_connections 至少为 1: {self.max_connections}")
        if self.max_connections_per_ip < 1:
            errors.append(
                f"max_connections_per_ip 至少为 1: {self.max_connections_per_ip}"
            )
        if self.max_connections_per_ip > self.max_connections:
            errors.append("max_connections_per_ip 不能大于 max_connections")
        if self.max_message_size < 1024:
            errors.append(f"max_message_size 过小: {self.max_message_size}")
        if self.rate_limit <= 0 or self.rate_burst < 1:
            errors.append("rate_limit / rate_burst 必须为正数")
        if self.reconnect_base_delay < 0:
            errors.append("reconnect_base_delay 不能为负")
        if self.max_reconnect_attempts < 0:
            errors.append("max_reconnect_attempts 不能为负")
        if self.locale not in get_available_locales():
            errors.append(f"locale 不受支持: {self.locale}")
        return errors


# 全局配置单例
_config: RelayConfig | None = None


def get_config() -> RelayConfig:
    """获取全局配置实例（懒加载）"""
    global _config
    if _config is None:
        _config = RelayConfig.from_env()
    return _config


def reset_config() -> None:
    """重置配置（用于测试）"""
    global _config
    _config = None
