"""玩家注册表

连接 ID → 最近一次上报的 PlayerState。

- 由连接生命周期处理器写入，由广播循环只读
- 每次上报整体替换条目 (不做字段级合并)
- 条目为不可变对象，替换在锁内完成，快照永远不会读到半写状态
- 仅存于内存，进程重启即清空
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import PlayerUpdateData

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#d55400"
DEFAULT_MONEY = 1.00
DEFAULT_MAX_SEGMENTS = 100


@dataclass(frozen=True)
class Segment:
    """蛇身一节"""
    x: float
    y: float
    opacity: float | None = None

    def to_dict(self) -> dict[str, float]:
        data = {"x": self.x, "y": self.y}
        if self.opacity is not None:
            data["opacity"] = self.opacity
        return data


@dataclass(frozen=True)
class PlayerState:
    """单个连接的玩家状态 (客户端权威，服务端只负责转发)"""
    id: str
    segments: tuple[Segment, ...] = ()
    color: str = DEFAULT_COLOR
    money: float = DEFAULT_MONEY

    @classmethod
    def default(cls, connection_id: str) -> PlayerState:
        """连接建立时的默认条目"""
        return cls(id=connection_id)

    @classmethod
    def from_update(cls, connection_id: str, data: PlayerUpdateData,
                    max_segments: int = DEFAULT_MAX_SEGMENTS) -> PlayerState:
        """由一次完整状态上报构建新条目

        缺省字段取固定默认值，不继承旧条目；
        蛇身超过 max_segments 时保留靠近蛇头的部分。
        """
        raw_segments = data.segments or []
        if len(raw_segments) > max_segments:
            raw_segments = raw_segments[:max_segments]
        return cls(
            id=connection_id,
            segments=tuple(Segment(s.x, s.y, s.opacity) for s in raw_segments),
            color=data.color if data.color is not None else DEFAULT_COLOR,
            money=data.money if data.money is not None else DEFAULT_MONEY,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "segments": [s.to_dict() for s in self.segments],
            "color": self.color,
            "money": self.money,
        }


@dataclass
class PlayerRegistry:
    """线程安全的玩家注册表

    以注入方式同时交给连接处理器和广播循环，而不是模块级单例。
    """
    _entries: dict[str, PlayerState] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add(self, connection_id: str) -> PlayerState:
        """为新连接创建默认条目"""
        state = PlayerState.default(connection_id)
        with self._lock:
            self._entries[connection_id] = state
        return state

    def upsert(self, connection_id: str, state: PlayerState) -> None:
        """整体替换条目；条目 id 始终以连接 ID 为准"""
        if state.id != connection_id:
            state = replace(state, id=connection_id)
        with self._lock:
            self._entries[connection_id] = state

    def remove(self, connection_id: str) -> bool:
        """删除条目，不存在时为空操作。返回是否真的删除了"""
        with self._lock:
            removed = self._entries.pop(connection_id, None)
        if removed is not None:
            logger.debug("注册表移除 %s", connection_id)
        return removed is not None

    def get(self, connection_id: str) -> PlayerState | None:
        with self._lock:
            return self._entries.get(connection_id)

    def snapshot(self) -> tuple[PlayerState, ...]:
        """当前所有条目的不可变副本 (不保证顺序)"""
        with self._lock:
            return tuple(self._entries.values())

    def connection_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._entries

    def __iter__(self) -> Iterator[PlayerState]:
        return iter(self.snapshot())
