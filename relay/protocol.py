"""网络协议定义
基于 WebSocket 的 JSON 消息格式

协议设计:
- 每帧一个 JSON 对象: {"type": "...", "payload": {...}}
- 客户端 → 服务端: authenticate / join_game / move / leave_game / update
- 服务端 → 客户端: welcome / players / error
- game_state / game_update 由客户端接受，但本中继从不发送
- 不带 type 字段的对象视为旧版完整状态上报 (等价于 update)
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import ProtocolError

if TYPE_CHECKING:
    from .registry import PlayerState

# ==================== 消息类型枚举 ====================

class MsgType(Enum):
    """网络消息类型"""

    # ---- Client → Server ----
    AUTHENTICATE = "authenticate"       # 声明身份 (不校验)
    JOIN_GAME = "join_game"             # 加入游戏 (仅记录)
    MOVE = "move"                       # 移动意图
    LEAVE_GAME = "leave_game"           # 离开游戏
    UPDATE = "update"                   # 完整状态上报

    # ---- Server → Client ----
    WELCOME = "welcome"                 # 连接建立，告知连接 ID
    PLAYERS = "players"                 # 周期性快照广播
    ERROR = "error"                     # 消息被丢弃的报告

    # ---- 客户端可接受的权威状态推送 ----
    GAME_STATE = "game_state"
    GAME_UPDATE = "game_update"


# 携带快照、会整体替换客户端 GameState 的消息类型
SNAPSHOT_TYPES = frozenset({MsgType.PLAYERS, MsgType.GAME_STATE, MsgType.GAME_UPDATE})


# ==================== 消息数据类 ====================

@dataclass
class Message:
    """双向通用消息

    格式:
    {
        "type": "players",
        "payload": { ... }
    }
    """
    type: MsgType
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload}

    def to_json(self) -> str:
        """序列化为 JSON 字符串"""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str | bytes) -> Message:
        """从 JSON 字符串反序列化

        Raises:
            ProtocolError: 非 JSON、非对象、缺少或未知的 type
        """
        type_str, obj = parse_message(raw)
        if not type_str:
            raise ProtocolError("缺少消息类型", raw=raw)
        if not validate_msg_type(type_str):
            raise ProtocolError(f"未知消息类型: {type_str}", raw=raw)
        msg_type = MsgType(type_str)
        payload = obj.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ProtocolError("payload 必须是对象", raw=raw)
        return cls(type=msg_type, payload=payload)

    # ---------- 工厂方法: Client → Server ----------

    @classmethod
    def authenticate(cls, user_id: str) -> Message:
        return cls(type=MsgType.AUTHENTICATE, payload={"userId": user_id})

    @classmethod
    def join_game(cls, game_id: str) -> Message:
        return cls(type=MsgType.JOIN_GAME, payload={"gameId": game_id})

    @classmethod
    def move(cls, direction: str) -> Message:
        return cls(type=MsgType.MOVE, payload={"direction": direction})

    @classmethod
    def leave_game(cls) -> Message:
        return cls(type=MsgType.LEAVE_GAME)

    @classmethod
    def update(cls, segments: list[dict[str, float]] | None = None,
               color: str | None = None, money: float | None = None) -> Message:
        """完整状态上报；省略的字段由服务端按默认值补齐"""
        payload: dict[str, Any] = {}
        if segments is not None:
            payload["segments"] = segments
        if color is not None:
            payload["color"] = color
        if money is not None:
            payload["money"] = money
        return cls(type=MsgType.UPDATE, payload=payload)

    # ---------- 工厂方法: Server → Client ----------

    @classmethod
    def welcome(cls, connection_id: str) -> Message:
        return cls(type=MsgType.WELCOME, payload={"connectionId": connection_id})

    @classmethod
    def players(cls, states: Iterable[PlayerState]) -> Message:
        return cls(type=MsgType.PLAYERS, payload={
            "players": [s.to_dict() for s in states],
        })

    @classmethod
    def error(cls, message: str, code: int = 400) -> Message:
        return cls(type=MsgType.ERROR, payload={"message": message, "code": code})


# ==================== 工具函数 ====================

def parse_message(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    """快速解析 JSON 消息，返回 (type_str, full_dict)

    用于路由层在不构造完整对象时快速判断消息类型；
    没有 type 字段时 type_str 为空字符串。

    Raises:
        ProtocolError: 非 JSON 或顶层不是对象
    """
    try:
        obj = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise ProtocolError(f"无效 JSON: {e}", raw=raw) from e
    if not isinstance(obj, dict):
        raise ProtocolError("消息顶层必须是 JSON 对象", raw=raw)
    type_str = obj.get("type", "")
    if not isinstance(type_str, str):
        raise ProtocolError("type 必须是字符串", raw=raw)
    return type_str, obj


def encode_snapshot(states: Iterable[PlayerState]) -> str:
    """将快照序列化为一帧 players 广播 (每个 tick 只序列化一次)"""
    return Message.players(states).to_json()


def validate_msg_type(type_str: str) -> bool:
    """检查消息类型是否合法"""
    try:
        MsgType(type_str)
        return True
    except ValueError:
        return False
