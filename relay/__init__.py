"""贪吃蛇多人同步层
基于 WebSocket 的中继服务端 + 客户端连接管理器
"""

from .broadcaster import BroadcastLoop
from .client import ConnectionManager, ConnectionState, GameState
from .protocol import Message, MsgType
from .reconnect import ReconnectingClient, ReconnectPolicy
from .registry import PlayerRegistry, PlayerState, Segment
from .server import ConnectedPlayer, RelayServer

__all__ = [
    "MsgType", "Message",
    "PlayerRegistry", "PlayerState", "Segment",
    "BroadcastLoop",
    "RelayServer", "ConnectedPlayer",
    "ConnectionManager", "ConnectionState", "GameState",
    "ReconnectPolicy", "ReconnectingClient",
]
