# -*- coding: utf-8 -*-
"""
贪吃蛇多人同步层 - 命令行入口

使用方法:
    python main.py serve [--host 0.0.0.0] [--port 3000] [--path /ws] [-v]
    python main.py client [--server ws://localhost:3000/ws] [--user ID] [--no-reconnect]

依赖:
    - Python 3.10+
    - websockets, pydantic
"""

import sys
from pathlib import Path

# 确保可以导入项目模块
sys.path.insert(0, str(Path(__file__).parent))

from relay import client as relay_client
from relay import server as relay_server

_COMMANDS = {
    "serve": relay_server.main,
    "client": relay_client.main,
}


def main(argv=None) -> int:
    """按子命令分发到服务端或客户端入口"""
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in _COMMANDS:
        print(__doc__)
        return 1
    command, rest = argv[0], argv[1:]
    _COMMANDS[command](rest)
    return 0


if __name__ == "__main__":
    sys.exit(main())
