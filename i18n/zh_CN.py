"""简体中文翻译表。"""

STRINGS: dict[str, str] = {
    # ── 服务端关闭原因 / 错误回复 ──
    "server.full": "服务器已满，请稍后再试",
    "server.ip_limit": "该 IP 连接数已达上限",
    "error.invalid_format": "消息格式无效，已丢弃",
    "error.rate_limited": "消息过快，已丢弃",
    # ── 客户端 ──
    "client.not_connected": "未连接到服务器",
    "client.user_disconnected": "用户断开连接",
    # ── 命令行 ──
    "cli.server_description": "贪吃蛇多人同步中继服务端",
    "cli.client_description": "贪吃蛇多人同步无界面客户端",
    "cli.snapshot": "[{state}] 当前在线玩家: {count}",
    "cli.interrupted": "已中断，再见!",
}
