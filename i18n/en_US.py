"""English translation table."""

STRINGS: dict[str, str] = {
    # ── server close reasons / error replies ──
    "server.full": "Server is full, please try again later",
    "server.ip_limit": "Too many connections from this IP",
    "error.invalid_format": "Malformed message discarded",
    "error.rate_limited": "Too many messages, discarded",
    # ── client ──
    "client.not_connected": "Not connected to the server",
    "client.user_disconnected": "User disconnected",
    # ── CLI ──
    "cli.server_description": "Snake multiplayer sync relay server",
    "cli.client_description": "Headless snake multiplayer sync client",
    "cli.snapshot": "[{state}] players online: {count}",
    "cli.interrupted": "Interrupted. Goodbye!",
}
