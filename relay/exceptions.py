"""中继异常模块
定义同步层中的各类异常，提供明确的错误类型和信息
"""

from i18n import t as _t


class RelayError(Exception):
    """中继异常基类

    所有同步层相关的异常都应该继承此类，
    提供统一的异常处理接口。
    """

    def __init__(self, message: str, details: dict | None = None):
        """初始化异常

        Args:
            message: 错误消息
            details: 额外的错误详情（可选）
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ProtocolError(RelayError):
    """协议异常

    收到无法解析或结构不合法的消息时抛出。
    连接不会因此断开，消息被丢弃。
    """

    def __init__(self, message: str | None = None, raw: str | bytes | None = None):
        if message is None:
            message = _t("error.invalid_format")
        details = {}
        if raw is not None:
            excerpt = raw if isinstance(raw, str) else raw.decode("utf-8", "replace")
            details["raw"] = excerpt[:80]
        super().__init__(message, details)
        self.raw = raw


class ConnectionLimitError(RelayError):
    """连接数超限异常"""

    def __init__(self, message: str | None = None, remote_ip: str | None = None,
                 close_code: int = 1013):
        if message is None:
            message = _t("server.full")
        details = {"close_code": close_code}
        if remote_ip:
            details["remote_ip"] = remote_ip
        super().__init__(message, details)
        self.remote_ip = remote_ip
        self.close_code = close_code


class NotConnectedError(RelayError):
    """未连接时尝试发送消息"""

    def __init__(self, message: str | None = None, msg_type: str | None = None):
        if message is None:
            message = _t("client.not_connected")
        details = {"type": msg_type} if msg_type else {}
        super().__init__(message, details)
        self.msg_type = msg_type
