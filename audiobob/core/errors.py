"""
错误定义 - AudioBob 的统一错误分类

所有命令路径上的错误最终都会变成给调用者的回复；
音频路径上的错误只会让对应连接降级为静音，不会影响整个进程。
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """错误分类枚举"""
    UNKNOWN_COMMAND = "unknown_command"        # 未知命令
    NOT_AUTHORIZED = "not_authorized"          # 权限不足
    BAD_ARGUMENTS = "bad_arguments"            # 参数错误
    HANDLER_ERROR = "handler_error"            # 命令执行失败
    SOURCE_UNAVAILABLE = "source_unavailable"  # 音频源不可用
    INVALID_CONNECTION = "invalid_connection"  # 无效的连接句柄


class BobError(Exception):
    """AudioBob 自定义异常基类"""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.HANDLER_ERROR,
        user_message: Optional[str] = None,
        recoverable: bool = True
    ):
        """
        初始化自定义异常

        Args:
            message: 错误消息（用于日志）
            category: 错误分类
            user_message: 发送给用户的消息
            recoverable: 是否可恢复
        """
        super().__init__(message)
        self.category = category
        self.user_message = user_message or message
        self.recoverable = recoverable


class UnknownCommandError(BobError):
    """未知命令"""

    def __init__(self, text: str):
        super().__init__(
            f"Unknown command: {text!r}",
            ErrorCategory.UNKNOWN_COMMAND,
            "Unknown command. Try 'help'."
        )
        self.text = text


class NotAuthorizedError(BobError):
    """调用者的服务器组不满足命令要求"""

    def __init__(self, command: str, required_group: int, group_id: Optional[int]):
        super().__init__(
            f"Caller group {group_id} below {required_group} for '{command}'",
            ErrorCategory.NOT_AUTHORIZED,
            "You are not authorized to use this command."
        )
        self.command = command
        self.required_group = required_group
        self.group_id = group_id


class BadArgumentsError(BobError):
    """参数解析失败，position 从 1 开始计数"""

    def __init__(self, position: int, token: str, expected: Optional[str] = None):
        if token:
            detail = f"Bad argument {position}: {token!r}"
        else:
            detail = f"Missing argument {position}"
        if expected:
            detail = f"{detail} (expected {expected})"
        super().__init__(detail, ErrorCategory.BAD_ARGUMENTS)
        self.position = position
        self.token = token
        self.expected = expected


class HandlerError(BobError):
    """命令处理器报告的失败"""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.HANDLER_ERROR)


class SourceUnavailableError(BobError):
    """无法打开音频源"""

    def __init__(self, descriptor: str, reason: str):
        super().__init__(
            f"Unable to open source {descriptor!r}: {reason}",
            ErrorCategory.SOURCE_UNAVAILABLE,
            f"Unable to create stream ({reason})"
        )
        self.descriptor = descriptor
        self.reason = reason


class SourceError(BobError):
    """音频源在播放过程中出错"""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.SOURCE_UNAVAILABLE)


class InvalidConnectionHandleError(BobError):
    """引用了不存在的连接句柄"""

    def __init__(self, handle: int):
        super().__init__(
            f"Unknown connection handle {handle}",
            ErrorCategory.INVALID_CONNECTION
        )
        self.handle = handle
