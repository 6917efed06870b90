"""连接模块 - 语音服务器连接和调用者身份缓存"""

from .registry import ConnectionRegistry, PendingCommand, ServerConnection

__all__ = [
    "ConnectionRegistry",
    "PendingCommand",
    "ServerConnection"
]
