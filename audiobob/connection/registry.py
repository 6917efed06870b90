"""
连接注册表 - 管理所有活动的语音服务器连接

每个连接句柄对应一个 ServerConnection，其中包含该连接的音频会话、
调用者身份缓存和等待身份解析的命令队列。
会话与连接同时创建、同时销毁。
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from audiobob.core.errors import InvalidConnectionHandleError
from audiobob.core.interfaces import CallerIdentity
from audiobob.playback.audio_session import AudioSession


@dataclass
class PendingCommand:
    """等待调用者身份解析的命令"""
    unique_id: str
    text: str
    received_at: float = field(default_factory=time.monotonic)


class ServerConnection:
    """
    单个语音服务器连接

    持有音频会话和调用者授权缓存。
    """

    def __init__(self, handle: int, session: AudioSession, group_ttl: Optional[float] = None):
        """
        初始化连接

        Args:
            handle: 连接句柄
            session: 该连接独占的音频会话
            group_ttl: 服务器组缓存的有效时间（秒），None 表示永不过期
        """
        self.handle = handle
        self.session = session
        self.group_ttl = group_ttl
        self.logger = logging.getLogger("audiobob.connection")

        self._lock = threading.RLock()
        self._callers: Dict[str, CallerIdentity] = {}
        self._db_ids: Dict[int, str] = {}
        self._resolved_at: Dict[str, float] = {}
        self._pending: Deque[PendingCommand] = deque()
        self._queried: set = set()

    def get_caller(self, unique_id: str) -> Optional[CallerIdentity]:
        with self._lock:
            return self._callers.get(unique_id)

    def touch_caller(self, unique_id: str, sender_ref: Any) -> CallerIdentity:
        """
        获取或创建调用者身份，并更新其最新的发送者引用

        Args:
            unique_id: 调用者唯一标识
            sender_ref: 宿主运行时的发送者引用

        Returns:
            调用者身份
        """
        with self._lock:
            caller = self._callers.get(unique_id)
            if caller is None:
                caller = CallerIdentity(unique_id=unique_id, sender_ref=sender_ref)
                self._callers[unique_id] = caller
            elif sender_ref is not None:
                caller.sender_ref = sender_ref
            return caller

    def resolve_identity(self, unique_id: str, db_id: int) -> CallerIdentity:
        """记录调用者的数据库 ID"""
        with self._lock:
            caller = self.touch_caller(unique_id, None)
            if caller.db_id is not None and caller.db_id != db_id:
                self._db_ids.pop(caller.db_id, None)
            caller.db_id = db_id
            self._db_ids[db_id] = unique_id
            return caller

    def resolve_group(self, db_id: int, group_id: int) -> Optional[CallerIdentity]:
        """
        记录调用者的服务器组

        同一调用者可能属于多个组，保留最高的组；缓存过期后重新查询时从头计算。

        Returns:
            对应的调用者，数据库 ID 未知时返回 None
        """
        with self._lock:
            unique_id = self._db_ids.get(db_id)
            if unique_id is None:
                self.logger.debug(f"连接 {self.handle} 收到未知数据库 ID {db_id} 的服务器组")
                return None
            caller = self._callers[unique_id]
            if caller.group_id is None or group_id > caller.group_id:
                caller.group_id = group_id
            self._resolved_at[unique_id] = time.monotonic()
            self._queried.discard(unique_id)
            return caller

    def mark_queried(self, unique_id: str) -> bool:
        """
        标记已向宿主请求该调用者的服务器组

        Returns:
            是否是第一次请求
        """
        with self._lock:
            if unique_id in self._queried:
                return False
            self._queried.add(unique_id)
            return True

    def defer_command(self, unique_id: str, text: str, now: Optional[float] = None) -> Optional[PendingCommand]:
        """
        调用者的服务器组尚未解析（或缓存已过期）时把命令放入等待队列

        检查和入队在同一把锁内完成，与 resolve_group / take_ready_commands 互斥，
        因此命令要么在这里入队并在解析后被取出，要么调用者已经解析。

        Returns:
            入队的命令，调用者已解析时返回 None（应立即授权）
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            caller = self._callers.get(unique_id)
            if caller is not None and caller.is_resolved:
                if not self._group_expired(unique_id, now):
                    return None
                # 角色可能已经变化，重新向宿主查询
                self.logger.debug(f"连接 {self.handle} 调用者 {unique_id} 的服务器组缓存过期")
                caller.group_id = None
            pending = PendingCommand(unique_id=unique_id, text=text, received_at=now)
            self._pending.append(pending)
            return pending

    def _group_expired(self, unique_id: str, now: float) -> bool:
        if self.group_ttl is None or self.group_ttl <= 0:
            return False
        resolved_at = self._resolved_at.get(unique_id)
        return resolved_at is not None and now - resolved_at >= self.group_ttl

    def take_ready_commands(self) -> List[PendingCommand]:
        """取出所有调用者已解析的等待命令，保持到达顺序"""
        with self._lock:
            ready = []
            waiting = deque()
            for pending in self._pending:
                caller = self._callers.get(pending.unique_id)
                if caller is not None and caller.is_resolved:
                    ready.append(pending)
                else:
                    waiting.append(pending)
            self._pending = waiting
            return ready

    def expire_pending(self, timeout: float, now: Optional[float] = None) -> List[PendingCommand]:
        """
        丢弃等待超过 timeout 秒的命令

        Returns:
            被丢弃的命令
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            expired = [p for p in self._pending if now - p.received_at >= timeout]
            if expired:
                self._pending = deque(p for p in self._pending if now - p.received_at < timeout)
                for pending in expired:
                    self._queried.discard(pending.unique_id)
            return expired

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)


class ConnectionRegistry:
    """
    连接注册表实现

    注册表锁只在字典操作期间持有，不同连接之间互不影响。
    """

    def __init__(self, session_factory: Callable[[int], AudioSession], group_ttl: Optional[float] = None):
        """
        初始化连接注册表

        Args:
            session_factory: 为新连接创建默认状态会话的工厂函数
            group_ttl: 服务器组缓存的有效时间（秒）
        """
        self.group_ttl = group_ttl
        self.logger = logging.getLogger("audiobob.connection.registry")
        self.session_factory = session_factory
        self._lock = threading.Lock()
        self._connections: Dict[int, ServerConnection] = {}

    def add_server(self, handle: int) -> ServerConnection:
        """
        添加连接，重复添加视为无操作

        Returns:
            该句柄对应的连接
        """
        with self._lock:
            connection = self._connections.get(handle)
            if connection is not None:
                self.logger.debug(f"连接 {handle} 已存在，忽略重复添加")
                return connection
            connection = ServerConnection(handle, self.session_factory(handle), self.group_ttl)
            self._connections[handle] = connection
        self.logger.info(f"🔌 添加连接 {handle}")
        return connection

    def remove_server(self, handle: int) -> bool:
        """
        移除连接并释放会话资源，未知句柄视为无操作

        Returns:
            是否移除了连接
        """
        with self._lock:
            connection = self._connections.pop(handle, None)
        if connection is None:
            self.logger.debug(f"移除未知连接 {handle}，忽略")
            return False
        connection.session.close()
        self.logger.info(f"🔌 移除连接 {handle}")
        return True

    def get(self, handle: int) -> Optional[ServerConnection]:
        return self._connections.get(handle)

    def require(self, handle: int) -> ServerConnection:
        """
        获取连接

        Raises:
            InvalidConnectionHandleError: 句柄未知
        """
        connection = self._connections.get(handle)
        if connection is None:
            raise InvalidConnectionHandleError(handle)
        return connection

    def resolve_identity(self, handle: int, unique_id: str, db_id: int) -> CallerIdentity:
        return self.require(handle).resolve_identity(unique_id, db_id)

    def resolve_group(self, handle: int, db_id: int, group_id: int) -> Optional[CallerIdentity]:
        return self.require(handle).resolve_group(db_id, group_id)

    def handles(self) -> List[int]:
        with self._lock:
            return list(self._connections.keys())

    def connections(self) -> List[ServerConnection]:
        with self._lock:
            return list(self._connections.values())

    def close_all(self) -> None:
        """移除所有连接"""
        for handle in self.handles():
            self.remove_server(handle)

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, handle: int) -> bool:
        return handle in self._connections
