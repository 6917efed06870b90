"""AudioBob 编排器 - 把宿主事件路由到连接注册表、命令分发器和音频会话"""
import logging
from typing import Any, FrozenSet, List, Optional, Sequence, Tuple

import numpy as np

from audiobob.commands.bot_commands import BotCommands
from audiobob.commands.command_group import CommandTable
from audiobob.commands.dispatcher import CommandDispatcher, DispatchOutcome
from audiobob.connection.registry import ConnectionRegistry
from audiobob.core.errors import InvalidConnectionHandleError
from audiobob.core.interfaces import IHostRuntime, IMediaSource
from audiobob.core.settings import BobSettings
from audiobob.playback.audio_session import AudioSession


class AudioBob:
    """
    AudioBob 编排器实现。

    一个进程同时管理多个语音服务器连接：
    - 每个连接一个音频会话，随连接创建和销毁
    - 文本命令经分发器授权、解析后修改会话状态
    - 宿主的缓冲区填充请求直接读取会话，不等待命令处理
    - 引用未知连接句柄的事件被忽略
    """

    def __init__(self, host: IHostRuntime, media_source: IMediaSource, settings: Optional[BobSettings] = None):
        """
        初始化编排器

        Args:
            host: 宿主运行时
            media_source: 媒体源
            settings: 运行参数
        """
        self.logger = logging.getLogger("audiobob.bot")
        self.host = host
        self.media_source = media_source
        self.settings = settings or BobSettings()

        self.table = CommandTable()
        self.registry = ConnectionRegistry(self._create_session, self.settings.group_cache_seconds)
        self.dispatcher = CommandDispatcher(
            self.table,
            host,
            admin_group=self.settings.admin_group,
            identity_timeout=self.settings.identity_timeout
        )

        self.commands = BotCommands(self)
        self.commands.register_commands(self.table)

        self.logger.info(f"🎵 AudioBob 初始化完成 - {len(self.table)} 个命令, 管理员组 {self.settings.admin_group}")

    def _create_session(self, handle: int) -> AudioSession:
        return AudioSession(
            handle,
            default_volume=self.settings.default_volume,
            enabled=self.settings.audio_enabled,
            quality=self.settings.high_quality,
            pull_lock_timeout=self.settings.pull_lock_timeout
        )

    # ---- 宿主事件 ----

    def on_connection_added(self, handle: int) -> None:
        self.registry.add_server(handle)

    def on_connection_removed(self, handle: int) -> None:
        self.registry.remove_server(handle)

    def on_identity_resolved(self, handle: int, unique_id: str, db_id: int) -> None:
        """宿主解析出调用者的数据库 ID"""
        try:
            self.registry.resolve_identity(handle, unique_id, db_id)
        except InvalidConnectionHandleError as e:
            self.logger.debug(f"忽略身份解析事件: {e}")

    def on_group_resolved(self, handle: int, db_id: int, group_id: int) -> None:
        """宿主解析出调用者的服务器组，重放等待中的命令"""
        try:
            caller = self.registry.resolve_group(handle, db_id, group_id)
        except InvalidConnectionHandleError as e:
            self.logger.debug(f"忽略服务器组事件: {e}")
            return
        if caller is not None:
            self.dispatcher.on_group_resolved(self.registry.require(handle))

    def on_text_message(self, handle: int, sender_ref: Any, unique_id: str, text: str) -> Optional[DispatchOutcome]:
        """
        处理文本消息

        Returns:
            分发结果，连接未知时返回 None
        """
        connection = self.registry.get(handle)
        if connection is None:
            self.logger.debug(f"忽略未知连接 {handle} 的消息")
            return None
        return self.dispatcher.handle_message(connection, sender_ref, unique_id, text)

    def on_fill_audio_buffer(
        self,
        handle: int,
        buffer: np.ndarray,
        length: int,
        channel_count: int,
        is_outgoing: bool
    ) -> bool:
        """
        填充宿主的音频缓冲区

        Args:
            handle: 连接句柄
            buffer: 交错 int16 缓冲区，至少 length * channel_count 个采样
            length: 帧数
            channel_count: 声道数
            is_outgoing: 是否为机器人自己发送的音频

        Returns:
            是否写入了音频
        """
        connection = self.registry.get(handle)
        if connection is None:
            return False
        return connection.session.mix_into(buffer, length, channel_count, is_outgoing)

    # ---- 查询与维护 ----

    def whisper_targets(self, handle: int) -> Tuple[FrozenSet[int], FrozenSet[int]]:
        """
        获取连接的悄悄话目标，供语音传输层使用

        Returns:
            (客户端 ID 集合, 频道 ID 集合)
        """
        connection = self.registry.get(handle)
        if connection is None:
            return frozenset(), frozenset()
        snapshot = connection.session.snapshot()
        return snapshot.whisper_clients, snapshot.whisper_channels

    def expire_pending(self) -> int:
        """丢弃所有连接上等待身份解析超时的命令"""
        return sum(self.dispatcher.expire(connection) for connection in self.registry.connections())

    def stop_all(self) -> None:
        """停止所有连接的播放"""
        for connection in self.registry.connections():
            connection.session.stop()

    def shutdown(self) -> None:
        """关闭所有连接并释放资源"""
        self.logger.info("🛑 正在关闭 AudioBob...")
        self.registry.close_all()

    @staticmethod
    def render_help(entries: Sequence[Tuple[str, str]]) -> str:
        """
        把 (名称, 描述) 列表渲染为对齐的帮助文本

        Args:
            entries: 帮助条目

        Returns:
            帮助文本
        """
        if not entries:
            return "No commands available"
        width = max(len(name) for name, _ in entries)
        lines: List[str] = ["Available commands:"]
        for name, description in entries:
            if description:
                lines.append(f"{name.ljust(width)}  {description}")
            else:
                lines.append(name)
        return "\n".join(lines)
