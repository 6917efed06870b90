"""
Discord 宿主 - 把 AudioBob 核心接到 Discord 上

- 每个服务器（guild）就是一个连接，guild ID 作为连接句柄
- 以命令前缀开头的消息作为命令文本交给核心
- 服务器管理员和配置的管理员角色属于管理员组，其他成员为 0，异步解析
- 语音客户端通过 SessionAudioSource 每 20ms 向核心拉取一块音频
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

import discord
import numpy as np
from discord.ext import commands, tasks

from audiobob.core.interfaces import IHostRuntime
from audiobob.utils.config_manager import ConfigManager

if TYPE_CHECKING:
    from audiobob.bot import AudioBob

FRAME_COUNT = 960  # 20ms @ 48kHz
CHANNELS = 2
MESSAGE_LIMIT = 1900


class SessionAudioSource(discord.AudioSource):
    """从音频会话拉取 PCM 的 Discord 音频源，由语音播放线程调用"""

    def __init__(self, bob: "AudioBob", handle: int):
        self.bob = bob
        self.handle = handle

    def read(self) -> bytes:
        buffer = np.zeros(FRAME_COUNT * CHANNELS, dtype=np.int16)
        self.bob.on_fill_audio_buffer(self.handle, buffer, FRAME_COUNT, CHANNELS, True)
        return buffer.tobytes()

    def is_opus(self) -> bool:
        return False


def split_message(text: str, limit: int = MESSAGE_LIMIT) -> List[str]:
    """按行把长消息拆分为不超过 limit 个字符的片段"""
    chunks = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class DiscordHost(IHostRuntime):
    """
    Discord 宿主实现

    核心的所有调用都发生在事件循环线程上；回复和语音操作以任务形式调度，
    从不在核心调用中等待网络。
    """

    def __init__(self, config: ConfigManager):
        """
        初始化 Discord 宿主

        Args:
            config: 配置管理器
        """
        self.logger = logging.getLogger("audiobob.host.discord")
        self.config = config
        self.prefix = config.get_command_prefix()
        self.admin_group = config.get_admin_group()
        self.admin_roles = frozenset(config.get('discord.admin_roles', []) or [])
        self.bob: Optional["AudioBob"] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        intents = discord.Intents.default()
        intents.message_content = True

        self.bot = commands.Bot(
            command_prefix=self.prefix,
            intents=intents,
            help_command=None
        )
        self.bot.add_listener(self._on_ready, 'on_ready')
        self.bot.add_listener(self._on_message, 'on_message')
        self.bot.add_listener(self._on_guild_join, 'on_guild_join')
        self.bot.add_listener(self._on_guild_remove, 'on_guild_remove')

        self._expire_loop = tasks.loop(
            seconds=config.get('authorization.expire_interval', 5.0)
        )(self._expire_pending)

        self.logger.debug("Discord 宿主初始化完成")

    def attach(self, bob: "AudioBob") -> None:
        """绑定核心编排器"""
        self.bob = bob

    # ---- Discord 事件 ----

    async def _on_ready(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.logger.info(f"🤖 已登录为 {self.bot.user}")
        for guild in self.bot.guilds:
            self.bob.on_connection_added(guild.id)
        if not self._expire_loop.is_running():
            self._expire_loop.start()

    async def _on_guild_join(self, guild: discord.Guild) -> None:
        self.bob.on_connection_added(guild.id)

    async def _on_guild_remove(self, guild: discord.Guild) -> None:
        self.bob.on_connection_removed(guild.id)

    async def _on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        content = message.content or ""
        if not content.startswith(self.prefix):
            return
        text = content[len(self.prefix):].strip()
        if not text:
            return
        self.bob.on_text_message(message.guild.id, message, str(message.author.id), text)

    async def _expire_pending(self) -> None:
        expired = self.bob.expire_pending()
        if expired:
            self.logger.debug(f"丢弃了 {expired} 条等待身份解析的命令")

    # ---- IHostRuntime ----

    def _schedule(self, coro) -> None:
        if self._loop is None or self._loop.is_closed():
            self.logger.warning("事件循环不可用，丢弃任务")
            coro.close()
            return
        asyncio.run_coroutine_threadsafe(coro, self._loop)

    def send_reply(self, handle: int, recipient: Any, text: str) -> None:
        self._schedule(self._send(recipient, text))

    async def _send(self, message: discord.Message, text: str) -> None:
        try:
            for chunk in split_message(text):
                if "\n" in chunk:
                    chunk = f"```\n{chunk}\n```"
                await message.reply(chunk, mention_author=False)
        except discord.HTTPException as e:
            self.logger.error(f"发送回复失败: {e}")

    def member_group(self, member: discord.Member) -> int:
        """
        成员的服务器组

        角色位置只在单个服务器内有意义，不能和进程级的管理员组比较；
        拥有管理员权限或配置的管理员角色的成员属于管理员组，其他成员为 0。
        """
        if member.guild_permissions.administrator:
            return self.admin_group
        if any(role.name in self.admin_roles for role in member.roles):
            return self.admin_group
        return 0

    def query_current_group(self, handle: int, unique_id: str) -> None:
        self._schedule(self._resolve_member(handle, unique_id))

    async def _resolve_member(self, handle: int, unique_id: str) -> None:
        guild = self.bot.get_guild(handle)
        if guild is None:
            return
        member_id = int(unique_id)
        member = guild.get_member(member_id)
        if member is None:
            try:
                member = await guild.fetch_member(member_id)
            except discord.HTTPException as e:
                self.logger.warning(f"无法获取成员 {unique_id}: {e}")
                return
        self.bob.on_identity_resolved(handle, unique_id, member.id)
        self.bob.on_group_resolved(handle, member.id, self.member_group(member))

    def list_clients(self, handle: int) -> List[Tuple[int, str]]:
        guild = self.bot.get_guild(handle)
        if guild is None:
            return []
        return [
            (member.id, member.display_name)
            for channel in guild.voice_channels
            for member in channel.members
        ]

    def list_channels(self, handle: int) -> List[Tuple[int, str]]:
        guild = self.bot.get_guild(handle)
        if guild is None:
            return []
        return [(channel.id, channel.name) for channel in guild.voice_channels]

    def join_caller_channel(self, handle: int, recipient: Any) -> Optional[str]:
        author = getattr(recipient, "author", None)
        voice = getattr(author, "voice", None)
        if voice is None or voice.channel is None:
            return "You are not in a voice channel"
        self._schedule(self._connect(handle, voice.channel))
        return None

    async def _connect(self, handle: int, channel: discord.VoiceChannel) -> None:
        try:
            voice_client = channel.guild.voice_client
            if voice_client and voice_client.is_connected():
                if voice_client.channel != channel:
                    await voice_client.move_to(channel)
                    self.logger.info(f"移动到频道: {channel.name}")
            else:
                voice_client = await channel.connect()
                self.logger.info(f"成功连接到语音频道: {channel.name} (服务器: {channel.guild.name})")

            if not voice_client.is_playing():
                voice_client.play(SessionAudioSource(self.bob, handle))
        except (discord.ClientException, asyncio.TimeoutError) as e:
            self.logger.error(f"连接语音频道失败 - 服务器 {handle}: {e}")

    def leave_channel(self, handle: int) -> None:
        self._schedule(self._disconnect(handle))

    async def _disconnect(self, handle: int) -> None:
        guild = self.bot.get_guild(handle)
        if guild is None or guild.voice_client is None:
            return
        await guild.voice_client.disconnect(force=True)
        self.logger.info(f"已断开语音连接 - 服务器 {handle}")

    def request_shutdown(self, quit_message: str) -> None:
        self.logger.info(f"👋 {quit_message}")
        self._schedule(self.close())

    async def close(self) -> None:
        """断开所有语音连接并关闭 Discord 客户端"""
        for voice_client in list(self.bot.voice_clients):
            try:
                await voice_client.disconnect(force=True)
            except discord.ClientException as e:
                self.logger.warning(f"断开语音连接失败: {e}")
        if self._expire_loop.is_running():
            self._expire_loop.cancel()
        if self.bob is not None:
            self.bob.shutdown()
        await self.bot.close()

    def run(self, token: str) -> None:
        """
        运行 Discord 客户端（阻塞式）

        Args:
            token: Discord 机器人令牌
        """
        self.bot.run(token, log_handler=None)
