"""AudioBob 内置命令模块"""

import logging
import random
import re
from typing import TYPE_CHECKING

from audiobob.core.errors import HandlerError, SourceUnavailableError
from audiobob.playback.seek_manager import SeekManager
from .arguments import ParamKind
from .command_group import CommandTable
from .dispatcher import CommandContext, CommandResult

if TYPE_CHECKING:
    from audiobob.bot import AudioBob


QUIT_MESSAGES = (
    "I'm outta here", "You're boring", "Have a nice day", "Bye", "Good night",
    "Nothing to do here", "Taking a break", "Lorem ipsum dolor sit amet…",
    "Nothing can hold me back", "It's getting quiet", "Drop the bazzzzzz",
    "Never gonna give you up", "Never gonna let you down", "Keep rockin' it",
    "?", "c(ꙩ_Ꙩ)ꜿ", "I'll be back", "Your advertisement could be here",
    "connection lost", "disconnected", "Requested by API.",
)

# 聊天客户端会把链接包在 [URL]...[/URL] 里
_URL_TAG_PATTERN = re.compile(r"\[URL\](.*?)\[/URL\]", re.IGNORECASE)


def strip_url_tags(address: str) -> str:
    """去掉聊天客户端添加的 [URL] 标签"""
    return _URL_TAG_PATTERN.sub(r"\1", address).strip()


def _on_off(value: bool) -> str:
    return "on" if value else "off"


def _id_list(ids) -> str:
    return ", ".join(str(i) for i in sorted(ids)) if ids else "none"


class BotCommands:
    """
    Built-in command handlers for AudioBob.

    Provides audio control, music playback, whisper targets,
    status queries and bot administration.
    """

    def __init__(self, bot: "AudioBob"):
        """
        初始化内置命令模块

        Args:
            bot: 编排器实例，提供宿主、媒体源和命令表
        """
        self.logger = logging.getLogger("audiobob.commands.builtin")
        self.bot = bot
        self.seek_manager = SeekManager()

    def register_commands(self, table: CommandTable) -> None:
        """
        Register all built-in commands with the command table.

        Args:
            table: Command table instance
        """
        table.register("help", [], self.help_command, "Shows this help")
        table.register("help music", [], self.help_music_command, "Shows the music commands")
        table.register("ping", [], self.ping_command, "Returns pong")
        table.register("audio", [ParamKind.BOOL], self.audio_command,
                       "Turns audio on or off", admin_only=True)
        table.register("quality", [ParamKind.BOOL], self.quality_command,
                       "Switches between high and low audio quality", admin_only=True)

        music = table.group("music", "Music playback")
        music.register("start", [ParamKind.STRING], self.music_start_command, description="Starts playing an address")
        music.register("volume", [ParamKind.FLOAT], self.music_volume_command, description="Sets the volume factor")
        music.register("seek", [ParamKind.FLOAT], self.music_seek_command, description="Jumps to a position in seconds")
        music.register("loop", [ParamKind.BOOL], self.music_loop_command, description="Turns looping on or off")
        music.register("stop", [], self.music_stop_command, description="Stops playback")
        music.register("pause", [], self.music_pause_command, description="Pauses playback")
        music.register("unpause", [], self.music_unpause_command, description="Resumes playback")
        music.register("address", [], self.music_address_command, description="Shows the current address")

        whisper = table.group("whisper", "Whisper targets")
        clients = whisper.group("clients", "Whisper client targets")
        clients.register("add", [ParamKind.INT], self.whisper_client_add_command,
                         description="Whispers to a client", admin_only=True)
        clients.register("remove", [ParamKind.INT], self.whisper_client_remove_command,
                         description="Stops whispering to a client", admin_only=True)
        channels = whisper.group("channels", "Whisper channel targets")
        channels.register("add", [ParamKind.INT], self.whisper_channel_add_command,
                          description="Whispers to a channel", admin_only=True)
        channels.register("remove", [ParamKind.INT], self.whisper_channel_remove_command,
                          description="Stops whispering to a channel", admin_only=True)
        whisper.register("clear", [], self.whisper_clear_command,
                         description="Removes all whisper targets", admin_only=True)

        status = table.group("status", "Status information")
        status.register("audio", [], self.status_audio_command, description="Shows the audio status")
        status.register("whisper", [], self.status_whisper_command, description="Shows the whisper targets")
        status.register("music", [], self.status_music_command, description="Shows the music status")

        listing = table.group("list", "Server listings")
        listing.register("clients", [], self.list_clients_command,
                         description="Lists the clients on the server", admin_only=True)
        listing.register("channels", [], self.list_channels_command,
                         description="Lists the channels on the server", admin_only=True)

        table.register("join", [], self.join_command, "Joins your voice channel")
        table.register("leave", [], self.leave_command, "Leaves the voice channel")
        table.register("exit", [], self.exit_command, "Shuts the bot down", admin_only=True)
        table.register("error", [ParamKind.STRING], self.error_command, visible=False, admin_only=True)

        self.logger.debug(f"All built-in commands registered ({len(table)})")

    # ---- general ----

    def _usage_entries(self, pairs):
        table = self.bot.table
        return [(table.get(name).usage, description) for name, description in pairs]

    def help_command(self, ctx: CommandContext) -> CommandResult:
        table = self.bot.table
        entries = self._usage_entries((name, desc) for name, desc in table.describe() if not table.is_grouped(name))
        entries.extend((f"{name} ...", desc) for name, desc in table.groups() if " " not in name)
        return CommandResult.ok(self.bot.render_help(entries))

    def help_music_command(self, ctx: CommandContext) -> CommandResult:
        return CommandResult.ok(self.bot.render_help(self._usage_entries(self.bot.table.describe("music"))))

    def ping_command(self, ctx: CommandContext) -> CommandResult:
        return CommandResult.ok("pong")

    def audio_command(self, ctx: CommandContext, on: bool) -> CommandResult:
        ctx.session.set_enabled(on)
        return CommandResult.ok(f"Audio is now {_on_off(on)}")

    def quality_command(self, ctx: CommandContext, on: bool) -> CommandResult:
        ctx.session.set_quality(on)
        return CommandResult.ok(f"Quality is now {'high' if on else 'low'}")

    # ---- music ----

    def music_start_command(self, ctx: CommandContext, address: str) -> CommandResult:
        """
        打开音频源并开始播放

        打开操作在会话锁之外进行；如果期间有新的 start/stop，结果会被丢弃。
        """
        address = strip_url_tags(address)
        if not address:
            raise HandlerError("No address given")

        session = ctx.session
        token = session.start(address)
        try:
            source_handle = self.bot.media_source.open_source(address)
        except SourceUnavailableError as e:
            self.logger.warning(f"连接 {ctx.handle} 无法打开音频源: {e}")
            if session.fail_source(token):
                return CommandResult.error(e.user_message)
            return CommandResult.silent()

        if not session.attach_source(token, source_handle):
            return CommandResult.silent()
        return CommandResult.ok(f"Playing {address}")

    def music_volume_command(self, ctx: CommandContext, volume: float) -> CommandResult:
        value = ctx.session.set_volume(volume)
        return CommandResult.ok(f"Volume set to {value:g}")

    def music_seek_command(self, ctx: CommandContext, position: float) -> CommandResult:
        target = ctx.session.seek(position)
        return CommandResult.ok(f"Position set to {self.seek_manager.format_seconds(target)}")

    def music_loop_command(self, ctx: CommandContext, on: bool) -> CommandResult:
        ctx.session.set_looping(on)
        return CommandResult.ok(f"Loop is now {_on_off(on)}")

    def music_stop_command(self, ctx: CommandContext) -> CommandResult:
        ctx.session.stop()
        return CommandResult.ok("Music stopped")

    def music_pause_command(self, ctx: CommandContext) -> CommandResult:
        if not ctx.session.pause():
            return CommandResult.error("Nothing is playing")
        return CommandResult.ok("Music paused")

    def music_unpause_command(self, ctx: CommandContext) -> CommandResult:
        ctx.session.unpause()
        return CommandResult.ok("Music resumed")

    def music_address_command(self, ctx: CommandContext) -> CommandResult:
        source = ctx.session.snapshot().source
        if source is None:
            return CommandResult.error("Nothing is playing")
        return CommandResult.ok(source)

    # ---- whisper ----

    def whisper_client_add_command(self, ctx: CommandContext, client_id: int) -> CommandResult:
        if not ctx.session.add_whisper_client(client_id):
            return CommandResult.error(f"Client {client_id} is already a whisper target")
        return CommandResult.ok(f"Whispering to client {client_id}")

    def whisper_client_remove_command(self, ctx: CommandContext, client_id: int) -> CommandResult:
        if not ctx.session.remove_whisper_client(client_id):
            return CommandResult.error(f"Client {client_id} is not a whisper target")
        return CommandResult.ok(f"Stopped whispering to client {client_id}")

    def whisper_channel_add_command(self, ctx: CommandContext, channel_id: int) -> CommandResult:
        if not ctx.session.add_whisper_channel(channel_id):
            return CommandResult.error(f"Channel {channel_id} is already a whisper target")
        return CommandResult.ok(f"Whispering to channel {channel_id}")

    def whisper_channel_remove_command(self, ctx: CommandContext, channel_id: int) -> CommandResult:
        if not ctx.session.remove_whisper_channel(channel_id):
            return CommandResult.error(f"Channel {channel_id} is not a whisper target")
        return CommandResult.ok(f"Stopped whispering to channel {channel_id}")

    def whisper_clear_command(self, ctx: CommandContext) -> CommandResult:
        ctx.session.clear_whisper()
        return CommandResult.ok("Whisper targets cleared")

    # ---- status ----

    def status_audio_command(self, ctx: CommandContext) -> CommandResult:
        snapshot = ctx.session.snapshot()
        return CommandResult.ok(
            f"Audio: {_on_off(snapshot.enabled)}, quality: {'high' if snapshot.quality else 'low'}"
        )

    def status_whisper_command(self, ctx: CommandContext) -> CommandResult:
        snapshot = ctx.session.snapshot()
        return CommandResult.ok(
            f"Whisper clients: {_id_list(snapshot.whisper_clients)}\n"
            f"Whisper channels: {_id_list(snapshot.whisper_channels)}"
        )

    def status_music_command(self, ctx: CommandContext) -> CommandResult:
        snapshot = ctx.session.snapshot()
        if snapshot.source is None:
            return CommandResult.ok("Music: stopped")
        position = self.seek_manager.format_seconds(snapshot.position_seconds)
        duration = self.seek_manager.format_seconds(snapshot.duration)
        return CommandResult.ok(
            f"Music: {snapshot.state.value} {snapshot.source}\n"
            f"Position: {position} / {duration}, volume: {snapshot.volume:g}, "
            f"loop: {_on_off(snapshot.looping)}"
        )

    # ---- server ----

    def list_clients_command(self, ctx: CommandContext) -> CommandResult:
        clients = self.bot.host.list_clients(ctx.handle)
        if not clients:
            return CommandResult.ok("No clients")
        return CommandResult.ok("\n".join(f"{cid}: {name}" for cid, name in clients))

    def list_channels_command(self, ctx: CommandContext) -> CommandResult:
        channels = self.bot.host.list_channels(ctx.handle)
        if not channels:
            return CommandResult.ok("No channels")
        return CommandResult.ok("\n".join(f"{cid}: {name}" for cid, name in channels))

    def join_command(self, ctx: CommandContext) -> CommandResult:
        error = self.bot.host.join_caller_channel(ctx.handle, ctx.caller.sender_ref)
        if error:
            return CommandResult.error(error)
        return CommandResult.ok("Joining your channel")

    def leave_command(self, ctx: CommandContext) -> CommandResult:
        ctx.session.stop()
        self.bot.host.leave_channel(ctx.handle)
        return CommandResult.silent()

    def exit_command(self, ctx: CommandContext) -> CommandResult:
        self.logger.info(f"🛑 用户 {ctx.caller.unique_id} 请求退出")
        self.bot.stop_all()
        self.bot.host.request_shutdown(random.choice(QUIT_MESSAGES))
        return CommandResult.silent()

    def error_command(self, ctx: CommandContext, text: str) -> CommandResult:
        # 控制端通过该命令转发它那边的错误
        self.logger.warning(f"连接 {ctx.handle} 收到远端错误 ({ctx.caller.unique_id}): {text}")
        return CommandResult.silent()
