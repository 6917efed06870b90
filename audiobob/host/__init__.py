"""宿主模块 - 把核心接到具体的语音平台上"""

from .discord_host import DiscordHost, SessionAudioSource

__all__ = [
    "DiscordHost",
    "SessionAudioSource"
]
