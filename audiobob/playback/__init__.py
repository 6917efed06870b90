"""
播放模块 - 处理每个连接的音频会话

该模块负责缓冲区填充的核心逻辑，包括播放状态机、PCM 处理和定位功能。
"""

from .audio_session import AudioSession, PlaybackState, SessionSnapshot
from .seek_manager import SeekManager

__all__ = [
    "AudioSession",
    "PlaybackState",
    "SessionSnapshot",
    "SeekManager"
]
