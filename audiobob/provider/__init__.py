"""音频源提供者模块"""

from .ffmpeg_source import FfmpegMediaSource, FfmpegSourceHandle

__all__ = [
    "FfmpegMediaSource",
    "FfmpegSourceHandle"
]
