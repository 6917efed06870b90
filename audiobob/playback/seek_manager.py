"""
定位管理器 - 处理播放位置的范围限制和格式化

时长可能在音频源报告之前未知，因此越界的定位会被限制到最近的合法位置，
而不是报错。
"""

import logging
from typing import Optional, Tuple


class SeekManager:
    """
    定位管理器实现

    提供定位目标的范围限制和时间字符串格式化。
    """

    def __init__(self):
        """初始化定位管理器"""
        self.logger = logging.getLogger("audiobob.playback.seek_manager")

    def clamp_position(self, target_seconds: float, duration: Optional[float]) -> Tuple[float, bool]:
        """
        把定位目标限制到 [0, duration]

        Args:
            target_seconds: 目标位置（秒）
            duration: 音频总时长（秒），未知时为 None

        Returns:
            (限制后的位置, 是否发生了限制)
        """
        if target_seconds < 0:
            return 0.0, True
        if duration is not None and target_seconds > duration:
            self.logger.debug(f"定位目标 {target_seconds}s 超出时长 {duration}s，限制到末尾")
            return float(duration), True
        return float(target_seconds), False

    @staticmethod
    def format_seconds(seconds: Optional[float]) -> str:
        """
        将秒数格式化为可读时间字符串

        Args:
            seconds: 秒数，None 表示未知

        Returns:
            格式化的时间字符串，例如 "1:05" 或 "1:02:03"
        """
        if seconds is None:
            return "?:??"

        total_seconds = int(max(seconds, 0))
        hours = total_seconds // 3600
        minutes = (total_seconds % 3600) // 60
        secs = total_seconds % 60

        if hours > 0:
            return f"{hours}:{minutes:02d}:{secs:02d}"
        return f"{minutes}:{secs:02d}"
