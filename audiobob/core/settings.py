"""核心运行参数 - 进程级配置，构造后只读"""

from dataclasses import dataclass

from audiobob.utils.config_manager import ConfigManager


@dataclass(frozen=True)
class BobSettings:
    """核心运行参数数据类"""
    admin_group: int = 1
    identity_timeout: float = 10.0
    default_volume: float = 1.0
    audio_enabled: bool = True
    high_quality: bool = True
    pull_lock_timeout: float = 0.005
    group_cache_seconds: float = 300.0

    @classmethod
    def from_config(cls, config: ConfigManager) -> "BobSettings":
        """
        从配置管理器读取运行参数

        Args:
            config: 配置管理器

        Returns:
            运行参数
        """
        return cls(
            admin_group=config.get_admin_group(),
            identity_timeout=config.get_identity_timeout(),
            default_volume=config.get_default_volume(),
            audio_enabled=config.get('audio.enabled', True),
            high_quality=config.get('audio.high_quality', True),
            pull_lock_timeout=config.get('audio.pull_lock_timeout', 0.005),
            group_cache_seconds=config.get_group_cache_seconds()
        )
