"""配置管理器 - 从 YAML 文件读取 AudioBob 的运行配置"""
import logging
import os
from typing import Any, Dict, Optional

import yaml

PLACEHOLDER_TOKEN = "YOUR_DISCORD_BOT_TOKEN_HERE"


class ConfigManager:
    """
    AudioBob 配置管理器

    键使用点号访问嵌套字段，例如 "audio.default_volume"；
    缺失的键返回调用方给出的默认值。
    """

    def __init__(self, config_path: str = "config/config.yaml"):
        """
        加载配置文件

        Args:
            config_path: 配置文件路径

        Raises:
            FileNotFoundError: 配置文件不存在
            yaml.YAMLError: 配置文件不是合法的 YAML
        """
        self.logger = logging.getLogger("audiobob.config")
        self.config_path = config_path
        self.config: Dict[str, Any] = self._read(config_path)

    def _read(self, path: str) -> Dict[str, Any]:
        if not os.path.exists(path):
            hint = f"{path}.example"
            if os.path.exists(hint):
                self.logger.error(f"找不到配置文件 {path}，请复制 {hint} 并填写")
            else:
                self.logger.error(f"找不到配置文件 {path}")
            raise FileNotFoundError(f"Configuration file {path} not found")

        try:
            with open(path, 'r', encoding='utf-8') as stream:
                data = yaml.safe_load(stream)
        except yaml.YAMLError as e:
            self.logger.error(f"配置文件解析失败: {e}")
            raise

        self.logger.debug(f"已加载配置: {path}")
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        """
        读取配置值

        Args:
            key: 点号分隔的键
            default: 键不存在时的默认值

        Returns:
            配置值或默认值
        """
        node: Any = self.config
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def get_discord_token(self) -> str:
        """
        Discord 机器人令牌

        Raises:
            ValueError: 未设置令牌或仍是示例占位符
        """
        token = self.get('discord.token')
        if not token or token == PLACEHOLDER_TOKEN:
            raise ValueError("Discord bot token not set in configuration")
        return token

    def get_command_prefix(self) -> str:
        """标记命令消息的前缀"""
        return self.get('discord.command_prefix', '!')

    def get_log_level(self) -> str:
        return self.get('logging.level', 'INFO')

    def get_log_file(self) -> Optional[str]:
        return self.get('logging.file')

    def get_log_max_size(self) -> int:
        """单个日志文件的最大字节数，超过后轮转"""
        return int(self.get('logging.max_size', 10 * 1024 * 1024))

    def get_log_backup_count(self) -> int:
        return int(self.get('logging.backup_count', 5))

    def get_admin_group(self) -> int:
        """
        获取管理员服务器组

        Returns:
            调用者的服务器组不低于该值时可以使用管理员命令，至少为 1
        """
        group = int(self.get('authorization.admin_group', 1))
        if group < 1:
            self.logger.warning(f"管理员组 {group} 会让所有人成为管理员，使用 1")
            return 1
        return group

    def get_identity_timeout(self) -> float:
        """
        获取等待调用者身份解析的最长时间

        Returns:
            超时时间（秒）
        """
        return float(self.get('authorization.identity_timeout', 10.0))

    def get_group_cache_seconds(self) -> float:
        """
        获取调用者服务器组缓存的有效时间

        Returns:
            有效时间（秒），0 表示永不过期
        """
        return float(self.get('authorization.group_cache_seconds', 300.0))

    def get_default_volume(self) -> float:
        """
        获取新会话的默认音量

        Returns:
            音量系数，不小于 0
        """
        volume = float(self.get('audio.default_volume', 1.0))
        if volume < 0:
            self.logger.warning(f"默认音量 {volume} 无效，使用 0")
            return 0.0
        return volume

    def get_ffmpeg_path(self) -> str:
        """ffmpeg 可执行文件路径"""
        return self.get('ffmpeg.path', 'ffmpeg')

    def get_source_buffer_seconds(self) -> float:
        """
        获取每个音频源预先缓冲的最大时长

        Returns:
            缓冲时长（秒）
        """
        return float(self.get('ffmpeg.buffer_seconds', 2.0))
