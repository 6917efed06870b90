#!/usr/bin/env python3
"""
AudioBob - 多服务器语音聊天音频机器人

主程序入口点，负责配置加载、核心与宿主的组装以及优雅的启动/关闭处理。
"""
import logging

from audiobob.bot import AudioBob
from audiobob.core.settings import BobSettings
from audiobob.host.discord_host import DiscordHost
from audiobob.provider.ffmpeg_source import FfmpegMediaSource
from audiobob.utils.config_manager import ConfigManager
from audiobob.utils.logger import setup_logger


def main() -> int:
    """
    AudioBob 主入口函数。

    处理机器人的完整生命周期，包括：
    - 日志系统设置
    - 配置加载和验证
    - 核心、媒体源和宿主的组装
    - 优雅的启动和关闭

    Returns:
        int: 退出代码（0表示成功，1表示错误）
    """
    try:
        config = ConfigManager()
    except FileNotFoundError as e:
        logging.basicConfig(level=logging.INFO)
        logging.getLogger("audiobob").error(f"❌ 配置文件错误: {e}")
        return 1

    setup_logger(
        log_level=config.get_log_level(),
        log_file=config.get_log_file(),
        max_size=config.get_log_max_size(),
        backup_count=config.get_log_backup_count()
    )
    logger = logging.getLogger("audiobob")

    logger.info("=" * 60)
    logger.info("🎵 AudioBob 启动中...")
    logger.info("=" * 60)

    try:
        try:
            discord_token = config.get_discord_token()
        except ValueError as e:
            logger.error(f"❌ Discord 令牌配置错误: {e}")
            logger.error("请检查 config/config.yaml 文件并确保 discord.token 已正确设置")
            return 1

        settings = BobSettings.from_config(config)
        media_source = FfmpegMediaSource(config.get_ffmpeg_path(), config.get_source_buffer_seconds())
        host = DiscordHost(config)
        bob = AudioBob(host, media_source, settings)
        host.attach(bob)

        _log_configuration(logger, config, settings)

        logger.info("🚀 启动 AudioBob...")
        logger.info("按 Ctrl+C 停止机器人")
        host.run(discord_token)
        bob.shutdown()

    except KeyboardInterrupt:
        logger.info("🛑 用户停止了机器人 (Ctrl+C)")
        return 0
    except Exception as e:
        logger.error(f"❌ 启动 AudioBob 时发生意外错误: {e}", exc_info=True)
        return 1

    return 0


def _log_configuration(logger: logging.Logger, config: ConfigManager, settings: BobSettings) -> None:
    """
    记录配置摘要，用于调试和监控。

    Args:
        logger: 日志记录器实例
        config: 配置管理器
        settings: 核心运行参数
    """
    logger.info("📋 配置摘要:")
    logger.info(f"   命令前缀: {config.get_command_prefix()}")
    logger.info(f"   管理员组: {settings.admin_group}")
    logger.info(f"   身份解析超时: {settings.identity_timeout} 秒")
    logger.info(f"   默认音量: {settings.default_volume}")
    logger.info(f"   音频: {'✅ 已启用' if settings.audio_enabled else '❌ 已禁用'}")
    logger.info(f"   音质: {'高' if settings.high_quality else '低'}")
    logger.info(f"   ffmpeg: {config.get_ffmpeg_path()}")
    logger.info("=" * 60)


if __name__ == "__main__":
    exit(main())
