"""
音频会话 - 单个连接的播放状态机和缓冲区填充

命令线程修改会话状态，音频回调线程通过 pull 读取状态并生成采样。
两者通过一把只在本会话范围内、短时间持有的锁同步：
pull 等锁有上限，等不到就输出静音，绝不阻塞音频线程。
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, Tuple

import numpy as np

from audiobob.core.errors import HandlerError, SourceError
from audiobob.core.interfaces import ISourceHandle
from .pcm import apply_volume, convert_channels, degrade_quality, mix_clip, silence
from .seek_manager import SeekManager


class PlaybackState(Enum):
    """播放状态枚举"""
    STOPPED = "stopped"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass(frozen=True)
class SessionSnapshot:
    """会话状态的只读快照，用于状态显示和语音传输层"""
    enabled: bool
    quality: bool
    source: Optional[str]
    position_seconds: float
    duration: Optional[float]
    volume: float
    looping: bool
    paused: bool
    state: PlaybackState
    whisper_clients: FrozenSet[int]
    whisper_channels: FrozenSet[int]


class AudioSession:
    """
    音频会话实现

    每个连接一个会话，由连接注册表独占持有。
    没有音频源时位置总是 0 且不处于暂停状态。
    """

    def __init__(
        self,
        handle: int,
        default_volume: float = 1.0,
        enabled: bool = True,
        quality: bool = True,
        pull_lock_timeout: float = 0.005
    ):
        """
        初始化音频会话

        Args:
            handle: 所属连接句柄
            default_volume: 默认音量
            enabled: 初始是否启用音频
            quality: 初始是否为高音质
            pull_lock_timeout: pull 等待会话锁的最长时间（秒）
        """
        self.handle = handle
        self.logger = logging.getLogger("audiobob.playback.session")
        self.seek_manager = SeekManager()
        self.pull_lock_timeout = pull_lock_timeout

        self._lock = threading.Lock()

        self._enabled = enabled
        self._quality = quality
        self._volume = max(float(default_volume), 0.0)
        self._looping = False
        self._paused = False

        # 音频源状态
        self._source: Optional[str] = None
        self._handle: Optional[ISourceHandle] = None
        self._loading = False
        self._generation = 0
        self._pending_seek: Optional[float] = None
        self._position = 0.0
        # 回到开头之后还没有读到任何数据
        self._wrapped_empty = False

        # 悄悄话目标
        self._whisper_clients = set()
        self._whisper_channels = set()

    # ---- 开关 ----

    def set_enabled(self, on: bool) -> None:
        """启用或禁用音频；禁用会丢弃当前的音频流"""
        dropped = None
        with self._lock:
            if not on:
                dropped = self._drop_source_locked()
            self._enabled = on
        self._close_quietly(dropped)
        self.logger.info(f"连接 {self.handle} 音频{'开启' if on else '关闭'}")

    def set_quality(self, on: bool) -> None:
        """切换高/低音质，只影响之后的 pull"""
        with self._lock:
            self._quality = on
        self.logger.debug(f"连接 {self.handle} 音质: {'high' if on else 'low'}")

    # ---- 音频源 ----

    def start(self, descriptor: str) -> int:
        """
        替换当前音频源并进入加载状态

        Args:
            descriptor: 音频源地址

        Returns:
            本次加载的代号，用于 attach_source / fail_source
        """
        with self._lock:
            dropped = self._drop_source_locked()
            self._source = descriptor
            self._loading = True
            token = self._generation
        self._close_quietly(dropped)
        self.logger.info(f"连接 {self.handle} 开始加载: {descriptor}")
        return token

    def attach_source(self, token: int, source_handle: ISourceHandle) -> bool:
        """
        安装已打开的音频源

        如果在加载期间发生了 stop/start/禁用，代号已经过期，源会被直接关闭。

        Returns:
            是否安装成功
        """
        stale = False
        with self._lock:
            if token != self._generation or not self._loading:
                stale = True
            else:
                self._handle = source_handle
                self._loading = False
                self._wrapped_empty = False
                if self._pending_seek is not None:
                    source_handle.seek(self._pending_seek)
                    self._position = self._pending_seek
                    self._pending_seek = None
        if stale:
            self.logger.debug(f"连接 {self.handle} 丢弃过期的音频源 (代号 {token})")
            self._close_quietly(source_handle)
            return False
        return True

    def fail_source(self, token: int) -> bool:
        """
        加载失败，降级为静音

        Returns:
            该失败是否仍然对应当前的加载（需要报告给调用者）
        """
        with self._lock:
            if token != self._generation or not self._loading:
                return False
            self._drop_source_locked()
        self.logger.warning(f"连接 {self.handle} 音频源加载失败，保持静音")
        return True

    def stop(self) -> bool:
        """
        停止播放并清除音频源

        Returns:
            之前是否有音频源
        """
        with self._lock:
            had_source = self._source is not None
            dropped = self._drop_source_locked()
        self._close_quietly(dropped)
        return had_source

    def close(self) -> None:
        """释放会话持有的所有资源"""
        self.stop()

    def _drop_source_locked(self) -> Optional[ISourceHandle]:
        # 调用者必须持有 self._lock，并在释放锁之后关闭返回的句柄
        dropped = self._handle
        self._handle = None
        self._source = None
        self._loading = False
        self._pending_seek = None
        self._position = 0.0
        self._paused = False
        self._wrapped_empty = False
        self._generation += 1
        return dropped

    def _close_quietly(self, source_handle: Optional[ISourceHandle]) -> None:
        if source_handle is None:
            return
        try:
            source_handle.close()
        except Exception as e:
            self.logger.warning(f"关闭音频源失败 - 连接 {self.handle}: {e}")

    # ---- 播放控制 ----

    def seek(self, seconds: float) -> float:
        """
        定位到指定位置，越界时限制到最近的合法位置

        Returns:
            实际定位到的位置（秒）

        Raises:
            HandlerError: 当前没有音频源
        """
        with self._lock:
            if self._source is None:
                raise HandlerError("Nothing is playing")

            duration = self._handle.duration() if self._handle else None
            target, _ = self.seek_manager.clamp_position(seconds, duration)

            if self._handle is None:
                self._pending_seek = target
            else:
                self._handle.seek(target)
                self._wrapped_empty = False
            self._position = target
        return target

    def set_volume(self, factor: float) -> float:
        """设置音量（不小于 0），返回实际值"""
        value = float(factor)
        if not value > 0.0:
            value = 0.0
        with self._lock:
            self._volume = value
        return value

    def set_looping(self, on: bool) -> None:
        """设置是否循环播放"""
        with self._lock:
            self._looping = on

    def pause(self) -> bool:
        """暂停播放，没有音频源时无效"""
        with self._lock:
            if self._source is None:
                return False
            self._paused = True
            return True

    def unpause(self) -> bool:
        """恢复播放"""
        with self._lock:
            was_paused = self._paused
            self._paused = False
            return was_paused

    # ---- 悄悄话目标 ----

    def add_whisper_client(self, client_id: int) -> bool:
        with self._lock:
            if client_id in self._whisper_clients:
                return False
            self._whisper_clients.add(client_id)
            return True

    def remove_whisper_client(self, client_id: int) -> bool:
        with self._lock:
            if client_id not in self._whisper_clients:
                return False
            self._whisper_clients.discard(client_id)
            return True

    def add_whisper_channel(self, channel_id: int) -> bool:
        with self._lock:
            if channel_id in self._whisper_channels:
                return False
            self._whisper_channels.add(channel_id)
            return True

    def remove_whisper_channel(self, channel_id: int) -> bool:
        with self._lock:
            if channel_id not in self._whisper_channels:
                return False
            self._whisper_channels.discard(channel_id)
            return True

    def clear_whisper(self) -> None:
        with self._lock:
            self._whisper_clients.clear()
            self._whisper_channels.clear()

    # ---- 状态 ----

    @property
    def position_seconds(self) -> float:
        with self._lock:
            return self._position

    @property
    def volume(self) -> float:
        with self._lock:
            return self._volume

    def _state_locked(self) -> PlaybackState:
        if self._source is None:
            return PlaybackState.STOPPED
        if self._loading:
            return PlaybackState.LOADING
        if self._paused:
            return PlaybackState.PAUSED
        return PlaybackState.PLAYING

    @property
    def state(self) -> PlaybackState:
        with self._lock:
            return self._state_locked()

    def snapshot(self) -> SessionSnapshot:
        """获取会话状态快照"""
        with self._lock:
            return SessionSnapshot(
                enabled=self._enabled,
                quality=self._quality,
                source=self._source,
                position_seconds=self._position,
                duration=self._handle.duration() if self._handle else None,
                volume=self._volume,
                looping=self._looping,
                paused=self._paused,
                state=self._state_locked(),
                whisper_clients=frozenset(self._whisper_clients),
                whisper_channels=frozenset(self._whisper_channels)
            )

    # ---- 缓冲区填充 ----

    def pull(
        self,
        frame_count: int,
        channel_count: int,
        is_outgoing: bool = True,
        incoming: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        生成下一块采样

        总是返回 frame_count * channel_count 个 int16 采样，不足部分补静音，
        从不抛出异常。接收方向（is_outgoing 为 False）原样返回输入。

        Args:
            frame_count: 请求的帧数
            channel_count: 声道数
            is_outgoing: 是否为机器人自己发送的音频
            incoming: 接收方向的输入采样

        Returns:
            int16 采样数组
        """
        if not is_outgoing:
            if incoming is not None:
                return incoming
            return silence(frame_count, channel_count)

        block, _ = self._pull(frame_count, channel_count)
        return block

    def mix_into(self, buffer: np.ndarray, frame_count: int, channel_count: int, is_outgoing: bool) -> bool:
        """
        把会话音频加法混入宿主缓冲区，混音后裁剪

        Args:
            buffer: 宿主提供的 int16 缓冲区，原地修改
            frame_count: 帧数
            channel_count: 声道数
            is_outgoing: 是否为发送方向；接收方向不做任何修改

        Returns:
            是否写入了音频
        """
        if not is_outgoing:
            return False

        block, produced = self._pull(frame_count, channel_count)
        if produced == 0:
            return False

        size = frame_count * channel_count
        buffer[:size] = mix_clip(buffer[:size], block)
        return True

    def _pull(self, frame_count: int, channel_count: int) -> Tuple[np.ndarray, int]:
        out = silence(frame_count, channel_count)
        if frame_count <= 0 or channel_count <= 0:
            return out, 0

        if not self._lock.acquire(timeout=self.pull_lock_timeout):
            # 命令正在修改状态，本块输出静音
            return out, 0
        dropped = None
        try:
            produced, dropped = self._fill_locked(out, frame_count, channel_count)
        except Exception as e:
            self.logger.error(f"连接 {self.handle} 填充音频失败: {e}", exc_info=True)
            dropped = self._drop_source_locked()
            out[:] = 0
            produced = 0
        finally:
            self._lock.release()

        self._close_quietly(dropped)
        return out, produced

    def _fill_locked(self, out: np.ndarray, frame_count: int, channel_count: int) -> Tuple[int, Optional[ISourceHandle]]:
        source_handle = self._handle
        if not self._enabled or source_handle is None or self._paused:
            return 0, None

        rate = source_handle.sample_rate
        source_channels = source_handle.channels
        produced = 0

        while produced < frame_count:
            try:
                samples = source_handle.read_samples(frame_count - produced)
            except SourceError as e:
                self.logger.warning(f"连接 {self.handle} 音频源出错，切换为静音: {e}")
                return self._finish_block(out, produced, channel_count), self._drop_source_locked()

            if samples is None:
                # 流结束
                if self._looping and not self._wrapped_empty:
                    source_handle.seek(0.0)
                    self._position = 0.0
                    self._wrapped_empty = True
                    continue
                self.logger.info(f"连接 {self.handle} 播放结束: {self._source}")
                return self._finish_block(out, produced, channel_count), self._drop_source_locked()

            usable = len(samples) - len(samples) % source_channels
            frames = min(usable // source_channels, frame_count - produced)
            if frames == 0:
                # 数据尚未就绪
                break

            converted = convert_channels(samples[:frames * source_channels], source_channels, channel_count)
            out[produced * channel_count:(produced + frames) * channel_count] = converted
            produced += frames
            self._position += frames / rate
            self._wrapped_empty = False

        return self._finish_block(out, produced, channel_count), None

    def _finish_block(self, out: np.ndarray, produced: int, channel_count: int) -> int:
        if produced == 0:
            return 0
        size = produced * channel_count
        block = apply_volume(out[:size], self._volume)
        if not self._quality:
            block = degrade_quality(block, channel_count)
        out[:size] = block
        return produced
