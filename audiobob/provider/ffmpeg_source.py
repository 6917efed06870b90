"""
FFmpeg 媒体源 - 用 ffmpeg 子进程把任意地址解码为 s16le PCM

每个打开的源有一个工作线程：读取 ffmpeg 的标准输出到有上限的缓冲区，
并在定位时以 -ss 重新启动进程。read_samples 只从缓冲区取数据，从不阻塞。
"""

import logging
import re
import shutil
import subprocess
import threading
from typing import Callable, List, Optional

import numpy as np

from audiobob.core.errors import SourceError, SourceUnavailableError
from audiobob.core.interfaces import IMediaSource, ISourceHandle

SAMPLE_RATE = 48000
CHANNELS = 2
CHUNK_BYTES = 3840  # 20ms @ 48kHz 立体声

DURATION_PATTERN = re.compile(r"^\s*Duration: (\d+):(\d\d):(\d\d)\.(\d\d)")


def build_ffmpeg_args(
    ffmpeg_path: str,
    address: str,
    offset: float = 0.0,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS
) -> List[str]:
    """
    构建 ffmpeg 命令行

    Args:
        ffmpeg_path: ffmpeg 可执行文件
        address: 输入地址（文件路径或 URL）
        offset: 起始位置（秒）

    Returns:
        参数列表
    """
    args = [ffmpeg_path, "-hide_banner", "-nostats"]
    if offset > 0:
        args += ["-ss", f"{offset:.3f}"]
    args += [
        "-i", address,
        "-ac", str(channels),
        "-ar", str(sample_rate),
        "-f", "s16le",
        "-acodec", "pcm_s16le",
        "pipe:1",
    ]
    return args


def parse_duration(line: str) -> Optional[float]:
    """
    从 ffmpeg 的输出行中解析时长

    Args:
        line: 例如 "  Duration: 00:03:25.46, start: ..."

    Returns:
        时长（秒），不匹配时返回 None
    """
    match = DURATION_PATTERN.match(line)
    if not match:
        return None
    hours, minutes, seconds, centis = (int(group) for group in match.groups())
    return hours * 3600 + minutes * 60 + seconds + centis / 100.0


class FfmpegSourceHandle(ISourceHandle):
    """
    ffmpeg 音频源句柄

    缓冲区超过上限时工作线程等待，避免把整个文件解码进内存。
    """

    def __init__(
        self,
        ffmpeg_path: str,
        address: str,
        sample_rate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
        buffer_seconds: float = 2.0,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen
    ):
        self.logger = logging.getLogger("audiobob.provider.ffmpeg")
        self.ffmpeg_path = ffmpeg_path
        self.address = address
        self._sample_rate = sample_rate
        self._channels = channels
        self._frame_bytes = channels * 2
        self._max_buffer = max(int(buffer_seconds * sample_rate), 1) * self._frame_bytes
        self._popen = popen

        self._cond = threading.Condition()
        self._buffer = bytearray()
        self._process: Optional[subprocess.Popen] = None
        self._restart_at: Optional[float] = None
        self._finished = False
        self._produced_any = False
        self._error: Optional[str] = None
        self._closed = False
        self._duration: Optional[float] = None
        self._last_stderr = ""
        self._stderr_reader: Optional[threading.Thread] = None
        self._worker: Optional[threading.Thread] = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def channels(self) -> int:
        return self._channels

    def open(self) -> None:
        """
        启动第一个 ffmpeg 进程和工作线程

        Raises:
            OSError: 无法启动 ffmpeg
        """
        process = self._spawn(0.0)
        with self._cond:
            self._process = process
        self._worker = threading.Thread(
            target=self._run,
            args=(process,),
            name=f"ffmpeg-source-{id(self):x}",
            daemon=True
        )
        self._worker.start()
        self.logger.debug(f"ffmpeg 已启动: {self.address}")

    def _spawn(self, offset: float) -> subprocess.Popen:
        process = self._popen(
            build_ffmpeg_args(self.ffmpeg_path, self.address, offset, self._sample_rate, self._channels),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE
        )
        self._stderr_reader = threading.Thread(target=self._read_stderr, args=(process,), daemon=True)
        self._stderr_reader.start()
        return process

    def _read_stderr(self, process: subprocess.Popen) -> None:
        for raw in iter(process.stderr.readline, b""):
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            with self._cond:
                if self._duration is None:
                    duration = parse_duration(line)
                    if duration is not None:
                        self._duration = duration
                        continue
                self._last_stderr = line

    def _run(self, process: Optional[subprocess.Popen]) -> None:
        while process is not None:
            self._pump(process)
            process = self._next_process(process)
        self.logger.debug(f"ffmpeg 工作线程结束: {self.address}")

    def _pump(self, process: subprocess.Popen) -> None:
        stream = process.stdout
        while True:
            try:
                chunk = stream.read(CHUNK_BYTES)
            except (OSError, ValueError):
                return
            if not chunk:
                return
            with self._cond:
                while (len(self._buffer) >= self._max_buffer
                       and not self._closed and process is self._process):
                    self._cond.wait(0.5)
                if self._closed or process is not self._process:
                    return
                self._buffer.extend(chunk)
                self._produced_any = True

    def _next_process(self, process: subprocess.Popen) -> Optional[subprocess.Popen]:
        try:
            returncode = process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._kill(process)
            returncode = process.wait()
        if self._stderr_reader is not None:
            # 错误信息来自 stderr 的最后一行
            self._stderr_reader.join(timeout=1.0)

        with self._cond:
            if process is self._process and not self._closed and self._restart_at is None:
                if returncode != 0 and not self._produced_any:
                    self._error = self._last_stderr or f"ffmpeg exited with code {returncode}"
                self._finished = True
                self._cond.notify_all()

            while not self._closed and self._restart_at is None:
                self._cond.wait()
            if self._closed:
                return None
            offset = self._restart_at
            self._restart_at = None

        try:
            new_process = self._spawn(offset)
        except OSError as e:
            self.logger.error(f"重新启动 ffmpeg 失败: {e}")
            with self._cond:
                self._error = str(e)
                self._finished = True
            return None

        with self._cond:
            closed = self._closed
            current = not closed and self._restart_at is None
            if current:
                self._process = new_process
        if not current:
            # 期间又有新的定位或关闭，这个进程已经过期
            self._kill(new_process)
            if closed:
                return None
        return new_process

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        try:
            process.kill()
        except OSError:
            pass

    def read_samples(self, count: int) -> Optional[np.ndarray]:
        with self._cond:
            if self._error is not None:
                raise SourceError(f"ffmpeg failed for {self.address}: {self._error}")
            available = len(self._buffer) - len(self._buffer) % self._frame_bytes
            take = min(count * self._frame_bytes, available)
            if take <= 0:
                if self._finished:
                    return None
                return np.zeros(0, dtype=np.int16)
            data = bytes(self._buffer[:take])
            del self._buffer[:take]
            self._cond.notify_all()
        return np.frombuffer(data, dtype="<i2").astype(np.int16)

    def seek(self, seconds: float) -> None:
        with self._cond:
            if self._closed:
                return
            self._restart_at = max(float(seconds), 0.0)
            self._buffer.clear()
            self._finished = False
            self._produced_any = False
            old = self._process
            self._process = None
            self._cond.notify_all()
        if old is not None:
            self._kill(old)

    def duration(self) -> Optional[float]:
        with self._cond:
            return self._duration

    def close(self) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            old = self._process
            self._process = None
            self._buffer.clear()
            self._cond.notify_all()
        if old is not None:
            self._kill(old)
        self.logger.debug(f"ffmpeg 源已关闭: {self.address}")


class FfmpegMediaSource(IMediaSource):
    """基于 ffmpeg 的媒体源实现"""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        buffer_seconds: float = 2.0,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen
    ):
        """
        初始化媒体源

        Args:
            ffmpeg_path: ffmpeg 可执行文件路径
            buffer_seconds: 每个源预先缓冲的最大时长（秒）
            popen: 进程工厂（测试时替换）
        """
        self.logger = logging.getLogger("audiobob.provider.ffmpeg")
        self.ffmpeg_path = ffmpeg_path
        self.buffer_seconds = buffer_seconds
        self._popen = popen

    def open_source(self, descriptor: str) -> FfmpegSourceHandle:
        if shutil.which(self.ffmpeg_path) is None:
            raise SourceUnavailableError(descriptor, f"{self.ffmpeg_path} not found")

        handle = FfmpegSourceHandle(
            self.ffmpeg_path,
            descriptor,
            buffer_seconds=self.buffer_seconds,
            popen=self._popen
        )
        try:
            handle.open()
        except OSError as e:
            raise SourceUnavailableError(descriptor, str(e)) from e

        self.logger.info(f"🎵 打开音频源: {descriptor}")
        return handle
