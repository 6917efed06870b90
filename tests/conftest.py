"""
AudioBob 测试配置

提供测试所需的假宿主、假音频源和 fixtures
"""

from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pytest

from audiobob.core.errors import SourceError, SourceUnavailableError
from audiobob.core.interfaces import IHostRuntime, IMediaSource, ISourceHandle
from audiobob.core.settings import BobSettings


class FakeHost(IHostRuntime):
    """记录所有调用的宿主运行时"""

    def __init__(self):
        self.replies: List[Tuple[int, Any, str]] = []
        self.queries: List[Tuple[int, str]] = []
        self.clients: List[Tuple[int, str]] = []
        self.channels: List[Tuple[int, str]] = []
        self.join_error: Optional[str] = None
        self.joined: List[int] = []
        self.left: List[int] = []
        self.shutdown_messages: List[str] = []

    def send_reply(self, handle, recipient, text):
        self.replies.append((handle, recipient, text))

    def query_current_group(self, handle, unique_id):
        self.queries.append((handle, unique_id))

    def list_clients(self, handle):
        return list(self.clients)

    def list_channels(self, handle):
        return list(self.channels)

    def join_caller_channel(self, handle, recipient):
        if self.join_error:
            return self.join_error
        self.joined.append(handle)
        return None

    def leave_channel(self, handle):
        self.left.append(handle)

    def request_shutdown(self, quit_message):
        self.shutdown_messages.append(quit_message)

    @property
    def last_reply(self) -> Optional[str]:
        return self.replies[-1][2] if self.replies else None


class FakeSourceHandle(ISourceHandle):
    """内存中的音频源，采样数据一次性给出"""

    def __init__(self, samples, sample_rate: int = 100, channels: int = 2, known_duration: bool = True):
        self.samples = np.asarray(samples, dtype=np.int16)
        self._sample_rate = sample_rate
        self._channels = channels
        self.known_duration = known_duration
        self.frame_pos = 0
        self.seeks: List[float] = []
        self.closed = False
        self.error: Optional[str] = None
        self.starved = False

    @property
    def sample_rate(self):
        return self._sample_rate

    @property
    def channels(self):
        return self._channels

    @property
    def total_frames(self) -> int:
        return len(self.samples) // self._channels

    def read_samples(self, count):
        if self.error:
            raise SourceError(self.error)
        if self.starved:
            return np.zeros(0, dtype=np.int16)
        if self.frame_pos >= self.total_frames:
            return None
        end = min(self.frame_pos + count, self.total_frames)
        block = self.samples[self.frame_pos * self._channels:end * self._channels]
        self.frame_pos = end
        return block

    def seek(self, seconds):
        self.seeks.append(seconds)
        self.frame_pos = min(int(round(seconds * self._sample_rate)), self.total_frames)

    def duration(self):
        if not self.known_duration:
            return None
        return self.total_frames / self._sample_rate

    def close(self):
        self.closed = True


class FakeMediaSource(IMediaSource):
    """按地址返回预先准备的音频源"""

    def __init__(self):
        self.handles: Dict[str, FakeSourceHandle] = {}
        self.unavailable: Dict[str, str] = {}
        self.opened: List[str] = []

    def open_source(self, descriptor):
        self.opened.append(descriptor)
        if descriptor in self.unavailable:
            raise SourceUnavailableError(descriptor, self.unavailable[descriptor])
        if descriptor not in self.handles:
            self.handles[descriptor] = FakeSourceHandle(np.full(200, 1000, dtype=np.int16))
        return self.handles[descriptor]


def ramp(frames: int, channels: int = 2, start: int = 1) -> np.ndarray:
    """每帧递增的交错采样，各声道相同"""
    values = np.arange(start, start + frames, dtype=np.int16)
    return np.repeat(values, channels)


@pytest.fixture
def fake_host():
    """创建假宿主"""
    return FakeHost()


@pytest.fixture
def fake_media():
    """创建假媒体源"""
    return FakeMediaSource()


@pytest.fixture
def source_factory():
    """创建假音频源的工厂"""
    return FakeSourceHandle


@pytest.fixture
def make_ramp():
    """递增采样生成函数"""
    return ramp


@pytest.fixture
def settings():
    """测试用运行参数"""
    return BobSettings(admin_group=1, identity_timeout=10.0, pull_lock_timeout=0.001)
