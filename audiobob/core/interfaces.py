"""
核心接口定义 - 定义核心与外部协作者之间的抽象接口

核心只依赖这里定义的形状：
- 宿主运行时（语音服务器连接、消息发送、身份查询）
- 媒体源（打开、读取、定位音频流）
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import numpy as np


@dataclass
class CallerIdentity:
    """调用者身份数据类"""
    unique_id: str
    sender_ref: Any = None
    db_id: Optional[int] = None
    group_id: Optional[int] = None

    @property
    def is_resolved(self) -> bool:
        """服务器组是否已经解析完成"""
        return self.group_id is not None


class ISourceHandle(ABC):
    """
    已打开的音频源

    所有方法都必须是非阻塞的：音频回调线程会直接调用 read_samples。
    """

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        """源的采样率"""
        pass

    @property
    @abstractmethod
    def channels(self) -> int:
        """源的声道数"""
        pass

    @abstractmethod
    def read_samples(self, count: int) -> Optional[np.ndarray]:
        """
        读取最多 count 帧交错的 int16 采样

        Returns:
            采样数组（可能不足 count 帧，数据未就绪时为空数组），
            流结束时返回 None

        Raises:
            SourceError: 源在播放过程中出错
        """
        pass

    @abstractmethod
    def seek(self, seconds: float) -> None:
        """定位到指定秒数"""
        pass

    @abstractmethod
    def duration(self) -> Optional[float]:
        """总时长（秒），未知时返回 None"""
        pass

    @abstractmethod
    def close(self) -> None:
        """释放源占用的资源"""
        pass


class IMediaSource(ABC):
    """媒体源接口 - 核心从不自己解析媒体容器"""

    @abstractmethod
    def open_source(self, descriptor: str) -> ISourceHandle:
        """
        打开音频源

        Raises:
            SourceUnavailableError: 无法打开
        """
        pass


class IHostRuntime(ABC):
    """宿主运行时接口 - 核心调用宿主的全部操作"""

    @abstractmethod
    def send_reply(self, handle: int, recipient: Any, text: str) -> None:
        """向调用者发送文本回复"""
        pass

    @abstractmethod
    def query_current_group(self, handle: int, unique_id: str) -> None:
        """
        请求解析调用者的服务器组

        结果通过 on_identity_resolved / on_group_resolved 异步返回。
        """
        pass

    @abstractmethod
    def list_clients(self, handle: int) -> List[Tuple[int, str]]:
        """列出连接上的客户端 (id, 名称)"""
        pass

    @abstractmethod
    def list_channels(self, handle: int) -> List[Tuple[int, str]]:
        """列出连接上的频道 (id, 名称)"""
        pass

    @abstractmethod
    def join_caller_channel(self, handle: int, recipient: Any) -> Optional[str]:
        """移动到调用者所在的语音频道，失败时返回错误消息"""
        pass

    @abstractmethod
    def leave_channel(self, handle: int) -> None:
        """离开当前语音频道"""
        pass

    @abstractmethod
    def request_shutdown(self, quit_message: str) -> None:
        """请求宿主关闭进程"""
        pass
