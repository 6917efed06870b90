"""
PCM 工具函数 - 交错 int16 采样的声道转换、音量、混音和降质

所有函数都是纯函数，不持有任何状态，可以在音频回调线程中直接调用。
"""

import numpy as np

SAMPLE_MIN = -32768
SAMPLE_MAX = 32767


def silence(frame_count: int, channel_count: int) -> np.ndarray:
    """生成静音块"""
    return np.zeros(frame_count * channel_count, dtype=np.int16)


def convert_channels(samples: np.ndarray, source_channels: int, target_channels: int) -> np.ndarray:
    """
    转换交错采样的声道数

    Args:
        samples: 交错 int16 采样，长度必须是 source_channels 的整数倍
        source_channels: 源声道数
        target_channels: 目标声道数

    Returns:
        目标声道数的交错 int16 采样，帧数不变
    """
    if source_channels == target_channels:
        return samples

    frames = samples.reshape(-1, source_channels)
    if target_channels == 1:
        # 下混为单声道
        mixed = frames.astype(np.int32).sum(axis=1) // source_channels
        return mixed.astype(np.int16)

    if source_channels == 1:
        return np.repeat(frames, target_channels, axis=1).reshape(-1)

    out = np.zeros((frames.shape[0], target_channels), dtype=np.int16)
    shared = min(source_channels, target_channels)
    out[:, :shared] = frames[:, :shared]
    return out.reshape(-1)


def apply_volume(samples: np.ndarray, volume: float) -> np.ndarray:
    """按音量系数缩放并裁剪到合法范围"""
    if volume == 1.0:
        return samples
    if volume <= 0.0:
        return np.zeros_like(samples)
    # 极大的音量系数会溢出为 inf，0 * inf 为 NaN
    with np.errstate(over="ignore", invalid="ignore"):
        scaled = samples.astype(np.float64) * volume
    scaled = np.nan_to_num(scaled, nan=0.0, posinf=SAMPLE_MAX, neginf=SAMPLE_MIN)
    return np.clip(scaled, SAMPLE_MIN, SAMPLE_MAX).astype(np.int16)


def degrade_quality(samples: np.ndarray, channel_count: int) -> np.ndarray:
    """
    低音质模式：每两帧保持一帧（采样率减半），并量化到 8 位精度

    帧数和声道数保持不变。
    """
    frames = samples.reshape(-1, channel_count).copy()
    frames[1::2] = frames[0:len(frames) - len(frames) % 2:2]
    frames &= np.int16(-256)
    return frames.reshape(-1)


def mix_clip(base: np.ndarray, addition: np.ndarray) -> np.ndarray:
    """加法混音后裁剪到合法采样范围"""
    mixed = base.astype(np.int32) + addition.astype(np.int32)
    return np.clip(mixed, SAMPLE_MIN, SAMPLE_MAX).astype(np.int16)
