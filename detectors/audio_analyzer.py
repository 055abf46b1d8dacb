"""环境噪音检测模块：麦克风采样 -> 频谱 -> 0-255 音量均值 -> 是否过响"""

import logging
import threading
from typing import Optional

import numpy as np
import sounddevice as sd

logger = logging.getLogger(__name__)


class AudioLevelAnalyzer:
    """
    把一段音频样本换算为 0-255 的平均频谱强度。

    处理流程与浏览器 AnalyserNode 的字节频谱一致：Blackman 窗 -> FFT ->
    幅值时间平滑 -> dB -> 按 [min_db, max_db] 线性映射到 0-255，最后取全部频点均值。
    """

    def __init__(
        self,
        fft_size: int = 2048,
        min_db: float = -100.0,
        max_db: float = -30.0,
        smoothing: float = 0.8,
    ):
        self.fft_size = fft_size
        self.min_db = min_db
        self.max_db = max_db
        self.smoothing = smoothing
        self._window = np.blackman(fft_size)
        self._previous: Optional[np.ndarray] = None

    def byte_spectrum(self, samples: np.ndarray) -> np.ndarray:
        """返回 fft_size/2 个频点的 0-255 强度"""
        block = np.zeros(self.fft_size, dtype=np.float64)
        data = np.asarray(samples, dtype=np.float64).ravel()[-self.fft_size:]
        if data.size:
            block[-data.size:] = data

        spectrum = np.abs(np.fft.rfft(block * self._window))[: self.fft_size // 2]
        magnitude = spectrum / self.fft_size

        if self._previous is not None:
            magnitude = self.smoothing * self._previous + (1.0 - self.smoothing) * magnitude
        self._previous = magnitude

        db = 20.0 * np.log10(np.maximum(magnitude, 1e-12))
        scaled = 255.0 * (db - self.min_db) / (self.max_db - self.min_db)
        return np.clip(scaled, 0.0, 255.0)

    def level(self, samples: np.ndarray) -> float:
        """平均频谱强度（0-255）"""
        return float(np.mean(self.byte_spectrum(samples)))

    def reset(self):
        """清除平滑状态"""
        self._previous = None


class MicrophoneMonitor:
    """在 sounddevice 回调中持续更新当前音量，供检测循环读取"""

    def __init__(
        self,
        volume_threshold: float = 50,
        samplerate: int = 16000,
        analyzer: Optional[AudioLevelAnalyzer] = None,
    ):
        self.volume_threshold = volume_threshold
        self.samplerate = samplerate
        self._analyzer = analyzer or AudioLevelAnalyzer()
        self._lock = threading.Lock()
        self._level = 0.0
        self._stream = None

    def start(self):
        """打开默认输入设备；设备不可用时 sounddevice 抛出 PortAudioError"""
        if self._stream is not None:
            return
        self._stream = sd.InputStream(
            channels=1,
            samplerate=self.samplerate,
            blocksize=self._analyzer.fft_size,
            callback=self._callback,
        )
        self._stream.start()
        logger.info("麦克风监听已启动 (samplerate=%d)", self.samplerate)

    def _callback(self, indata, frames, time_, status):
        if status:
            logger.debug("音频流状态: %s", status)
        level = self._analyzer.level(indata[:, 0])
        with self._lock:
            self._level = level

    @property
    def level(self) -> float:
        with self._lock:
            return self._level

    def is_loud(self) -> bool:
        return self.level > self.volume_threshold

    def close(self):
        """停止并关闭音频流"""
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        with self._lock:
            self._level = 0.0
        self._analyzer.reset()
