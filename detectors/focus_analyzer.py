"""专注度分析模块，根据鼻尖相对双眼中点的水平偏移判断是否正视屏幕"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

from detectors.face_detector import FOCUS_INDICES


@dataclass(frozen=True)
class FocusResult:
    """专注度分析结果"""
    ratio: float
    is_focused: bool


class FocusAnalyzer:
    """
    水平偏移比 = |双眼外角中点.x - 鼻尖.x| / |左眼角 - 右眼角|

    头部左右转动时鼻尖偏离双眼中线，比值增大。比值低于阈值视为专注。
    """

    def __init__(self, ratio_threshold: float = 0.15):
        self.ratio_threshold = ratio_threshold

    @staticmethod
    def calculate_ratio(landmarks: Sequence[Tuple[float, float]]) -> float:
        """
        计算鼻尖水平偏移比。

        Returns:
            偏移比；两眼角重合时返回 inf
        """
        nose = landmarks[FOCUS_INDICES["nose_tip"]]
        left = landmarks[FOCUS_INDICES["left_eye_corner"]]
        right = landmarks[FOCUS_INDICES["right_eye_corner"]]

        eye_dist = math.dist(left[:2], right[:2])
        if eye_dist == 0.0:
            return math.inf

        center_x = (left[0] + right[0]) / 2.0
        return abs(center_x - nose[0]) / eye_dist

    def analyze(self, landmarks: Sequence[Tuple[float, float]]) -> FocusResult:
        ratio = self.calculate_ratio(landmarks)
        return FocusResult(ratio=ratio, is_focused=ratio < self.ratio_threshold)
