"""眼睛状态分析模块，负责计算 EAR 值并判断持续闭眼（困倦）状态"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from detectors.face_detector import LEFT_EYE_INDICES, RIGHT_EYE_INDICES


@dataclass(frozen=True)
class EyeResult:
    """眼睛分析结果"""
    ear: float
    is_closed: bool
    is_drowsy: bool
    closed_since: Optional[float]


class EyeAnalyzer:
    """计算 EAR 值，按闭眼起始时间判断困倦。闭眼起点由调用方逐帧传入。"""

    def __init__(self, ear_threshold: float = 0.22, drowsiness_time_ms: float = 2000):
        """初始化阈值"""
        self.ear_threshold = ear_threshold
        self.drowsiness_time_ms = drowsiness_time_ms

    def calculate_ear(self, eye_points: List[Tuple[float, float]]) -> float:
        """
        计算单只眼睛的 EAR 值。

        公式: EAR = (|p2-p6| + |p3-p5|) / (2 * |p1-p4|)

        Args:
            eye_points: 6 个眼睛轮廓关键点 [(x,y), ...]

        Returns:
            EAR 值，分母为零时返回 0.0
        """
        p1, p2, p3, p4, p5, p6 = eye_points

        vertical_1 = math.dist(p2, p6)
        vertical_2 = math.dist(p3, p5)
        horizontal = math.dist(p1, p4)

        if horizontal == 0.0:
            return 0.0

        return (vertical_1 + vertical_2) / (2.0 * horizontal)

    def average_ear(self, landmarks: Sequence[Tuple[float, float]]) -> float:
        """从整张脸的关键点中取出双眼并返回平均 EAR"""
        left_eye = [tuple(landmarks[i][:2]) for i in LEFT_EYE_INDICES]
        right_eye = [tuple(landmarks[i][:2]) for i in RIGHT_EYE_INDICES]
        return (self.calculate_ear(left_eye) + self.calculate_ear(right_eye)) / 2.0

    def analyze(
        self,
        landmarks: Sequence[Tuple[float, float]],
        closed_since: Optional[float],
        now: float,
    ) -> EyeResult:
        """
        分析双眼状态。

        Args:
            landmarks: 单张人脸的全部关键点
            closed_since: 上一帧记录的闭眼起始时间（毫秒），未闭眼为 None
            now: 当前时间（毫秒）

        Returns:
            EyeResult(ear, is_closed, is_drowsy, closed_since)
        """
        avg_ear = self.average_ear(landmarks)
        is_closed = avg_ear < self.ear_threshold

        if not is_closed:
            return EyeResult(ear=avg_ear, is_closed=False, is_drowsy=False, closed_since=None)

        if closed_since is None:
            closed_since = now

        is_drowsy = now - closed_since > self.drowsiness_time_ms

        return EyeResult(
            ear=avg_ear,
            is_closed=True,
            is_drowsy=is_drowsy,
            closed_since=closed_since,
        )
