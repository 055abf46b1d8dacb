"""人脸信号解释模块：关键点 -> FaceSignal（专注、困倦、人脸数、流水锚点）"""

import logging
from typing import Optional, Sequence

from detectors.eye_analyzer import EyeAnalyzer
from detectors.focus_analyzer import FocusAnalyzer
from models.data_models import FaceSignal

logger = logging.getLogger(__name__)


class SignalInterpreter:
    """
    把一帧的人脸关键点解释为 FaceSignal。

    不持有跨帧状态：闭眼起点与两个流水锚点都从上一帧的 FaceSignal 读取，
    写入新返回的 FaceSignal，调用方负责逐帧传递。
    """

    def __init__(
        self,
        focus_analyzer: Optional[FocusAnalyzer] = None,
        eye_analyzer: Optional[EyeAnalyzer] = None,
    ):
        self.focus_analyzer = focus_analyzer or FocusAnalyzer()
        self.eye_analyzer = eye_analyzer or EyeAnalyzer()

    def interpret(
        self,
        faces: Optional[Sequence[Sequence]],
        previous: FaceSignal,
        now: float,
    ) -> FaceSignal:
        """
        Args:
            faces: 每张人脸的关键点列表；None 视为无人脸
            previous: 上一帧的 FaceSignal
            now: 当前时间（毫秒）
        """
        faces = faces or []
        face_count = len(faces)

        is_focused = False
        is_drowsy = False
        eyes_closed_since = previous.eyes_closed_since
        ear = None
        focus_ratio = None

        if face_count == 1:
            try:
                focus = self.focus_analyzer.analyze(faces[0])
                eyes = self.eye_analyzer.analyze(faces[0], previous.eyes_closed_since, now)
            except (IndexError, TypeError, ValueError) as e:
                # 关键点缺失或格式异常：按未专注处理
                logger.warning("人脸关键点不完整，本帧按未专注处理: %s", e)
                eyes_closed_since = None
            else:
                is_focused = focus.is_focused
                focus_ratio = focus.ratio
                ear = eyes.ear
                is_drowsy = eyes.is_drowsy
                eyes_closed_since = eyes.closed_since

        if face_count == 0:
            no_face_start = previous.no_face_start if previous.no_face_start is not None else now
        else:
            no_face_start = None

        if is_focused:
            focus_lost_start = None
        else:
            focus_lost_start = previous.focus_lost_start if previous.focus_lost_start is not None else now

        return FaceSignal(
            face_count=face_count,
            is_focused=is_focused,
            is_drowsy=is_drowsy,
            focus_lost_start=focus_lost_start,
            no_face_start=no_face_start,
            eyes_closed_since=eyes_closed_since,
            ear=ear,
            focus_ratio=focus_ratio,
        )
