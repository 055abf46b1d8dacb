"""界面渲染模块 - 在预览帧上绘制物品框、人脸状态和最近一次违规事件。"""

from typing import Optional, Sequence

import cv2
import numpy as np

from models.data_models import DetectionEvent, FaceSignal, ObjectDetection


def format_value(v: Optional[float]) -> str:
    """格式化浮点数为两位小数字符串，None 显示为 --。"""
    if v is None:
        return "--"
    return f"{v:.2f}"


class DisplayRenderer:
    """在视频帧上绘制检测结果和违规提示。"""

    _STATUS_TEXT = {
        "focused": "Focused",
        "not_focused": "Not Focused",
        "no_face": "No Face",
        "multiple_faces": "Multiple Faces",
        "drowsy": "Drowsy",
    }

    _GREEN = (0, 255, 0)
    _YELLOW = (0, 255, 255)
    _RED = (0, 0, 255)

    def __init__(self, min_confidence: float = 0.7):
        """min_confidence 以上的物品框画红色，其余画黄色"""
        self.min_confidence = min_confidence

    def render(
        self,
        frame: np.ndarray,
        signal: FaceSignal,
        detections: Sequence[ObjectDetection] = (),
        is_loud: bool = False,
        latest_event: Optional[DetectionEvent] = None,
    ) -> np.ndarray:
        """渲染检测结果到视频帧，返回渲染后的帧图像，原帧不变。"""
        output = frame.copy()

        for detection in detections:
            self._draw_detection(output, detection)

        status_key = self._determine_status(signal)
        self._draw_info(output, signal, status_key, is_loud)

        if latest_event is not None:
            self._draw_event_banner(output, latest_event)

        return output

    @staticmethod
    def _determine_status(signal: FaceSignal) -> str:
        """根据人脸信号确定当前状态键。"""
        if signal.face_count == 0:
            return "no_face"
        if signal.face_count > 1:
            return "multiple_faces"
        if signal.is_drowsy:
            return "drowsy"
        if signal.is_focused:
            return "focused"
        return "not_focused"

    def _draw_detection(self, frame: np.ndarray, detection: ObjectDetection) -> None:
        x, y, w, h = (int(v) for v in detection.bbox)
        color = self._RED if detection.confidence > self.min_confidence else self._YELLOW
        cv2.rectangle(frame, (x, y), (x + w, y + h), color, 2)
        cv2.putText(
            frame, f"{detection.label} {format_value(detection.confidence)}",
            (x, max(15, y - 5)), cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1,
        )

    def _draw_info(
        self,
        frame: np.ndarray,
        signal: FaceSignal,
        status_key: str,
        is_loud: bool,
    ) -> None:
        """在左上角绘制人脸数、EAR、偏移比和状态文字。"""
        color = self._GREEN if status_key == "focused" else self._YELLOW
        lines = [
            f"Faces: {signal.face_count}",
            f"EAR: {format_value(signal.ear)}",
            f"Offset: {format_value(signal.focus_ratio)}",
            f"Status: {self._STATUS_TEXT[status_key]}",
        ]
        if is_loud:
            lines.append("Audio: LOUD")
        y = 30
        for text in lines:
            cv2.putText(frame, text, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.7, color, 2)
            y += 30

    def _draw_event_banner(self, frame: np.ndarray, event: DetectionEvent) -> None:
        """在画面底部显示红色事件提示。"""
        h, w = frame.shape[:2]
        font_scale = 0.8
        thickness = 2
        (text_w, _), _ = cv2.getTextSize(
            event.description, cv2.FONT_HERSHEY_SIMPLEX, font_scale, thickness
        )
        x = max(0, (w - text_w) // 2)
        y = h - 20
        cv2.putText(
            frame, event.description, (x, y),
            cv2.FONT_HERSHEY_SIMPLEX, font_scale, self._RED, thickness,
        )
