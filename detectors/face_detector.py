"""人脸关键点检测模块，基于 MediaPipe FaceMesh"""

from typing import List, Tuple

import cv2
import mediapipe as mp
import numpy as np

# 关键点索引常量
LEFT_EYE_INDICES = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_INDICES = [362, 385, 387, 263, 373, 380]

FOCUS_INDICES = {
    "nose_tip": 1,
    "left_eye_corner": 33,
    "right_eye_corner": 263,
}

Landmarks = List[Tuple[float, float]]


class FaceDetector:
    """使用 MediaPipe FaceMesh 检测画面中所有人脸的关键点"""

    def __init__(
        self,
        max_num_faces: int = 2,
        min_detection_confidence: float = 0.5,
    ):
        """初始化 MediaPipe FaceMesh（至少检测 2 张脸才能发现多人）"""
        self._face_mesh = mp.solutions.face_mesh.FaceMesh(
            max_num_faces=max_num_faces,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=0.5,
            refine_landmarks=True,
        )

    def detect(self, frame: np.ndarray) -> List[Landmarks]:
        """
        检测单帧图像中的人脸关键点。

        Args:
            frame: BGR 格式的 OpenCV 图像帧

        Returns:
            每张人脸一组归一化坐标 [(x, y), ...]；未检测到人脸时返回空列表
        """
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        rgb_frame.flags.writeable = False

        results = self._face_mesh.process(rgb_frame)

        if not results.multi_face_landmarks:
            return []

        return [
            [(lm.x, lm.y) for lm in face.landmark]
            for face in results.multi_face_landmarks
        ]

    def close(self):
        """释放 MediaPipe 资源"""
        self._face_mesh.close()
