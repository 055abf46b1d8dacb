"""违禁物品检测模块，基于 ultralytics YOLOv8（COCO 类别）"""

import logging
import os
from typing import List

import numpy as np
from ultralytics import YOLO

from models.data_models import ObjectDetection, is_relevant_class

logger = logging.getLogger(__name__)


class ObjectDetector:
    """使用 YOLO 检测画面中的手机、书本及其他电子设备"""

    def __init__(self, model_path: str = "yolov8n.pt", min_confidence: float = 0.5):
        """
        加载 YOLO 模型。

        Args:
            model_path: 模型权重路径；官方权重名（如 yolov8n.pt）由 ultralytics 自动下载
            min_confidence: 模型输出的最低置信度，低于此值的框直接丢弃

        Raises:
            FileNotFoundError: 指定了本地路径但文件不存在
        """
        if os.path.dirname(model_path) and not os.path.exists(model_path):
            raise FileNotFoundError(f"目标检测模型文件不存在: {model_path}")

        self.min_confidence = min_confidence
        self._model = YOLO(model_path)
        logger.info("YOLO 模型加载完成: %s", model_path)

    def detect(self, frame: np.ndarray) -> List[ObjectDetection]:
        """
        检测单帧中的相关物品。

        Args:
            frame: BGR 格式的 OpenCV 图像帧

        Returns:
            ObjectDetection 列表，bbox 为 (x, y, w, h) 像素坐标
        """
        results = self._model(frame, conf=self.min_confidence, verbose=False)

        detections: List[ObjectDetection] = []
        for r in results:
            for box in r.boxes:
                label = r.names[int(box.cls[0])]
                if not is_relevant_class(label):
                    continue
                x1, y1, x2, y2 = box.xyxy[0].tolist()
                detections.append(ObjectDetection(
                    label=label,
                    confidence=float(box.conf[0]),
                    bbox=(x1, y1, x2 - x1, y2 - y1),
                ))
        return detections

    def close(self):
        """释放模型引用"""
        self._model = None
