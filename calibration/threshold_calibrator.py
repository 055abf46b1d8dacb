"""阈值校准模块，利用带标签的图像集统计分析优化 EAR 与专注偏移比阈值"""

import argparse
import json
import logging
import math
import os
from datetime import datetime
from typing import List, Optional, Tuple

import cv2
import mediapipe as mp
import numpy as np
from sklearn.metrics import accuracy_score, recall_score, roc_curve

from config import DEFAULTS
from detectors.eye_analyzer import EyeAnalyzer
from detectors.focus_analyzer import FocusAnalyzer
from models.data_models import CalibrationResult

logger = logging.getLogger(__name__)

# 数据集子目录 -> 标签
EYE_DIRS = {"open": "open", "closed": "closed"}
FOCUS_DIRS = {"focused": "focused", "away": "away"}


def compute_stats(values: list) -> dict:
    """
    计算一组数值的统计信息。

    Args:
        values: 非空浮点数列表

    Returns:
        {"mean": float, "std": float, "min": float, "max": float}
    """
    n = len(values)
    mean = sum(values) / n
    std = math.sqrt(sum((x - mean) ** 2 for x in values) / n)
    return {
        "mean": mean,
        "std": std,
        "min": min(values),
        "max": max(values),
    }


def _youden_threshold(labels: np.ndarray, scores: np.ndarray) -> Optional[float]:
    """ROC 曲线上 Youden's J (tpr - fpr) 最大处的阈值；只有一个类别时返回 None"""
    if len(np.unique(labels)) != 2:
        return None
    fpr, tpr, thresholds = roc_curve(labels, scores)
    best_idx = int(np.argmax(tpr - fpr))
    threshold = float(thresholds[best_idx])
    if not math.isfinite(threshold):
        return None
    return threshold


class ThresholdCalibrator:
    """加载图像集，统计 EAR/偏移比分布，通过 ROC 分析输出最优阈值"""

    def __init__(self):
        self._ear_data: List[Tuple[float, str]] = []    # (ear, label)
        self._focus_data: List[Tuple[float, str]] = []  # (ratio, label)
        self._datasets: List[str] = []
        self._calibration_result: Optional[CalibrationResult] = None
        self._eye_analyzer = EyeAnalyzer()

    def load_dataset(self, dataset_path: str, dataset_type: str) -> None:
        """
        加载数据集并提取特征值，可多次调用累积不同类型的数据。

        Args:
            dataset_path: 数据集根目录路径
            dataset_type: "eyes"（open/closed 子目录）| "focus"（focused/away 子目录）
        """
        if not os.path.isdir(dataset_path):
            raise ValueError(f"数据集路径无效: {dataset_path}")
        if dataset_type not in ("eyes", "focus"):
            raise ValueError(f"不支持的数据集类型: {dataset_type}")

        face_mesh = mp.solutions.face_mesh.FaceMesh(
            static_image_mode=True,
            max_num_faces=1,
            min_detection_confidence=0.5,
            refine_landmarks=True,
        )

        try:
            if dataset_type == "eyes":
                self._load_dirs(dataset_path, EYE_DIRS, face_mesh, self._extract_ear, self._ear_data)
            else:
                self._load_dirs(dataset_path, FOCUS_DIRS, face_mesh, self._extract_ratio, self._focus_data)
        finally:
            face_mesh.close()

        self._datasets.append(dataset_type)
        self._calibration_result = None
        logger.info(
            "数据集加载完成: EAR 样本 %d 条, 偏移比样本 %d 条",
            len(self._ear_data),
            len(self._focus_data),
        )

    def _load_dirs(self, dataset_path, dirs, face_mesh, extract, target) -> None:
        for subdir, label in dirs.items():
            dir_path = os.path.join(dataset_path, subdir)
            if not os.path.isdir(dir_path):
                logger.warning("子目录不存在: %s", dir_path)
                continue
            for filename in sorted(os.listdir(dir_path)):
                landmarks = self._extract_landmarks(os.path.join(dir_path, filename), face_mesh)
                if landmarks is None:
                    continue
                value = extract(landmarks)
                if value is not None and math.isfinite(value):
                    target.append((value, label))

    @staticmethod
    def _extract_landmarks(filepath: str, face_mesh):
        """读取单张图像的归一化关键点，无法读取或无人脸时返回 None"""
        image = cv2.imread(filepath)
        if image is None:
            logger.warning("无法读取图像: %s", filepath)
            return None

        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        results = face_mesh.process(rgb)
        if not results.multi_face_landmarks:
            return None

        face = results.multi_face_landmarks[0]
        return [(lm.x, lm.y) for lm in face.landmark]

    def _extract_ear(self, landmarks) -> Optional[float]:
        return self._eye_analyzer.average_ear(landmarks)

    @staticmethod
    def _extract_ratio(landmarks) -> Optional[float]:
        return FocusAnalyzer.calculate_ratio(landmarks)

    def compute_statistics(self) -> dict:
        """
        计算各类别的 EAR / 偏移比分布统计。

        Returns:
            {
                "ear": {"open": {mean, std, min, max}, "closed": {...}},
                "focus": {"focused": {...}, "away": {...}},
            }
        """
        result: dict = {"ear": {}, "focus": {}}

        for key, data in (("ear", self._ear_data), ("focus", self._focus_data)):
            groups = {}  # type: dict
            for value, label in data:
                groups.setdefault(label, []).append(value)
            for label, values in groups.items():
                result[key][label] = compute_stats(values)

        return result

    def optimize_thresholds(self) -> CalibrationResult:
        """
        基于 ROC 曲线分析输出最优 EAR 和偏移比阈值。

        使用 Youden's J statistic (max(tpr - fpr)) 确定最优阈值；
        某一类数据缺失时沿用默认阈值，评估指标记为 0。
        """
        stats = self.compute_statistics()

        # EAR：closed 为正类，闭眼时 EAR 低，用 -EAR 作为 score
        ear_optimal, ear_acc, ear_rec = DEFAULTS["ear_threshold"], 0.0, 0.0
        if self._ear_data:
            ear_values = np.array([v for v, _ in self._ear_data])
            ear_labels = np.array([1 if lab == "closed" else 0 for _, lab in self._ear_data])
            threshold = _youden_threshold(ear_labels, -ear_values)
            if threshold is not None:
                ear_optimal = -threshold
                ear_preds = (ear_values <= ear_optimal).astype(int)
                ear_acc = float(accuracy_score(ear_labels, ear_preds))
                ear_rec = float(recall_score(ear_labels, ear_preds))

        # 偏移比：away 为正类，偏移比越大越可能视线偏离
        focus_optimal, focus_acc, focus_rec = DEFAULTS["focus_ratio_threshold"], 0.0, 0.0
        if self._focus_data:
            focus_values = np.array([v for v, _ in self._focus_data])
            focus_labels = np.array([1 if lab == "away" else 0 for _, lab in self._focus_data])
            threshold = _youden_threshold(focus_labels, focus_values)
            if threshold is not None:
                focus_optimal = threshold
                # 运行时 ratio < 阈值 才算专注
                focus_preds = (focus_values >= focus_optimal).astype(int)
                focus_acc = float(accuracy_score(focus_labels, focus_preds))
                focus_rec = float(recall_score(focus_labels, focus_preds))

        self._calibration_result = CalibrationResult(
            optimal_ear_threshold=float(ear_optimal),
            optimal_focus_ratio_threshold=float(focus_optimal),
            ear_accuracy=ear_acc,
            ear_recall=ear_rec,
            focus_accuracy=focus_acc,
            focus_recall=focus_rec,
            ear_distribution=stats["ear"],
            focus_distribution=stats["focus"],
        )

        return self._calibration_result

    def export_config(self, output_path: str) -> None:
        """
        导出 JSON 配置文件，可直接作为 --config 传给 main.py。

        Args:
            output_path: 输出 JSON 文件路径
        """
        if self._calibration_result is None:
            self.optimize_thresholds()

        result = self._calibration_result

        config = {
            "ear_threshold": result.optimal_ear_threshold,
            "focus_ratio_threshold": result.optimal_focus_ratio_threshold,
            "drowsiness_time_ms": DEFAULTS["drowsiness_time_ms"],
            "calibration_info": {
                "ear_accuracy": result.ear_accuracy,
                "ear_recall": result.ear_recall,
                "focus_accuracy": result.focus_accuracy,
                "focus_recall": result.focus_recall,
                "calibrated_at": datetime.now().isoformat(),
                "datasets": list(self._datasets),
            },
        }

        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=4, ensure_ascii=False)

        logger.info("配置文件已导出: %s", output_path)


def main():
    parser = argparse.ArgumentParser(description="监考阈值校准")
    parser.add_argument("--eyes", type=str, default=None, help="睁眼/闭眼图像集目录（open/ closed/）")
    parser.add_argument("--focus", type=str, default=None, help="专注/偏离图像集目录（focused/ away/）")
    parser.add_argument("--output", type=str, default="calibrated_config.json", help="输出配置文件路径")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    calibrator = ThresholdCalibrator()
    if args.eyes:
        calibrator.load_dataset(args.eyes, "eyes")
    if args.focus:
        calibrator.load_dataset(args.focus, "focus")
    result = calibrator.optimize_thresholds()
    logger.info(
        "最优阈值: EAR=%.4f, 偏移比=%.4f",
        result.optimal_ear_threshold,
        result.optimal_focus_ratio_threshold,
    )
    calibrator.export_config(args.output)


if __name__ == "__main__":
    main()
