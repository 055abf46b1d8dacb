"""FaceDetector 单元测试"""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from detectors.face_detector import (
    FOCUS_INDICES,
    LEFT_EYE_INDICES,
    RIGHT_EYE_INDICES,
    FaceDetector,
)

PATCH_TARGET = "detectors.face_detector.mp.solutions.face_mesh.FaceMesh"


def _make_fake_landmark(x: float, y: float):
    """创建一个模拟的 MediaPipe landmark 对象"""
    lm = MagicMock()
    lm.x = x
    lm.y = y
    return lm


def _make_fake_face(num_landmarks: int = 478, offset: float = 0.0):
    landmarks = []
    for i in range(num_landmarks):
        nx = (i % 100) / 100.0 + offset
        ny = (i // 100) / 100.0
        landmarks.append(_make_fake_landmark(nx, ny))
    face = MagicMock()
    face.landmark = landmarks
    return face


def _build_fake_results(num_faces: int = 1):
    """构建模拟的 MediaPipe FaceMesh 处理结果（归一化坐标）"""
    results = MagicMock()
    results.multi_face_landmarks = [
        _make_fake_face(offset=0.001 * i) for i in range(num_faces)
    ]
    return results


@pytest.fixture
def mock_mesh():
    with patch(PATCH_TARGET) as mock_mesh_cls:
        mesh = MagicMock()
        mock_mesh_cls.return_value = mesh
        yield mesh


class TestFaceDetectorDetect:
    """测试 detect() 方法"""

    def test_returns_empty_list_when_no_face(self, mock_mesh):
        """未检测到人脸时返回空列表"""
        no_face_results = MagicMock()
        no_face_results.multi_face_landmarks = None
        mock_mesh.process.return_value = no_face_results

        detector = FaceDetector()
        frame = np.zeros((480, 640, 3), dtype=np.uint8)

        assert detector.detect(frame) == []

    def test_returns_one_entry_per_face(self, mock_mesh):
        mock_mesh.process.return_value = _build_fake_results(num_faces=2)

        detector = FaceDetector()
        faces = detector.detect(np.zeros((480, 640, 3), dtype=np.uint8))

        assert len(faces) == 2

    def test_each_face_has_all_landmarks(self, mock_mesh):
        mock_mesh.process.return_value = _build_fake_results()

        detector = FaceDetector()
        faces = detector.detect(np.zeros((480, 640, 3), dtype=np.uint8))

        assert len(faces[0]) == 478

    def test_landmark_coordinates_are_normalized(self, mock_mesh):
        """关键点坐标保持 MediaPipe 的归一化值，与分辨率无关"""
        results = _build_fake_results()
        mock_mesh.process.return_value = results

        detector = FaceDetector()
        faces = detector.detect(np.zeros((720, 1280, 3), dtype=np.uint8))

        idx = LEFT_EYE_INDICES[0]
        raw = results.multi_face_landmarks[0].landmark[idx]
        assert faces[0][idx] == pytest.approx((raw.x, raw.y))

    def test_frame_is_converted_to_rgb(self, mock_mesh):
        mock_mesh.process.return_value = _build_fake_results()

        frame = np.zeros((10, 10, 3), dtype=np.uint8)
        frame[:, :, 0] = 255  # BGR 中的蓝色
        FaceDetector().detect(frame)

        rgb = mock_mesh.process.call_args[0][0]
        assert rgb[0, 0, 2] == 255
        assert rgb[0, 0, 0] == 0


class TestFaceDetectorInit:

    def test_detects_at_least_two_faces_by_default(self):
        with patch(PATCH_TARGET) as mock_mesh_cls:
            FaceDetector()
        assert mock_mesh_cls.call_args.kwargs["max_num_faces"] == 2


class TestFaceDetectorClose:
    """测试 close() 方法"""

    def test_close_releases_resources(self, mock_mesh):
        """close() 应调用 FaceMesh.close()"""
        detector = FaceDetector()
        detector.close()

        mock_mesh.close.assert_called_once()


class TestLandmarkIndices:
    """验证关键点索引常量的正确性"""

    def test_left_eye_indices(self):
        assert LEFT_EYE_INDICES == [33, 160, 158, 133, 153, 144]

    def test_right_eye_indices(self):
        assert RIGHT_EYE_INDICES == [362, 385, 387, 263, 373, 380]

    def test_focus_indices(self):
        assert FOCUS_INDICES == {
            "nose_tip": 1,
            "left_eye_corner": 33,
            "right_eye_corner": 263,
        }
