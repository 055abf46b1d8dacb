import sys
import os

# Add project root to sys.path so tests can import from all modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from hypothesis import settings

# CI profile: more examples for thorough testing
settings.register_profile("ci", max_examples=200)
# Dev profile: fewer examples for faster iteration
settings.register_profile("dev", max_examples=100)
# Default to dev profile
settings.load_profile("dev")

LEFT_EYE = [33, 160, 158, 133, 153, 144]
RIGHT_EYE = [362, 385, 387, 263, 373, 380]
NOSE_TIP = 1


def build_face(ear=0.3, ratio=0.0, num_landmarks=478):
    """
    构造一张归一化坐标的人脸关键点。

    双眼水平宽度 0.1，EAR = 20 * 半眼高；两个外眼角 (33, 263) 相距 0.3，
    鼻尖水平偏移 ratio * 0.3。
    """
    points = [(0.5, 0.5)] * num_landmarks
    half = ear / 20.0
    y = 0.4

    def place_eye(indices, x0):
        p1, p2, p3, p4, p5, p6 = indices
        points[p1] = (x0, y)
        points[p4] = (x0 + 0.1, y)
        points[p2] = (x0 + 0.03, y - half)
        points[p6] = (x0 + 0.03, y + half)
        points[p3] = (x0 + 0.07, y - half)
        points[p5] = (x0 + 0.07, y + half)

    place_eye(LEFT_EYE, 0.35)
    place_eye(RIGHT_EYE, 0.55)
    points[NOSE_TIP] = (0.5 + ratio * 0.3, 0.5)
    return points


@pytest.fixture
def face_factory():
    return build_face
