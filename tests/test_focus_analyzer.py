"""FocusAnalyzer 单元测试"""

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from conftest import build_face
from detectors.focus_analyzer import FocusAnalyzer


class TestCalculateRatio:

    def test_centered_nose_gives_zero(self, face_factory):
        assert FocusAnalyzer.calculate_ratio(face_factory(ratio=0.0)) == pytest.approx(0.0)

    @given(st.floats(min_value=-1.0, max_value=1.0))
    def test_ratio_is_absolute_offset(self, ratio):
        result = FocusAnalyzer.calculate_ratio(build_face(ratio=ratio))
        assert result == pytest.approx(abs(ratio), abs=1e-9)

    def test_coincident_eye_corners_give_inf(self, face_factory):
        face = face_factory()
        face[33] = (0.5, 0.4)
        face[263] = (0.5, 0.4)
        assert math.isinf(FocusAnalyzer.calculate_ratio(face))


class TestAnalyze:

    def test_looking_at_screen_is_focused(self, face_factory):
        result = FocusAnalyzer(ratio_threshold=0.15).analyze(face_factory(ratio=0.05))
        assert result.is_focused
        assert result.ratio == pytest.approx(0.05)

    def test_turned_head_is_not_focused(self, face_factory):
        result = FocusAnalyzer(ratio_threshold=0.15).analyze(face_factory(ratio=-0.3))
        assert not result.is_focused

    def test_degenerate_face_is_not_focused(self, face_factory):
        face = face_factory()
        face[263] = face[33]
        assert not FocusAnalyzer().analyze(face).is_focused
