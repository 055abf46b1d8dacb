"""SignalInterpreter 单元测试"""

import pytest

from detectors.eye_analyzer import EyeAnalyzer
from detectors.focus_analyzer import FocusAnalyzer
from evaluators.signal_interpreter import SignalInterpreter
from models.data_models import FaceSignal


@pytest.fixture
def interpreter():
    return SignalInterpreter(
        FocusAnalyzer(ratio_threshold=0.15),
        EyeAnalyzer(ear_threshold=0.22, drowsiness_time_ms=2000),
    )


def _run(interpreter, frames):
    """按 (faces, now) 序列逐帧解释，返回每帧的 FaceSignal"""
    signal = FaceSignal()
    signals = []
    for faces, now in frames:
        signal = interpreter.interpret(faces, signal, now)
        signals.append(signal)
    return signals


class TestFaceCount:

    def test_no_face(self, interpreter):
        signal = interpreter.interpret([], FaceSignal(), 1000)
        assert signal.face_count == 0
        assert not signal.is_focused
        assert signal.no_face_start == 1000

    def test_none_is_treated_as_no_face(self, interpreter):
        signal = interpreter.interpret(None, FaceSignal(), 1000)
        assert signal.face_count == 0

    def test_multiple_faces_are_not_focused(self, interpreter, face_factory):
        signal = interpreter.interpret([face_factory(), face_factory()], FaceSignal(), 1000)
        assert signal.face_count == 2
        assert not signal.is_focused
        assert signal.no_face_start is None
        assert signal.focus_lost_start == 1000

    def test_single_focused_face(self, interpreter, face_factory):
        signal = interpreter.interpret([face_factory(ratio=0.02)], FaceSignal(), 1000)
        assert signal.face_count == 1
        assert signal.is_focused
        assert signal.focus_lost_start is None
        assert signal.ear == pytest.approx(0.3)
        assert signal.focus_ratio == pytest.approx(0.02)


class TestStreakAnchors:

    def test_focus_lost_anchor_fixed_during_streak(self, interpreter, face_factory):
        away = [face_factory(ratio=0.4)]
        signals = _run(interpreter, [(away, 1000), (away, 1500), (away, 7000)])
        assert [s.focus_lost_start for s in signals] == [1000, 1000, 1000]

    def test_focus_lost_anchor_resets_when_focused(self, interpreter, face_factory):
        away = [face_factory(ratio=0.4)]
        focused = [face_factory(ratio=0.0)]
        signals = _run(interpreter, [(away, 1000), (focused, 2000), (away, 3000)])
        assert [s.focus_lost_start for s in signals] == [1000, None, 3000]

    def test_no_face_anchor_fixed_during_streak(self, interpreter, face_factory):
        signals = _run(interpreter, [([], 0), ([], 4000), ([], 9000), ([face_factory()], 9500)])
        assert [s.no_face_start for s in signals] == [0, 0, 0, None]

    def test_no_face_counts_as_focus_lost(self, interpreter):
        signals = _run(interpreter, [([], 0), ([], 6000)])
        assert signals[-1].focus_lost_start == 0


class TestDrowsiness:

    def test_closed_eyes_become_drowsy_after_two_seconds(self, interpreter, face_factory):
        closed = [face_factory(ear=0.1)]
        signals = _run(interpreter, [(closed, 0), (closed, 1000), (closed, 2001)])
        assert [s.is_drowsy for s in signals] == [False, False, True]
        assert signals[-1].eyes_closed_since == 0

    def test_opening_eyes_resets_closure(self, interpreter, face_factory):
        closed = [face_factory(ear=0.1)]
        opened = [face_factory(ear=0.3)]
        signals = _run(interpreter, [(closed, 0), (opened, 1500), (closed, 2000), (closed, 3500)])
        assert signals[1].eyes_closed_since is None
        assert signals[-1].eyes_closed_since == 2000
        assert not signals[-1].is_drowsy

    def test_closure_anchor_carried_through_missing_face(self, interpreter, face_factory):
        closed = [face_factory(ear=0.1)]
        signals = _run(interpreter, [(closed, 0), ([], 500), (closed, 2500)])
        assert signals[1].eyes_closed_since == 0
        assert signals[-1].is_drowsy


class TestDegenerateInput:

    def test_missing_landmarks_fail_safe(self, interpreter):
        signal = interpreter.interpret([[(0.5, 0.5)] * 10], FaceSignal(), 1000)
        assert signal.face_count == 1
        assert not signal.is_focused
        assert not signal.is_drowsy
        assert signal.focus_lost_start == 1000

    def test_malformed_points_fail_safe(self, interpreter):
        signal = interpreter.interpret([[None] * 478], FaceSignal(), 1000)
        assert not signal.is_focused

    def test_degenerate_frame_clears_closure_anchor(self, interpreter):
        previous = FaceSignal(face_count=1, eyes_closed_since=0)
        signal = interpreter.interpret([[]], previous, 1000)
        assert signal.eyes_closed_since is None
