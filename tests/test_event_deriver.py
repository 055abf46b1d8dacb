"""事件推导单元测试：持续门限、冷却期、物品分类与置信度门限"""

import itertools

import pytest
from hypothesis import given
from hypothesis import strategies as st

from evaluators.event_deriver import (
    DEFAULT_POLICY,
    DeriverPolicy,
    EventDeriver,
    classify_object,
    derive_events,
)
from models.data_models import (
    AUDIO_DETECTED,
    BOOK_DETECTED,
    DEVICE_DETECTED,
    DROWSINESS_DETECTED,
    FOCUS_LOST,
    MULTIPLE_FACES,
    NO_FACE,
    PHONE_DETECTED,
    CooldownTable,
    FaceSignal,
    ObjectDetection,
)

FOCUSED = FaceSignal(face_count=1, is_focused=True)


def _ids():
    counter = itertools.count()
    return lambda: f"event-{next(counter)}"


def _no_face(start):
    return FaceSignal(face_count=0, no_face_start=start, focus_lost_start=start)


def _run_ticks(signals_at, policy=DEFAULT_POLICY):
    """按 (signal, detections, loud, now) 序列推导，返回全部事件"""
    cooldowns = CooldownTable()
    events = []
    id_factory = _ids()
    for signal, detections, loud, now in signals_at:
        new, cooldowns = derive_events(cooldowns, signal, detections, loud, now, policy, id_factory)
        events.extend(new)
    return events


class TestSustainedConditions:

    def test_no_face_below_gate_produces_nothing(self):
        """连续 8 秒无人脸后恢复，不产生 no_face 事件"""
        ticks = [(_no_face(0), [], False, t) for t in range(0, 8001, 500)]
        ticks.append((FOCUSED, [], False, 8500))
        events = _run_ticks(ticks)
        assert [e for e in events if e.type == NO_FACE] == []

    def test_no_face_above_gate_produces_exactly_one(self):
        """连续 11 秒无人脸，恰好一个 no_face 事件"""
        ticks = [(_no_face(0), [], False, t) for t in range(0, 11001, 500)]
        ticks.append((FOCUSED, [], False, 11500))
        no_face = [e for e in _run_ticks(ticks) if e.type == NO_FACE]
        assert len(no_face) == 1
        assert no_face[0].timestamp == 10500
        assert no_face[0].duration == 10500
        assert no_face[0].description == "No face detected"

    def test_no_face_gate_is_strict(self):
        events, _ = derive_events(CooldownTable(), _no_face(0), [], False, 10000)
        assert [e.type for e in events if e.type == NO_FACE] == []

    def test_focus_lost_after_five_seconds(self):
        signal = FaceSignal(face_count=1, is_focused=False, focus_lost_start=1000)
        early, _ = derive_events(CooldownTable(), signal, [], False, 6000)
        late, _ = derive_events(CooldownTable(), signal, [], False, 6001)

        assert early == []
        assert [e.type for e in late] == [FOCUS_LOST]
        assert late[0].duration == 5001
        assert late[0].description == "Candidate lost focus"

    def test_focused_signal_never_emits_focus_lost(self):
        signal = FaceSignal(face_count=1, is_focused=True, focus_lost_start=None)
        events, _ = derive_events(CooldownTable(), signal, [], False, 1_000_000)
        assert events == []


class TestInstantConditions:

    def test_multiple_faces_once_within_cooldown(self):
        """两张脸持续 3 帧（500ms）只产生一个 multiple_faces"""
        two = FaceSignal(face_count=2, focus_lost_start=0)
        events = _run_ticks([(two, [], False, t) for t in (0, 250, 500)])
        multiple = [e for e in events if e.type == MULTIPLE_FACES]
        assert len(multiple) == 1
        assert multiple[0].timestamp == 0
        assert multiple[0].description == "Multiple faces detected (2 faces)"

    def test_drowsiness(self):
        signal = FaceSignal(face_count=1, is_focused=True, is_drowsy=True)
        events, _ = derive_events(CooldownTable(), signal, [], False, 0)
        assert [e.type for e in events] == [DROWSINESS_DETECTED]

    def test_loud_audio(self):
        events, _ = derive_events(CooldownTable(), FOCUSED, [], True, 0)
        assert [e.type for e in events] == [AUDIO_DETECTED]
        assert events[0].description == "Loud background noise detected"

    def test_independent_conditions_in_one_tick(self):
        signal = FaceSignal(face_count=3, is_drowsy=True, focus_lost_start=0)
        detections = [ObjectDetection("cell phone", 0.9)]
        events, _ = derive_events(CooldownTable(), signal, detections, True, 6000)
        assert {e.type for e in events} == {
            FOCUS_LOST, MULTIPLE_FACES, DROWSINESS_DETECTED, PHONE_DETECTED, AUDIO_DETECTED,
        }


class TestObjects:

    def test_confidence_below_gate_never_emits(self):
        detections = [ObjectDetection("cell phone", 0.65)]
        events = _run_ticks([(FOCUSED, detections, False, t) for t in range(0, 100_000, 1000)])
        assert events == []

    def test_confidence_above_gate_emits(self):
        detections = [ObjectDetection("cell phone", 0.71)]
        events, _ = derive_events(CooldownTable(), FOCUSED, detections, False, 0)
        assert len(events) == 1
        assert events[0].type == PHONE_DETECTED
        assert events[0].confidence == 0.71
        assert events[0].description == "cell phone detected"

    def test_irrelevant_class_ignored(self):
        detections = [ObjectDetection("person", 0.99), ObjectDetection("cup", 0.95)]
        events, _ = derive_events(CooldownTable(), FOCUSED, detections, False, 0)
        assert events == []

    def test_same_type_twice_in_one_tick_emits_once(self):
        detections = [ObjectDetection("cell phone", 0.9), ObjectDetection("cell phone", 0.8)]
        events, cooldowns = derive_events(CooldownTable(), FOCUSED, detections, False, 0)
        assert len(events) == 1
        assert cooldowns.last_emitted(PHONE_DETECTED) == 0

    def test_devices_share_one_cooldown(self):
        detections = [ObjectDetection("laptop", 0.9), ObjectDetection("keyboard", 0.9)]
        events, _ = derive_events(CooldownTable(), FOCUSED, detections, False, 0)
        assert [e.type for e in events] == [DEVICE_DETECTED]

    @pytest.mark.parametrize("label, expected", [
        ("cell phone", PHONE_DETECTED),
        ("Cell Phone", PHONE_DETECTED),
        ("book", BOOK_DETECTED),
        ("laptop", DEVICE_DETECTED),
        ("keyboard", DEVICE_DETECTED),
        ("mouse", DEVICE_DETECTED),
        ("remote", DEVICE_DETECTED),
    ])
    def test_classify_object(self, label, expected):
        assert classify_object(label) == expected


class TestCooldown:

    def test_reemits_only_after_cooldown(self):
        two = FaceSignal(face_count=2, focus_lost_start=0)
        events = _run_ticks([(two, [], False, t) for t in (0, 20000, 20001, 40001)])
        stamps = [e.timestamp for e in events if e.type == MULTIPLE_FACES]
        assert stamps == [0, 20001]

    def test_input_table_is_not_modified(self):
        table = CooldownTable({MULTIPLE_FACES: 0})
        _, new_table = derive_events(table, FaceSignal(face_count=2), [], False, 30000)
        assert table.last_emitted(MULTIPLE_FACES) == 0
        assert new_table.last_emitted(MULTIPLE_FACES) == 30000

    def test_suppressed_event_does_not_touch_table(self):
        table = CooldownTable({AUDIO_DETECTED: 1000})
        events, new_table = derive_events(table, FOCUSED, [], True, 5000)
        assert events == []
        assert new_table == table

    def test_custom_policy(self):
        policy = DeriverPolicy(cooldown_ms=1000)
        events = _run_ticks([(FOCUSED, [], True, t) for t in (0, 500, 1001)], policy=policy)
        assert [e.timestamp for e in events] == [0, 1001]

    @given(st.lists(st.integers(min_value=0, max_value=200), min_size=1, max_size=60))
    def test_same_type_events_are_spaced_beyond_cooldown(self, gaps):
        """任意 tick 间隔下，同类事件时间戳之差总大于冷却期"""
        times = list(itertools.accumulate(g * 500 for g in gaps))
        two = FaceSignal(face_count=2, is_drowsy=True, focus_lost_start=0)
        detections = [ObjectDetection("book", 0.9)]
        events = _run_ticks([(two, detections, True, t) for t in times])

        by_type = {}
        for event in events:
            by_type.setdefault(event.type, []).append(event.timestamp)
        for stamps in by_type.values():
            for earlier, later in zip(stamps, stamps[1:]):
                assert later - earlier > DEFAULT_POLICY.cooldown_ms


class TestEventDeriver:

    def test_threads_cooldowns_between_updates(self):
        clock_values = iter([0, 10000, 25000])
        deriver = EventDeriver(clock=lambda: next(clock_values))
        loud = [deriver.update(FOCUSED, loud=True) for _ in range(3)]
        assert [len(events) for events in loud] == [1, 0, 1]

    def test_reset_clears_cooldowns(self):
        deriver = EventDeriver()
        deriver.update(FOCUSED, loud=True, now=0)
        deriver.reset()
        assert len(deriver.cooldowns) == 0
        assert len(deriver.update(FOCUSED, loud=True, now=1)) == 1

    def test_event_ids_are_unique(self):
        deriver = EventDeriver()
        signal = FaceSignal(face_count=2, is_drowsy=True)
        events = deriver.update(signal, [ObjectDetection("book", 0.9)], loud=True, now=0)
        assert len({e.id for e in events}) == len(events)

    def test_from_config(self):
        policy = DeriverPolicy.from_config({
            "focus_lost_sustain_ms": 1,
            "no_face_sustain_ms": 2,
            "cooldown_ms": 3,
            "object_confidence_threshold": 0.4,
        })
        assert policy == DeriverPolicy(1, 2, 3, 0.4)
