"""违规事件推导模块：逐帧信号 -> 去重、带冷却的 DetectionEvent 流"""

import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

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
    DetectionEvent,
    FaceSignal,
    ObjectDetection,
    is_relevant_class,
)


@dataclass(frozen=True)
class DeriverPolicy:
    """持续时间门限与冷却期（毫秒）"""
    focus_lost_sustain_ms: float = 5000
    no_face_sustain_ms: float = 10000
    cooldown_ms: float = 20000
    object_confidence_threshold: float = 0.7

    @classmethod
    def from_config(cls, config: dict) -> "DeriverPolicy":
        return cls(
            focus_lost_sustain_ms=config["focus_lost_sustain_ms"],
            no_face_sustain_ms=config["no_face_sustain_ms"],
            cooldown_ms=config["cooldown_ms"],
            object_confidence_threshold=config["object_confidence_threshold"],
        )


DEFAULT_POLICY = DeriverPolicy()


def new_event_id() -> str:
    return f"event-{uuid.uuid4().hex}"


def classify_object(label: str) -> str:
    """物品类别 -> 事件类型：phone 优先，其次 book，其余归为电子设备"""
    name = label.lower()
    if "phone" in name:
        return PHONE_DETECTED
    if "book" in name:
        return BOOK_DETECTED
    return DEVICE_DETECTED


def derive_events(
    cooldowns: CooldownTable,
    signal: FaceSignal,
    detections: Sequence[ObjectDetection],
    loud: bool,
    now: float,
    policy: DeriverPolicy = DEFAULT_POLICY,
    id_factory: Callable[[], str] = new_event_id,
) -> Tuple[List[DetectionEvent], CooldownTable]:
    """
    根据当前帧信号决定要触发的事件。各条件相互独立，同一帧可触发多个事件。

    Args:
        cooldowns: 上一帧结束时的冷却表
        signal: 当前帧的 FaceSignal（含流水锚点）
        detections: 当前帧的物品检测结果
        loud: 当前是否有过响的环境噪音
        now: 当前时间（毫秒）
        policy: 门限与冷却参数
        id_factory: 事件 id 生成函数

    Returns:
        (新事件列表, 更新后的冷却表)；输入的冷却表不会被修改
    """
    events: List[DetectionEvent] = []

    def emit(event_type, description, duration=None, confidence=None):
        nonlocal cooldowns
        if not cooldowns.is_ready(event_type, now, policy.cooldown_ms):
            return
        events.append(DetectionEvent(
            id=id_factory(),
            type=event_type,
            timestamp=now,
            description=description,
            duration=duration,
            confidence=confidence,
        ))
        cooldowns = cooldowns.with_emission(event_type, now)

    if not signal.is_focused and signal.focus_lost_start is not None:
        age = now - signal.focus_lost_start
        if age > policy.focus_lost_sustain_ms:
            emit(FOCUS_LOST, "Candidate lost focus", duration=age)

    if signal.face_count == 0 and signal.no_face_start is not None:
        age = now - signal.no_face_start
        if age > policy.no_face_sustain_ms:
            emit(NO_FACE, "No face detected", duration=age)

    if signal.face_count > 1:
        emit(MULTIPLE_FACES, f"Multiple faces detected ({signal.face_count} faces)")

    if signal.is_drowsy:
        emit(DROWSINESS_DETECTED, "Candidate appears drowsy")

    for detection in detections:
        if not is_relevant_class(detection.label):
            continue
        if detection.confidence > policy.object_confidence_threshold:
            emit(
                classify_object(detection.label),
                f"{detection.label} detected",
                confidence=detection.confidence,
            )

    if loud:
        emit(AUDIO_DETECTED, "Loud background noise detected")

    return events, cooldowns


class EventDeriver:
    """在帧之间传递冷却表的薄封装，供检测循环使用"""

    def __init__(self, policy: DeriverPolicy = DEFAULT_POLICY, clock: Optional[Callable[[], float]] = None):
        self.policy = policy
        self._clock = clock or (lambda: time.time() * 1000)
        self._cooldowns = CooldownTable()

    @property
    def cooldowns(self) -> CooldownTable:
        return self._cooldowns

    def update(
        self,
        signal: FaceSignal,
        detections: Sequence[ObjectDetection] = (),
        loud: bool = False,
        now: Optional[float] = None,
    ) -> List[DetectionEvent]:
        if now is None:
            now = self._clock()
        events, self._cooldowns = derive_events(
            self._cooldowns, signal, detections, loud, now, self.policy,
        )
        return events

    def reset(self):
        """会话开始时清空冷却表"""
        self._cooldowns = CooldownTable()
