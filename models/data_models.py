"""核心数据模型定义"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

# 事件类型
FOCUS_LOST = "focus_lost"
NO_FACE = "no_face"
MULTIPLE_FACES = "multiple_faces"
PHONE_DETECTED = "phone_detected"
BOOK_DETECTED = "book_detected"
DEVICE_DETECTED = "device_detected"
DROWSINESS_DETECTED = "drowsiness_detected"
AUDIO_DETECTED = "audio_detected"

EVENT_TYPES = (
    FOCUS_LOST,
    NO_FACE,
    MULTIPLE_FACES,
    PHONE_DETECTED,
    BOOK_DETECTED,
    DEVICE_DETECTED,
    DROWSINESS_DETECTED,
    AUDIO_DETECTED,
)

# 报告中使用的事件名称
EVENT_LABELS = {
    FOCUS_LOST: "Focus Lost",
    DROWSINESS_DETECTED: "Drowsiness Detected",
    NO_FACE: "No Face Detected",
    MULTIPLE_FACES: "Multiple Faces",
    AUDIO_DETECTED: "Background Noise",
    PHONE_DETECTED: "Phone Detected",
    BOOK_DETECTED: "Books/Notes Detected",
    DEVICE_DETECTED: "Other Devices",
}

# 面试场景关注的物品类别（COCO 名称）
RELEVANT_CLASSES = ("cell phone", "book", "laptop", "keyboard", "mouse", "remote")


def is_relevant_class(label: str) -> bool:
    """类别名（忽略大小写和首尾空白）必须恰好是关注类别之一"""
    return label.strip().lower() in RELEVANT_CLASSES


def to_iso(timestamp_ms: float) -> str:
    """毫秒时间戳 -> ISO-8601 UTC 字符串（毫秒精度，Z 结尾）"""
    dt = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class FaceSignal:
    """单帧人脸信号，流水起点锚点在状态持续期间保持不变"""
    face_count: int = 0
    is_focused: bool = False
    is_drowsy: bool = False
    focus_lost_start: Optional[float] = None
    no_face_start: Optional[float] = None
    eyes_closed_since: Optional[float] = None
    ear: Optional[float] = None
    focus_ratio: Optional[float] = None


@dataclass(frozen=True)
class ObjectDetection:
    """目标检测结果，bbox 为 (x, y, w, h)"""
    label: str
    confidence: float
    bbox: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)

    def to_dict(self) -> dict:
        return {
            "class": self.label,
            "confidence": self.confidence,
            "bbox": list(self.bbox),
        }


@dataclass(frozen=True)
class DetectionEvent:
    """违规事件，创建后不可修改"""
    id: str
    type: str
    timestamp: float
    description: str
    duration: Optional[float] = None
    confidence: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "timestamp": self.timestamp,
            "duration": self.duration,
            "confidence": self.confidence,
            "description": self.description,
        }


class CooldownTable:
    """事件类型 -> 最近一次触发时间 的只读映射"""

    def __init__(self, entries: Optional[Mapping[str, float]] = None):
        self._entries = MappingProxyType(dict(entries or {}))

    def last_emitted(self, event_type: str) -> Optional[float]:
        return self._entries.get(event_type)

    def is_ready(self, event_type: str, now: float, cooldown_ms: float) -> bool:
        """距上次触发超过冷却期（或从未触发）时返回 True"""
        last = self._entries.get(event_type)
        return last is None or now - last > cooldown_ms

    def with_emission(self, event_type: str, now: float) -> "CooldownTable":
        """返回记录了本次触发的新表，原表不变"""
        entries = dict(self._entries)
        entries[event_type] = now
        return CooldownTable(entries)

    def as_dict(self) -> dict:
        return dict(self._entries)

    def __len__(self):
        return len(self._entries)

    def __eq__(self, other):
        if not isinstance(other, CooldownTable):
            return NotImplemented
        return dict(self._entries) == dict(other._entries)

    def __repr__(self):
        return f"CooldownTable({dict(self._entries)!r})"


@dataclass
class InterviewSession:
    """面试会话记录"""
    id: str
    candidate_name: str
    start_time: float
    end_time: Optional[float] = None
    events: List[DetectionEvent] = field(default_factory=list)
    integrity_score: int = 100
    recording_path: Optional[str] = None

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    @property
    def duration_ms(self) -> float:
        if self.end_time is None:
            return 0
        return self.end_time - self.start_time

    def to_dict(self) -> dict:
        """可 JSON 序列化的完整会话记录"""
        return {
            "id": self.id,
            "candidate_name": self.candidate_name,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time) if self.end_time is not None else None,
            "events": [e.to_dict() for e in self.events],
            "integrity_score": self.integrity_score,
            "recording_path": self.recording_path,
        }


@dataclass
class TickResult:
    """单次 tick 的处理结果"""
    signal: FaceSignal
    detections: List[ObjectDetection]
    is_loud: bool
    events: List[DetectionEvent]
    timestamp: float


@dataclass
class PersistResult:
    """会话持久化结果"""
    session_id: str
    success: bool
    error: Optional[str] = None


@dataclass
class CalibrationResult:
    """阈值校准结果"""
    optimal_ear_threshold: float
    optimal_focus_ratio_threshold: float
    ear_accuracy: float
    ear_recall: float
    focus_accuracy: float
    focus_recall: float
    ear_distribution: dict
    focus_distribution: dict
