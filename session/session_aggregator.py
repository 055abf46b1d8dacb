"""会话汇总模块：管理会话生命周期、追加事件、计算诚信分"""

import logging
import time
from typing import Callable, Iterable, Optional

from models.data_models import (
    AUDIO_DETECTED,
    BOOK_DETECTED,
    DEVICE_DETECTED,
    DROWSINESS_DETECTED,
    FOCUS_LOST,
    MULTIPLE_FACES,
    NO_FACE,
    PHONE_DETECTED,
    DetectionEvent,
    InterviewSession,
)

logger = logging.getLogger(__name__)

PENALTIES = {
    PHONE_DETECTED: 15,
    BOOK_DETECTED: 10,
    DEVICE_DETECTED: 10,
    MULTIPLE_FACES: 8,
    FOCUS_LOST: 5,
    NO_FACE: 5,
    DROWSINESS_DETECTED: 7,
    AUDIO_DETECTED: 5,
}
DEFAULT_PENALTY = 2
MAX_SCORE = 100


def compute_integrity_score(events: Iterable[DetectionEvent]) -> int:
    """
    诚信分 = 100 - 各事件扣分之和，最低为 0。

    只依赖事件类型的多重集合，与事件顺序无关。
    """
    total = sum(PENALTIES.get(event.type, DEFAULT_PENALTY) for event in events)
    return max(0, MAX_SCORE - total)


class SessionAggregator:
    """持有当前会话，会话结束时定稿并计算分数。不做任何 I/O。"""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or (lambda: time.time() * 1000)
        self._active: Optional[InterviewSession] = None
        self._last: Optional[InterviewSession] = None

    @property
    def active_session(self) -> Optional[InterviewSession]:
        return self._active

    @property
    def last_session(self) -> Optional[InterviewSession]:
        """最近一次定稿的会话"""
        return self._last

    @property
    def is_active(self) -> bool:
        return self._active is not None

    def start_session(self, candidate_name: str) -> InterviewSession:
        """
        开始新会话。

        Raises:
            ValueError: 候选人姓名为空
            RuntimeError: 已有进行中的会话
        """
        name = (candidate_name or "").strip()
        if not name:
            raise ValueError("候选人姓名不能为空")
        if self._active is not None:
            raise RuntimeError(f"会话 {self._active.id} 仍在进行中")

        now = self._clock()
        self._active = InterviewSession(
            id=f"session-{int(now)}",
            candidate_name=name,
            start_time=now,
        )
        logger.info("会话开始: %s (%s)", self._active.id, name)
        return self._active

    def abort_session(self) -> None:
        """丢弃尚未产生结果的会话（例如摄像头无法打开时），不定稿、不计分"""
        if self._active is not None:
            logger.info("会话已取消: %s", self._active.id)
        self._active = None

    def record_event(self, event: DetectionEvent) -> None:
        """追加事件；没有进行中的会话时忽略"""
        if self._active is None:
            return
        self._active.events.append(event)

    def record_events(self, events: Iterable[DetectionEvent]) -> None:
        for event in events:
            self.record_event(event)

    def end_session(self) -> Optional[InterviewSession]:
        """结束会话：记录结束时间并计算诚信分。没有进行中的会话时返回 None。"""
        session = self._active
        if session is None:
            return None

        session.end_time = self._clock()
        session.integrity_score = compute_integrity_score(session.events)
        self._active = None
        self._last = session
        logger.info(
            "会话结束: %s, 事件 %d 条, 诚信分 %d",
            session.id, len(session.events), session.integrity_score,
        )
        return session
