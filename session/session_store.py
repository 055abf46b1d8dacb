"""会话持久化模块：SQLAlchemy 存储 + 后台线程异步写入"""

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from models.data_models import InterviewSession, PersistResult

logger = logging.getLogger(__name__)

Base = declarative_base()


def _to_datetime(timestamp_ms: Optional[float]) -> Optional[datetime]:
    if timestamp_ms is None:
        return None
    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)


class SessionRecord(Base):
    """一条已定稿的面试会话"""
    __tablename__ = "interview_sessions"

    id = Column(String(64), primary_key=True)
    candidate_name = Column(String(200), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    integrity_score = Column(Integer, nullable=False)
    event_count = Column(Integer, nullable=False, default=0)
    payload = Column(Text, nullable=False)  # InterviewSession.to_dict() 的 JSON

    def __repr__(self):
        return f"<SessionRecord {self.id} [{self.candidate_name}] score={self.integrity_score}>"

    def to_dict(self):
        return json.loads(self.payload)


class SessionStore:
    """基于 SQLAlchemy 的会话存储"""

    def __init__(self, database_uri: str = "sqlite:///proctoring_sessions.db"):
        self._engine = create_engine(database_uri, echo=False)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(bind=self._engine)

    def save(self, session: InterviewSession) -> None:
        """写入（或覆盖）一条会话记录"""
        record = SessionRecord(
            id=session.id,
            candidate_name=session.candidate_name,
            start_time=_to_datetime(session.start_time),
            end_time=_to_datetime(session.end_time),
            integrity_score=session.integrity_score,
            event_count=len(session.events),
            payload=json.dumps(session.to_dict(), ensure_ascii=False),
        )
        db = self._session_factory()
        try:
            db.merge(record)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def load(self, session_id: str) -> Optional[dict]:
        db = self._session_factory()
        try:
            record = db.get(SessionRecord, session_id)
            return record.to_dict() if record is not None else None
        finally:
            db.close()

    def list_sessions(self) -> List[dict]:
        """按开始时间倒序返回会话摘要"""
        db = self._session_factory()
        try:
            records = db.query(SessionRecord).order_by(SessionRecord.start_time.desc()).all()
            return [
                {
                    "id": r.id,
                    "candidate_name": r.candidate_name,
                    "integrity_score": r.integrity_score,
                    "event_count": r.event_count,
                }
                for r in records
            ]
        finally:
            db.close()

    def close(self):
        self._engine.dispose()


class AsyncSessionWriter:
    """
    在后台线程中保存会话，调用方通过返回的 Future 获取 PersistResult。

    保存失败只体现在结果里，不会抛出，也不会影响内存中的会话。
    """

    def __init__(self, store: SessionStore, executor: Optional[ThreadPoolExecutor] = None):
        self._store = store
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="session-writer")

    def submit(self, session: InterviewSession) -> "Future[PersistResult]":
        if not session.is_finalized:
            raise ValueError(f"会话 {session.id} 尚未结束，不能保存")
        return self._executor.submit(self._save, session)

    def _save(self, session: InterviewSession) -> PersistResult:
        try:
            self._store.save(session)
        except Exception as e:
            logger.error("会话保存失败 %s: %s", session.id, e)
            return PersistResult(session_id=session.id, success=False, error=str(e))
        logger.info("会话已保存: %s", session.id)
        return PersistResult(session_id=session.id, success=True)

    def shutdown(self, wait: bool = True):
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
