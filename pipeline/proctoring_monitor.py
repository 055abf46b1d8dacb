"""监考主循环：摄像头逐帧 tick -> 感知适配器 -> 信号解释 -> 事件推导 -> 会话记录"""

import logging
import math
import os
import threading
import time
from typing import Callable, List, Optional

import cv2
import numpy as np

from config import DEFAULTS, apply_overrides
from detectors.eye_analyzer import EyeAnalyzer
from detectors.face_detector import FaceDetector
from detectors.focus_analyzer import FocusAnalyzer
from display.renderer import DisplayRenderer
from evaluators.event_deriver import DeriverPolicy, EventDeriver
from evaluators.signal_interpreter import SignalInterpreter
from models.data_models import DetectionEvent, FaceSignal, InterviewSession, TickResult
from session.session_aggregator import SessionAggregator

logger = logging.getLogger(__name__)


class AdapterUnavailableError(RuntimeError):
    """摄像头或感知模型无法使用，监考无法开始"""


def _default_object_detector(config):
    # 延迟导入：禁用物品检测时不需要加载 ultralytics
    from detectors.object_detector import ObjectDetector
    return ObjectDetector(model_path=config["object_model_path"])


def _default_audio_monitor(config):
    from detectors.audio_analyzer import MicrophoneMonitor
    return MicrophoneMonitor(volume_threshold=config["audio_volume_threshold"])


def _default_video_writer(path, fps, frame_size):
    fourcc = cv2.VideoWriter_fourcc(*"mp4v")
    return cv2.VideoWriter(path, fourcc, fps, frame_size)


def _finite_or_none(value):
    if value is None or not math.isfinite(value):
        return None
    return value


class ProctoringMonitor:
    """
    监考系统主程序，协调各模块并管理后台检测线程。

    每次 tick 串行执行，tick 之间不会重叠。stop() 可以在任意线程、任意时刻调用：
    若恰好有 tick 在执行，适配器的释放推迟到该 tick 结束时进行。
    """

    # 读帧失败后的等待间隔（秒）
    READ_RETRY_SECONDS = 0.1

    def __init__(
        self,
        config: Optional[dict] = None,
        aggregator: Optional[SessionAggregator] = None,
        face_detector_factory: Optional[Callable] = None,
        object_detector_factory: Optional[Callable] = None,
        audio_monitor_factory: Optional[Callable] = None,
        capture_factory: Optional[Callable] = None,
        video_writer_factory: Optional[Callable] = None,
        enable_objects: bool = True,
        enable_audio: bool = True,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = apply_overrides(dict(DEFAULTS), config or {})
        self._clock = clock or (lambda: time.time() * 1000)

        self.deriver = EventDeriver(clock=self._clock)
        self.aggregator = aggregator or SessionAggregator(clock=self._clock)
        self._init_modules(self.config)

        self._face_detector_factory = face_detector_factory or (
            lambda: FaceDetector(max_num_faces=self.config["max_num_faces"])
        )
        self._object_detector_factory = object_detector_factory or (
            lambda: _default_object_detector(self.config)
        )
        self._audio_monitor_factory = audio_monitor_factory or (
            lambda: _default_audio_monitor(self.config)
        )
        self._capture_factory = capture_factory or cv2.VideoCapture
        self._video_writer_factory = video_writer_factory or _default_video_writer
        self.enable_objects = enable_objects
        self.enable_audio = enable_audio

        self._face_detector = None
        self._object_detector = None
        self._audio_monitor = None
        self._cap = None
        self._recorder = None

        self._signal = FaceSignal()
        self._tracked_session: Optional[InterviewSession] = None
        self._read_failures = 0
        self._state_lock = threading.Lock()
        self._tick_done = threading.Condition(self._state_lock)
        self._tick_owner = None
        self._data_lock = threading.Lock()
        self._running = False
        self._in_tick = False
        self._teardown_pending = False
        self._thread: Optional[threading.Thread] = None

        self._latest_frame: Optional[np.ndarray] = None
        self._latest_result: Optional[TickResult] = None
        self._latest_event: Optional[DetectionEvent] = None
        self._last_error: Optional[str] = None
        self._listeners: List[Callable[[DetectionEvent], None]] = []

    def _init_modules(self, config):
        self.interpreter = SignalInterpreter(
            FocusAnalyzer(ratio_threshold=config["focus_ratio_threshold"]),
            EyeAnalyzer(
                ear_threshold=config["ear_threshold"],
                drowsiness_time_ms=config["drowsiness_time_ms"],
            ),
        )
        self.deriver.policy = DeriverPolicy.from_config(config)
        self.renderer = DisplayRenderer(min_confidence=config["object_confidence_threshold"])

    def update_config(self, changes: dict) -> dict:
        """
        动态更新阈值配置，从下一帧开始生效。

        未知键和 null 值被忽略；冷却表与进行中的锚点保持不变。
        感知模型、摄像头、录像等参数在下次 start() 时生效。

        Raises:
            ValueError: 某一项类型不符，此时配置保持不变
        """
        apply_overrides(self.config, changes)
        self._init_modules(self.config)
        return dict(self.config)

    # ---- 生命周期 ----

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    def add_event_listener(self, callback: Callable[[DetectionEvent], None]):
        """注册事件回调，在检测线程中调用"""
        self._listeners.append(callback)

    def begin_session(self, candidate_name: str, camera_index: Optional[int] = None,
                      background: bool = True) -> InterviewSession:
        """
        开始会话并启动监考。

        监考已在运行时直接沿用当前摄像头；流水锚点与冷却表在会话的第一帧重置。

        Raises:
            ValueError: 候选人姓名为空（不会打开任何设备）
            AdapterUnavailableError: 设备或模型不可用（会话被取消）
        """
        session = self.aggregator.start_session(candidate_name)
        try:
            self.start(camera_index=camera_index, background=background)
        except AdapterUnavailableError:
            self.aggregator.abort_session()
            raise
        self._prepare_recording(session)
        return session

    def end_session(self) -> Optional[InterviewSession]:
        """停止监考并定稿当前会话；有 tick 在执行时等它结束再定稿"""
        self.stop()
        self._wait_for_tick()
        return self.aggregator.end_session()

    def start(self, camera_index: Optional[int] = None, background: bool = True):
        """打开摄像头与感知适配器，background=True 时启动检测线程。"""
        if self.is_running:
            return

        if camera_index is None:
            camera_index = self.config["camera_index"]

        # 上一轮检测线程可能还在执行最后一帧，等它收尾后再打开新的适配器
        previous = self._thread
        if previous is not None and previous is not threading.current_thread():
            previous.join()
        self._thread = None

        self._open_adapters()

        self._cap = self._capture_factory(camera_index)
        if not self._cap.isOpened():
            self._release_adapters()
            raise AdapterUnavailableError("无法打开摄像头")

        self._signal = FaceSignal()
        self._tracked_session = None
        self._read_failures = 0
        self.deriver.reset()
        with self._data_lock:
            self._latest_event = None
            self._last_error = None

        with self._state_lock:
            self._running = True
            self._teardown_pending = False

        if background:
            self._thread = threading.Thread(target=self._run_loop, daemon=True)
            self._thread.start()
        logger.info("监考已启动 (camera=%s)", camera_index)

    def stop(self):
        """停止调度；没有 tick 在执行时立即释放适配器，否则交给当前 tick 收尾。"""
        with self._state_lock:
            self._running = False
            if self._in_tick:
                self._teardown_pending = True
                release_now = False
            else:
                release_now = True

        if release_now:
            self._release_adapters()
        logger.info("监考已停止")

    def _open_adapters(self):
        try:
            self._face_detector = self._face_detector_factory()
            if self.enable_objects:
                self._object_detector = self._object_detector_factory()
        except Exception as e:
            self._release_adapters()
            raise AdapterUnavailableError(f"感知模型加载失败: {e}") from e

        if self.enable_audio:
            monitor = None
            try:
                monitor = self._audio_monitor_factory()
                monitor.start()
            except Exception as e:
                # 没有麦克风时继续监考，只是不产生音频事件
                logger.warning("麦克风不可用，跳过音频检测: %s", e)
                if monitor is not None:
                    monitor.close()
                monitor = None
            self._audio_monitor = monitor

    def _release_adapters(self):
        for name in ("_face_detector", "_object_detector", "_audio_monitor"):
            adapter = getattr(self, name)
            setattr(self, name, None)
            if adapter is None:
                continue
            try:
                adapter.close()
            except Exception:
                logger.exception("释放 %s 失败", name)

        recorder, self._recorder = self._recorder, None
        if recorder is not None:
            try:
                recorder.release()
            except Exception:
                logger.exception("关闭录像文件失败")

        cap, self._cap = self._cap, None
        if cap is not None and cap.isOpened():
            cap.release()

    # ---- 录像 ----

    def _prepare_recording(self, session: InterviewSession):
        """配置了 recording_dir 时为会话分配录像路径，文件在第一帧到达时创建"""
        directory = self.config["recording_dir"]
        if not directory:
            return
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            logger.warning("无法创建录像目录 %s，本次会话不录像: %s", directory, e)
            return
        session.recording_path = os.path.join(directory, f"{session.id}.mp4")

    def _record(self, frame: np.ndarray, session: Optional[InterviewSession]):
        if session is None or not session.recording_path:
            return

        if self._recorder is None:
            height, width = frame.shape[:2]
            recorder = None
            try:
                recorder = self._video_writer_factory(
                    session.recording_path, self.config["recording_fps"], (width, height)
                )
            except Exception:
                logger.exception("创建录像文件失败")
            if recorder is None or not recorder.isOpened():
                logger.warning("无法写入录像 %s，本次会话不录像", session.recording_path)
                if recorder is not None:
                    recorder.release()
                session.recording_path = None
                return
            self._recorder = recorder
            logger.info("开始录像: %s", session.recording_path)

        try:
            self._recorder.write(frame)
        except Exception:
            logger.exception("写入录像帧失败")

    # ---- tick ----

    def _enter_tick(self) -> bool:
        with self._state_lock:
            if not self._running:
                return False
            self._in_tick = True
            self._tick_owner = threading.get_ident()
            return True

    def _exit_tick(self):
        with self._state_lock:
            self._in_tick = False
            self._tick_owner = None
            teardown = self._teardown_pending
            self._teardown_pending = False
            self._tick_done.notify_all()
        if teardown:
            self._release_adapters()

    def _wait_for_tick(self):
        # 在 tick 内部调用时不能等待自己
        with self._tick_done:
            while self._in_tick and self._tick_owner != threading.get_ident():
                self._tick_done.wait()

    def _run_loop(self):
        """后台处理循环：尽可能快地逐帧处理，直到 stop()；读帧失败时稍作等待。"""
        while self.is_running:
            try:
                self.poll_camera()
            except Exception:
                logger.exception("检测循环异常，本帧跳过")
            if self._read_failures:
                time.sleep(self.READ_RETRY_SECONDS)

    def poll_camera(self, now: Optional[float] = None) -> Optional[TickResult]:
        """
        从摄像头读取一帧并处理；监考未运行时返回 None。

        读取失败的帧按无人脸、无物品处理，no_face 等持续性事件照常累计。
        连续失败达到 max_read_failures 次后停止监考。
        """
        if not self._enter_tick():
            return None
        try:
            try:
                ret, frame = self._cap.read()
            except Exception:
                logger.exception("读取摄像头失败")
                ret, frame = False, None

            if ret and frame is not None:
                self._read_failures = 0
            else:
                frame = None
                self._read_failures += 1

            result = self._process(frame, now)

            if self._read_failures >= self.config["max_read_failures"]:
                self._camera_lost()
            return result
        finally:
            self._exit_tick()

    def _camera_lost(self):
        message = f"摄像头连续 {self._read_failures} 帧读取失败，监考已停止"
        logger.error(message)
        with self._data_lock:
            self._last_error = message
        self.stop()

    def tick(self, frame: Optional[np.ndarray], now: Optional[float] = None) -> Optional[TickResult]:
        """处理一帧；frame 为 None 表示没有画面。监考未运行时返回 None。"""
        if not self._enter_tick():
            return None
        try:
            return self._process(frame, now)
        finally:
            self._exit_tick()

    def _process(self, frame: Optional[np.ndarray], now: Optional[float]) -> TickResult:
        if now is None:
            now = self._clock()

        session = self.aggregator.active_session
        if session is not self._tracked_session:
            # 新会话从干净的锚点和冷却表开始，会话前的状态不计入
            self._tracked_session = session
            self._signal = FaceSignal()
            self.deriver.reset()

        faces = []
        detections = []
        if frame is not None:
            self._record(frame, session)

            try:
                faces = self._face_detector.detect(frame)
            except Exception:
                logger.exception("人脸检测失败，本帧按无人脸处理")
                faces = []

            if self._object_detector is not None:
                try:
                    detections = self._object_detector.detect(frame)
                except Exception:
                    logger.exception("物品检测失败，本帧按无物品处理")
                    detections = []

        is_loud = False
        if self._audio_monitor is not None:
            try:
                is_loud = self._audio_monitor.is_loud()
            except Exception:
                logger.exception("读取音量失败")

        signal = self.interpreter.interpret(faces, self._signal, now)
        self._signal = signal

        events: List[DetectionEvent] = []
        if session is not None:
            events = self.deriver.update(signal, detections, is_loud, now)
            self.aggregator.record_events(events)

        for event in events:
            logger.info("事件: %s - %s", event.type, event.description)
            for callback in self._listeners:
                try:
                    callback(event)
                except Exception:
                    logger.exception("事件回调失败")

        result = TickResult(
            signal=signal,
            detections=list(detections),
            is_loud=is_loud,
            events=events,
            timestamp=now,
        )

        with self._data_lock:
            if events:
                self._latest_event = events[-1]
            latest_event = self._latest_event
        rendered = None
        if frame is not None:
            rendered = self.renderer.render(frame, signal, detections, is_loud, latest_event)
        with self._data_lock:
            # 没有画面时保留上一帧预览
            if rendered is not None:
                self._latest_frame = rendered
            self._latest_result = result

        return result

    # ---- 状态读取 ----

    @property
    def signal(self) -> FaceSignal:
        return self._signal

    def get_frame(self) -> Optional[np.ndarray]:
        with self._data_lock:
            return self._latest_frame

    def get_status(self) -> dict:
        """当前检测状态，供前端轮询"""
        with self._data_lock:
            result = self._latest_result
            error = self._last_error
        session = self.aggregator.active_session
        status = {
            "running": self.is_running,
            "error": error,
            "session_id": session.id if session else None,
            "candidate_name": session.candidate_name if session else None,
            "event_count": len(session.events) if session else 0,
            "recording_path": session.recording_path if session else None,
            "face_count": 0,
            "is_focused": False,
            "is_drowsy": False,
            "is_loud": False,
            "ear": None,
            "focus_ratio": None,
            "detections": [],
        }
        if result is not None:
            status.update({
                "face_count": result.signal.face_count,
                "is_focused": result.signal.is_focused,
                "is_drowsy": result.signal.is_drowsy,
                "is_loud": result.is_loud,
                "ear": result.signal.ear,
                "focus_ratio": _finite_or_none(result.signal.focus_ratio),
                "detections": [d.to_dict() for d in result.detections],
            })
        return status
