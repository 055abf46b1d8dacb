"""Flask Web 前端 - 在线面试监考系统"""

import datetime
import io
import logging
import os
import threading
import time

import cv2
from flask import Flask, Response, jsonify, render_template, request, send_file

from config import load_config
from models.data_models import DetectionEvent
from pipeline.proctoring_monitor import AdapterUnavailableError, ProctoringMonitor
from reports.report_generator import generate_csv_report, generate_pdf_report, report_filename
from session.session_store import AsyncSessionWriter, SessionStore

logger = logging.getLogger(__name__)

app = Flask(__name__, template_folder="web/templates", static_folder="web/static")


class WebProctoringSystem:
    """Web 版监考系统，支持 MJPEG 视频流推送、会话控制和报告下载。"""

    MAX_LOG_ENTRIES = 200

    def __init__(self, config=None, monitor=None, writer=None):
        self.monitor = monitor or ProctoringMonitor(config or load_config(os.environ.get("PROCTOR_CONFIG")))
        self._writer = writer
        # 外部传入的 writer 固定不变；自建的 writer 跟随 database_uri 更新
        self._writer_uri = None
        self._logs = []
        self._log_lock = threading.Lock()
        self._last_persist = None
        self.monitor.add_event_listener(self._on_event)

    @property
    def config(self):
        """与监考主循环共用同一份配置"""
        return self.monitor.config

    @property
    def writer(self) -> AsyncSessionWriter:
        # 第一次结束会话时才创建数据库
        uri = self.config["database_uri"]
        if self._writer is not None and (self._writer_uri is None or self._writer_uri == uri):
            return self._writer
        if self._writer is not None:
            # 已提交的保存任务仍会完成
            self._writer.shutdown(wait=False)
        self._writer = AsyncSessionWriter(SessionStore(uri))
        self._writer_uri = uri
        return self._writer

    def start_session(self, candidate_name):
        session = self.monitor.begin_session(candidate_name)
        self._last_persist = None
        self._add_log("info", f"面试开始: {session.candidate_name}")
        return session

    def end_session(self):
        """结束会话并在后台保存；没有进行中的会话时返回 None。"""
        session = self.monitor.end_session()
        if session is None:
            return None
        self._add_log(
            "info",
            f"面试结束，诚信分 {session.integrity_score}，事件 {len(session.events)} 条",
        )
        future = self.writer.submit(session)
        future.add_done_callback(self._on_persisted)
        return session

    def _on_event(self, event: DetectionEvent):
        self._add_log("danger", event.description)

    def _on_persisted(self, future):
        result = future.result()
        self._last_persist = result
        if result.success:
            self._add_log("info", f"会话已保存: {result.session_id}")
        else:
            logger.warning("会话 %s 保存失败: %s", result.session_id, result.error)
            # 保存失败不影响报告下载
            self._add_log("warning", f"会话保存失败，报告仍可下载: {result.error}")

    def _add_log(self, level, message):
        """添加一条系统日志。level: info / warning / danger"""
        entry = {
            "time": datetime.datetime.now().strftime("%H:%M:%S"),
            "level": level,
            "message": message,
        }
        with self._log_lock:
            self._logs.append(entry)
            if len(self._logs) > self.MAX_LOG_ENTRIES:
                self._logs = self._logs[-self.MAX_LOG_ENTRIES:]

    def get_logs(self, since=0):
        """获取日志，since 为起始索引。"""
        with self._log_lock:
            return self._logs[since:], len(self._logs)

    def current_session(self):
        """进行中的会话，没有时返回最近一次结束的会话"""
        aggregator = self.monitor.aggregator
        return aggregator.active_session or aggregator.last_session

    def get_jpeg(self):
        frame = self.monitor.get_frame()
        if frame is None:
            return None
        ok, jpeg = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, 80])
        return jpeg.tobytes() if ok else None

    def get_status(self):
        status = self.monitor.get_status()
        persist = self._last_persist
        status["persisted"] = None if persist is None else persist.success
        return status


# 全局监考系统实例
system = WebProctoringSystem()


# ---- Flask 路由 ----

@app.route("/")
def index():
    return render_template("index.html")


@app.route("/api/session/start", methods=["POST"])
def api_session_start():
    data = request.get_json(silent=True) or {}
    try:
        session = system.start_session(data.get("candidate_name", ""))
    except ValueError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except AdapterUnavailableError as e:
        system._add_log("danger", str(e))
        return jsonify({"success": False, "message": f"{e}，请检查摄像头权限后重试"}), 503
    except RuntimeError as e:
        return jsonify({"success": False, "message": str(e)}), 409
    return jsonify({"success": True, "session": session.to_dict()})


@app.route("/api/session/end", methods=["POST"])
def api_session_end():
    session = system.end_session()
    if session is None:
        return jsonify({"success": False, "message": "没有进行中的会话"}), 400
    return jsonify({"success": True, "session": session.to_dict()})


@app.route("/api/status")
def api_status():
    return jsonify(system.get_status())


@app.route("/api/events")
def api_events():
    since = request.args.get("since", 0, type=int)
    session = system.current_session()
    events = session.events if session is not None else []
    return jsonify({
        "events": [e.to_dict() for e in events[since:]],
        "total": len(events),
    })


@app.route("/api/logs")
def api_logs():
    since = request.args.get("since", 0, type=int)
    logs, total = system.get_logs(since)
    return jsonify({"logs": logs, "total": total})


@app.route("/api/config", methods=["GET", "POST"])
def api_config():
    if request.method == "GET":
        return jsonify(system.monitor.config)
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"success": False, "message": "请求体应为 JSON 对象"}), 400
    try:
        config = system.monitor.update_config(data)
    except ValueError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    system._add_log("info", "阈值配置已更新")
    return jsonify({"success": True, "config": config})


def _report_response(body, mimetype, ext):
    session = system.monitor.aggregator.last_session
    if session is None:
        return jsonify({"success": False, "message": "还没有已结束的会话"}), 404
    data = body(session)
    if isinstance(data, str):
        data = data.encode("utf-8")
    return send_file(
        io.BytesIO(data),
        mimetype=mimetype,
        as_attachment=True,
        download_name=report_filename(session, ext),
    )


@app.route("/api/report.csv")
def api_report_csv():
    return _report_response(generate_csv_report, "text/csv", "csv")


@app.route("/api/report.pdf")
def api_report_pdf():
    return _report_response(generate_pdf_report, "application/pdf", "pdf")


@app.route("/video_feed")
def video_feed():
    def generate():
        while True:
            frame = system.get_jpeg()
            if frame is not None:
                yield (b"--frame\r\nContent-Type: image/jpeg\r\n\r\n" + frame + b"\r\n")
            time.sleep(0.03)
    return Response(generate(), mimetype="multipart/x-mixed-replace; boundary=frame")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    app.run(host="0.0.0.0", port=5000, debug=False, threaded=True)
