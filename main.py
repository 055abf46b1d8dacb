"""在线面试监考系统入口文件"""

import argparse
import logging
import sys

import cv2

from config import load_config
from pipeline.proctoring_monitor import AdapterUnavailableError, ProctoringMonitor
from reports.report_generator import export_csv, export_pdf, integrity_level
from session.session_store import AsyncSessionWriter, SessionStore


class ProctoringApp:
    """命令行版监考：预览窗口按 q 结束面试，结束后保存会话并导出报告。"""

    def __init__(self, config_path=None, enable_objects=True, enable_audio=True, recording_dir=None):
        self.config = load_config(config_path)
        if recording_dir:
            self.config["recording_dir"] = recording_dir
        self.monitor = ProctoringMonitor(
            self.config,
            enable_objects=enable_objects,
            enable_audio=enable_audio,
        )

    def run(self, candidate_name, camera_index=None):
        """运行一次完整面试，返回定稿后的会话。"""
        try:
            self.monitor.begin_session(candidate_name, camera_index=camera_index)
        except ValueError as e:
            print(f"错误: {e}")
            sys.exit(2)
        except AdapterUnavailableError as e:
            print(f"无法开始监考: {e}")
            sys.exit(1)

        try:
            self._main_loop()
        finally:
            session = self.monitor.end_session()
            cv2.destroyAllWindows()
        return session

    def _main_loop(self):
        """预览主循环。"""
        while self.monitor.is_running:
            frame = self.monitor.get_frame()
            if frame is not None:
                cv2.imshow("在线面试监考系统", frame)

            # 按 q 结束面试
            if cv2.waitKey(30) & 0xFF == ord("q"):
                break

        error = self.monitor.get_status().get("error")
        if error:
            print(f"警告: {error}")

    def save(self, session):
        """保存会话，等待后台写入完成。失败时只打印警告。"""
        writer = AsyncSessionWriter(SessionStore(self.config["database_uri"]))
        try:
            result = writer.submit(session).result()
        finally:
            writer.shutdown()
        if not result.success:
            print(f"警告: 会话保存失败 - {result.error}")
        return result


def main():
    parser = argparse.ArgumentParser(description="在线面试监考系统")
    parser.add_argument("--candidate", type=str, required=True, help="候选人姓名")
    parser.add_argument("--config", type=str, default=None, help="JSON 阈值配置文件路径")
    parser.add_argument("--camera", type=int, default=None, help="摄像头编号")
    parser.add_argument("--no-objects", action="store_true", help="关闭物品检测")
    parser.add_argument("--no-audio", action="store_true", help="关闭背景噪音检测")
    parser.add_argument("--csv", type=str, default=None, help="导出 CSV 报告的路径")
    parser.add_argument("--pdf", type=str, default=None, help="导出 PDF 报告的路径")
    parser.add_argument("--record", type=str, default=None, help="会话录像保存目录")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    app = ProctoringApp(
        config_path=args.config,
        enable_objects=not args.no_objects,
        enable_audio=not args.no_audio,
        recording_dir=args.record,
    )
    session = app.run(args.candidate, camera_index=args.camera)

    print(
        f"面试结束: {session.candidate_name}, 诚信分 {session.integrity_score} "
        f"({integrity_level(session.integrity_score)}), 事件 {len(session.events)} 条"
    )
    if session.recording_path:
        print(f"录像已保存: {session.recording_path}")
    app.save(session)

    if args.csv:
        export_csv(session, args.csv)
    if args.pdf:
        export_pdf(session, args.pdf)


if __name__ == "__main__":
    main()
