"""监考报告导出模块：CSV 与 PDF"""

import csv
import io
import logging
import os
import re
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable

from fpdf import FPDF
from fpdf.enums import XPos, YPos

from models.data_models import EVENT_LABELS, EVENT_TYPES, DetectionEvent, InterviewSession, to_iso

logger = logging.getLogger(__name__)

CSV_SESSION_HEADER = [
    "Candidate Name",
    "Start Time",
    "End Time",
    "Duration (ms)",
    "Integrity Score",
    "Total Events",
]
CSV_EVENT_HEADER = ["Timestamp", "Type", "Description", "Duration (ms)", "Confidence"]


def format_number(value) -> str:
    """数值转字符串：整数值不带小数点，None 为空串"""
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def format_duration(ms: float) -> str:
    """毫秒 -> m:ss"""
    total_seconds = int(ms // 1000)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}"


def integrity_level(score: int) -> str:
    if score >= 90:
        return "Excellent"
    if score >= 75:
        return "Good"
    if score >= 60:
        return "Fair"
    return "Poor"


def summarize_events(events: Iterable[DetectionEvent]) -> Dict[str, int]:
    """各事件类型的次数，固定包含全部已知类型"""
    counts = Counter(event.type for event in events)
    summary = {event_type: counts.get(event_type, 0) for event_type in EVENT_TYPES}
    for event_type, count in counts.items():
        summary.setdefault(event_type, count)
    return summary


def report_filename(session: InterviewSession, ext: str) -> str:
    """proctoring-report-<姓名，空白替换为 ->.<ext>"""
    name = re.sub(r"\s+", "-", session.candidate_name)
    return f"proctoring-report-{name}.{ext}"


def generate_csv_report(session: InterviewSession) -> str:
    """生成 CSV 文本，所有字段加引号"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")

    writer.writerow(CSV_SESSION_HEADER)
    writer.writerow([
        session.candidate_name,
        to_iso(session.start_time),
        to_iso(session.end_time) if session.end_time is not None else "",
        format_number(session.duration_ms),
        str(session.integrity_score),
        str(len(session.events)),
    ])
    writer.writerow([])
    writer.writerow(["Event Timeline"])
    writer.writerow(CSV_EVENT_HEADER)
    for event in session.events:
        writer.writerow([
            to_iso(event.timestamp),
            event.type,
            event.description,
            format_number(event.duration),
            format_number(event.confidence),
        ])

    return buffer.getvalue()


def export_csv(session: InterviewSession, output_path: str) -> str:
    """写出 CSV 文件，返回路径"""
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    with open(output_path, "w", encoding="utf-8", newline="") as f:
        f.write(generate_csv_report(session))
    logger.info("CSV 报告已导出: %s", output_path)
    return output_path


def _latin1(text: str) -> str:
    # PDF 内置字体只支持 latin-1
    return text.encode("latin-1", "replace").decode("latin-1")


def _local_time(timestamp_ms: float, fmt: str) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000.0).strftime(fmt)


def generate_pdf_report(session: InterviewSession) -> bytes:
    """生成 PDF 报告：会话信息、诚信分、事件统计与时间线"""
    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=20)
    pdf.add_page()
    margin = 20
    pdf.set_left_margin(margin)

    def line(text, size=12, style="", height=8):
        pdf.set_font("Helvetica", style, size)
        pdf.cell(0, height, _latin1(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    line("Proctoring Report", size=20, style="B", height=14)
    pdf.ln(4)

    line(f"Candidate: {session.candidate_name}")
    line(f"Start Time: {_local_time(session.start_time, '%Y-%m-%d %H:%M:%S')}")
    if session.end_time is not None:
        line(f"End Time: {_local_time(session.end_time, '%Y-%m-%d %H:%M:%S')}")
        line(f"Duration: {format_duration(session.duration_ms)}")
    line(
        f"Integrity Score: {session.integrity_score}/100 "
        f"({integrity_level(session.integrity_score)})"
    )
    pdf.ln(6)

    line("Event Summary:", size=14, style="B", height=10)
    summary = summarize_events(session.events)
    for event_type, count in summary.items():
        label = EVENT_LABELS.get(event_type, event_type)
        line(f"{label}: {count}", size=10, height=7)

    if session.events:
        pdf.ln(6)
        line("Event Timeline:", size=14, style="B", height=10)
        pdf.set_font("Helvetica", "", 8)
        for event in session.events:
            pdf.cell(30, 6, _local_time(event.timestamp, "%H:%M:%S"))
            pdf.cell(90, 6, _latin1(event.description))
            if event.duration:
                pdf.cell(0, 6, f"{int(event.duration // 1000)}s", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
            else:
                pdf.cell(0, 6, "", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    return bytes(pdf.output())


def export_pdf(session: InterviewSession, output_path: str) -> str:
    """写出 PDF 文件，返回路径"""
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    with open(output_path, "wb") as f:
        f.write(generate_pdf_report(session))
    logger.info("PDF 报告已导出: %s", output_path)
    return output_path
