"""一键启动在线面试监考系统 - 双击此文件即可运行"""

import argparse
import logging
import os
import sys
import threading
import time
import webbrowser

ROOT = os.path.dirname(os.path.abspath(__file__))

# 确保工作目录为脚本所在目录，web_app 的模板路径和默认数据库都相对于它
os.chdir(ROOT)
sys.path.insert(0, ROOT)

# (pip 包名, import 名)
REQUIRED_PACKAGES = [
    ("flask", "flask"),
    ("opencv-python", "cv2"),
    ("mediapipe", "mediapipe"),
    ("numpy", "numpy"),
    ("ultralytics", "ultralytics"),
    ("sounddevice", "sounddevice"),
    ("SQLAlchemy", "sqlalchemy"),
    ("fpdf2", "fpdf"),
]

ENDPOINTS = [
    ("监考页面", "/"),
    ("开始 / 结束面试", "/api/session/start, /api/session/end"),
    ("实时状态", "/api/status"),
    ("事件记录", "/api/events"),
    ("阈值配置", "/api/config"),
    ("报告下载", "/api/report.csv, /api/report.pdf"),
    ("视频流", "/video_feed"),
]


def missing_packages():
    """返回尚未安装的依赖（pip 包名）"""
    missing = []
    for pkg, import_name in REQUIRED_PACKAGES:
        try:
            __import__(import_name)
        except ImportError:
            missing.append(pkg)
    return missing


def install(packages):
    import subprocess
    print("=" * 50)
    print("缺少以下依赖，正在自动安装...")
    print(", ".join(packages))
    print("=" * 50)
    subprocess.check_call([sys.executable, "-m", "pip", "install", *packages])
    print("依赖安装完成！\n")


def open_browser(url, delay=1.5):
    """等 Flask 起来后再打开浏览器"""
    time.sleep(delay)
    webbrowser.open(url)


def print_banner(base_url):
    print("\n系统已启动！")
    print(f"访问地址: {base_url}")
    for name, path in ENDPOINTS:
        print(f"  {name:<12} {path}")
    print("按 Ctrl+C 停止服务\n")


def main():
    parser = argparse.ArgumentParser(description="启动在线面试监考 Web 服务")
    parser.add_argument("--port", type=int, default=5000, help="监听端口")
    parser.add_argument("--config", type=str, default=None, help="JSON 阈值配置文件路径")
    parser.add_argument("--no-browser", action="store_true", help="不自动打开浏览器")
    args = parser.parse_args()

    print("=" * 50)
    print("  在线面试监考系统 - 启动中...")
    print("=" * 50)

    missing = missing_packages()
    if missing:
        install(missing)

    if args.config:
        # web_app 在导入时读取配置
        os.environ["PROCTOR_CONFIG"] = os.path.abspath(args.config)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    base_url = f"http://localhost:{args.port}"
    if not args.no_browser:
        threading.Thread(target=open_browser, args=(base_url,), daemon=True).start()
    print_banner(base_url)

    from web_app import app
    app.run(host="0.0.0.0", port=args.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
