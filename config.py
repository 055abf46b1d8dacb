"""阈值与运行参数配置，缺省值可被 JSON 配置文件覆盖"""

import json
import logging
import math

logger = logging.getLogger(__name__)

DEFAULTS = {
    # 专注度 / 眼睛
    "focus_ratio_threshold": 0.15,
    "ear_threshold": 0.22,
    "drowsiness_time_ms": 2000,
    # 事件策略
    "focus_lost_sustain_ms": 5000,
    "no_face_sustain_ms": 10000,
    "cooldown_ms": 20000,
    "object_confidence_threshold": 0.7,
    # 音频（0-255 字节频谱均值）
    "audio_volume_threshold": 50.0,
    # 感知模型
    "max_num_faces": 2,
    "object_model_path": "yolov8n.pt",
    "camera_index": 0,
    # 连续读帧失败多少次后停止监考
    "max_read_failures": 300,
    # 会话录像，null 表示不录制
    "recording_dir": None,
    "recording_fps": 15.0,
    # 持久化
    "database_uri": "sqlite:///proctoring_sessions.db",
}

# 缺省值为 None 的字符串项，显式 null 表示关闭
NULLABLE_KEYS = ("recording_dir",)


def validate_value(key, value):
    """
    按缺省值的类型校验一个配置项，返回规范化后的值。

    浮点项接受整数；整数项接受整值浮点数（如 20000.0）。
    字符串不会被转成数字，布尔值也不算数字。

    Raises:
        ValueError: 类型不符或数值不是有限数
    """
    if key in NULLABLE_KEYS:
        if value is None or isinstance(value, str):
            return value
        raise ValueError(f"配置项 {key} 应为字符串或 null，收到 {value!r}")

    expected = type(DEFAULTS[key])
    if expected is str:
        if isinstance(value, str):
            return value
    elif isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        if expected is float:
            return float(value)
        if float(value).is_integer():
            return int(value)
    raise ValueError(f"配置项 {key} 应为 {expected.__name__}，收到 {value!r}")


def apply_overrides(config, changes, strict=True):
    """
    把 changes 中已知的键合并进 config 并返回 config。

    未知键被忽略；null 只对可关闭的项生效，其余项忽略 null。
    strict=True 时先校验全部键，任一项不合法就抛出 ValueError 且不修改 config；
    strict=False 时跳过不合法的项并记录警告。
    """
    validated = {}
    for key in DEFAULTS:
        if key not in changes:
            continue
        value = changes[key]
        if value is None and key not in NULLABLE_KEYS:
            continue
        try:
            validated[key] = validate_value(key, value)
        except ValueError as e:
            if strict:
                raise
            logger.warning("%s，保留 %r", e, config[key])
    config.update(validated)
    return config


def load_config(config_path=None):
    """从 JSON 配置文件加载参数，缺失、为 null 或类型错误的字段使用默认值。"""
    config = dict(DEFAULTS)

    if config_path is None:
        return config

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning("配置文件不存在 %s，使用默认阈值", config_path)
        return config
    except json.JSONDecodeError:
        logger.warning("配置文件格式错误 %s，使用默认阈值", config_path)
        return config

    if not isinstance(data, dict):
        logger.warning("配置文件格式错误 %s（顶层应为对象），使用默认阈值", config_path)
        return config

    return apply_overrides(config, data, strict=False)
