"""
工具函数集合 - relaybot 项目全局通用的辅助函数。

函数分类：
- 路径管理：ensure_dir
- 标识生成：new_session_id
- 字符串工具：truncate_string
"""

import random
import string
import time
from pathlib import Path

# base36 字符表（数字 + 小写字母），用于会话 ID 的随机后缀
_BASE36 = string.digits + string.ascii_lowercase


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def new_session_id(prefix: str = "whatsapp") -> str:
    """
    生成新的会话 ID，格式为 "<prefix>_<毫秒时间戳>_<9 位 base36 随机串>"。

    示例: whatsapp_1760851200000_k3j9x0a2b
    """
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """
    截断字符串到指定最大长度，超出时添加后缀。

    参数:
        s: 原始字符串
        max_len: 最大长度（包含后缀），默认 100
        suffix: 截断后缀，默认 "..."
    """
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix
