"""formulary 日志配置

支持普通文本和结构化 JSON 两种输出，均写到 stderr。
流水线日志通过 extra={"formula": ..., "stage": ...} 附带配方名与阶段，
JSON 输出中作为独立字段，便于 CI 按配方/阶段过滤。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

# 流水线日志附带的上下文字段
CONTEXT_FIELDS = ("formula", "stage")


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器

    输出示例:
        {"timestamp": "...", "level": "INFO", "logger": "formulary.services.pipeline",
         "message": "...", "formula": "skaffold", "stage": "build", "line": 42}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                entry[key] = value
        entry["line"] = record.lineno
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """人类可读格式，存在上下文时前置 [formula/stage]"""

    def __init__(self) -> None:
        super().__init__("%(asctime)s [%(levelname)-7s] %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ctx = "/".join(str(getattr(record, k)) for k in CONTEXT_FIELDS if getattr(record, k, None))
        return f"{line} [{ctx}]" if ctx else line


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器（重复调用会替换已有 handler）"""
    reset_logging()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """移除根日志器的全部 handler（测试中使用）"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
