"""文档读写工具

- load_yaml: 读取配方 / 配置文档（utf-8，大小上限，非映射视为空）
- atomic_write / write_json: 回执等状态文件的原子写入
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 配方 / 配置文档大小上限 (10MB)
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """同目录临时文件 + os.replace，读者只会看到旧内容或完整新内容"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def write_json(path: Path, data: Any) -> None:
    atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 映射文档

    文件不存在、为空或顶层不是映射时返回 {}。
    格式错误抛 yaml.YAMLError，超出大小上限抛 ValueError，IO 失败抛 OSError。
    """
    p = Path(path)
    if not p.exists():
        return {}
    size = p.stat().st_size
    if size > MAX_YAML_SIZE:
        raise ValueError(f"YAML 文件过大: {p} ({size} 字节，上限 {MAX_YAML_SIZE})")

    try:
        with open(p, encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error("YAML 解析失败: %s (%s)", p, e)
        raise

    if doc is None:
        return {}
    if not isinstance(doc, dict):
        logger.warning("%s 顶层不是映射 (%s)，按空文档处理", p, type(doc).__name__)
        return {}
    return doc
