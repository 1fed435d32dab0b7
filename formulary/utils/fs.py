"""文件系统工具 - 可撤销的目录创建与路径删除"""

from __future__ import annotations

import shutil
from pathlib import Path


def make_dirs(path: Path) -> list[Path]:
    """创建目录（含父目录），返回本次新建的目录，外层在前"""
    missing: list[Path] = []
    p = path
    while not p.exists() and not p.is_symlink():
        missing.append(p)
        p = p.parent
    path.mkdir(parents=True, exist_ok=True)
    return list(reversed(missing))


def remove_path(path: Path) -> None:
    """删除文件、符号链接或目录树；不存在时忽略"""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def is_within(path: Path, root: Path) -> bool:
    """path 解析后是否位于 root 之内"""
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True
