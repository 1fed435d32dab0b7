"""工作目录管理 - 每次执行独占的临时目录

职责：
- 为单次流水线执行创建独占工作目录（带运行日志文件）
- 执行结束后销毁（或按需保留用于调试）
- 清理上次崩溃遗留的工作目录
- 列出本地现存的工作目录
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

JOURNAL_NAME = ".formulary-run.json"


@dataclass
class WorkingDirectory:
    """单次执行的工作目录

    目录结构:
        <path>/.formulary-run.json   运行日志（pid / 配方名 / 创建时间）
        <path>/download/             归档下载缓存
        <path>/src/                  获取到的源码树
    """

    path: Path
    formula: str

    @property
    def source_dir(self) -> Path:
        return self.path / "src"

    @property
    def download_dir(self) -> Path:
        return self.path / "download"


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class WorkspaceManager:
    """工作目录管理器"""

    def __init__(self, work_root: str = "") -> None:
        if not work_root:
            from formulary.core.config import get_config
            work_root = get_config().resolved_work_root
        self.work_root = Path(work_root)

    def create(self, formula_name: str) -> WorkingDirectory:
        """创建独占工作目录，不与任何其他执行共享"""
        self.work_root.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=f"{formula_name}-", dir=str(self.work_root)))
        journal = {
            "pid": os.getpid(),
            "formula": formula_name,
            "created": datetime.now(timezone.utc).isoformat(),
        }
        (path / JOURNAL_NAME).write_text(json.dumps(journal), encoding="utf-8")
        logger.info("工作目录已创建: %s", path)
        return WorkingDirectory(path=path, formula=formula_name)

    def release(self, workdir: WorkingDirectory, *, keep: bool = False) -> None:
        """销毁工作目录；keep=True 时保留用于调试（日志文件一并删除，避免被当作遗留目录）"""
        if keep:
            (workdir.path / JOURNAL_NAME).unlink(missing_ok=True)
            logger.info("保留工作目录用于调试: %s", workdir.path)
            return
        shutil.rmtree(workdir.path, ignore_errors=True)
        logger.info("工作目录已销毁: %s", workdir.path)

    def _read_journal(self, path: Path) -> dict | None:
        journal = path / JOURNAL_NAME
        if not journal.is_file():
            return None
        try:
            data = json.loads(journal.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def list_workspaces(self) -> list[dict[str, str]]:
        """列出本地现存的执行工作目录"""
        result: list[dict[str, str]] = []
        if not self.work_root.is_dir():
            return result
        for child in sorted(self.work_root.iterdir()):
            if not child.is_dir():
                continue
            journal = self._read_journal(child)
            if journal is None:
                continue
            try:
                pid = int(journal.get("pid", 0) or 0)
            except (TypeError, ValueError):
                pid = 0   # 日志损坏，按遗留目录处理
            result.append({
                "formula": str(journal.get("formula", "")),
                "path": str(child),
                "pid": str(pid),
                "created": str(journal.get("created", "")),
                "state": "running" if _pid_alive(pid) else "stale",
            })
        return result

    def clean_stale(self) -> int:
        """清理所属进程已退出的遗留工作目录，返回清理的目录数"""
        count = 0
        for ws in self.list_workspaces():
            if ws["state"] != "stale":
                continue
            shutil.rmtree(ws["path"], ignore_errors=True)
            logger.warning("已清理遗留工作目录: %s (formula=%s)", ws["path"], ws["formula"])
            count += 1
        return count
