"""源码解析器

职责：
- 按渠道选取配方的源定位符（渠道由调用方决定）
- 分类后派发到对应来源适配器，写入仅限于工作目录
- 保证返回的源码树存在、可读且非空
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from formulary.core.exceptions import FetchError
from formulary.core.models import SourceRef
from formulary.services.source.sources import (
    ArchiveSource,
    GitSource,
    LocalSource,
    SourceKind,
    classify_locator,
)
from formulary.services.source.workspace import WorkingDirectory
from formulary.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class SourceResolver:
    """源码解析器 - 定位符 → 已填充的工作目录"""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        fetch_timeout: int | None = None,
        git_source: GitSource | None = None,
        archive_source: ArchiveSource | None = None,
        local_source: LocalSource | None = None,
    ) -> None:
        self._sources = {
            SourceKind.GIT: git_source or GitSource(executor, timeout=fetch_timeout),
            SourceKind.ARCHIVE: archive_source or ArchiveSource(timeout=fetch_timeout),
            SourceKind.LOCAL: local_source or LocalSource(),
        }

    def resolve(self, source: SourceRef | None, workdir: WorkingDirectory) -> Path:
        """获取源码到工作目录，返回源码树根路径"""
        if source is None:
            raise FetchError(f"配方 {workdir.formula} 未声明所选渠道的源")
        kind = classify_locator(source.url)
        logger.info("解析源码: %s (type=%s)", source.url, kind.value)

        dest = workdir.source_dir
        self._sources[kind].fetch(source, dest, workdir.download_dir)

        root = self._tree_root(dest, kind)
        if not root.is_dir() or not os.access(root, os.R_OK | os.X_OK):
            raise FetchError(f"源码树不可读: {root}")
        if not any(root.iterdir()):
            raise FetchError(f"源码树为空: {source.url}")
        return root

    @staticmethod
    def _tree_root(dest: Path, kind: SourceKind) -> Path:
        """归档仅含单个顶层目录时进入该目录"""
        if kind != SourceKind.ARCHIVE or not dest.is_dir():
            return dest
        entries = list(dest.iterdir())
        if len(entries) == 1 and entries[0].is_dir() and not entries[0].is_symlink():
            return entries[0]
        return dest
