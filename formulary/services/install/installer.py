"""安装器

职责:
- 校验声明的产物全部存在于构建树内（缺失即失败，不静默跳过）
- 先复制到安装前缀内的暂存目录，再逐个 os.replace 换入目标位置
- 任一步失败则恢复被替换的旧文件、删除本次新建的目录，前缀保持原状
- 提交成功后写入安装回执
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from formulary.core.exceptions import InstallError
from formulary.core.models import Artifact, Formula
from formulary.core.receipts import InstallReceipt, ReceiptStore
from formulary.utils.fs import is_within, make_dirs, remove_path

logger = logging.getLogger(__name__)

_EXEC_DIRS = frozenset(("bin", "sbin"))
_STAGE_PREFIX = ".formulary-stage-"


@dataclass
class _PlannedCopy:
    artifact: Artifact
    source: Path
    dest: Path


class Installer:
    """安装器 - 构建树内产物 → 安装前缀"""

    def __init__(self, prefix: str | Path, receipts: ReceiptStore | None = None) -> None:
        self.prefix = Path(prefix)
        self.receipts = receipts or ReceiptStore(self.prefix)

    def install(
        self, formula: Formula, buildpath: Path, *,
        channel: str = "stable", source_url: str = "",
    ) -> list[str]:
        """安装全部产物，返回相对前缀的目标路径列表"""
        plan = self._plan(formula, buildpath)

        created_dirs: list[Path] = []
        swapped: list[tuple[Path, Path | None]] = []   # (目标, 备份)
        stage_dir: Path | None = None
        try:
            created_dirs.extend(make_dirs(self.prefix))
            stage_dir = Path(tempfile.mkdtemp(prefix=_STAGE_PREFIX, dir=str(self.prefix)))
            staged = [self._stage_copy(item, stage_dir, idx) for idx, item in enumerate(plan)]

            for idx, (item, staged_path) in enumerate(zip(plan, staged)):
                created_dirs.extend(make_dirs(item.dest.parent))
                backup = None
                if item.dest.exists() or item.dest.is_symlink():
                    backup = stage_dir / f"backup-{idx}"
                    os.replace(item.dest, backup)
                swapped.append((item.dest, backup))
                os.replace(staged_path, item.dest)

            files = [item.artifact.dest for item in plan]
            created_dirs.extend(make_dirs(self.receipts.root))
            self.receipts.write(InstallReceipt(
                name=formula.name, version=formula.version,
                channel=channel, source=source_url, files=files,
            ))
        except OSError as e:
            self._rollback(swapped, created_dirs, stage_dir)
            raise InstallError(f"安装 {formula.name} 失败，安装前缀已恢复: {e}") from e
        except BaseException:
            # 取消（如 KeyboardInterrupt）同样不留下部分写入
            self._rollback(swapped, created_dirs, stage_dir)
            raise
        finally:
            if stage_dir is not None:
                shutil.rmtree(stage_dir, ignore_errors=True)

        for f in files:
            logger.info("  已安装: %s", self.prefix / f)
        logger.info("安装完成: %s (%d 个产物)", formula.name, len(files))
        return files

    def _plan(self, formula: Formula, buildpath: Path) -> list[_PlannedCopy]:
        """在任何前缀变更前校验全部产物"""
        plan: list[_PlannedCopy] = []
        missing: list[str] = []
        seen: set[str] = set()
        for art in formula.artifacts:
            source = buildpath / art.source
            if not (source.exists() or source.is_symlink()):
                missing.append(art.source)
                continue
            if not is_within(source, buildpath):
                raise InstallError(f"产物路径越出构建树: {art.source}")
            dest = self.prefix / art.dest
            if str(dest) in seen:
                raise InstallError(f"产物目标重复: {art.dest}")
            seen.add(str(dest))
            plan.append(_PlannedCopy(artifact=art, source=source, dest=dest))
        if missing:
            raise InstallError(f"构建产物不存在: {', '.join(missing)}")
        return plan

    @staticmethod
    def _stage_copy(item: _PlannedCopy, stage_dir: Path, idx: int) -> Path:
        staged = stage_dir / f"{idx}-{item.source.name}"
        if item.source.is_dir() and not item.source.is_symlink():
            shutil.copytree(item.source, staged, symlinks=True)
            if item.artifact.mode is not None:
                staged.chmod(item.artifact.mode)
            return staged
        shutil.copy2(item.source, staged)
        mode = item.artifact.mode
        if mode is None and PurePosixPath(item.artifact.dest).parts[0] in _EXEC_DIRS:
            mode = stat.S_IMODE(staged.stat().st_mode) | 0o111
        if mode is not None:
            staged.chmod(mode)
        return staged

    @staticmethod
    def _rollback(
        swapped: list[tuple[Path, Path | None]], created_dirs: list[Path],
        stage_dir: Path | None,
    ) -> None:
        for dest, backup in reversed(swapped):
            try:
                remove_path(dest)
                if backup is not None:
                    os.replace(backup, dest)
            except OSError:
                logger.exception("回滚失败: %s", dest)
        if stage_dir is not None:
            shutil.rmtree(stage_dir, ignore_errors=True)
        for d in reversed(created_dirs):
            try:
                d.rmdir()
            except OSError:
                # 并发安装可能已向该目录写入其他产物
                logger.debug("保留非空目录: %s", d)
        logger.warning("安装已回滚 (%d 个目标)", len(swapped))
