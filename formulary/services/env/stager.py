"""构建环境暂存

职责:
- 变更发生前检查声明的依赖是否在主机上可用
- 为构建/安装阶段构造作用域内的环境变量与目录布局（mkdir / symlink）
- 无论成功失败都撤销布局变更，teardown 幂等

环境变量只存在于 StagedEnvironment.env 中，显式传给构建子进程，
从不写入 os.environ，因此并发执行互不可见，也不会泄漏到验证阶段。
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from formulary.core.exceptions import BuildError, DependencyError
from formulary.core.models import DepStage, Formula, LayoutOp, StagingStatus, expand
from formulary.core.receipts import ReceiptStore
from formulary.utils.fs import is_within, make_dirs

logger = logging.getLogger(__name__)


def prefix_search_path(prefix: Path) -> str:
    """<prefix>/bin 优先的 PATH"""
    return os.pathsep.join(
        p for p in (str(prefix / "bin"), os.environ.get("PATH", "")) if p
    )


class StagedEnvironment:
    """单次执行的环境暂存会话

    生命周期: pending → applied → released
    """

    def __init__(self, formula: Formula, prefix: Path) -> None:
        self.formula = formula
        self.prefix = prefix
        self.status = StagingStatus.PENDING
        self.buildpath: Path | None = None
        self.variables: dict[str, str] = {}   # 配方声明的变量（已展开）
        self.env: dict[str, str] = {}         # 传给子进程的完整环境
        self._created: list[Path] = []        # 本次创建的目录/链接，按创建顺序

    def placeholders(self) -> dict[str, str]:
        values = {
            "prefix": str(self.prefix),
            "bin": str(self.prefix / "bin"),
            "name": self.formula.name,
            "version": self.formula.version,
        }
        if self.buildpath is not None:
            values["buildpath"] = str(self.buildpath)
        return values

    def apply(self, buildpath: Path) -> None:
        """应用目录布局与环境变量，失败时已创建部分由 teardown 撤销"""
        if self.status != StagingStatus.PENDING:
            raise BuildError(f"环境暂存状态不可用: {self.status}")
        self.buildpath = buildpath
        values = self.placeholders()

        for op in self.formula.layout:
            try:
                self._apply_layout(op, values)
            except OSError as e:
                raise BuildError(f"目录布局失败 ({op.kind} {op.path}): {e}") from e

        self.variables = {k: expand(v, values) for k, v in self.formula.environment.items()}
        self.env = {
            **os.environ,
            "PATH": prefix_search_path(self.prefix),
            **self.variables,
        }
        self.status = StagingStatus.APPLIED
        logger.info(
            "构建环境已暂存: %s (vars=%s, layout=%d)",
            self.formula.name, sorted(self.variables), len(self.formula.layout),
        )

    def _inside(self, rel: str, values: dict[str, str]) -> Path:
        if self.buildpath is None:
            raise BuildError("构建树尚未就绪")
        root = os.path.normpath(str(self.buildpath))
        path = os.path.normpath(os.path.join(root, expand(rel, values)))
        if path != root and not path.startswith(root + os.sep):
            raise BuildError(f"布局路径越出构建树: {rel}")
        # 构建树内已有的符号链接可能指向树外
        if path != root and not is_within(Path(path).parent, self.buildpath):
            raise BuildError(f"布局路径经符号链接越出构建树: {rel}")
        return Path(path)

    def _apply_layout(self, op: LayoutOp, values: dict[str, str]) -> None:
        path = self._inside(op.path, values)
        if op.kind == "mkdir":
            self._created.extend(make_dirs(path))
            return
        self._created.extend(make_dirs(path.parent))
        if path.exists() or path.is_symlink():
            raise BuildError(f"符号链接位置已存在: {path}")
        os.symlink(expand(op.target, values), path)
        self._created.append(path)
        logger.debug("  symlink: %s -> %s", path, op.target)

    def teardown(self) -> None:
        """撤销全部布局变更并收回环境变量；重复调用无副作用"""
        if self.status == StagingStatus.RELEASED:
            return
        for path in reversed(self._created):
            try:
                if path.is_symlink():
                    path.unlink()
                elif path.is_dir():
                    path.rmdir()
            except OSError as e:
                # 构建可能向目录写入了内容，随工作目录一并销毁
                logger.debug("布局撤销跳过 %s: %s", path, e)
        self._created.clear()
        self.variables = {}
        self.env = {}
        self.status = StagingStatus.RELEASED
        logger.info("构建环境已撤销: %s", self.formula.name)


class EnvironmentStager:
    """环境暂存器"""

    def __init__(self, prefix: str | Path, receipts: ReceiptStore | None = None) -> None:
        self.prefix = Path(prefix)
        self.receipts = receipts or ReceiptStore(self.prefix)

    def missing_dependencies(self, formula: Formula) -> list[str]:
        """返回缺失依赖的描述列表（name:stage）"""
        search_path = prefix_search_path(self.prefix)
        missing: list[str] = []
        deps = [d for stage in DepStage for d in formula.dependencies_for(stage)]
        for dep in deps:
            if self.receipts.is_installed(dep.name):
                continue
            if shutil.which(dep.executable, path=search_path):
                continue
            missing.append(f"{dep.name}:{dep.stage}")
        return missing

    def check_dependencies(self, formula: Formula) -> None:
        """依赖检查，必须在任何变更开始前调用"""
        missing = self.missing_dependencies(formula)
        if missing:
            raise DependencyError(
                f"配方 {formula.name} 缺少依赖: {', '.join(missing)}"
            )
        logger.info("依赖就绪: %s (%d 项)", formula.name, len(formula.dependencies))

    def prepare(self, formula: Formula) -> StagedEnvironment:
        return StagedEnvironment(formula, self.prefix)

    @contextmanager
    def session(self, formula: Formula) -> Iterator[StagedEnvironment]:
        """暂存会话：退出时（含异常）必定执行一次 teardown"""
        staging = self.prepare(formula)
        try:
            yield staging
        finally:
            staging.teardown()
