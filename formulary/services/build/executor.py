"""构建执行器

职责:
- 在暂存环境与源码树内顺序执行配方的构建步骤
- 首个非零退出码即停止，捕获输出附加到 BuildError
"""

from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path

from formulary.core.exceptions import BuildError, ExecutionError
from formulary.core.models import StagingStatus
from formulary.services.env.stager import StagedEnvironment
from formulary.utils.shell import CommandExecutor, format_cmd, run_cmd

logger = logging.getLogger(__name__)


class BuildExecutor:
    """构建执行器 - 只关心命令的退出码和输出，不解释命令内部逻辑"""

    def __init__(self, executor: CommandExecutor | None = None, timeout: int | None = None) -> None:
        self._executor = executor
        self._timeout = timeout

    def run(self, staging: StagedEnvironment, buildpath: Path) -> float:
        """执行全部构建步骤，返回耗时（秒）"""
        if staging.status != StagingStatus.APPLIED:
            raise BuildError(f"构建环境未就绪: {staging.status}")
        formula = staging.formula
        values = staging.placeholders()
        start = time.monotonic()
        total = len(formula.build_steps)
        for idx, step in enumerate(formula.build_steps, 1):
            args = step.expand(values)
            label = f"build[{idx}/{total}]"
            try:
                run_cmd(
                    args, cwd=str(buildpath), env=staging.env, label=label,
                    timeout=self._timeout, executor=self._executor,
                )
            except ExecutionError as e:
                logger.error("构建失败 %s: %s", formula.name, e)
                raise BuildError(
                    f"构建步骤失败: {format_cmd(args)} ({e})", output=e.output,
                ) from e
            except subprocess.TimeoutExpired as e:
                raise BuildError(
                    f"构建步骤超时 ({self._timeout}s): {format_cmd(args)}",
                ) from e
            except OSError as e:
                raise BuildError(f"构建命令无法执行: {format_cmd(args)} ({e})") from e
        duration = time.monotonic() - start
        logger.info("构建完成: %s (%d 步, %.1fs)", formula.name, total, duration)
        return duration
