"""安装后验证

针对安装前缀中的产物运行配方的 test 过程，与工作目录无关：
- 命令在全新的临时目录中执行
- 环境为主机环境 + <prefix>/bin 前置到 PATH，不含构建阶段暂存的变量
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path

from formulary.core.exceptions import ExecutionError, TestError
from formulary.core.models import Formula
from formulary.services.env.stager import prefix_search_path
from formulary.utils.shell import CommandExecutor, format_cmd, run_cmd

logger = logging.getLogger(__name__)


class Verifier:
    """安装产物验证器"""

    def __init__(
        self, prefix: str | Path,
        executor: CommandExecutor | None = None, timeout: int | None = None,
    ) -> None:
        self.prefix = Path(prefix)
        self._executor = executor
        self._timeout = timeout

    def test_env(self) -> dict[str, str]:
        return {**os.environ, "PATH": prefix_search_path(self.prefix)}

    def placeholders(self, formula: Formula) -> dict[str, str]:
        return {
            "prefix": str(self.prefix),
            "bin": str(self.prefix / "bin"),
            "name": formula.name,
            "version": formula.version,
        }

    def verify(self, formula: Formula) -> int:
        """执行全部验证步骤，返回已执行步骤数；任一非零退出码抛 TestError"""
        if not formula.test_steps:
            logger.info("配方 %s 未定义 test 过程，跳过验证", formula.name)
            return 0
        env = self.test_env()
        values = self.placeholders(formula)
        total = len(formula.test_steps)
        with tempfile.TemporaryDirectory(prefix=f"{formula.name}-test-") as testpath:
            for idx, step in enumerate(formula.test_steps, 1):
                args = step.expand(values)
                # 按安装前缀优先的 PATH 解析程序名
                resolved = shutil.which(args[0], path=env["PATH"])
                if resolved:
                    args = [resolved, *args[1:]]
                try:
                    run_cmd(
                        args, cwd=testpath, env=env, label=f"test[{idx}/{total}]",
                        timeout=self._timeout, executor=self._executor,
                    )
                except ExecutionError as e:
                    raise TestError(
                        f"验证步骤失败: {format_cmd(args)} ({e})", output=e.output,
                    ) from e
                except subprocess.TimeoutExpired as e:
                    raise TestError(
                        f"验证步骤超时 ({self._timeout}s): {format_cmd(args)}",
                    ) from e
                except OSError as e:
                    raise TestError(f"验证命令无法执行: {format_cmd(args)} ({e})") from e
        logger.info("验证通过: %s (%d 步)", formula.name, total)
        return total
