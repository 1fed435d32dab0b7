"""配方执行流水线

单次执行严格顺序、单趟完成，任一阶段失败立即终止，不自动重试:

    依赖检查 → 解析源码 → 暂存环境 → 构建 → 安装 → (撤销环境) → 验证

- 环境撤销在构建/安装结束后、验证开始前执行，且每次执行恰好一次
- 阶段错误被转换为 ExecutionResult，原样携带失败阶段和捕获输出
- 验证失败不回滚安装，结果标记 installed=True
- 同一进程内对同名配方的执行通过配方级锁串行化

支持通过 hooks 注册观察者（通知、记录等），钩子失败只记日志，不影响结果:

    result = run_pipeline(formula, prefix="/opt/formulary", hooks=[my_hook])
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from formulary.core.config import Config, get_config
from formulary.core.exceptions import FetchError, PipelineError, TestError
from formulary.core.models import ExecutionResult, Formula, ResultStatus, Stage
from formulary.core.receipts import ReceiptStore
from formulary.services.build.executor import BuildExecutor
from formulary.services.env.stager import EnvironmentStager
from formulary.services.install.installer import Installer
from formulary.services.source.resolver import SourceResolver
from formulary.services.source.workspace import WorkingDirectory, WorkspaceManager
from formulary.services.verify.verifier import Verifier
from formulary.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class PipelineHook(ABC):
    """流水线观察者钩子基类，实现 on_result 即可接入"""

    @abstractmethod
    def on_result(self, result: ExecutionResult, context: dict) -> None:
        """接收执行结果和上下文信息"""


# =========================================================================
# 配方级锁
# =========================================================================

_locks: dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def _formula_lock(name: str) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault(name, threading.Lock())


def _ctx(formula: Formula, stage: Stage) -> dict[str, str]:
    """日志上下文（见 formulary.utils.logger.CONTEXT_FIELDS）"""
    return {"formula": formula.name, "stage": stage.value}


# =========================================================================
# 流水线
# =========================================================================


def run_pipeline(
    formula: Formula,
    *,
    prefix: str | Path = "",
    channel: str = "",
    config: Config | None = None,
    executor: CommandExecutor | None = None,
    hooks: Sequence[PipelineHook] = (),
    keep_workdir: bool | None = None,
) -> ExecutionResult:
    """执行一个配方的完整流水线，返回终态"""
    cfg = config or get_config()
    prefix_path = Path(prefix or cfg.prefix).expanduser().resolve()
    channel = channel or cfg.channel
    keep = cfg.keep_workdir if keep_workdir is None else keep_workdir

    with _formula_lock(formula.name):
        result = _execute(formula, prefix_path, channel, cfg, executor, keep)

    context = {"prefix": str(prefix_path), "channel": channel}
    for hook in hooks:
        try:
            hook.on_result(result, context)
        except (ValueError, RuntimeError, OSError, TypeError):
            logger.exception("流水线钩子执行失败: %s", type(hook).__name__)

    if result.success:
        logger.info("配方 %s 安装成功 (%.1fs)", formula.name, result.duration)
    elif result.installed:
        logger.error("配方 %s 已安装但验证失败: %s", formula.name, result.message)
    else:
        logger.error(
            "配方 %s 执行失败 [%s]: %s", formula.name, result.stage, result.message,
            extra={"formula": formula.name, "stage": result.stage},
        )
    return result


def _execute(
    formula: Formula, prefix: Path, channel: str, cfg: Config,
    executor: CommandExecutor | None, keep: bool,
) -> ExecutionResult:
    start = time.monotonic()
    receipts = ReceiptStore(prefix)
    stager = EnvironmentStager(prefix, receipts)
    workspaces = WorkspaceManager(str(Path(cfg.resolved_work_root).resolve()))
    resolver = SourceResolver(executor, fetch_timeout=cfg.fetch_timeout)
    builder = BuildExecutor(executor, timeout=cfg.build_timeout)
    installer = Installer(prefix, receipts)
    verifier = Verifier(prefix, executor, timeout=cfg.test_timeout)

    source = formula.source(channel)
    workdir: WorkingDirectory | None = None
    files: list[str] = []
    try:
        with stager.session(formula) as staging:
            stager.check_dependencies(formula)

            logger.info(
                "[%s] 解析源码 (channel=%s)", formula.name, channel,
                extra=_ctx(formula, Stage.RESOLVE_SOURCE),
            )
            workspaces.clean_stale()
            try:
                workdir = workspaces.create(formula.name)
            except OSError as e:
                raise FetchError(f"无法创建工作目录: {e}") from e
            buildpath = resolver.resolve(source, workdir).resolve()

            logger.info("[%s] 暂存环境", formula.name, extra=_ctx(formula, Stage.STAGE_ENVIRONMENT))
            staging.apply(buildpath)

            logger.info("[%s] 构建", formula.name, extra=_ctx(formula, Stage.BUILD))
            builder.run(staging, buildpath)

            logger.info(
                "[%s] 安装 -> %s", formula.name, prefix, extra=_ctx(formula, Stage.INSTALL),
            )
            files = installer.install(
                formula, buildpath, channel=channel,
                source_url=source.url if source else "",
            )

        logger.info("[%s] 验证", formula.name, extra=_ctx(formula, Stage.VERIFY))
        verifier.verify(formula)
    except TestError as e:
        return ExecutionResult.from_error(
            formula.name, e, installed=True, files=files,
            channel=channel, duration=time.monotonic() - start,
        )
    except PipelineError as e:
        return ExecutionResult.from_error(
            formula.name, e, channel=channel, duration=time.monotonic() - start,
        )
    finally:
        if workdir is not None:
            workspaces.release(workdir, keep=keep)

    return ExecutionResult(
        formula=formula.name, status=ResultStatus.SUCCESS, installed=True,
        files=files, channel=channel, duration=time.monotonic() - start,
    )


def run_tests(
    formula: Formula,
    *,
    prefix: str | Path = "",
    config: Config | None = None,
    executor: CommandExecutor | None = None,
) -> ExecutionResult:
    """仅对已安装产物执行验证阶段（不构建、不安装）"""
    cfg = config or get_config()
    prefix_path = Path(prefix or cfg.prefix).expanduser().resolve()
    verifier = Verifier(prefix_path, executor, timeout=cfg.test_timeout)
    start = time.monotonic()
    installed = ReceiptStore(prefix_path).is_installed(formula.name)
    try:
        verifier.verify(formula)
    except TestError as e:
        return ExecutionResult.from_error(
            formula.name, e, installed=installed, duration=time.monotonic() - start,
        )
    return ExecutionResult(
        formula=formula.name, installed=installed, duration=time.monotonic() - start,
    )
