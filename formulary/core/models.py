"""核心数据模型

配方（Formula）是纯数据，由唯一的流水线函数消费；
各阶段产物与最终执行结果也集中定义在此处。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from formulary.core.exceptions import PipelineError

# =========================================================================
# 枚举
# =========================================================================


class Stage(str, Enum):
    """流水线阶段（严格顺序执行）"""
    RESOLVE_SOURCE = "resolve_source"
    STAGE_ENVIRONMENT = "stage_environment"
    BUILD = "build"
    INSTALL = "install"
    VERIFY = "verify"


class DepStage(str, Enum):
    """依赖所需阶段"""
    BUILD = "build"
    RUNTIME = "runtime"


class ResultStatus(str, Enum):
    """流水线终态"""
    SUCCESS = "success"
    DEPENDENCY_ERROR = "dependency_error"
    FETCH_ERROR = "fetch_error"
    BUILD_ERROR = "build_error"
    INSTALL_ERROR = "install_error"
    TEST_ERROR = "test_error"


class StagingStatus(str, Enum):
    """环境暂存状态

    生命周期: pending → applied → released（released 可从任一状态进入）
    """
    PENDING = "pending"
    APPLIED = "applied"
    RELEASED = "released"


# 终态 → 进程退出码（1 保留给配置/校验类通用错误，2 为 click 用法错误）
EXIT_CODES: dict[str, int] = {
    ResultStatus.SUCCESS: 0,
    ResultStatus.DEPENDENCY_ERROR: 3,
    ResultStatus.FETCH_ERROR: 4,
    ResultStatus.BUILD_ERROR: 5,
    ResultStatus.INSTALL_ERROR: 6,
    ResultStatus.TEST_ERROR: 7,
}

DEFAULT_CHANNEL = "stable"
CHANNELS = ("stable", "head")


def expand(value: str, variables: dict[str, str]) -> str:
    """展开 {buildpath} / {prefix} / {bin} 等占位符，未知占位符保持原样"""
    for k, v in variables.items():
        value = value.replace("{" + k + "}", v)
    return value


# =========================================================================
# 配方领域模型
# =========================================================================


@dataclass
class SourceRef:
    """源码定位符（URL / VCS 地址 / 本地路径）"""

    url: str
    ref: str = ""              # 分支或标签（git）
    sha256: str = ""           # 归档校验和


@dataclass
class Dependency:
    """声明的依赖，标记所需阶段"""

    name: str
    stage: str = DepStage.BUILD
    command: str = ""          # 主机上的可执行文件名（默认同 name）

    @property
    def executable(self) -> str:
        return self.command or self.name


@dataclass
class Command:
    """一次外部命令调用"""

    args: list[str]

    def expand(self, variables: dict[str, str]) -> list[str]:
        return [expand(a, variables) for a in self.args]


@dataclass
class LayoutOp:
    """构建树内的目录布局操作

    kind:
      - mkdir: 创建目录 path
      - symlink: 在 path 处创建指向 target 的符号链接
    """

    kind: str
    path: str
    target: str = ""


@dataclass
class Artifact:
    """声明的安装产物：构建树内 source → 安装前缀内 dest"""

    source: str
    dest: str
    mode: int | None = None


@dataclass
class Formula:
    """单个软件包的构建配方"""

    name: str
    desc: str = ""
    version: str = ""
    homepage: str = ""
    sources: dict[str, SourceRef] = field(default_factory=dict)   # channel → 定位符
    dependencies: list[Dependency] = field(default_factory=list)

    # 安装过程（按阶段拆分，保持各自声明顺序）
    environment: dict[str, str] = field(default_factory=dict)
    layout: list[LayoutOp] = field(default_factory=list)
    build_steps: list[Command] = field(default_factory=list)
    artifacts: list[Artifact] = field(default_factory=list)

    test_steps: list[Command] = field(default_factory=list)
    path: str = ""             # 配方文件路径

    def source(self, channel: str = DEFAULT_CHANNEL) -> SourceRef | None:
        return self.sources.get(channel)

    def dependencies_for(self, stage: str) -> list[Dependency]:
        return [d for d in self.dependencies if d.stage == stage]


# =========================================================================
# 执行结果
# =========================================================================

_STATUS_BY_CODE: dict[str, ResultStatus] = {
    "DEPENDENCY_ERROR": ResultStatus.DEPENDENCY_ERROR,
    "FETCH_ERROR": ResultStatus.FETCH_ERROR,
    "BUILD_ERROR": ResultStatus.BUILD_ERROR,
    "INSTALL_ERROR": ResultStatus.INSTALL_ERROR,
    "TEST_ERROR": ResultStatus.TEST_ERROR,
}


@dataclass
class ExecutionResult:
    """一次流水线执行的终态"""

    formula: str
    status: str = ResultStatus.SUCCESS
    stage: str = ""            # 失败阶段，成功时为空
    message: str = ""
    output: str = ""           # 失败命令捕获的 stdout/stderr
    installed: bool = False    # 产物是否已落入安装前缀
    files: list[str] = field(default_factory=list)
    channel: str = DEFAULT_CHANNEL
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        return EXIT_CODES.get(self.status, 1)

    @classmethod
    def from_error(
        cls, formula: str, error: PipelineError, **kwargs: object,
    ) -> ExecutionResult:
        """由阶段错误构建失败结果"""
        return cls(
            formula=formula,
            status=_STATUS_BY_CODE[error.code],
            stage=error.stage,
            message=error.message,
            output=error.output,
            **kwargs,  # type: ignore[arg-type]
        )
