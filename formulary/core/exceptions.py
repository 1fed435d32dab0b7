"""统一异常体系

所有业务异常继承 FormularyError。
流水线各阶段的失败统一继承 PipelineError，携带失败阶段与捕获的输出，
由流水线转换为 ExecutionResult，CLI 再据此映射退出码。
"""

from __future__ import annotations


class FormularyError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(FormularyError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(FormularyError):
    """配方或输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class FormulaNotFoundError(FormularyError):
    """配方仓库中不存在指定配方"""

    code = "FORMULA_NOT_FOUND"


class ExecutionError(FormularyError):
    """外部命令执行失败（run_cmd 使用）"""

    code = "EXECUTION_ERROR"

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


# =========================================================================
# 流水线阶段错误
# =========================================================================


class PipelineError(FormularyError):
    """流水线阶段失败基类

    stage 取值见 formulary.core.models.Stage，output 为失败命令捕获的
    stdout/stderr，原样透传给调用方用于诊断。
    """

    code = "PIPELINE_ERROR"
    stage: str = ""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.output = output


class DependencyError(PipelineError):
    """构建前置依赖缺失（在任何变更发生前检测）"""

    code = "DEPENDENCY_ERROR"
    stage = "stage_environment"


class FetchError(PipelineError):
    """源码获取失败：定位符非法、网络失败、引用不存在"""

    code = "FETCH_ERROR"
    stage = "resolve_source"


class BuildError(PipelineError):
    """构建步骤返回非零退出码"""

    code = "BUILD_ERROR"
    stage = "build"


class InstallError(PipelineError):
    """构建产物缺失或安装前缀不可写"""

    code = "INSTALL_ERROR"
    stage = "install"


class TestError(PipelineError):
    """安装后验证步骤返回非零退出码"""

    __test__ = False  # 防止 pytest 误收集

    code = "TEST_ERROR"
    stage = "verify"
