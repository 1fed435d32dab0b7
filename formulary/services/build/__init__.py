"""构建执行模块"""

from formulary.services.build.executor import BuildExecutor

__all__ = ["BuildExecutor"]
