"""源码获取模块

拆分说明：
- sources.py: 来源适配器 Git / 归档 / 本地目录
- resolver.py: 源码解析器（渠道选择 + 派发 + 结果校验）
- workspace.py: 单次执行的工作目录管理
"""

from formulary.services.source.resolver import SourceResolver
from formulary.services.source.sources import (
    ArchiveSource,
    GitSource,
    LocalSource,
    SourceKind,
    classify_locator,
)
from formulary.services.source.workspace import WorkingDirectory, WorkspaceManager

__all__ = [
    "SourceResolver",
    "GitSource",
    "ArchiveSource",
    "LocalSource",
    "SourceKind",
    "classify_locator",
    "WorkingDirectory",
    "WorkspaceManager",
]
