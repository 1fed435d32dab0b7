"""构建环境暂存模块"""

from formulary.services.env.stager import (
    EnvironmentStager,
    StagedEnvironment,
    prefix_search_path,
)

__all__ = ["EnvironmentStager", "StagedEnvironment", "prefix_search_path"]
