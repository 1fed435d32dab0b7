"""formulary - 源码构建配方（formula）执行器"""

__version__ = "0.1.0"
