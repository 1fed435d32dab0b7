"""集中配置管理

提供配方目录、安装前缀、工作目录根等统一配置入口。
支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field

import yaml

from formulary.core.exceptions import ConfigError
from formulary.core.models import CHANNELS
from formulary.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """全局配置"""

    # 目录
    formula_dir: str = "Formula"
    prefix: str = "data/prefix"
    work_root: str = ""            # 空则使用 <系统临时目录>/formulary
    keep_workdir: bool = False     # 保留工作目录用于调试

    # 执行
    channel: str = "stable"
    build_timeout: int = 3600
    test_timeout: int = 300
    fetch_timeout: int = 60

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    @property
    def resolved_work_root(self) -> str:
        return self.work_root or os.path.join(tempfile.gettempdir(), "formulary")

    @classmethod
    def from_file(cls, path: str = "configs/default.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"配置文件无法读取: {path} ({e})") from e
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置内容无效: {path} ({e})") from e
        cfg.extra = extra
        cfg.validate()
        return cfg

    def validate(self) -> None:
        """渠道取值与超时设置检查，非法时抛 ConfigError"""
        if self.channel not in CHANNELS:
            raise ConfigError(f"channel 无效: {self.channel}（可选: {', '.join(CHANNELS)}）")
        for name in ("build_timeout", "test_timeout", "fetch_timeout"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ConfigError(f"{name} 必须为正整数: {value!r}")


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "configs/default.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
