"""formulary 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os

import click

from formulary import __version__
from formulary.core.config import init_config
from formulary.core.exceptions import FormularyError
from formulary.core.formula import FormulaRepository
from formulary.core.models import Formula
from formulary.utils.logger import setup_logging


def _load_formula(name: str) -> Formula:
    """按名称或路径加载配方，失败转为 CLI 错误（退出码 1）"""
    try:
        return FormulaRepository().get(name)
    except FormularyError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default="configs/default.yml", help="配置文件路径")
def main(config_path: str) -> None:
    """formulary - 源码构建配方执行器"""
    setup_logging(
        level=os.getenv("FORMULARY_LOG_LEVEL", "INFO"),
        json_output=os.getenv("FORMULARY_LOG_JSON", "") == "1",
    )
    try:
        init_config(config_path)
    except FormularyError as e:
        raise click.ClickException(str(e)) from e


# 注册各领域子命令
from formulary.cli.cmd_formula import register as _reg_formula  # noqa: E402
from formulary.cli.cmd_install import register as _reg_install  # noqa: E402

_reg_install(main)
_reg_formula(main)
