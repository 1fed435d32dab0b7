"""CLI - 安装与验证命令"""

from __future__ import annotations

import click

from formulary.cli import _load_formula
from formulary.core.config import get_config
from formulary.core.models import ExecutionResult
from formulary.services.pipeline import run_pipeline, run_tests


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(test)


def _report(result: ExecutionResult) -> None:
    """输出终态与诊断信息"""
    if result.success:
        click.echo(f"安装成功: {result.formula} ({result.duration:.1f}s)")
        for f in result.files:
            click.echo(f"  {f}")
        return
    if result.installed:
        click.echo(f"已安装，但验证失败: {result.formula}", err=True)
    click.echo(f"[{result.status.upper()}] 阶段={result.stage}: {result.message}", err=True)
    if result.output:
        click.echo("---- 输出 ----", err=True)
        click.echo(result.output.rstrip(), err=True)


@click.command()
@click.argument("formula")
@click.option("--head", is_flag=True, help="使用 head 渠道（默认 stable）")
@click.option("--prefix", default="", help="安装前缀（默认取配置）")
@click.option("--keep-workdir", is_flag=True, help="保留工作目录用于调试")
@click.pass_context
def install(ctx: click.Context, formula: str, head: bool, prefix: str, keep_workdir: bool) -> None:
    """构建并安装配方，退出码映射自执行终态"""
    f = _load_formula(formula)
    result = run_pipeline(
        f, prefix=prefix, channel="head" if head else get_config().channel,
        keep_workdir=keep_workdir or None,
    )
    _report(result)
    ctx.exit(result.exit_code)


@click.command()
@click.argument("formula")
@click.option("--prefix", default="", help="安装前缀（默认取配置）")
@click.pass_context
def test(ctx: click.Context, formula: str, prefix: str) -> None:
    """对已安装的配方执行 test 过程"""
    f = _load_formula(formula)
    result = run_tests(f, prefix=prefix)
    if result.success:
        click.echo(f"验证通过: {result.formula}")
    else:
        _report(result)
    ctx.exit(result.exit_code)
