"""CLI - 配方查询、校验与本地维护命令"""

from __future__ import annotations

import click

from formulary.cli import _load_formula
from formulary.core.config import get_config
from formulary.core.formula import FormulaRepository
from formulary.core.receipts import ReceiptStore
from formulary.services.env.stager import EnvironmentStager
from formulary.services.source.workspace import WorkspaceManager


def register(group: click.Group) -> None:
    group.add_command(info)
    group.add_command(audit)
    group.add_command(list_installed)
    group.add_command(cleanup)


@click.command()
@click.argument("formula")
def info(formula: str) -> None:
    """显示配方信息"""
    f = _load_formula(formula)
    click.echo(f"{f.name}: {f.desc}")
    if f.version:
        click.echo(f"版本: {f.version}")
    if f.homepage:
        click.echo(f"主页: {f.homepage}")
    for channel, src in f.sources.items():
        ref = f" (ref={src.ref})" if src.ref else ""
        click.echo(f"  {channel:7s} {src.url}{ref}")
    if f.dependencies:
        click.echo("依赖:")
        for d in f.dependencies:
            click.echo(f"  {d.name:20s} [{d.stage}]")
    click.echo(
        f"安装过程: env={len(f.environment)} layout={len(f.layout)} "
        f"run={len(f.build_steps)} install={len(f.artifacts)}  test={len(f.test_steps)}"
    )
    receipt = ReceiptStore(get_config().prefix).get(f.name)
    if receipt:
        click.echo(f"已安装: {receipt.installed_at} ({receipt.channel})")


@click.command()
@click.argument("formula")
def audit(formula: str) -> None:
    """校验配方并检查依赖在主机上是否可用"""
    f = _load_formula(formula)
    click.echo(f"配方格式有效: {f.name}")
    if not f.test_steps:
        click.echo("  警告: 未定义 test 过程")
    missing = EnvironmentStager(get_config().prefix).missing_dependencies(f)
    if missing:
        raise click.ClickException(f"缺少依赖: {', '.join(missing)}")
    click.echo("  依赖全部就绪")


@click.command(name="list")
@click.option("--available", is_flag=True, help="列出配方仓库中的全部配方")
def list_installed(available: bool) -> None:
    """列出已安装的配方"""
    if available:
        names = FormulaRepository().names()
        if not names:
            click.echo("配方仓库为空。")
        for name in names:
            click.echo(f"  {name}")
        return
    receipts = ReceiptStore(get_config().prefix).list_all()
    if not receipts:
        click.echo("没有已安装的配方。")
        return
    for r in receipts:
        click.echo(f"  {r.name:20s} {r.version or '-':10s} {r.channel:7s} {r.installed_at}")


@click.command()
def cleanup() -> None:
    """清理崩溃遗留的工作目录"""
    count = WorkspaceManager().clean_stale()
    click.echo(f"已清理 {count} 个遗留工作目录")
