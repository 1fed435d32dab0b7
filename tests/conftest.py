"""测试共享 fixture - 脚本化命令执行器 + 示例配方

ScriptedExecutor 按程序名拦截命令（如 git / make），其余命令交给真实的
LocalExecutor 执行，从而在不访问网络、不依赖 make 的情况下跑通整条流水线。
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from formulary.core.config import Config
from formulary.core.models import Artifact, Command, Formula, SourceRef
from formulary.utils.shell import CommandResult, LocalExecutor

Handler = Callable[[list[str], str, "dict[str, str] | None"], CommandResult]

PKG_SCRIPT_OK = "#!/bin/sh\necho 'pkg 1.0'\n"
PKG_SCRIPT_BROKEN = "#!/bin/sh\necho 'pkg: broken' >&2\nexit 3\n"


class ScriptedExecutor:
    """按程序名分派到脚本处理函数，未登记的命令真实执行"""

    def __init__(self, handlers: dict[str, Handler] | None = None) -> None:
        self.handlers = dict(handlers or {})
        self.calls: list[list[str]] = []
        self._local = LocalExecutor()

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        args = cmd.split() if isinstance(cmd, str) else list(cmd)
        self.calls.append(args)
        handler = self.handlers.get(os.path.basename(args[0]))
        if handler is not None:
            return handler(args, cwd, env)
        return self._local.execute(args, cwd=cwd, env=env, timeout=timeout)

    def programs(self) -> list[str]:
        return [os.path.basename(c[0]) for c in self.calls]


def fake_git_clone(args: list[str], cwd: str, env: dict[str, str] | None) -> CommandResult:
    """模拟 git clone：在目标目录生成一棵最小源码树"""
    dest = Path(args[-1])
    dest.mkdir(parents=True)
    (dest / "Makefile").write_text("all:\n\t@echo build\n", encoding="utf-8")
    (dest / "main.c").write_text("int main(void) { return 0; }\n", encoding="utf-8")
    return CommandResult(0, f"Cloning into '{dest}'...\n", "")


def fake_make(script: str | None = PKG_SCRIPT_OK, returncode: int = 0) -> Handler:
    """模拟 make：成功时写出 out/pkg（不带可执行位），可选地不产出产物或失败"""

    def _make(args: list[str], cwd: str, env: dict[str, str] | None) -> CommandResult:
        if returncode != 0:
            return CommandResult(returncode, "cc -o out/pkg main.c\n", "make: *** [all] Error 1\n")
        if script is not None:
            out = Path(cwd) / "out"
            out.mkdir(exist_ok=True)
            (out / "pkg").write_text(script, encoding="utf-8")
            (out / "pkg").chmod(0o644)
        return CommandResult(0, "build ok\n", "")

    return _make


def scenario_formula(**overrides: object) -> Formula:
    """pkg 示例配方：git 源 → make → out/pkg → bin/pkg → pkg --version"""
    formula = Formula(
        name="pkg",
        desc="示例软件包",
        version="1.0",
        sources={"stable": SourceRef(url="https://example.com/pkg.git")},
        build_steps=[Command(args=["make"])],
        artifacts=[Artifact(source="out/pkg", dest="bin/pkg")],
        test_steps=[Command(args=["pkg", "--version"])],
    )
    for k, v in overrides.items():
        setattr(formula, k, v)
    return formula


@pytest.fixture()
def cfg(tmp_path: Path) -> Config:
    return Config(
        formula_dir=str(tmp_path / "Formula"),
        prefix=str(tmp_path / "prefix"),
        work_root=str(tmp_path / "work"),
        build_timeout=60,
        test_timeout=60,
        fetch_timeout=10,
    )


def snapshot_tree(root: Path) -> dict[str, bytes | str]:
    """目录快照（相对路径 → 内容 / 链接目标），用于断言前缀未变"""
    result: dict[str, bytes | str] = {}
    if not root.exists():
        return result
    for p in sorted(root.rglob("*")):
        rel = str(p.relative_to(root))
        if p.is_symlink():
            result[rel] = f"-> {os.readlink(p)}"
        elif p.is_file():
            result[rel] = p.read_bytes()
        else:
            result[rel] = "<dir>"
    return result
