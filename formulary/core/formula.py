"""配方加载与校验

职责:
- 将 YAML 配方文档解析为 Formula 数据对象
- 校验配方不变量（至少一个源、唯一且非空的安装过程、操作顺序、路径不越界）
- 配方仓库：按名称查找 <formula_dir>/<name>.yml
"""

from __future__ import annotations

import logging
import posixpath
import re
import shlex
from pathlib import Path
from typing import Any

import yaml

from formulary.core.exceptions import FormulaNotFoundError, ValidationError
from formulary.core.models import (
    CHANNELS,
    Artifact,
    Command,
    Dependency,
    DepStage,
    Formula,
    LayoutOp,
    SourceRef,
)
from formulary.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

_STAGING_OPS = ("env", "mkdir", "symlink")
_KNOWN_OPS = (*_STAGING_OPS, "run", "install")

# 配方名用作回执文件名与工作目录前缀，不允许路径分隔符
_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.+@\-]*$")


# =========================================================================
# 字段解析
# =========================================================================

def _check_name(name: str, what: str) -> str:
    if not _SAFE_NAME_RE.match(name):
        raise ValidationError(f"{what}名称非法: {name!r}（仅允许字母、数字与 _ . + @ -）")
    return name


def _parse_source(raw: Any, channel: str) -> SourceRef:
    if isinstance(raw, str):
        return SourceRef(url=raw.strip())
    if isinstance(raw, dict) and raw.get("url"):
        return SourceRef(
            url=str(raw["url"]).strip(),
            ref=str(raw.get("ref", "")),
            sha256=str(raw.get("sha256", "")).lower(),
        )
    raise ValidationError(f"{channel} 源定义无效: {raw!r}")


def _parse_dependency(raw: Any) -> Dependency:
    if isinstance(raw, str):
        return Dependency(name=_check_name(raw, "依赖"))
    if isinstance(raw, dict):
        # 兼容 {go: build} 简写
        if "name" not in raw and len(raw) == 1:
            name, stage = next(iter(raw.items()))
            raw = {"name": name, "stage": stage}
        if "name" not in raw:
            raise ValidationError(f"依赖缺少 name: {raw!r}")
        stage = str(raw.get("stage", DepStage.BUILD))
        if stage not in (DepStage.BUILD, DepStage.RUNTIME):
            raise ValidationError(f"依赖阶段无效: {stage}（仅支持 build/runtime）")
        return Dependency(
            name=_check_name(str(raw["name"]), "依赖"), stage=stage,
            command=str(raw.get("command", "")),
        )
    raise ValidationError(f"依赖定义无效: {raw!r}")


def _parse_command(raw: Any) -> Command:
    if isinstance(raw, str):
        args = shlex.split(raw)
    elif isinstance(raw, list):
        args = [str(a) for a in raw]
    else:
        raise ValidationError(f"命令定义无效: {raw!r}")
    if not args:
        raise ValidationError("命令不能为空")
    return Command(args=args)


def _parse_mode(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw), 8)
    except ValueError as e:
        raise ValidationError(f"文件权限无效: {raw!r}") from e


def _check_relative(path: str, what: str) -> None:
    """路径必须为相对路径且不能越出所在根目录"""
    norm = posixpath.normpath(path)
    if not path or posixpath.isabs(path) or norm == ".." or norm.startswith("../"):
        raise ValidationError(f"{what} 必须是不越界的相对路径: {path!r}")


def _op_kind(op: Any) -> str:
    if not isinstance(op, dict) or len(op) != 1:
        raise ValidationError(f"安装操作格式无效（需为单键映射）: {op!r}")
    kind = next(iter(op))
    if kind not in _KNOWN_OPS:
        raise ValidationError(f"未知安装操作: {kind}")
    return kind


def _parse_install(formula: Formula, ops: list[Any]) -> None:
    """按阶段拆分安装过程，并校验 暂存操作 → run → install 的顺序"""
    seen_run = False
    seen_install = False
    for op in ops:
        kind = _op_kind(op)
        value = op[kind]
        if kind in _STAGING_OPS and seen_run:
            raise ValidationError(f"{kind} 操作必须位于所有 run 操作之前")
        if kind == "run" and seen_install:
            raise ValidationError("install 操作必须位于所有 run 操作之后")

        if kind == "env":
            if not isinstance(value, dict):
                raise ValidationError(f"env 操作需为映射: {value!r}")
            formula.environment.update({str(k): str(v) for k, v in value.items()})
        elif kind == "mkdir":
            _check_relative(str(value), "mkdir")
            formula.layout.append(LayoutOp(kind="mkdir", path=str(value)))
        elif kind == "symlink":
            if not isinstance(value, dict) or "link" not in value or "target" not in value:
                raise ValidationError(f"symlink 操作需包含 target 和 link: {value!r}")
            _check_relative(str(value["link"]), "symlink.link")
            formula.layout.append(LayoutOp(
                kind="symlink", path=str(value["link"]), target=str(value["target"]),
            ))
        elif kind == "run":
            seen_run = True
            formula.build_steps.append(_parse_command(value))
        else:
            seen_install = True
            formula.artifacts.append(_parse_artifact(value))


def _parse_artifact(raw: Any) -> Artifact:
    if isinstance(raw, str):
        # 简写: 直接放入 bin/
        raw = {"source": raw, "dest": f"bin/{posixpath.basename(raw)}"}
    if not isinstance(raw, dict) or not raw.get("source") or not raw.get("dest"):
        raise ValidationError(f"install 操作需包含 source 和 dest: {raw!r}")
    source, dest = str(raw["source"]), str(raw["dest"])
    _check_relative(source, "install.source")
    _check_relative(dest, "install.dest")
    return Artifact(source=source, dest=dest, mode=_parse_mode(raw.get("mode")))


# =========================================================================
# 对外接口
# =========================================================================

def parse_formula(data: dict[str, Any], *, name: str = "", path: str = "") -> Formula:
    """将配方文档解析为 Formula，违反不变量抛 ValidationError"""
    formula_name = str(data.get("name") or name)
    if not formula_name:
        raise ValidationError("配方 name 为必填")
    _check_name(formula_name, "配方")

    formula = Formula(
        name=formula_name,
        desc=str(data.get("desc", "")),
        version=str(data.get("version", "")),
        homepage=str(data.get("homepage", "")),
        path=path,
    )

    for channel in CHANNELS:
        key = "url" if channel == "stable" else channel
        if data.get(key):
            formula.sources[channel] = _parse_source(data[key], channel)
    if not formula.sources:
        raise ValidationError(f"配方 {formula_name} 至少需要声明一个源（url 或 head）")

    deps = data.get("depends_on") or []
    if not isinstance(deps, list):
        deps = [deps]
    formula.dependencies = [_parse_dependency(d) for d in deps]

    install = data.get("install")
    if not isinstance(install, list) or not install:
        raise ValidationError(f"配方 {formula_name} 必须声明非空的 install 过程")
    _parse_install(formula, install)

    test = data.get("test") or []
    if not isinstance(test, list):
        raise ValidationError("test 过程需为列表")
    for op in test:
        if _op_kind(op) != "run":
            raise ValidationError("test 过程仅支持 run 操作")
        formula.test_steps.append(_parse_command(op["run"]))

    return formula


def load_formula(path: str | Path) -> Formula:
    """从 YAML 文件加载配方"""
    p = Path(path)
    if not p.is_file():
        raise FormulaNotFoundError(f"配方文件不存在: {p}")
    try:
        data = load_yaml(p)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ValidationError(f"配方文件无法解析: {p} ({e})") from e
    if not data:
        raise ValidationError(f"配方文件为空或格式无效: {p}")
    return parse_formula(data, name=p.stem, path=str(p))


class FormulaRepository:
    """配方仓库 - <formula_dir>/<name>.yml，名称在仓库内唯一"""

    def __init__(self, formula_dir: str = "") -> None:
        if not formula_dir:
            from formulary.core.config import get_config
            formula_dir = get_config().formula_dir
        self.formula_dir = Path(formula_dir)

    def names(self) -> list[str]:
        """列出仓库中的全部配方名"""
        if not self.formula_dir.is_dir():
            return []
        return sorted(p.stem for p in self.formula_dir.glob("*.yml"))

    def get(self, name_or_path: str) -> Formula:
        """按名称或文件路径加载配方"""
        candidate = Path(name_or_path)
        if candidate.suffix in (".yml", ".yaml") and candidate.is_file():
            return load_formula(candidate)
        _check_name(name_or_path, "配方")
        path = self.formula_dir / f"{name_or_path}.yml"
        if not path.is_file():
            raise FormulaNotFoundError(
                f"配方不存在: {name_or_path}。可用: {self.names()}"
            )
        return load_formula(path)
