"""流水线端到端测试 - 终态、清理与前缀不变性

git 与 make 由 ScriptedExecutor 模拟，安装后的 pkg 脚本真实执行。
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from formulary.core.models import Artifact, Dependency, ResultStatus, SourceRef
from formulary.services.env.stager import StagedEnvironment
from formulary.services.pipeline import PipelineHook, run_pipeline, run_tests
from tests.conftest import (
    PKG_SCRIPT_BROKEN,
    ScriptedExecutor,
    fake_git_clone,
    fake_make,
    scenario_formula,
    snapshot_tree,
)


def _executor(**make_kwargs) -> ScriptedExecutor:
    return ScriptedExecutor({"git": fake_git_clone, "make": fake_make(**make_kwargs)})


@pytest.fixture()
def teardown_calls(monkeypatch) -> list[str]:
    calls: list[str] = []
    original = StagedEnvironment.teardown

    def spy(self):
        calls.append(self.formula.name)
        original(self)

    monkeypatch.setattr(StagedEnvironment, "teardown", spy)
    return calls


def _workdirs(cfg) -> list[Path]:
    root = Path(cfg.work_root)
    return list(root.iterdir()) if root.is_dir() else []


class TestScenarios:
    def test_success(self, cfg, teardown_calls) -> None:
        executor = _executor()
        result = run_pipeline(scenario_formula(), config=cfg, executor=executor)

        assert result.status == ResultStatus.SUCCESS
        assert result.exit_code == 0
        assert result.installed
        assert result.files == ["bin/pkg"]
        pkg = Path(cfg.prefix) / "bin" / "pkg"
        assert pkg.is_file()
        assert os.access(pkg, os.X_OK)
        assert executor.programs() == ["git", "make", "pkg"]
        assert teardown_calls == ["pkg"]
        assert _workdirs(cfg) == []

    def test_build_failure(self, cfg, teardown_calls) -> None:
        result = run_pipeline(scenario_formula(), config=cfg, executor=_executor(returncode=1))

        assert result.status == ResultStatus.BUILD_ERROR
        assert result.stage == "build"
        assert result.exit_code == 5
        assert "Error 1" in result.output
        assert not (Path(cfg.prefix) / "bin" / "pkg").exists()
        assert teardown_calls == ["pkg"]
        assert _workdirs(cfg) == []

    def test_missing_artifact(self, cfg, teardown_calls) -> None:
        result = run_pipeline(scenario_formula(), config=cfg, executor=_executor(script=None))

        assert result.status == ResultStatus.INSTALL_ERROR
        assert not result.success
        assert not result.installed
        assert "out/pkg" in result.message
        assert teardown_calls == ["pkg"]

    def test_verification_failure_keeps_install(self, cfg, teardown_calls) -> None:
        result = run_pipeline(
            scenario_formula(), config=cfg, executor=_executor(script=PKG_SCRIPT_BROKEN),
        )

        assert result.status == ResultStatus.TEST_ERROR
        assert result.exit_code == 7
        assert result.installed
        assert result.files == ["bin/pkg"]
        assert "pkg: broken" in result.output
        assert (Path(cfg.prefix) / "bin" / "pkg").is_file()
        assert teardown_calls == ["pkg"]


class TestPrefixInvariants:
    @pytest.mark.parametrize("make_kwargs", [
        {"returncode": 1},
        {"script": None},
    ])
    def test_failed_run_leaves_prefix_unchanged(self, cfg, make_kwargs) -> None:
        prefix = Path(cfg.prefix)
        (prefix / "bin").mkdir(parents=True)
        (prefix / "bin" / "pkg").write_text("#!/bin/sh\necho old\n", encoding="utf-8")
        before = snapshot_tree(prefix)

        result = run_pipeline(scenario_formula(), config=cfg, executor=_executor(**make_kwargs))
        assert not result.success
        assert snapshot_tree(prefix) == before

    def test_dependency_error_before_any_mutation(self, cfg, teardown_calls) -> None:
        executor = _executor()
        formula = scenario_formula(dependencies=[Dependency(name="formulary-missing-go")])
        result = run_pipeline(formula, config=cfg, executor=executor)

        assert result.status == ResultStatus.DEPENDENCY_ERROR
        assert result.exit_code == 3
        assert "formulary-missing-go" in result.message
        assert executor.calls == []
        assert _workdirs(cfg) == []
        assert not Path(cfg.prefix).exists()
        assert teardown_calls == ["pkg"]

    def test_malformed_locator(self, cfg, teardown_calls) -> None:
        executor = _executor()
        formula = scenario_formula(sources={"stable": SourceRef(url="ftp://example.com/pkg.tgz")})
        result = run_pipeline(formula, config=cfg, executor=executor)

        assert result.status == ResultStatus.FETCH_ERROR
        assert result.stage == "resolve_source"
        assert executor.calls == []
        assert teardown_calls == ["pkg"]
        assert _workdirs(cfg) == []

    def test_undeclared_channel(self, cfg) -> None:
        result = run_pipeline(scenario_formula(), config=cfg, channel="head", executor=_executor())
        assert result.status == ResultStatus.FETCH_ERROR
        assert result.channel == "head"

    def test_corrupt_archive_is_fetch_error(self, cfg, tmp_path: Path) -> None:
        bad = tmp_path / "pkg-1.0.tar.gz"
        bad.write_text("<html>404 not found</html>", encoding="utf-8")
        executor = _executor()
        formula = scenario_formula(sources={"stable": SourceRef(url=str(bad))}, test_steps=[])
        result = run_pipeline(formula, config=cfg, executor=executor)

        assert result.status == ResultStatus.FETCH_ERROR
        assert "make" not in executor.programs()
        assert not Path(cfg.prefix).exists()

    def test_damaged_state_files_do_not_escape(self, cfg) -> None:
        receipts = Path(cfg.prefix) / "var" / "formulary" / "receipts"
        receipts.mkdir(parents=True)
        (receipts / "formulary-go.json").write_text("{}", encoding="utf-8")
        stale = Path(cfg.work_root) / "x-1"
        stale.mkdir(parents=True)
        (stale / ".formulary-run.json").write_text('{"pid": "abc"}', encoding="utf-8")

        formula = scenario_formula(dependencies=[Dependency(name="formulary-go")])
        result = run_pipeline(formula, config=cfg, executor=_executor())
        assert result.status == ResultStatus.DEPENDENCY_ERROR
        assert stale.exists()

        result = run_pipeline(scenario_formula(), config=cfg, executor=_executor())
        assert result.success
        assert not stale.exists()


class TestRepeatedRuns:
    def test_second_run_still_succeeds(self, cfg) -> None:
        first = run_pipeline(scenario_formula(), config=cfg, executor=_executor())
        content = (Path(cfg.prefix) / "bin" / "pkg").read_bytes()
        second = run_pipeline(scenario_formula(), config=cfg, executor=_executor())

        assert first.success and second.success
        assert (Path(cfg.prefix) / "bin" / "pkg").read_bytes() == content

    def test_concurrent_formulas(self, cfg) -> None:
        results = {}

        def _run(name: str) -> None:
            formula = scenario_formula(
                name=name, artifacts=[Artifact(source="out/pkg", dest=f"bin/{name}")], test_steps=[],
            )
            results[name] = run_pipeline(
                formula,
                config=cfg, executor=_executor(),
            )

        threads = [threading.Thread(target=_run, args=(n,)) for n in ("alpha", "beta")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results["alpha"].success and results["beta"].success
        assert (Path(cfg.prefix) / "bin" / "alpha").is_file()
        assert (Path(cfg.prefix) / "bin" / "beta").is_file()


class TestOptions:
    def test_keep_workdir(self, cfg) -> None:
        result = run_pipeline(scenario_formula(), config=cfg, executor=_executor(), keep_workdir=True)
        assert result.success
        kept = _workdirs(cfg)
        assert len(kept) == 1
        assert (kept[0] / "src" / "out" / "pkg").is_file()

    def test_hooks_notified(self, cfg) -> None:
        seen = []

        class Recorder(PipelineHook):
            def on_result(self, result, context):
                seen.append((result.status, context["channel"]))

        class Broken(PipelineHook):
            def on_result(self, result, context):
                raise RuntimeError("notify failed")

        result = run_pipeline(
            scenario_formula(), config=cfg, executor=_executor(), hooks=[Broken(), Recorder()],
        )
        assert result.success
        assert seen == [(ResultStatus.SUCCESS, "stable")]

    def test_run_tests_only(self, cfg) -> None:
        run_pipeline(scenario_formula(), config=cfg, executor=_executor())
        result = run_tests(scenario_formula(), config=cfg)
        assert result.success
        assert result.installed

    def test_run_tests_without_install(self, cfg) -> None:
        result = run_tests(scenario_formula(), config=cfg)
        assert result.status == ResultStatus.TEST_ERROR
        assert not result.installed
