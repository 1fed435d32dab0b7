"""shell.py run_cmd / 执行器单元测试"""

from __future__ import annotations

import os

import pytest

from formulary.core.exceptions import ExecutionError
from formulary.utils.shell import (
    CommandResult,
    format_cmd,
    get_executor,
    run_cmd,
    set_executor,
)


class TestRunCmd:
    def test_success(self, tmp_path) -> None:
        r = run_cmd("echo hello", cwd=str(tmp_path), label="test")
        assert r.returncode == 0
        assert "hello" in r.stdout

    def test_failure_raises_execution_error(self, tmp_path) -> None:
        with pytest.raises(ExecutionError, match="cmd失败"):
            run_cmd("false", cwd=str(tmp_path))

    def test_custom_label_in_error(self, tmp_path) -> None:
        with pytest.raises(ExecutionError, match="build\\[1/1\\]失败"):
            run_cmd("false", cwd=str(tmp_path), label="build[1/1]")

    def test_failure_keeps_output(self, tmp_path) -> None:
        with pytest.raises(ExecutionError) as exc_info:
            run_cmd(["sh", "-c", "echo out; echo err >&2; exit 2"], cwd=str(tmp_path))
        assert "rc=2" in str(exc_info.value)
        assert "out" in exc_info.value.output
        assert "err" in exc_info.value.output

    def test_env_passed(self, tmp_path) -> None:
        env = {**os.environ, "MY_TEST_VAR": "42"}
        r = run_cmd("env", cwd=str(tmp_path), env=env, label="env_test")
        assert "MY_TEST_VAR=42" in r.stdout

    def test_missing_program_raises_oserror(self, tmp_path) -> None:
        with pytest.raises(OSError):
            run_cmd(["formulary-no-such-program"], cwd=str(tmp_path))


class TestExecutorSwap:
    def test_set_executor(self, tmp_path) -> None:
        calls: list = []

        class Recorder:
            def execute(self, cmd, *, cwd=".", env=None, timeout=None):
                calls.append(cmd)
                return CommandResult(0, "ok", "")

        original = get_executor()
        set_executor(Recorder())
        try:
            r = run_cmd(["make", "all"], cwd=str(tmp_path))
        finally:
            set_executor(original)
        assert r.stdout == "ok"
        assert calls == [["make", "all"]]


class TestCommandResult:
    def test_output_merges_streams(self) -> None:
        assert CommandResult(1, "a", "b").output == "a\nb"
        assert CommandResult(0, "", "b").output == "b"
        assert CommandResult(0, "", "").success

    def test_format_cmd(self) -> None:
        assert format_cmd(["echo", "a b"]) == "echo 'a b'"
        assert format_cmd("make all") == "make all"
