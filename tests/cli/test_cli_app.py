"""
Tests for the phaseloop CLI.

Uses typer's CliRunner; JSON output is parsed from stdout.
"""

import json

import pytest
from typer.testing import CliRunner

from phaseloop.cli.app import app
from phaseloop.cli.demo import run_demo
from phaseloop.core.enums import MicrotaskPolicy

runner = CliRunner()


def invoke(*args):
    return runner.invoke(app, ["--log-level", "WARNING", *args])


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.stdout.startswith("phaseloop ")

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "phases" in result.output


class TestPhasesCommand:
    def test_json(self):
        result = invoke("phases", "--json")
        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        assert [r["phase"] for r in rows] == [
            "timers",
            "pending",
            "prepare",
            "poll",
            "check",
            "close",
            "microtasks",
        ]
        assert rows[0]["order"] == 1

    def test_table(self):
        result = invoke("phases")
        assert result.exit_code == 0
        assert "microtasks" in result.stdout


class TestRunDemo:
    def test_iteration_policy_order(self):
        rows = run_demo(MicrotaskPolicy.ITERATION)
        assert [(r["callback"], r["phase"], r["iteration"]) for r in rows] == [
            ("timeout(0)", "timers", 1),
            ("immediate", "check", 1),
            ("next_tick", "microtasks", 1),
            ("I/O callback (file contents)", "poll", 2),
            ("immediate from I/O", "check", 2),
            ("close callback", "close", 2),
            ("next_tick from I/O", "microtasks", 2),
            ("timeout(0) from I/O", "timers", 3),
        ]
        assert rows[3]["time_ms"] == 5.0
        assert rows[-1]["time_ms"] == 5.0

    def test_phase_policy_order(self):
        rows = run_demo("phase")
        assert [r["callback"] for r in rows] == [
            "timeout(0)",
            "next_tick",
            "immediate",
            "I/O callback (file contents)",
            "next_tick from I/O",
            "immediate from I/O",
            "close callback",
            "timeout(0) from I/O",
        ]

    def test_rows_numbered(self):
        rows = run_demo()
        assert [r["order"] for r in rows] == list(range(1, len(rows) + 1))


class TestDemoCommand:
    @pytest.mark.parametrize("policy", ["iteration", "phase"])
    def test_json(self, policy):
        result = invoke("demo", "--policy", policy, "--json")
        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        assert len(rows) == 8
        assert rows[-1]["callback"] == "timeout(0) from I/O"

    def test_table(self):
        result = invoke("demo")
        assert result.exit_code == 0
        assert "8 callbacks, 3 iterations" in result.stdout

    def test_bad_policy(self):
        result = invoke("demo", "--policy", "never")
        assert result.exit_code != 0


class TestConfigCommand:
    def test_json(self):
        result = invoke("config", "show", "--format", "json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["microtask_policy"] == "iteration"
        assert data["max_io_callbacks_per_poll"] == 1024

    def test_env_reflects_environment(self, monkeypatch):
        monkeypatch.setenv("PHASELOOP_MAX_IO_CALLBACKS_PER_POLL", "16")
        result = invoke("config", "show", "--format", "env")
        assert result.exit_code == 0
        assert "PHASELOOP_MAX_IO_CALLBACKS_PER_POLL=16" in result.stdout
        assert "PHASELOOP_MAX_WAIT_SECONDS=" in result.stdout

    def test_table(self):
        result = invoke("config", "show")
        assert result.exit_code == 0
        assert "slow_callback_threshold" in result.stdout

    def test_unknown_format(self):
        result = invoke("config", "show", "--format", "yaml")
        assert result.exit_code == 2
