"""Tests for the bootstrap step sequencer and its JSON-lines log."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest

from infra_provisioner.bootstrap.sequencer import (
    BootstrapSequencer,
    BootstrapStep,
    Criticality,
    StepError,
    configure_json_log,
)

if TYPE_CHECKING:
    from pathlib import Path


def _ok(message: str = ""):
    def action(ctx: list[str]) -> str:
        ctx.append(message or "ok")
        return message

    return action


def _boom(ctx: list[str]) -> None:
    ctx.append("boom")
    raise StepError("boom")


class TestSequencer:
    def test_all_steps_succeed(self, clock) -> None:
        steps = [
            BootstrapStep("one", _ok("first")),
            BootstrapStep("two", _ok(), Criticality.FATAL),
        ]
        ctx: list[str] = []

        report = BootstrapSequencer(steps, clock=clock).run(ctx)

        assert ctx == ["first", "ok"]
        assert [r.status for r in report.results] == ["ok", "ok"]
        assert report.results[0].message == "first"
        assert report.ok
        assert report.exit_code == 0

    def test_best_effort_failure_continues(self, clock) -> None:
        steps = [
            BootstrapStep("flaky", _boom),
            BootstrapStep("after", _ok(), Criticality.FATAL),
        ]
        ctx: list[str] = []

        report = BootstrapSequencer(steps, clock=clock).run(ctx)

        assert ctx == ["boom", "ok"]
        assert [r.status for r in report.results] == ["failed", "ok"]
        assert report.results[0].message == "boom"
        assert [r.name for r in report.failed] == ["flaky"]
        assert not report.ok
        assert report.aborted_at is None
        assert report.exit_code == 0

    def test_fatal_failure_aborts(self, clock) -> None:
        steps = [
            BootstrapStep("first", _ok()),
            BootstrapStep("critical", _boom, Criticality.FATAL),
            BootstrapStep("later", _ok()),
            BootstrapStep("last", _ok(), Criticality.FATAL),
        ]
        ctx: list[str] = []

        report = BootstrapSequencer(steps, clock=clock).run(ctx)

        assert ctx == ["ok", "boom"]
        assert report.aborted_at == "critical"
        assert report.exit_code == 1
        assert [(r.name, r.status) for r in report.results] == [
            ("first", "ok"),
            ("critical", "failed"),
            ("later", "not-run"),
            ("last", "not-run"),
        ]

    def test_unexpected_exceptions_are_step_failures(self, clock) -> None:
        def broken(ctx: list[str]) -> None:
            raise KeyError("missing")

        report = BootstrapSequencer([BootstrapStep("broken", broken)], clock=clock).run([])
        assert report.results[0].status == "failed"
        assert "missing" in report.results[0].message

    def test_duration_uses_clock(self, clock) -> None:
        def slow(ctx: list[str]) -> None:
            clock.sleep(2.5)

        report = BootstrapSequencer([BootstrapStep("slow", slow)], clock=clock).run([])
        assert report.results[0].duration == pytest.approx(2.5)

    def test_logs_carry_step_fields(self, clock, caplog) -> None:
        steps = [BootstrapStep("flaky", _boom), BootstrapStep("fine", _ok())]
        with caplog.at_level(logging.INFO, logger="infra_provisioner"):
            BootstrapSequencer(steps, clock=clock).run([])

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert warnings[0].step == "flaky"
        assert warnings[0].status == "failed"
        assert warnings[0].criticality == "best-effort"


class TestJsonLog:
    @pytest.fixture
    def log_file(self, tmp_path: Path):
        path = tmp_path / "logs" / "bootstrap.log"
        handler = configure_json_log(path)
        yield path
        logging.getLogger("infra_provisioner").removeHandler(handler)
        handler.close()

    def test_one_json_object_per_line(self, log_file: Path, clock) -> None:
        steps = [
            BootstrapStep("flaky", _boom),
            BootstrapStep("critical", _boom, Criticality.FATAL),
        ]
        BootstrapSequencer(steps, clock=clock).run([])

        records = [json.loads(line) for line in log_file.read_text().splitlines()]
        step_records = [r for r in records if "step" in r]
        assert [(r["step"], r["status"], r["level"]) for r in step_records] == [
            ("flaky", "failed", "WARNING"),
            ("critical", "failed", "ERROR"),
        ]
        assert step_records[1]["criticality"] == "fatal"
        assert all("timestamp" in r and "logger" in r for r in records)
        assert records[-1]["message"] == "Bootstrap aborted at critical"

    def test_creates_parent_directory(self, log_file: Path) -> None:
        assert log_file.parent.is_dir()
