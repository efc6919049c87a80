"""Sequential, criticality-aware step runner for instance bootstrap.

Steps run one at a time in order. A failing best-effort step is logged as a
warning and the sequence moves on; a failing fatal step aborts the run and
the remaining steps are reported as not run.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

C = TypeVar("C")


class Criticality(str, Enum):
    FATAL = "fatal"
    BEST_EFFORT = "best-effort"


class StepError(Exception):
    """Raised by a step action to report a failure with a clean message."""


@dataclass(frozen=True)
class BootstrapStep(Generic[C]):
    """One idempotent unit of boot work.

    ``action`` receives the run context and may return a short message that
    ends up in the log (e.g. ``"already installed"``).
    """

    name: str
    action: Callable[[C], str | None]
    criticality: Criticality = Criticality.BEST_EFFORT


@dataclass
class StepResult:
    name: str
    criticality: Criticality
    status: str  # "ok", "failed" or "not-run"
    message: str = ""
    duration: float = 0.0


@dataclass
class BootstrapReport:
    results: list[StepResult] = field(default_factory=list)
    aborted_at: str | None = None

    @property
    def ok(self) -> bool:
        return self.aborted_at is None and not self.failed

    @property
    def failed(self) -> list[StepResult]:
        return [r for r in self.results if r.status == "failed"]

    @property
    def exit_code(self) -> int:
        return 1 if self.aborted_at is not None else 0


class BootstrapSequencer(Generic[C]):
    """Runs bootstrap steps in order against one context."""

    def __init__(
        self,
        steps: Sequence[BootstrapStep[C]],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._steps = list(steps)
        self._clock = clock

    def run(self, ctx: C) -> BootstrapReport:
        report = BootstrapReport()
        logger.info("Bootstrap started: %d steps", len(self._steps))

        for index, step in enumerate(self._steps):
            started = self._clock()
            extra = {"step": step.name, "criticality": step.criticality.value}
            failed = extra | {"status": "failed"}
            try:
                message = step.action(ctx) or ""
            except Exception as exc:
                duration = self._clock() - started
                report.results.append(
                    StepResult(step.name, step.criticality, "failed", str(exc), duration)
                )
                if step.criticality is Criticality.FATAL:
                    logger.error(
                        "Step %s failed: %s; aborting", step.name, exc, extra=failed
                    )
                    report.aborted_at = step.name
                    for rest in self._steps[index + 1 :]:
                        report.results.append(StepResult(rest.name, rest.criticality, "not-run"))
                    break
                logger.warning(
                    "Step %s failed: %s; continuing", step.name, exc, extra=failed
                )
                continue

            duration = self._clock() - started
            report.results.append(StepResult(step.name, step.criticality, "ok", message, duration))
            logger.info(
                "Step %s: ok%s",
                step.name,
                f" ({message})" if message else "",
                extra=extra | {"status": "ok", "duration": round(duration, 3)},
            )

        if report.aborted_at is not None:
            logger.error("Bootstrap aborted at %s", report.aborted_at)
        else:
            logger.info("Bootstrap finished: %d step(s) failed", len(report.failed))
        return report


# ── Structured log ──────────────────────────────────────────────────

_EXTRA_FIELDS = ("step", "criticality", "status", "duration")


class JsonLinesFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message and step fields."""

    def format(self, record: logging.LogRecord) -> str:
        doc: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                doc[name] = value
        if record.exc_info:
            doc["exception"] = self.formatException(record.exc_info)
        return json.dumps(doc)


def configure_json_log(path: Path, *, logger_name: str = "infra_provisioner") -> logging.Handler:
    """Append JSON-lines records from *logger_name* to *path*. Returns the handler."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(JsonLinesFormatter())
    handler.setLevel(logging.INFO)
    target = logging.getLogger(logger_name)
    target.addHandler(handler)
    if target.getEffectiveLevel() > logging.INFO:
        target.setLevel(logging.INFO)
    return handler
