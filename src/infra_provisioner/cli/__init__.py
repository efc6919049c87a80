"""CLI application for infra-provisioner."""

from __future__ import annotations

import logging
import os
import sys
from typing import Literal

import typer

from infra_provisioner import __version__

app = typer.Typer(
    name="infra-provisioner",
    no_args_is_help=True,
    add_completion=False,
)

LogFormat = Literal["text", "json"]

_TEXT_FORMAT = "%(levelname)s %(name)s: %(message)s"
_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"infra-provisioner {__version__}")
        raise typer.Exit


def _level_from(verbose: int) -> int | None:
    """``INFRA_LOG`` wins over ``-v`` flags; None means stay silent."""
    name = os.environ.get("INFRA_LOG", "").upper()
    if name:
        if name not in _LEVELS:
            print(
                f"WARNING: INFRA_LOG={name!r} is not one of {', '.join(sorted(_LEVELS))}; "
                "using INFO",
                file=sys.stderr,
            )
            return logging.INFO
        return getattr(logging, name)
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return None


def _configure_logging(verbose: int, log_format: LogFormat = "text") -> None:
    """Route ``infra_provisioner`` logs to stderr, as text or JSON lines."""
    level = _level_from(verbose)
    if level is None:
        return
    handler = logging.StreamHandler(sys.stderr)
    if log_format == "json":
        from infra_provisioner.bootstrap.sequencer import JsonLinesFormatter

        handler.setFormatter(JsonLinesFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    logging.basicConfig(level=logging.WARNING, handlers=[handler], force=True)
    logging.getLogger("infra_provisioner").setLevel(level)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase log verbosity (-v info, -vv debug).",
    ),
    log_format: str = typer.Option(
        "text",
        "--log-format",
        help="Log line format on stderr: text or json.",
        envvar="INFRA_LOG_FORMAT",
    ),
) -> None:
    """Terraform-style infrastructure provisioning with instance bootstrap."""
    _ = version
    if log_format not in ("text", "json"):
        raise typer.BadParameter("expected 'text' or 'json'", param_hint="--log-format")
    _configure_logging(verbose, log_format)  # type: ignore[arg-type]


# Commands register themselves on ``app`` at import time.
from infra_provisioner.cli import bootstrap as _bootstrap  # noqa: E402, F401
from infra_provisioner.cli import commands as _commands  # noqa: E402, F401
