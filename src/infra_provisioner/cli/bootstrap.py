"""``infra-provisioner bootstrap`` commands, run on the instance itself."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import typer

from infra_provisioner.cli import app
from infra_provisioner.cli.errors import handle_error

bootstrap_app = typer.Typer(help="Configure an instance at boot.", no_args_is_help=True)
app.add_typer(bootstrap_app, name="bootstrap")

_STATUS_MARKS = {"ok": ("✓", typer.colors.GREEN), "failed": ("✗", typer.colors.RED)}


def _params(**overrides: Any):
    from infra_provisioner.bootstrap.params import BootstrapParams

    return BootstrapParams(**{k: v for k, v in overrides.items() if v is not None})


@bootstrap_app.command("run")
def run(
    environment: Annotated[
        str | None, typer.Option("--environment", "-e", help="Deployment environment name.")
    ] = None,
    log_group: Annotated[
        str | None, typer.Option("--log-group", help="Log group for container logs.")
    ] = None,
    secret_ref: Annotated[
        str | None, typer.Option("--secret-ref", help="Secret holding database credentials.")
    ] = None,
    db_endpoint: Annotated[
        str | None, typer.Option("--db-endpoint", help="Database endpoint (host:port).")
    ] = None,
    region: Annotated[str | None, typer.Option("--region", help="Cloud region.")] = None,
    app_dir: Annotated[
        Path | None, typer.Option("--app-dir", help="Application directory.")
    ] = None,
    log_path: Annotated[
        Path | None, typer.Option("--log-path", help="Structured JSON-lines log file.")
    ] = None,
    health_port: Annotated[
        int | None, typer.Option("--health-port", help="Port of the health endpoint.")
    ] = None,
) -> None:
    """Run the bootstrap steps. Exits non-zero when a fatal step fails."""
    from pydantic import ValidationError as PydanticValidationError

    from infra_provisioner.bootstrap import configure_json_log, run_bootstrap

    try:
        params = _params(
            environment=environment,
            log_group=log_group,
            secret_ref=secret_ref,
            db_endpoint=db_endpoint,
            region=region,
            app_dir=app_dir,
            log_path=log_path,
            health_port=health_port,
        )
    except PydanticValidationError as exc:
        typer.echo(typer.style(f"Invalid bootstrap parameters: {exc}", fg="red"), err=True)
        raise typer.Exit(code=1) from None

    try:
        configure_json_log(params.log_path)
    except OSError as exc:
        typer.echo(f"WARNING: cannot write {params.log_path}: {exc}", err=True)

    try:
        report = run_bootstrap(params)
    except Exception as exc:
        raise typer.Exit(code=handle_error(exc)) from None

    for result in report.results:
        mark, color = _STATUS_MARKS.get(result.status, ("-", None))
        line = f"{mark} {result.name}"
        if result.message:
            line += f": {result.message}"
        typer.echo(typer.style(line, fg=color) if color else line)

    if report.aborted_at is not None:
        typer.echo(
            typer.style(f"Bootstrap aborted at {report.aborted_at}.", fg="red"), err=True
        )
    elif report.failed:
        typer.echo(f"Bootstrap complete with {len(report.failed)} best-effort failure(s).")
    else:
        typer.echo("Bootstrap complete.")
    raise typer.Exit(code=report.exit_code)


@bootstrap_app.command("health")
def health(
    port: Annotated[int, typer.Option("--port", "-p", help="Port to listen on.")] = 8080,
    bind: Annotated[str, typer.Option("--bind", help="Address to bind to.")] = "0.0.0.0",
    environment: Annotated[
        str | None, typer.Option("--environment", "-e", help="Deployment environment name.")
    ] = None,
    services: Annotated[
        list[str] | None,
        typer.Option("--service", help="systemd unit to report on. Repeatable."),
    ] = None,
) -> None:
    """Serve the instance health endpoint until interrupted."""
    from infra_provisioner.bootstrap.health import HealthServer, HealthStatus, lookup_instance_id

    params = _params(environment=environment)
    status = HealthStatus(
        environment=params.environment,
        instance_id=lookup_instance_id(params.metadata_url),
        services=services or params.monitored_services,
    )
    try:
        server = HealthServer(status, bind=bind, port=port)
    except OSError as exc:
        typer.echo(typer.style(f"Cannot listen on {bind}:{port}: {exc}", fg="red"), err=True)
        raise typer.Exit(code=1) from None
    server.serve_forever()
