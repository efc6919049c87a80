"""Default instance bootstrap steps.

Every step is idempotent: re-running the sequence on an already configured
host only rewrites files whose content changed and skips installs that are
already present.
"""

from __future__ import annotations

import contextlib
import html
import io
import json
import logging
import os
import platform
import shutil
import socket
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import boto3
import requests
from ruamel.yaml import YAML

from infra_provisioner.bootstrap.sequencer import BootstrapStep, Criticality, StepError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from infra_provisioner.bootstrap.params import BootstrapParams

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
COMPOSE_URL = (
    "https://github.com/docker/compose/releases/download/"
    "{version}/docker-compose-{system}-{machine}"
)
DEFAULT_DB_PORT = 3306


class CommandError(StepError):
    def __init__(self, args: Sequence[str], returncode: int, output: str) -> None:
        self.args_ = list(args)
        self.returncode = returncode
        self.output = output
        detail = f": {output.strip().splitlines()[-1]}" if output.strip() else ""
        super().__init__(f"{' '.join(args)} exited with {returncode}{detail}")


class CommandRunner:
    """Thin wrapper around :func:`subprocess.run` so steps can be tested."""

    def __init__(self, *, timeout: float = 600.0) -> None:
        self._timeout = timeout

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        logger.debug("Running %s", " ".join(args))
        try:
            proc = subprocess.run(
                list(args),
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout or self._timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise StepError(f"{args[0]}: command not found") from e
        except subprocess.TimeoutExpired as e:
            raise StepError(f"{' '.join(args)} timed out after {e.timeout:g}s") from e
        if check and proc.returncode != 0:
            raise CommandError(args, proc.returncode, proc.stderr or proc.stdout)
        return proc

    def which(self, name: str) -> str | None:
        return shutil.which(name)


@dataclass
class BootstrapContext:
    """Everything a step needs. Steps record discovered facts in ``metadata``."""

    params: BootstrapParams
    runner: CommandRunner = field(default_factory=CommandRunner)
    http: requests.Session = field(default_factory=requests.Session)
    secrets_client_factory: Callable[[str | None], Any] | None = None
    metadata: dict[str, str] = field(
        default_factory=lambda: {
            "instance_id": UNKNOWN,
            "region": UNKNOWN,
            "availability_zone": UNKNOWN,
        }
    )

    @property
    def region(self) -> str | None:
        if self.params.region:
            return self.params.region
        region = self.metadata.get("region")
        return region if region and region != UNKNOWN else None

    def secrets_client(self) -> Any:
        if self.secrets_client_factory is not None:
            return self.secrets_client_factory(self.region)
        return boto3.client("secretsmanager", region_name=self.region)


def write_if_changed(path: Path, content: str, *, mode: int | None = None) -> bool:
    """Atomically write *content* to *path* unless it already holds it."""
    with contextlib.suppress(FileNotFoundError):
        if path.read_text(encoding="utf-8") == content:
            return False
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        if mode is not None:
            os.chmod(tmp, mode)
        Path(tmp).replace(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            Path(tmp).unlink()
    return True


def _written(changed: bool) -> str:
    return "written" if changed else "unchanged"


# ── Packages and runtime ────────────────────────────────────────────


def update_packages(ctx: BootstrapContext) -> str:
    ctx.runner.run(["yum", "update", "-y"])
    return "packages updated"


def install_base_packages(ctx: BootstrapContext) -> str:
    ctx.runner.run(["yum", "install", "-y", *ctx.params.base_packages])
    return ", ".join(ctx.params.base_packages)


def install_docker(ctx: BootstrapContext) -> str:
    installed = ctx.runner.which("docker") is not None
    if not installed:
        ctx.runner.run(["yum", "install", "-y", "docker"])
    ctx.runner.run(["systemctl", "enable", "--now", "docker"])
    ctx.runner.run(["usermod", "-a", "-G", "docker", ctx.params.app_user])
    return "already installed" if installed else "installed"


def verify_docker(ctx: BootstrapContext) -> str:
    if ctx.runner.which("docker") is None:
        raise StepError("docker is not installed")
    proc = ctx.runner.run(["docker", "--version"])
    return proc.stdout.strip()


def install_compose(ctx: BootstrapContext) -> str:
    target = ctx.params.compose_path
    if target.exists():
        proc = ctx.runner.run([str(target), "version"], check=False)
        if proc.returncode == 0:
            return "already installed"

    url = COMPOSE_URL.format(
        version=ctx.params.compose_version,
        system=platform.system().lower(),
        machine=platform.machine(),
    )
    try:
        resp = ctx.http.get(url, timeout=60, stream=True)
        resp.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise StepError(f"compose download failed: {e}") from e

    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            for chunk in resp.iter_content(chunk_size=1 << 16):
                f.write(chunk)
        os.chmod(tmp, 0o755)
        Path(tmp).replace(target)
    finally:
        with contextlib.suppress(FileNotFoundError):
            Path(tmp).unlink()
    return f"installed {ctx.params.compose_version}"


# ── Application layout ──────────────────────────────────────────────


def create_directories(ctx: BootstrapContext) -> str:
    app_dir = ctx.params.app_dir
    for path in (app_dir, app_dir / "logs", app_dir / "static"):
        path.mkdir(parents=True, exist_ok=True)
    return str(app_dir)


def fetch_metadata(ctx: BootstrapContext) -> str:
    """Read instance identity from the metadata service (IMDSv2 token first)."""
    base = ctx.params.metadata_url.rstrip("/")
    headers: dict[str, str] = {}
    try:
        resp = ctx.http.put(
            f"{base}/api/token",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": "300"},
            timeout=2,
        )
        if resp.ok:
            headers["X-aws-ec2-metadata-token"] = resp.text
    except requests.exceptions.RequestException:
        logger.debug("No IMDSv2 token; falling back to plain requests")

    paths = {
        "instance_id": "meta-data/instance-id",
        "region": "meta-data/placement/region",
        "availability_zone": "meta-data/placement/availability-zone",
    }
    missing = []
    for key, path in paths.items():
        try:
            resp = ctx.http.get(f"{base}/{path}", headers=headers, timeout=2)
            resp.raise_for_status()
        except requests.exceptions.RequestException:
            missing.append(key)
            continue
        ctx.metadata[key] = resp.text.strip()

    if len(missing) == len(paths):
        raise StepError("instance metadata service unreachable")
    if missing:
        return f"partial metadata, missing {', '.join(missing)}"
    return ctx.metadata["instance_id"]


def render_env_file(ctx: BootstrapContext) -> str:
    params = ctx.params
    values = {
        "ENVIRONMENT": params.environment,
        "LOG_LEVEL": "INFO",
        "APP_PORT": "80",
        "HEALTH_CHECK_PORT": str(params.health_port),
        "INSTANCE_ID": ctx.metadata["instance_id"],
        "REGION": ctx.region or UNKNOWN,
        "AVAILABILITY_ZONE": ctx.metadata["availability_zone"],
    }
    if params.db_endpoint:
        values["DB_ENDPOINT"] = params.db_endpoint
    if params.secret_ref:
        values["DB_SECRET_REF"] = params.secret_ref
    return "".join(f"{k}={v}\n" for k, v in values.items())


def write_env_file(ctx: BootstrapContext) -> str:
    changed = write_if_changed(ctx.params.app_dir / ".env", render_env_file(ctx), mode=0o640)
    return _written(changed)


def compose_document(ctx: BootstrapContext) -> dict[str, Any]:
    """The two-service application stack: nginx front end and redis cache."""
    healthcheck = {"interval": "30s", "timeout": "10s", "retries": 3}
    app: dict[str, Any] = {
        "image": "nginx:alpine",
        "ports": ["80:80"],
        "env_file": [".env"],
        "volumes": [
            "./logs:/var/log/nginx",
            "./nginx.conf:/etc/nginx/nginx.conf:ro",
            "./static:/usr/share/nginx/html",
        ],
        "restart": "unless-stopped",
        "depends_on": ["redis"],
        "healthcheck": {
            "test": [
                "CMD", "wget", "--quiet", "--tries=1", "--spider", "http://localhost/app-health"
            ],
            **healthcheck,
        },
    }
    if ctx.params.log_group:
        app["logging"] = {
            "driver": "awslogs",
            "options": {
                "awslogs-group": ctx.params.log_group,
                "awslogs-region": ctx.region or UNKNOWN,
                "awslogs-stream": f"{ctx.metadata['instance_id']}-app",
            },
        }
    redis = {
        "image": "redis:7-alpine",
        "ports": ["6379:6379"],
        "restart": "unless-stopped",
        "command": "redis-server --appendonly yes --maxmemory 128mb --maxmemory-policy allkeys-lru",
        "volumes": ["redis_data:/data"],
        "healthcheck": {"test": ["CMD", "redis-cli", "ping"], **healthcheck},
    }
    return {
        "services": {"app": app, "redis": redis},
        "volumes": {"redis_data": {"driver": "local"}},
    }


def write_compose_file(ctx: BootstrapContext) -> str:
    yaml = YAML(typ="safe", pure=True)
    yaml.default_flow_style = False
    buf = io.StringIO()
    yaml.dump(compose_document(ctx), buf)
    return _written(write_if_changed(ctx.params.app_dir / "docker-compose.yml", buf.getvalue()))


NGINX_CONF = """\
events {
    worker_connections 1024;
}

http {
    include /etc/nginx/mime.types;
    default_type application/octet-stream;

    access_log /var/log/nginx/access.log;
    error_log /var/log/nginx/error.log warn;

    sendfile on;
    keepalive_timeout 65;
    gzip on;
    gzip_types text/plain text/css application/javascript application/json;

    server {
        listen 80;
        server_name localhost;

        location / {
            root /usr/share/nginx/html;
            index index.html;
            try_files $uri $uri/ /index.html;
        }

        location /app-health {
            access_log off;
            default_type application/json;
            return 200 '{"status":"healthy","service":"nginx","timestamp":"$time_iso8601"}\\n';
        }

        location /api/ {
            default_type application/json;
            return 503 '{"error":"API not configured yet","status":"503"}\\n';
        }
    }
}
"""


def write_nginx_conf(ctx: BootstrapContext) -> str:
    return _written(write_if_changed(ctx.params.app_dir / "nginx.conf", NGINX_CONF))


def render_static_page(ctx: BootstrapContext) -> str:
    env = html.escape(ctx.params.environment)
    instance = html.escape(ctx.metadata["instance_id"])
    zone = html.escape(ctx.metadata["availability_zone"])
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        '<head><meta charset="UTF-8"><title>Application</title></head>\n'
        "<body>\n"
        f"  <h1>Application ({env})</h1>\n"
        f"  <p>Served by instance {instance} in {zone}.</p>\n"
        '  <p><a href="/app-health">Application health</a></p>\n'
        "</body>\n"
        "</html>\n"
    )


def write_static_page(ctx: BootstrapContext) -> str:
    path = ctx.params.app_dir / "static" / "index.html"
    return _written(write_if_changed(path, render_static_page(ctx)))


def set_ownership(ctx: BootstrapContext) -> str:
    user = ctx.params.app_user
    ctx.runner.run(["chown", "-R", f"{user}:{user}", str(ctx.params.app_dir)])
    ctx.runner.run(["chmod", "755", str(ctx.params.app_dir)])
    return user


def start_containers(ctx: BootstrapContext) -> str:
    ctx.runner.run([str(ctx.params.compose_path), "up", "-d"], cwd=ctx.params.app_dir)
    return "containers started"


# ── Database reachability ───────────────────────────────────────────


def parse_endpoint(endpoint: str) -> tuple[str, int]:
    host, sep, port = endpoint.rpartition(":")
    if not sep:
        return endpoint, DEFAULT_DB_PORT
    try:
        return host, int(port)
    except ValueError as e:
        raise StepError(f"invalid database endpoint {endpoint!r}") from e


def check_database(ctx: BootstrapContext) -> str:
    """Fetch the database credentials secret, then check the endpoint accepts TCP connections.

    Only the fact that the secret was readable is logged, never its value.
    """
    params = ctx.params
    if not params.db_endpoint:
        return "no database configured"

    if params.secret_ref:
        try:
            resp = ctx.secrets_client().get_secret_value(SecretId=params.secret_ref)
        except Exception as e:
            raise StepError(f"cannot read secret {params.secret_ref}: {type(e).__name__}") from e
        secret = resp.get("SecretString") or ""
        with contextlib.suppress(json.JSONDecodeError):
            doc = json.loads(secret)
            if isinstance(doc, dict) and "password" not in doc:
                raise StepError(f"secret {params.secret_ref} has no password field")

    host, port = parse_endpoint(params.db_endpoint)
    try:
        with socket.create_connection((host, port), timeout=5):
            pass
    except OSError as e:
        raise StepError(f"database {host}:{port} unreachable: {e}") from e
    return f"{host}:{port} reachable"


# ── Health service ──────────────────────────────────────────────────


def health_unit(ctx: BootstrapContext) -> str:
    params = ctx.params
    exe = shutil.which("infra-provisioner")
    command = [exe] if exe else [sys.executable, "-m", "infra_provisioner"]
    command += [
        "bootstrap",
        "health",
        "--port",
        str(params.health_port),
        "--environment",
        params.environment,
    ]
    for service in params.monitored_services:
        command += ["--service", service]
    return (
        "[Unit]\n"
        "Description=Instance health endpoint\n"
        "After=network.target docker.service\n"
        "\n"
        "[Service]\n"
        "Type=simple\n"
        f"User={params.app_user}\n"
        f"WorkingDirectory={params.app_dir}\n"
        f"ExecStart={' '.join(command)}\n"
        "Restart=always\n"
        "RestartSec=10\n"
        "\n"
        "[Install]\n"
        "WantedBy=multi-user.target\n"
    )


def start_health_service(ctx: BootstrapContext) -> str:
    unit = ctx.params.health_unit
    path = ctx.params.systemd_dir / f"{unit}.service"
    if write_if_changed(path, health_unit(ctx)):
        ctx.runner.run(["systemctl", "daemon-reload"])
    ctx.runner.run(["systemctl", "enable", unit])
    ctx.runner.run(["systemctl", "restart", unit])
    return f"{unit} on port {ctx.params.health_port}"


def default_steps() -> list[BootstrapStep[BootstrapContext]]:
    fatal, best_effort = Criticality.FATAL, Criticality.BEST_EFFORT
    return [
        BootstrapStep("update-packages", update_packages, best_effort),
        BootstrapStep("install-base-packages", install_base_packages, best_effort),
        BootstrapStep("install-docker", install_docker, best_effort),
        BootstrapStep("verify-docker", verify_docker, fatal),
        BootstrapStep("install-compose", install_compose, best_effort),
        BootstrapStep("create-directories", create_directories, fatal),
        BootstrapStep("fetch-metadata", fetch_metadata, best_effort),
        BootstrapStep("write-env-file", write_env_file, fatal),
        BootstrapStep("write-compose-file", write_compose_file, fatal),
        BootstrapStep("write-nginx-conf", write_nginx_conf, best_effort),
        BootstrapStep("write-static-page", write_static_page, best_effort),
        BootstrapStep("set-ownership", set_ownership, best_effort),
        BootstrapStep("start-containers", start_containers, best_effort),
        BootstrapStep("check-database", check_database, best_effort),
        BootstrapStep("start-health-service", start_health_service, fatal),
    ]
