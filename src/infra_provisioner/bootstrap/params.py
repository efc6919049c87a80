"""Boot parameters for the instance bootstrap."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BootstrapParams(BaseSettings):
    """Parameters handed to an instance at boot.

    Fields can be passed as CLI options (constructor kwargs) or environment
    variables with the ``BOOTSTRAP_`` prefix. Constructor kwargs take
    precedence.

    Credentials are never boot parameters: ``secret_ref`` names the secret
    that the database check fetches at boot.
    """

    model_config = SettingsConfigDict(env_prefix="BOOTSTRAP_")

    environment: str = "dev"
    region: str | None = None
    log_group: str | None = None
    secret_ref: str | None = None
    db_endpoint: str | None = None

    app_dir: Path = Path("/opt/app")
    app_user: str = "ec2-user"
    health_port: int = Field(default=8080, ge=1, le=65535)
    health_unit: str = "infra-health"
    monitored_services: list[str] = Field(default_factory=lambda: ["docker"])

    log_path: Path = Path("/var/log/infra-bootstrap.log")
    systemd_dir: Path = Path("/etc/systemd/system")
    compose_path: Path = Path("/usr/local/bin/docker-compose")
    compose_version: str = "v2.20.0"
    metadata_url: str = "http://169.254.169.254/latest"
    base_packages: list[str] = Field(
        default_factory=lambda: ["python3", "python3-pip", "wget", "curl", "unzip"]
    )
