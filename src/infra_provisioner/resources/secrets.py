"""Secret resource model."""

from __future__ import annotations

from typing import ClassVar, Literal

from pydantic import Field

from infra_provisioner.resources.base import Resource


class SecretResource(Resource):
    """A secrets-manager entry.

    The secret value is generated provider-side when ``generate_password`` is
    set; it is never stored in the state file.
    """

    resource_type: ClassVar[str] = "aws_secretsmanager_secret"

    type: Literal["aws_secretsmanager_secret"] = "aws_secretsmanager_secret"
    description: str = ""
    recovery_window_in_days: int = Field(default=7, ge=0, le=30)
    generate_password: bool = True
    password_length: int = Field(default=24, ge=8, le=128)
    # Some engines reject punctuation in master passwords.
    exclude_punctuation: bool = True
