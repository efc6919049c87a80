from __future__ import annotations

from pathlib import Path

import pytest

from infra_provisioner.core.errors import ProviderPermanentError
from infra_provisioner.core.provider import LocalProvider, Provider


class TestLocalProvider:
    def test_create_assigns_prefixed_id_and_outputs(self) -> None:
        provider = LocalProvider(region="eu-west-1", account_id="123456789012")
        id, attrs = provider.create("aws_vpc", {"name": "main", "cidr_block": "10.0.0.0/16"})

        assert id.startswith("vpc-")
        assert attrs["cidr_block"] == "10.0.0.0/16"
        assert attrs["arn"] == f"arn:aws:vpc:eu-west-1:123456789012:aws_vpc/{id}"
        assert attrs["default_route_table_id"].startswith("rtb-")
        assert attrs["status"] == "available"

    def test_natural_ids(self) -> None:
        provider = LocalProvider()
        id, attrs = provider.create("aws_s3_bucket", {"name": "assets", "bucket": "shop-assets"})
        assert id == "shop-assets"
        assert attrs["bucket_domain_name"] == "shop-assets.s3.local"

        with pytest.raises(ProviderPermanentError, match="already exists"):
            provider.create("aws_s3_bucket", {"name": "assets", "bucket": "shop-assets"})

    def test_database_endpoint(self) -> None:
        provider = LocalProvider()
        _, attrs = provider.create("aws_db_instance", {"name": "db", "engine": "postgres"})
        assert attrs["port"] == 5432
        assert attrs["endpoint"] == f"{attrs['address']}:5432"

    def test_update_keeps_computed_outputs(self) -> None:
        provider = LocalProvider()
        id, created = provider.create("aws_launch_template", {"name": "app", "image_id": "ami-1"})
        updated = provider.update("aws_launch_template", id, {"name": "app", "image_id": "ami-2"})

        assert updated["image_id"] == "ami-2"
        assert updated["arn"] == created["arn"]
        assert updated["latest_version"] == 2

    def test_update_unknown_object(self) -> None:
        with pytest.raises(ProviderPermanentError, match="not found"):
            LocalProvider().update("aws_vpc", "vpc-nope", {})

    def test_delete_is_idempotent(self) -> None:
        provider = LocalProvider()
        id, _ = provider.create("aws_vpc", {"name": "main"})
        provider.delete("aws_vpc", id)
        provider.delete("aws_vpc", id)
        assert provider.describe("aws_vpc", id) is None

    def test_describe_checks_type(self) -> None:
        provider = LocalProvider()
        id, _ = provider.create("aws_vpc", {"name": "main"})
        assert provider.describe("aws_subnet", id) is None

    def test_ready_after_counts_describes(self) -> None:
        provider = LocalProvider(ready_after=1)
        id, attrs = provider.create("aws_instance", {"name": "web"})
        assert not provider.is_ready("aws_instance", attrs)

        first = provider.describe("aws_instance", id)
        assert first is not None
        assert first["status"] == "pending"
        second = provider.describe("aws_instance", id)
        assert second is not None
        assert provider.is_ready("aws_instance", second)

    def test_persists_to_file(self, tmp_path: Path) -> None:
        path = tmp_path / "cloud.json"
        id, _ = LocalProvider(path).create("aws_vpc", {"name": "main"})

        reopened = LocalProvider(path)
        assert reopened.ids("aws_vpc") == [id]

    def test_tamper_and_forget(self) -> None:
        provider = LocalProvider()
        id, _ = provider.create("aws_vpc", {"name": "main", "cidr_block": "10.0.0.0/16"})
        provider.tamper(id, cidr_block="10.9.0.0/16")
        described = provider.describe("aws_vpc", id)
        assert described is not None
        assert described["cidr_block"] == "10.9.0.0/16"

        provider.forget(id)
        assert provider.ids() == []


def test_base_provider_is_abstract() -> None:
    provider = Provider()
    with pytest.raises(NotImplementedError):
        provider.create("aws_vpc", {})
    assert provider.is_ready("aws_vpc", {}) is True
