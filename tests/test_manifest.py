"""Tests for the backup manifest and offline validation."""

import json

from clickhouse_dump.backup.manifest import (
    MANIFEST_VERSION,
    read_manifest,
    validate_backup,
    write_manifest,
)
from clickhouse_dump.backup.models import BackupSummary, BackupTree

from conftest import write_part


def _summary(**kwargs) -> BackupSummary:
    defaults = {"databases": ["shop"], "partitions_frozen": 4, "tables_copied": 2}
    return BackupSummary(**{**defaults, **kwargs})


class TestManifestFile:
    """Verify manifest.json content."""

    def test_write_and_read(self, tmp_path):
        tree = BackupTree(root=tmp_path)

        path = write_manifest(tree, _summary(tables_incomplete=["shop.customers"]), label="nightly")

        assert path == tmp_path / "manifest.json"
        manifest = read_manifest(tree)
        assert manifest["metadata"]["version"] == MANIFEST_VERSION
        assert manifest["metadata"]["freeze_label"] == "nightly"
        assert "created_at" in manifest["metadata"]
        assert manifest["databases"] == ["shop"]
        assert manifest["partitions_frozen"] == 4
        assert manifest["tables_incomplete"] == ["shop.customers"]

    def test_read_missing(self, tmp_path):
        assert read_manifest(BackupTree(root=tmp_path)) is None


class TestValidateBackup:
    """Verify layout checks."""

    def test_valid_tree(self, shop_backup):
        write_manifest(BackupTree(root=shop_backup), _summary())

        report = validate_backup(shop_backup)

        assert report == {"valid": True, "errors": [], "warnings": []}

    def test_missing_manifest_is_warning(self, shop_backup):
        report = validate_backup(shop_backup)

        assert report["valid"] is True
        assert len(report["warnings"]) == 1

    def test_missing_directory(self, tmp_path):
        report = validate_backup(tmp_path / "nope")

        assert report["valid"] is False
        assert "not found" in report["errors"][0]

    def test_missing_metadata_root(self, tmp_path):
        (tmp_path / "partitions").mkdir()

        report = validate_backup(tmp_path)

        assert report["valid"] is False
        assert any("metadata" in e for e in report["errors"])

    def test_partitions_without_metadata(self, shop_backup):
        """Every backed-up table needs its create statement."""
        (shop_backup / "metadata" / "shop" / "customers.sql").unlink()

        report = validate_backup(shop_backup)

        assert report["valid"] is False
        assert report["errors"] == ["shop.customers has partitions but no metadata file"]

    def test_incomplete_tables_are_warnings(self, shop_backup):
        write_manifest(BackupTree(root=shop_backup), _summary(tables_incomplete=["shop.orders"]))

        report = validate_backup(shop_backup)

        assert report["valid"] is True
        assert report["warnings"] == ["Table shop.orders was not copied completely"]

    def test_invalid_manifest_json(self, shop_backup):
        (shop_backup / "manifest.json").write_text("{not json")

        report = validate_backup(shop_backup)

        assert report["valid"] is False
        assert report["errors"][0].startswith("Invalid manifest JSON")

    def test_unsupported_version(self, shop_backup):
        (shop_backup / "manifest.json").write_text(json.dumps({"metadata": {"version": "9.9"}}))

        report = validate_backup(shop_backup)

        assert report["valid"] is False

    def test_single_database(self, shop_backup):
        write_manifest(BackupTree(root=shop_backup), _summary())

        assert validate_backup(shop_backup, database="shop")["valid"] is True
        assert validate_backup(shop_backup, database="other")["valid"] is False

    def test_empty_table_directory_is_warning(self, shop_backup):
        write_manifest(BackupTree(root=shop_backup), _summary())
        (shop_backup / "metadata" / "shop" / "events.sql").write_text("CREATE TABLE events (x UInt8) ENGINE = Log")
        (shop_backup / "partitions" / "shop" / "events").mkdir()
        write_part(shop_backup / "partitions" / "shop" / "orders", "202403_4_4_0")

        report = validate_backup(shop_backup)

        assert report["valid"] is True
        assert report["warnings"] == ["shop.events has no partition directories"]
