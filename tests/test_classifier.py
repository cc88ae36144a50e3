"""Tests for metadata classification."""

from clickhouse_dump.backup.classifier import classify, read_metadata_dir
from clickhouse_dump.backup.filetree import INNER_TABLE_PREFIX
from clickhouse_dump.backup.models import ObjectKind

from conftest import CUSTOMERS_SQL, ORDERS_MV_SQL, ORDERS_SQL


class TestClassify:
    """Verify prefix-based classification."""

    def test_table(self):
        obj = classify(ORDERS_SQL, "orders.sql")

        assert obj.kind == ObjectKind.TABLE
        assert obj.object_name == "orders"
        assert obj.file_name == "orders.sql"
        assert obj.definition == ORDERS_SQL

    def test_materialized_view(self):
        obj = classify(ORDERS_MV_SQL, "orders_mv.sql")

        assert obj.kind == ObjectKind.VIEW
        assert obj.object_name == "orders_mv"

    def test_plain_view_is_other(self):
        """Only materialized views get the VIEW kind."""
        obj = classify("CREATE VIEW recent AS SELECT 1", "recent.sql")

        assert obj.kind == ObjectKind.OTHER

    def test_dictionary_is_other(self):
        obj = classify("CREATE DICTIONARY regions (id UInt64) PRIMARY KEY id", "regions.sql")

        assert obj.kind == ObjectKind.OTHER

    def test_case_sensitive(self):
        """Lowercase keywords do not match."""
        obj = classify("create table orders (id UInt64) ENGINE = Log", "orders.sql")

        assert obj.kind == ObjectKind.OTHER

    def test_unconverted_attach_is_other(self):
        obj = classify("ATTACH TABLE orders (id UInt64) ENGINE = Log", "orders.sql")

        assert obj.kind == ObjectKind.OTHER

    def test_only_trailing_suffix_removed(self):
        obj = classify(ORDERS_SQL, "orders.sql.sql")

        assert obj.object_name == "orders.sql"


class TestReadMetadataDir:
    """Verify directory reading."""

    def test_sorted_and_filtered(self, tmp_path):
        """Only top-level .sql files, sorted, without view inner tables."""
        (tmp_path / "orders.sql").write_text(ORDERS_SQL)
        (tmp_path / "customers.sql").write_text(CUSTOMERS_SQL)
        (tmp_path / "orders_mv.sql").write_text(ORDERS_MV_SQL)
        (tmp_path / f"{INNER_TABLE_PREFIX}orders_mv.sql").write_text("CREATE TABLE x")
        (tmp_path / "README").write_text("not metadata")
        (tmp_path / "nested.sql").mkdir()

        objects, failures = read_metadata_dir(tmp_path)

        assert failures == []
        assert [o.file_name for o in objects] == ["customers.sql", "orders.sql", "orders_mv.sql"]
        assert [o.kind for o in objects] == [ObjectKind.TABLE, ObjectKind.TABLE, ObjectKind.VIEW]

    def test_unreadable_file_is_failure(self, tmp_path):
        """A file that cannot be decoded is recorded and skipped."""
        (tmp_path / "orders.sql").write_text(ORDERS_SQL)
        (tmp_path / "broken.sql").write_bytes(b"\xff\xfe\xfa not utf-8")

        objects, failures = read_metadata_dir(tmp_path)

        assert [o.object_name for o in objects] == ["orders"]
        assert len(failures) == 1
        assert failures[0].kind == "copy"
        assert failures[0].item == "broken.sql"

    def test_empty_directory(self, tmp_path):
        assert read_metadata_dir(tmp_path) == ([], [])
