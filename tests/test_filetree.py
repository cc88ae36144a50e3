"""Tests for the filesystem helpers used by backup and restore."""

import re
from pathlib import Path

import pytest

from clickhouse_dump.backup.filetree import (
    INNER_TABLE_PREFIX,
    check_directories_exist,
    copy_directory,
    copy_file,
    ensure_directories,
    remove_tree,
    replace_leading_keyword,
)
from clickhouse_dump.exceptions import ConfigError, CopyError


# ------------------------------------------------------------------
# copy_directory / copy_file
# ------------------------------------------------------------------


class TestCopyDirectory:
    """Verify recursive copy with per-entry failure reporting."""

    def test_copies_nested_tree(self, tmp_path):
        """Files in nested directories are copied and counted."""
        src = tmp_path / "src"
        (src / "a" / "b").mkdir(parents=True)
        (src / "top.txt").write_text("top")
        (src / "a" / "mid.txt").write_text("mid")
        (src / "a" / "b" / "deep.txt").write_text("deep")

        report = copy_directory(src, tmp_path / "dst")

        assert report.ok
        assert report.copied == 3
        assert (tmp_path / "dst" / "a" / "b" / "deep.txt").read_text() == "deep"

    def test_creates_missing_destination(self, tmp_path):
        """Destination parents are created on demand."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "f").write_text("x")

        report = copy_directory(src, tmp_path / "x" / "y" / "z")

        assert report.copied == 1
        assert (tmp_path / "x" / "y" / "z" / "f").exists()

    def test_overwrites_existing_files(self, tmp_path):
        """Copying twice leaves the latest content in place."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "f").write_text("new")
        dst = tmp_path / "dst"
        dst.mkdir()
        (dst / "f").write_text("old")

        copy_directory(src, dst)

        assert (dst / "f").read_text() == "new"

    def test_excludes_prefixes_at_every_level(self, tmp_path):
        """Entries matching an excluded prefix are skipped, nested ones too."""
        src = tmp_path / "src"
        (src / "sub").mkdir(parents=True)
        (src / "orders.sql").write_text("x")
        (src / f"{INNER_TABLE_PREFIX}mv.sql").write_text("x")
        (src / "sub" / f"{INNER_TABLE_PREFIX}other.sql").write_text("x")

        report = copy_directory(src, tmp_path / "dst", exclude_prefixes=(INNER_TABLE_PREFIX,))

        assert report.copied == 1
        assert not (tmp_path / "dst" / f"{INNER_TABLE_PREFIX}mv.sql").exists()
        assert not (tmp_path / "dst" / "sub" / f"{INNER_TABLE_PREFIX}other.sql").exists()

    def test_missing_source_is_single_failure(self, tmp_path):
        """A missing source directory is reported, not raised."""
        report = copy_directory(tmp_path / "nope", tmp_path / "dst")

        assert not report.ok
        assert report.copied == 0
        assert len(report.failures) == 1
        assert report.failures[0].kind == "copy"
        assert report.failures[0].item == str(tmp_path / "nope")

    def test_unwritable_destination_is_failure(self, tmp_path):
        """A destination that exists as a file cannot become a directory."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "f").write_text("x")
        blocker = tmp_path / "dst"
        blocker.write_text("i am a file")

        report = copy_directory(src, blocker)

        assert not report.ok
        assert report.copied == 0

    def test_symlinked_directory_not_followed(self, tmp_path):
        """A symlink loop ends as one failure instead of endless recursion."""
        src = tmp_path / "src"
        (src / "part").mkdir(parents=True)
        (src / "part" / "data.bin").write_text("x")
        (src / "part" / "loop").symlink_to(src, target_is_directory=True)

        report = copy_directory(src, tmp_path / "dst")

        assert report.copied == 1
        assert [f.item for f in report.failures] == [str(src / "part" / "loop")]
        assert not (tmp_path / "dst" / "part" / "loop").exists()

    def test_copy_file_raises_copy_error(self, tmp_path):
        """copy_file wraps OS errors in CopyError naming the source."""
        with pytest.raises(CopyError) as exc_info:
            copy_file(tmp_path / "missing", tmp_path / "dst")

        assert exc_info.value.path == str(tmp_path / "missing")


# ------------------------------------------------------------------
# replace_leading_keyword
# ------------------------------------------------------------------


class TestReplaceLeadingKeyword:
    """Verify the ATTACH -> CREATE rewrite is scoped to statement starts."""

    def test_rewrites_leading_keyword(self, tmp_path):
        """A leading ATTACH becomes CREATE."""
        (tmp_path / "orders.sql").write_text("ATTACH TABLE orders (id UInt64) ENGINE = Log")

        report = replace_leading_keyword(tmp_path, "ATTACH", "CREATE")

        assert report.copied == 1
        assert (tmp_path / "orders.sql").read_text() == "CREATE TABLE orders (id UInt64) ENGINE = Log"

    def test_keyword_inside_definition_untouched(self, tmp_path):
        """ATTACH inside a column default is not a statement start."""
        content = "ATTACH TABLE orders\n(\n    `note` String DEFAULT 'ATTACH later'\n)\nENGINE = Log\n"
        (tmp_path / "orders.sql").write_text(content)

        replace_leading_keyword(tmp_path, "ATTACH", "CREATE")

        rewritten = (tmp_path / "orders.sql").read_text()
        assert rewritten.startswith("CREATE TABLE orders")
        assert "DEFAULT 'ATTACH later'" in rewritten

    def test_keyword_after_semicolon_in_literal_untouched(self, tmp_path):
        """Only the start of the file counts; a ';' inside a literal does not."""
        content = "ATTACH TABLE t\n(\n    `note` String DEFAULT 'a; ATTACH b'\n)\nENGINE = Log\n"
        (tmp_path / "t.sql").write_text(content)

        report = replace_leading_keyword(tmp_path, "ATTACH", "CREATE")

        assert report.copied == 1
        assert (tmp_path / "t.sql").read_text() == content.replace("ATTACH TABLE", "CREATE TABLE", 1)

    def test_leading_whitespace_allowed(self, tmp_path):
        (tmp_path / "t.sql").write_text("\n  ATTACH TABLE t (x UInt8) ENGINE = Log")

        replace_leading_keyword(tmp_path, "ATTACH", "CREATE")

        assert (tmp_path / "t.sql").read_text() == "\n  CREATE TABLE t (x UInt8) ENGINE = Log"

    def test_word_boundary(self, tmp_path):
        """ATTACHMENT is not the ATTACH keyword."""
        (tmp_path / "t.sql").write_text("ATTACHMENT")

        report = replace_leading_keyword(tmp_path, "ATTACH", "CREATE")

        assert report.copied == 0
        assert (tmp_path / "t.sql").read_text() == "ATTACHMENT"

    def test_non_sql_files_untouched(self, tmp_path):
        """Files without the suffix keep their bytes."""
        (tmp_path / "notes.txt").write_text("ATTACH TABLE x")

        report = replace_leading_keyword(tmp_path, "ATTACH", "CREATE")

        assert report.copied == 0
        assert (tmp_path / "notes.txt").read_text() == "ATTACH TABLE x"

    def test_not_recursive(self, tmp_path):
        """Subdirectories are not visited."""
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "t.sql").write_text("ATTACH TABLE x")

        replace_leading_keyword(tmp_path, "ATTACH", "CREATE")

        assert (tmp_path / "sub" / "t.sql").read_text() == "ATTACH TABLE x"

    def test_missing_directory_is_failure(self, tmp_path):
        """A missing directory is reported, not raised."""
        report = replace_leading_keyword(tmp_path / "nope", "ATTACH", "CREATE")

        assert len(report.failures) == 1


# ------------------------------------------------------------------
# Directory checks
# ------------------------------------------------------------------


class TestDirectoryHelpers:
    """Verify ensure/check/remove helpers."""

    def test_ensure_directories_creates_all(self, tmp_path):
        dirs = [tmp_path / "a" / "b", tmp_path / "c"]

        ensure_directories(dirs)
        ensure_directories(dirs)

        assert all(d.is_dir() for d in dirs)

    def test_ensure_directories_raises_copy_error(self, tmp_path):
        (tmp_path / "file").write_text("x")

        with pytest.raises(CopyError):
            ensure_directories([tmp_path / "file" / "sub"])

    def test_check_directories_exist_passes(self, tmp_path):
        check_directories_exist(tmp_path)

    def test_check_directories_exist_names_first_missing(self, tmp_path):
        missing = tmp_path / "missing"

        with pytest.raises(ConfigError, match=re.escape(f"{missing} not found")):
            check_directories_exist(tmp_path, missing, tmp_path / "other")

    def test_remove_tree(self, tmp_path):
        target = tmp_path / "shadow" / "backup"
        (target / "data").mkdir(parents=True)
        (target / "data" / "f").write_text("x")

        remove_tree(target)

        assert not target.exists()

    def test_remove_tree_missing_is_noop(self, tmp_path):
        remove_tree(Path(tmp_path / "absent"))
