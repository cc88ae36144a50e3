"""Filesystem helpers for the backup tree.

Recursive directory copy and in-place keyword rewrite.  No database
knowledge.  Tree walks never abort half-way: each entry that fails is
recorded in the returned ``CopyReport`` and the walk moves on, so the
caller decides what a partial copy means.

Usage:
    from clickhouse_dump.backup.filetree import copy_directory, replace_leading_keyword

    report = copy_directory(Path("/var/lib/clickhouse/metadata/shop"),
                            Path("/tmp/bk/metadata/shop"),
                            exclude_prefixes=(INNER_TABLE_PREFIX,))
    report.merge(replace_leading_keyword(Path("/tmp/bk/metadata/shop"), "ATTACH", "CREATE"))
    if not report.ok:
        ...
"""

import re
import shutil
from collections.abc import Iterable
from pathlib import Path

from clickhouse_dump.backup.models import CopyReport, ItemFailure
from clickhouse_dump.exceptions import ConfigError, CopyError

# URL-encoded ".inner." -- storage of materialized-view target tables
INNER_TABLE_PREFIX = "%2Einner%2E"


def copy_file(source: Path, destination: Path) -> None:
    """Copy one file, preserving its timestamps.

    Raises:
        CopyError: If the file cannot be read or written.
    """
    try:
        shutil.copy2(source, destination)
    except OSError as e:
        raise CopyError(str(source), e.strerror or str(e)) from e


def copy_directory(
    source: Path,
    destination: Path,
    exclude_prefixes: tuple[str, ...] = (),
) -> CopyReport:
    """Recursively copy ``source`` into ``destination``.

    The destination is created if missing; existing files are overwritten.
    Entries are visited in name order.  Entries whose name starts with one
    of ``exclude_prefixes`` are skipped.  Symlinked directories are not
    followed; each one is reported as a failure.

    Args:
        source: Directory to copy from.
        destination: Directory to copy into.
        exclude_prefixes: Entry-name prefixes to skip at every level.

    Returns:
        ``CopyReport`` with the number of files copied and one failure per
        entry that could not be copied (a missing or unreadable ``source``
        is a single failure).
    """
    report = CopyReport()

    try:
        entries = sorted(source.iterdir(), key=lambda p: p.name)
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        report.failures.append(
            ItemFailure(kind="copy", item=str(source), error=e.strerror or str(e))
        )
        return report

    for entry in entries:
        if exclude_prefixes and entry.name.startswith(exclude_prefixes):
            continue
        target = destination / entry.name
        if entry.is_symlink() and entry.is_dir():
            report.failures.append(
                ItemFailure(kind="copy", item=str(entry), error="symlinked directory not followed")
            )
            continue
        if entry.is_dir():
            report.merge(copy_directory(entry, target, exclude_prefixes))
            continue
        try:
            copy_file(entry, target)
            report.copied += 1
        except CopyError as e:
            report.failures.append(ItemFailure(kind="copy", item=e.path, error=e.message))

    return report


def leading_keyword_pattern(keyword: str) -> re.Pattern[str]:
    """Match ``keyword`` only where it begins the file.

    Each metadata file holds exactly one statement, so only leading
    whitespace may precede the keyword.  Occurrences inside column or engine
    definitions, string literals included, are not matched.
    """
    return re.compile(rf"\A(\s*){re.escape(keyword)}\b")


def replace_leading_keyword(
    directory: Path,
    old: str,
    new: str,
    suffix: str = ".sql",
) -> CopyReport:
    """Rewrite the leading ``old`` keyword to ``new`` in every ``suffix`` file.

    Only regular files directly inside ``directory`` whose name ends with
    ``suffix`` are touched; everything else is left byte-for-byte intact.

    Returns:
        ``CopyReport`` where ``copied`` counts rewritten files.
    """
    report = CopyReport()
    pattern = leading_keyword_pattern(old)

    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as e:
        report.failures.append(
            ItemFailure(kind="copy", item=str(directory), error=e.strerror or str(e))
        )
        return report

    for entry in entries:
        if not entry.name.endswith(suffix) or not entry.is_file():
            continue
        try:
            content = entry.read_text(encoding="utf-8")
            rewritten = pattern.sub(rf"\g<1>{new}", content, count=1)
            if rewritten != content:
                entry.write_text(rewritten, encoding="utf-8")
                report.copied += 1
        except (OSError, UnicodeDecodeError) as e:
            report.failures.append(ItemFailure(kind="copy", item=str(entry), error=str(e)))

    return report


def ensure_directories(directories: Iterable[Path]) -> None:
    """Create each directory (and parents) if missing.

    Raises:
        CopyError: Naming the first directory that could not be created.
    """
    for directory in directories:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CopyError(str(directory), e.strerror or str(e)) from e


def check_directories_exist(*directories: Path) -> None:
    """Verify every directory exists before a run mutates anything.

    Raises:
        ConfigError: Naming the first missing directory.
    """
    for directory in directories:
        if not directory.is_dir():
            raise ConfigError(f"{directory} not found")


def remove_tree(directory: Path) -> None:
    """Delete a directory tree if it exists.

    Raises:
        CopyError: If the tree exists but cannot be removed.
    """
    if not directory.exists():
        return
    try:
        shutil.rmtree(directory)
    except OSError as e:
        raise CopyError(str(directory), e.strerror or str(e)) from e
