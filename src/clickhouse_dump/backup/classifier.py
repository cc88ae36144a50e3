"""Classify metadata files by their leading SQL keywords.

Classification is a dispatch key for the restore order, not a validator:
only the statement prefix is inspected (case-sensitive), never parsed.

Usage:
    from clickhouse_dump.backup.classifier import classify

    obj = classify("CREATE TABLE orders (...) ENGINE = MergeTree ...", "orders.sql")
    obj.kind, obj.object_name
    # (<ObjectKind.TABLE: 'table'>, 'orders')
"""

import logging
from pathlib import Path

from clickhouse_dump.backup.filetree import INNER_TABLE_PREFIX
from clickhouse_dump.backup.models import ItemFailure, MetadataObject, ObjectKind

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".sql"

# Checked in order; first match wins
_KIND_PREFIXES: tuple[tuple[str, ObjectKind], ...] = (
    ("CREATE TABLE", ObjectKind.TABLE),
    ("CREATE MATERIALIZED VIEW", ObjectKind.VIEW),
)


def classify(content: str, file_name: str) -> MetadataObject:
    """Classify one metadata file.

    Args:
        content: The file's create statement.
        file_name: The file's name (``orders.sql``).

    Returns:
        ``MetadataObject`` with ``object_name`` = ``file_name`` minus the
        ``.sql`` suffix, and ``kind`` TABLE for ``CREATE TABLE``, VIEW for
        ``CREATE MATERIALIZED VIEW``, OTHER for anything else.
    """
    kind = ObjectKind.OTHER
    for prefix, prefix_kind in _KIND_PREFIXES:
        if content.startswith(prefix):
            kind = prefix_kind
            break

    object_name = file_name.removesuffix(METADATA_SUFFIX)
    return MetadataObject(
        file_name=file_name,
        object_name=object_name,
        kind=kind,
        definition=content,
    )


def read_metadata_dir(directory: Path) -> tuple[list[MetadataObject], list[ItemFailure]]:
    """Read and classify every metadata file in ``directory``.

    Files are visited in name order.  Subdirectories, non-``.sql`` files
    and view inner-table files are skipped.  A file that cannot be read is
    recorded as a ``copy`` failure and left out of the result.

    Raises:
        OSError: If ``directory`` itself cannot be listed.
    """
    objects: list[MetadataObject] = []
    failures: list[ItemFailure] = []

    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        if not entry.is_file() or not entry.name.endswith(METADATA_SUFFIX):
            continue
        if entry.name.startswith(INNER_TABLE_PREFIX):
            continue

        logger.debug("reading metadata file %s", entry.name)
        try:
            content = entry.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("can't read metadata file %s: %s", entry.name, e)
            failures.append(ItemFailure(kind="copy", item=entry.name, error=str(e)))
            continue

        objects.append(classify(content, entry.name))

    return objects, failures
