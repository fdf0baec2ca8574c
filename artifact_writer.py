# ---------- Artifact writer ----------
# Writes exported objects below the schema directory:
#   <root>/table/<schema.table>.sql
#   <root>/index/<schema.index>.sql
#   <root>/static_data/<table>.sql
# Parent directories are created on demand (owner-only). Existing files are overwritten,
# so writing the same object twice leaves one file with the latest content.
# Text is written as UTF-8 with errors replaced to avoid encoding crashes.

from __future__ import annotations

import errno
import logging
import os
from pathlib import Path
from typing import Union

from export_errors import FilesystemError
from schema_dir import DIR_STATIC_DATA
from schema_objects import SchemaObject, StaticData

DIR_MODE = 0o700
SCHEMA_FILE_MODE = 0o664
STATIC_DATA_FILE_MODE = 0o644

logger = logging.getLogger("pg_schema_export")


def ensure_dir(path: Path):
    # Like mkdir -p, but every directory created here, ancestors included, is owner-only.
    missing = []
    current = path
    while not current.exists() and current != current.parent:
        missing.append(current)
        current = current.parent
    try:
        for directory in reversed(missing):
            directory.mkdir(mode=DIR_MODE, exist_ok=True)
        if not path.is_dir():
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), str(path))
    except OSError as e:
        raise FilesystemError(path, e) from e


def _write(path: Path, content: Union[str, bytes], mode: int):
    try:
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8", errors="replace")
        os.chmod(path, mode)
    except OSError as e:
        raise FilesystemError(path, e) from e


def write_schema_object(obj: SchemaObject, schema_dir: Union[str, Path]) -> Path:
    parent = Path(schema_dir) / obj.object_type
    ensure_dir(parent)
    target = parent / obj.filename
    _write(target, obj.statement, SCHEMA_FILE_MODE)
    logger.info("Wrote %s: %s", obj.object_type, target)
    return target


def write_static_data(data: StaticData, schema_dir: Union[str, Path]) -> Path:
    parent = Path(schema_dir) / DIR_STATIC_DATA
    ensure_dir(parent)
    target = parent / data.to_filename()
    _write(target, "\n".join(data.statements), STATIC_DATA_FILE_MODE)
    logger.info("Wrote static data (%d rows): %s", len(data.statements), target)
    return target


def write_schema_file(ddl: bytes, path: Union[str, Path]) -> Path:
    # Consolidated mode: the whole schema in one file, no reconciliation.
    path = Path(path)
    ensure_dir(path.parent)
    _write(path, ddl, SCHEMA_FILE_MODE)
    logger.info("Wrote schema file: %s", path)
    return path
