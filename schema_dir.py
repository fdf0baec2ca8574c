# ---------- Directory reconciliation ----------
# Before a discrete export the three category directories are removed so that objects
# dropped from the database do not leave orphaned files behind. Anything else under the
# root (schema.sql, static data config, .git, apply scripts) is left alone.

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Union

from export_errors import FilesystemError

DIR_TABLE = "table"
DIR_INDEX = "index"
DIR_STATIC_DATA = "static_data"

CATEGORY_DIRS = (DIR_TABLE, DIR_INDEX, DIR_STATIC_DATA)

logger = logging.getLogger("pg_schema_export")


def clear_schema_dir(root: Union[str, Path]):
    root = Path(root)
    for name in CATEGORY_DIRS:
        target = root / name
        try:
            shutil.rmtree(target)
        except FileNotFoundError:
            # first export into a fresh directory
            continue
        except OSError as e:
            raise FilesystemError(target, e) from e
        logger.debug("Removed %s", target)
