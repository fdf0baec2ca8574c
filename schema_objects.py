# ---------- Exported objects ----------
# SchemaObject: one DDL-bearing entity (table or index) destined for <root>/<object_type>/<filename>.
# StaticData: the rows of one table, already rendered as INSERT statements, destined for
# <root>/static_data/<table>.sql.
# Both are produced by a schema provider and written exactly once by artifact_writer.

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Tuple

OBJECT_TYPE_TABLE = "table"
OBJECT_TYPE_INDEX = "index"


def safe_filename(name: str) -> str:
    # Convert an object identifier like "schema.table.name" into a filesystem-friendly filename.
    # Keeps letters, numbers, dot, underscore, parentheses and dash; replaces other chars with '_'
    return re.sub(r"[^A-Za-z0-9_.()-]", "_", name)


def object_filename(identity: str, suffix: str = ".sql") -> str:
    # Stable and collision-free: when sanitising alters the identity, a short hash of the raw
    # identity is appended so "a b" and "a_b" never land on the same file.
    cleaned = safe_filename(identity)
    if cleaned != identity:
        digest = hashlib.sha1(identity.encode("utf-8")).hexdigest()[:8]
        cleaned = f"{cleaned}-{digest}"
    return cleaned + suffix


@dataclass(frozen=True)
class SchemaObject:
    object_type: str
    filename: str
    statement: str


@dataclass(frozen=True)
class StaticData:
    table: str
    statements: Tuple[str, ...] = ()

    def to_filename(self) -> str:
        return object_filename(self.table)
