# ---------- Static data config ----------
# Decides which tables are exported as static data and how their rows are ordered.
#
# Two interchangeable formats live next to the schema directory:
#   pg_schema_export.json   {"StaticDataTables": ["users", ...], "CustomOrderBy": {"users": "id DESC"}}
#   static_data_tables.txt  one table name per line
#
# When the configured path is the default (static_data_tables.txt) the JSON sibling is tried
# first and the text file second. An explicit *.json or *.txt path reads only that file.
# A missing file is never an error; it just yields an empty config for that candidate.
# A malformed JSON sibling falls through to the text file; a malformed last candidate raises.

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional, Tuple, Union

from export_errors import ConfigResolutionError

DEFAULT_STATIC_DATA_TABLES_FILE = "static_data_tables.txt"
STRUCTURED_CONFIG_FILE = "pg_schema_export.json"

logger = logging.getLogger("pg_schema_export")


@dataclass(frozen=True)
class StaticDataConfig:
    static_data_tables: Tuple[str, ...] = ()
    custom_order_by: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # read-only once built
        object.__setattr__(self, "static_data_tables", tuple(self.static_data_tables))
        object.__setattr__(self, "custom_order_by", MappingProxyType(dict(self.custom_order_by)))


class ResolutionKind(enum.Enum):
    FOUND = "found"
    ABSENT = "absent"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Resolution:
    kind: ResolutionKind
    path: Path
    config: Optional[StaticDataConfig] = None
    error: Optional[ConfigResolutionError] = None


Resolver = Callable[[], Resolution]


def _read_text(path: Path) -> Union[str, Resolution]:
    # Returns file content, or a Resolution describing why there is none.
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return Resolution(ResolutionKind.ABSENT, path)
    except (OSError, UnicodeDecodeError) as e:
        return Resolution(ResolutionKind.MALFORMED, path, error=ConfigResolutionError(path, str(e)))


def read_json_config(path: Path) -> Resolution:
    content = _read_text(path)
    if isinstance(content, Resolution):
        return content

    def malformed(reason: str) -> Resolution:
        return Resolution(ResolutionKind.MALFORMED, path, error=ConfigResolutionError(path, reason))

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        return malformed(f"not valid JSON ({e})")
    if not isinstance(data, dict):
        return malformed("top level must be an object")

    tables = data.get("StaticDataTables")
    if tables is None:
        tables = []
    if not isinstance(tables, list) or not all(isinstance(t, str) for t in tables):
        return malformed("StaticDataTables must be a list of strings")

    order_by = data.get("CustomOrderBy")
    if order_by is None:
        order_by = {}
    if not isinstance(order_by, dict) or not all(isinstance(v, str) for v in order_by.values()):
        return malformed("CustomOrderBy must map table names to strings")

    config = StaticDataConfig(static_data_tables=tuple(tables), custom_order_by=dict(order_by))
    return Resolution(ResolutionKind.FOUND, path, config=config)


def read_txt_config(path: Path) -> Resolution:
    content = _read_text(path)
    if isinstance(content, Resolution):
        return content
    tables = tuple(line.strip() for line in content.splitlines() if line.strip())
    return Resolution(ResolutionKind.FOUND, path, config=StaticDataConfig(static_data_tables=tables))


def resolver_chain(file_path: Union[str, Path]) -> List[Resolver]:
    # Builds the ordered list of candidates for the given path hint.
    path = Path(file_path)
    if path.name == DEFAULT_STATIC_DATA_TABLES_FILE:
        json_path = path.with_name(STRUCTURED_CONFIG_FILE)
        txt_path = path.with_name(DEFAULT_STATIC_DATA_TABLES_FILE)
        return [lambda: read_json_config(json_path), lambda: read_txt_config(txt_path)]
    if path.suffix == ".json":
        return [lambda: read_json_config(path)]
    if path.suffix == ".txt":
        return [lambda: read_txt_config(path)]
    logger.warning("Unrecognised static data config %s; exporting no static data.", path)
    return []


def resolve(chain: List[Resolver], fall_through_malformed: bool = True) -> StaticDataConfig:
    """Walk resolvers in order; the first FOUND wins.

    ABSENT always moves on to the next candidate. MALFORMED moves on too while a
    later candidate remains, unless ``fall_through_malformed`` is cleared; a
    malformed last candidate always raises.
    """
    for index, resolver in enumerate(chain):
        result = resolver()
        if result.kind is ResolutionKind.FOUND:
            logger.info("Static data config: %s (%d tables)", result.path, len(result.config.static_data_tables))
            return result.config
        if result.kind is ResolutionKind.MALFORMED:
            is_last = index == len(chain) - 1
            if not fall_through_malformed or is_last:
                raise result.error
            logger.warning("Ignoring %s; trying next candidate.", result.error)
            continue
        logger.debug("Static data config not found: %s", result.path)
    return StaticDataConfig()


def read_static_data_tables_file(file_path: Union[str, Path], fall_through_malformed: bool = True) -> StaticDataConfig:
    return resolve(resolver_chain(file_path), fall_through_malformed=fall_through_malformed)
