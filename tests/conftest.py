from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import pytest

from export_errors import FetchError
from schema_objects import SchemaObject, StaticData


class FakeSchemaProvider:
    def __init__(
        self,
        objects: Sequence[SchemaObject] = (),
        rows: Optional[Mapping[str, Sequence[str]]] = None,
        blob: bytes = b"",
        fail_on: Sequence[str] = (),
    ) -> None:
        self.objects = list(objects)
        self.rows: Dict[str, Sequence[str]] = dict(rows or {})
        self.blob = blob
        self.fail_on = set(fail_on)
        self.static_data_requests: List[tuple] = []
        self.entered = False
        self.closed = False

    def __enter__(self) -> "FakeSchemaProvider":
        self.entered = True
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.closed = True
        return False

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise FetchError(f"{name} exploded")

    def fetch_schema_blob(self) -> bytes:
        self._maybe_fail("fetch_schema_blob")
        return self.blob

    def fetch_schema_objects(self) -> List[SchemaObject]:
        self._maybe_fail("fetch_schema_objects")
        return list(self.objects)

    def fetch_static_data(self, tables: Sequence[str], order_by: Mapping[str, str]) -> List[StaticData]:
        self.static_data_requests.append((list(tables), dict(order_by)))
        self._maybe_fail("fetch_static_data")
        return [StaticData(table, tuple(self.rows.get(table, ()))) for table in tables]


@pytest.fixture
def provider_factory():
    return FakeSchemaProvider


@pytest.fixture
def schema_dir(tmp_path: Path) -> Path:
    root = tmp_path / "schema"
    root.mkdir()
    return root


def tree_snapshot(root: Path) -> Dict[str, bytes]:
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def snapshot_tree():
    return tree_snapshot
