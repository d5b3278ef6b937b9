"""
Source Store Access

Read-only access to the OLTP source tables. The load reads a complete
snapshot of every source table before any stage writes, so an unreadable
source aborts the run without touching the target.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import SourceReadError
from .schema import SOURCE_TABLE_NAMES, SOURCE_TABLES

Row = Dict[str, Any]


class SourceReader:
    """Source store collaborator."""

    def read(self, table_name: str) -> List[Row]:
        raise NotImplementedError


class InMemorySourceReader(SourceReader):
    """Source reader over Python rows. Unlisted source tables are empty."""

    def __init__(self, tables: Optional[Mapping[str, Iterable[Mapping[str, Any]]]] = None):
        tables = dict(tables or {})
        unknown = sorted(set(tables) - set(SOURCE_TABLE_NAMES))
        if unknown:
            raise ValueError(f"Unknown source tables: {unknown}")
        self._tables = {
            name: [dict(r) for r in tables.get(name, [])]
            for name in SOURCE_TABLE_NAMES
        }

    def read(self, table_name: str) -> List[Row]:
        if table_name not in self._tables:
            raise SourceReadError(table_name, "table does not exist")
        return [dict(r) for r in self._tables[table_name]]


@dataclass(frozen=True)
class SourceSnapshot:
    """Complete, read-only copy of the source tables for one run."""
    tables: Mapping[str, Tuple[Row, ...]] = field(default_factory=dict)

    def rows(self, table_name: str) -> Tuple[Row, ...]:
        return self.tables.get(table_name, ())

    def by_key(self, table_name: str, key_column: str) -> Dict[Any, Row]:
        """Index a table by a unique column. Later rows win on duplicates."""
        return {r[key_column]: r for r in self.rows(table_name) if r.get(key_column) is not None}

    def group_by(self, table_name: str, key_column: str) -> Dict[Any, List[Row]]:
        grouped: Dict[Any, List[Row]] = {}
        for r in self.rows(table_name):
            grouped.setdefault(r.get(key_column), []).append(r)
        return grouped

    def row_counts(self) -> Dict[str, int]:
        return {name: len(rows) for name, rows in self.tables.items()}


def _check_columns(table_name: str, rows: List[Row]) -> None:
    definition = next((t for t in SOURCE_TABLES if t.name == table_name), None)
    if definition is None:
        return
    for r in rows:
        missing = [c for c in definition.columns if c not in r]
        if missing:
            raise SourceReadError(table_name, f"rows are missing columns {missing}")


def read_source_snapshot(
    reader: SourceReader,
    tables: Iterable[str] = SOURCE_TABLE_NAMES
) -> SourceSnapshot:
    """Read every source table. Any failure is fatal for the run."""
    snapshot = {}
    print("Reading source tables...")
    for table_name in tables:
        try:
            rows = reader.read(table_name)
        except SourceReadError:
            raise
        except Exception as e:
            raise SourceReadError(table_name, str(e)) from e
        _check_columns(table_name, rows)
        snapshot[table_name] = tuple(dict(r) for r in rows)
        print(f"  {table_name}: {len(rows):,} rows")
    return SourceSnapshot(snapshot)
