"""
Target Store

Read/write access to the star schema. Writes land in a working copy and are
published per stage with commit(); rollback() discards an unfinished stage.
Primary key, unique natural key, NOT NULL and foreign key constraints are
enforced on every write, the way the star_schema DDL does.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple
import threading

from .errors import ConstraintViolationError
from .schema import TARGET_TABLE_REGISTRY, TargetTableDef

Row = Dict[str, Any]
Key = Tuple[Any, ...]


def _as_tuple(value: Any) -> Key:
    return value if isinstance(value, tuple) else (value,)


class TargetStore:
    """Target store collaborator."""

    registry: Mapping[str, TargetTableDef] = TARGET_TABLE_REGISTRY

    def rows(self, table_name: str) -> List[Row]:
        raise NotImplementedError

    def get(self, table_name: str, key: Any) -> Optional[Row]:
        raise NotImplementedError

    def find_by_natural_key(self, table_name: str, natural_key: Any) -> List[Row]:
        raise NotImplementedError

    def insert(self, table_name: str, row: Mapping[str, Any]) -> Row:
        raise NotImplementedError

    def update(self, table_name: str, key: Any, changes: Mapping[str, Any]) -> Row:
        raise NotImplementedError

    def commit(self) -> None:
        raise NotImplementedError

    def rollback(self) -> None:
        raise NotImplementedError


class InMemoryTargetStore(TargetStore):
    """Dictionary-backed target store with stage commit/rollback."""

    def __init__(
        self,
        tables: Optional[Mapping[str, Iterable[Mapping[str, Any]]]] = None,
        registry: Mapping[str, TargetTableDef] = TARGET_TABLE_REGISTRY
    ):
        self.registry = dict(registry)
        self._lock = threading.RLock()
        self._committed: Dict[str, Dict[Key, Row]] = {name: {} for name in self.registry}
        for name, rows in (tables or {}).items():
            defn = self._definition(name)
            for r in rows:
                row = {c: r.get(c) for c in defn.columns}
                self._committed[name][self._primary_key(defn, row)] = row
        self._working: Dict[str, Dict[Key, Row]] = {}
        self._natural_index: Dict[str, Dict[Key, Set[Key]]] = {}
        self._next_key: Dict[str, int] = {}
        self._dirty: Set[str] = set()
        self.write_count = 0
        self._reset_working()

    # Internal helpers
    def _definition(self, table_name: str) -> TargetTableDef:
        try:
            return self.registry[table_name]
        except KeyError:
            raise KeyError(f"Unknown target table: {table_name}") from None

    @staticmethod
    def _primary_key(defn: TargetTableDef, row: Mapping[str, Any]) -> Key:
        return tuple(row.get(c) for c in defn.primary_key)

    @staticmethod
    def _natural_key(defn: TargetTableDef, row: Mapping[str, Any]) -> Key:
        return tuple(row.get(c) for c in defn.natural_key)

    def _reset_working(self) -> None:
        self._working = {
            name: {k: dict(v) for k, v in table.items()}
            for name, table in self._committed.items()
        }
        self._natural_index = {}
        self._next_key = {}
        for name, table in self._working.items():
            defn = self.registry[name]
            index: Dict[Key, Set[Key]] = {}
            for pk, row in table.items():
                index.setdefault(self._natural_key(defn, row), set()).add(pk)
            self._natural_index[name] = index
            numeric = [pk[0] for pk in table if isinstance(pk[0], int)]
            self._next_key[name] = max(numeric, default=0) + 1
        self._dirty = set()

    def _check_row(self, defn: TargetTableDef, row: Row, pk: Key) -> None:
        for f in defn.schema.fields:
            if not f.nullable and row.get(f.name) is None:
                raise ConstraintViolationError(defn.name, pk, f"column '{f.name}' cannot be null")

    def _check_foreign_keys(self, defn: TargetTableDef, row: Row, pk: Key,
                            columns: Optional[Iterable[str]] = None) -> None:
        for column, ref_table, ref_column in defn.foreign_keys:
            if columns is not None and column not in columns:
                continue
            value = row.get(column)
            if value is None:
                continue
            if (value,) not in self._working[ref_table]:
                raise ConstraintViolationError(
                    defn.name, pk,
                    f"foreign key {column}={value!r} references missing {ref_table}.{ref_column}"
                )

    def _check_natural_unique(self, defn: TargetTableDef, nk: Key, pk: Key) -> None:
        if not defn.natural_key_unique:
            return
        owners = self._natural_index[defn.name].get(nk, set()) - {pk}
        if owners:
            raise ConstraintViolationError(
                defn.name, pk, f"duplicate natural key {dict(zip(defn.natural_key, nk))}"
            )

    # Reads
    def rows(self, table_name: str) -> List[Row]:
        self._definition(table_name)
        with self._lock:
            return [dict(r) for r in self._working[table_name].values()]

    def count(self, table_name: str) -> int:
        with self._lock:
            return len(self._working[table_name])

    def get(self, table_name: str, key: Any) -> Optional[Row]:
        self._definition(table_name)
        with self._lock:
            row = self._working[table_name].get(_as_tuple(key))
            return dict(row) if row is not None else None

    def find_by_natural_key(self, table_name: str, natural_key: Any) -> List[Row]:
        self._definition(table_name)
        with self._lock:
            table = self._working[table_name]
            pks = self._natural_index[table_name].get(_as_tuple(natural_key), set())
            return [dict(table[pk]) for pk in sorted(pks)]

    def committed_rows(self, table_name: str) -> List[Row]:
        self._definition(table_name)
        with self._lock:
            return [dict(r) for r in self._committed[table_name].values()]

    @property
    def pending_tables(self) -> List[str]:
        with self._lock:
            return sorted(self._dirty)

    # Writes
    def insert(self, table_name: str, row: Mapping[str, Any]) -> Row:
        defn = self._definition(table_name)
        unknown = sorted(set(row) - set(defn.columns))
        if unknown:
            raise ConstraintViolationError(table_name, None, f"unknown columns {unknown}")

        with self._lock:
            new_row = {c: row.get(c) for c in defn.columns}
            if defn.auto_increment and new_row.get(defn.surrogate_key) is None:
                new_row[defn.surrogate_key] = self._next_key[table_name]
            pk = self._primary_key(defn, new_row)

            self._check_row(defn, new_row, pk)
            if pk in self._working[table_name]:
                raise ConstraintViolationError(table_name, pk, "duplicate primary key")
            nk = self._natural_key(defn, new_row)
            self._check_natural_unique(defn, nk, pk)
            self._check_foreign_keys(defn, new_row, pk)

            self._working[table_name][pk] = new_row
            self._natural_index[table_name].setdefault(nk, set()).add(pk)
            if isinstance(pk[0], int):
                self._next_key[table_name] = max(self._next_key[table_name], pk[0] + 1)
            self._dirty.add(table_name)
            self.write_count += 1
            return dict(new_row)

    def update(self, table_name: str, key: Any, changes: Mapping[str, Any]) -> Row:
        defn = self._definition(table_name)
        pk = _as_tuple(key)
        unknown = sorted(set(changes) - set(defn.columns))
        if unknown:
            raise ConstraintViolationError(table_name, pk, f"unknown columns {unknown}")
        if set(changes) & set(defn.primary_key):
            raise ConstraintViolationError(table_name, pk, "primary key columns cannot be updated")

        with self._lock:
            current = self._working[table_name].get(pk)
            if current is None:
                raise ConstraintViolationError(table_name, pk, "no row with this primary key")
            updated = dict(current)
            updated.update(changes)

            self._check_row(defn, updated, pk)
            old_nk = self._natural_key(defn, current)
            new_nk = self._natural_key(defn, updated)
            if new_nk != old_nk:
                self._check_natural_unique(defn, new_nk, pk)
            self._check_foreign_keys(defn, updated, pk, columns=changes.keys())

            self._working[table_name][pk] = updated
            if new_nk != old_nk:
                self._natural_index[table_name][old_nk].discard(pk)
                self._natural_index[table_name].setdefault(new_nk, set()).add(pk)
            self._dirty.add(table_name)
            self.write_count += 1
            return dict(updated)

    # Stage boundaries
    def _persist(self, tables: Dict[str, List[Row]]) -> None:
        """Write changed tables to durable storage. No-op in memory."""

    def commit(self) -> None:
        with self._lock:
            dirty = sorted(self._dirty)
            if dirty:
                self._persist({name: list(self._working[name].values()) for name in dirty})
            for name in dirty:
                self._committed[name] = {k: dict(v) for k, v in self._working[name].items()}
            self._dirty = set()

    def rollback(self) -> None:
        with self._lock:
            self._reset_working()
