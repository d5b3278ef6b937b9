"""
Surrogate Key Resolver

Maps a natural (source) key to the surrogate key of a target row. Type-2
dimensions are resolved against the version whose
[effective_start_date, effective_end_date) interval contains a reference date.
"""

from datetime import date
from typing import Any, List, Optional

from .config import as_date
from .errors import AmbiguousTemporalMatchError, UnresolvedKeyError
from .target import Row, TargetStore


def date_key(value: Any) -> Optional[int]:
    """Integer date key (YYYYMMDD) for a date, datetime or ISO string."""
    d = as_date(value)
    if d is None:
        return None
    return d.year * 10000 + d.month * 100 + d.day


def version_contains(row: Row, reference_date: date) -> bool:
    """True when reference_date falls in the version's half-open validity interval."""
    start = row.get("effective_start_date")
    end = row.get("effective_end_date")
    if start is None or end is None:
        return False
    return start <= reference_date < end


class SurrogateKeyResolver:
    """Read-only surrogate key lookups against a target store."""

    def __init__(self, store: TargetStore):
        self.store = store

    def _definition(self, table_name: str):
        return self.store.registry[table_name]

    def matching_versions(self, table_name: str, natural_key: Any, reference_date: date) -> List[Row]:
        return [
            r for r in self.store.find_by_natural_key(table_name, natural_key)
            if version_contains(r, reference_date)
        ]

    def resolve(self, table_name: str, natural_key: Any, reference_date: Any = None) -> int:
        """Return the surrogate key or raise UnresolvedKeyError.

        Type-2 tables require a reference date and raise
        AmbiguousTemporalMatchError when overlapping versions match it.
        """
        defn = self._definition(table_name)
        if natural_key is None:
            raise UnresolvedKeyError(table_name, natural_key, message=f"missing natural key for {table_name}")

        if defn.category == "dimension_type2":
            ref = as_date(reference_date)
            if ref is None:
                raise UnresolvedKeyError(
                    table_name, natural_key,
                    message=f"no reference date to resolve {table_name} natural key {natural_key!r}"
                )
            matches = self.matching_versions(table_name, natural_key, ref)
            if len(matches) > 1:
                raise AmbiguousTemporalMatchError(table_name, natural_key, ref, len(matches))
            if not matches:
                raise UnresolvedKeyError(table_name, natural_key, ref)
            return matches[0][defn.surrogate_key]

        matches = self.store.find_by_natural_key(table_name, natural_key)
        if not matches:
            raise UnresolvedKeyError(table_name, natural_key)
        return matches[0][defn.surrogate_key]

    def try_resolve(self, table_name: str, natural_key: Any, reference_date: Any = None) -> Optional[int]:
        """Like resolve(), but returns None on an ordinary miss. Ambiguity still raises."""
        try:
            return self.resolve(table_name, natural_key, reference_date)
        except AmbiguousTemporalMatchError:
            raise
        except UnresolvedKeyError:
            return None

    def resolve_date(self, value: Any) -> Optional[int]:
        """Date key for a date that must exist in dim_date. None for a null date."""
        key = date_key(value)
        if key is None:
            return None
        return self.resolve("dim_date", key)
