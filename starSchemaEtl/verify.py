"""
Star Schema Verification

Post-load checks of the target store: SCD version history, fact grain,
foreign key integrity and bridge uniqueness.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .config import SENTINEL_MAX_DATE
from .schema import get_tables_by_category
from .target import InMemoryTargetStore


@dataclass
class VerificationResult:
    """Outcome of one integrity check."""
    check_name: str
    table_name: str
    passed: bool
    violations: List[str] = field(default_factory=list)


def check_scd_history(store: InMemoryTargetStore, table_name: str) -> List[VerificationResult]:
    defn = store.registry[table_name]
    versions: Dict[Any, List[Dict]] = {}
    for r in store.committed_rows(table_name):
        versions.setdefault(tuple(r[c] for c in defn.natural_key), []).append(r)

    current_violations = []
    interval_violations = []
    for nk, rows in versions.items():
        current = [r for r in rows if r.get("is_current")]
        if len(current) > 1:
            current_violations.append(f"{nk}: {len(current)} current versions")

        rows = sorted(rows, key=lambda r: r["effective_start_date"])
        for r in rows:
            if not r["effective_start_date"] < r["effective_end_date"]:
                interval_violations.append(f"{nk}: empty interval on {defn.surrogate_key}={r[defn.surrogate_key]}")
            if r.get("is_current") and r["effective_end_date"] != SENTINEL_MAX_DATE:
                interval_violations.append(f"{nk}: current version {r[defn.surrogate_key]} is not open-ended")
            if not r.get("is_current") and r["effective_end_date"] == SENTINEL_MAX_DATE:
                interval_violations.append(f"{nk}: expired version {r[defn.surrogate_key]} is open-ended")
        for prev, nxt in zip(rows, rows[1:]):
            if prev["effective_end_date"] != nxt["effective_start_date"]:
                interval_violations.append(
                    f"{nk}: version {prev[defn.surrogate_key]} ends {prev['effective_end_date']} "
                    f"but next starts {nxt['effective_start_date']}"
                )

    return [
        VerificationResult("single_current_version", table_name, not current_violations, current_violations),
        VerificationResult("contiguous_intervals", table_name, not interval_violations, interval_violations),
    ]


def check_unique_natural_key(store: InMemoryTargetStore, table_name: str) -> VerificationResult:
    defn = store.registry[table_name]
    seen: Dict[Any, int] = {}
    for r in store.committed_rows(table_name):
        nk = tuple(r[c] for c in defn.natural_key)
        seen[nk] = seen.get(nk, 0) + 1
    violations = [f"{nk}: {n} rows" for nk, n in seen.items() if n > 1]
    return VerificationResult("unique_natural_key", table_name, not violations, violations)


def check_foreign_keys(store: InMemoryTargetStore, table_name: str) -> VerificationResult:
    defn = store.registry[table_name]
    referenced = {
        ref_table: {r[store.registry[ref_table].surrogate_key] for r in store.committed_rows(ref_table)}
        for _, ref_table, _ in defn.foreign_keys
    }
    violations = []
    for r in store.committed_rows(table_name):
        for column, ref_table, ref_column in defn.foreign_keys:
            value = r.get(column)
            if value is not None and value not in referenced[ref_table]:
                violations.append(f"{column}={value!r} missing from {ref_table}.{ref_column}")
    return VerificationResult("foreign_keys", table_name, not violations, violations)


def verify_star_schema(store: InMemoryTargetStore) -> List[VerificationResult]:
    """Run every integrity check against the committed target."""
    results = []
    for defn in get_tables_by_category("dimension_type2"):
        results.extend(check_scd_history(store, defn.name))
    for defn in get_tables_by_category("dimension_type1") + get_tables_by_category("fact"):
        results.append(check_unique_natural_key(store, defn.name))
    for defn in get_tables_by_category("bridge"):
        results.append(check_unique_natural_key(store, defn.name))
    for defn in get_tables_by_category("fact") + get_tables_by_category("bridge"):
        results.append(check_foreign_keys(store, defn.name))
    return results


def print_verification(results: List[VerificationResult]) -> None:
    print("\nVerifying star schema...")
    for r in results:
        status = "OK" if r.passed else f"FAILED ({len(r.violations)})"
        print(f"  {r.table_name:30} {r.check_name:24} {status}")
        for v in r.violations[:5]:
            print(f"    {v}")
