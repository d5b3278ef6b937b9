"""
Type-2 Dimensions (SCD)

History-tracked patient and provider dimensions. A change to a tracked
attribute closes the current version at the run date and opens a new one;
untracked attributes are refreshed in place on the current version.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple
import time

from .config import SENTINEL_MAX_DATE, LoadConfig, as_date
from .dimensions import build_rows, distinct_by_natural_key, overwrite_changes
from .errors import ConstraintViolationError
from .results import AMBIGUOUS_MATCH, CONSTRAINT_VIOLATION, LoadIssue, LoadResult
from .source import SourceSnapshot
from .target import Row, TargetStore


def compute_age(date_of_birth: Optional[date], as_of: date) -> Optional[int]:
    """Whole years between date_of_birth and as_of."""
    if date_of_birth is None:
        return None
    years = as_of.year - date_of_birth.year
    if (as_of.month, as_of.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


def age_group(age: Optional[int]) -> str:
    if age is None:
        return "Unknown"
    if age < 18:
        return "Child"
    if age <= 39:
        return "Adult"
    if age <= 64:
        return "Middle Age"
    return "Senior"


# Dimension builders
def patient_row(r: Row, config: LoadConfig) -> Row:
    dob = as_date(r.get("date_of_birth"))
    age = compute_age(dob, config.run_date)
    return {
        "patient_id": r["patient_id"],
        "first_name": r.get("first_name"),
        "last_name": r.get("last_name"),
        "gender": r.get("gender"),
        "date_of_birth": dob,
        "age": age,
        "age_group": age_group(age),
        "mrn": r.get("mrn"),
    }


def provider_name(first_name: Any, last_name: Any) -> Optional[str]:
    parts = [p for p in (first_name, last_name) if p]
    if any(not isinstance(p, str) for p in parts):
        raise TypeError(f"provider name parts must be text, got {parts!r}")
    return " ".join(parts) or None


def build_dim_patient(snapshot: SourceSnapshot, config: LoadConfig, result: Optional[LoadResult] = None) -> List[Row]:
    return build_rows(snapshot, config, result, "patients", lambda r: patient_row(r, config))


def build_dim_provider(snapshot: SourceSnapshot, config: LoadConfig, result: Optional[LoadResult] = None) -> List[Row]:
    return build_rows(snapshot, config, result, "providers", lambda r: {
        "provider_id": r["provider_id"],
        "provider_name": provider_name(r.get("first_name"), r.get("last_name")),
        "credential": r.get("credential"),
    })


@dataclass(frozen=True)
class Type2DimensionDef:
    """A Type-2 dimension: tracked columns version, refresh columns overwrite."""
    name: str
    build_fn: Callable[[SourceSnapshot, LoadConfig, Optional[LoadResult]], List[Row]]
    tracked_columns: Tuple[str, ...]
    refresh_columns: Tuple[str, ...] = ()


TYPE2_DIMENSIONS: Dict[str, Type2DimensionDef] = {
    "dim_patient": Type2DimensionDef(
        "dim_patient", build_dim_patient,
        tracked_columns=("first_name", "last_name", "gender", "mrn"),
        refresh_columns=("date_of_birth", "age", "age_group"),
    ),
    "dim_provider": Type2DimensionDef(
        "dim_provider", build_dim_provider,
        tracked_columns=("provider_name", "credential"),
    ),
}


def _current_versions(store: TargetStore, name: str, natural_key: Tuple[str, ...]) -> Dict[tuple, List[Row]]:
    index: Dict[tuple, List[Row]] = {}
    for r in store.rows(name):
        if r.get("is_current"):
            index.setdefault(tuple(r.get(c) for c in natural_key), []).append(r)
    return index


def _new_version(incoming: Row, effective_start: date) -> Row:
    row = {c: incoming.get(c) for c in incoming}
    row.update({
        "effective_start_date": effective_start,
        "effective_end_date": SENTINEL_MAX_DATE,
        "is_current": True,
    })
    return row


def load_type2_dimension(
    store: TargetStore,
    snapshot: SourceSnapshot,
    config: LoadConfig,
    name: str
) -> LoadResult:
    """Apply SCD Type 2 to one dimension for config.run_date."""
    start_time = time.time()
    dimension = TYPE2_DIMENSIONS[name]
    defn = store.registry[name]
    run_date = config.run_date
    result = LoadResult(name, defn.category)

    currents = _current_versions(store, name, defn.natural_key)
    source_rows = distinct_by_natural_key(dimension.build_fn(snapshot, config, result), defn.natural_key)

    for nk, incoming in source_rows.items():
        result.processed += 1
        if nk is None:
            result.skip(LoadIssue(CONSTRAINT_VIOLATION, name, None, name, run_date,
                                  "source row has a null natural key"))
            continue
        natural_key = nk[0] if len(nk) == 1 else nk
        versions = currents.get(nk, [])

        if len(versions) > 1:
            result.skip(LoadIssue(AMBIGUOUS_MATCH, name, natural_key, name, run_date,
                                  f"{len(versions)} versions are flagged current"))
            continue

        try:
            if not versions:
                effective_start = run_date
                if config.initial_effective_start is not None and not store.find_by_natural_key(name, natural_key):
                    effective_start = min(config.initial_effective_start, run_date)
                store.insert(name, _new_version(incoming, effective_start))
                result.inserted += 1
                continue

            current = versions[0]
            surrogate = current[defn.surrogate_key]
            tracked_changes = overwrite_changes(current, incoming, dimension.tracked_columns)
            refresh_changes = overwrite_changes(current, incoming, dimension.refresh_columns)

            if not tracked_changes:
                if refresh_changes:
                    store.update(name, surrogate, refresh_changes)
                    result.updated += 1
                else:
                    result.unchanged += 1
                continue

            if current["effective_start_date"] == run_date:
                # Opened earlier today: overwrite rather than add a zero-length version
                store.update(name, surrogate, {**tracked_changes, **refresh_changes})
                result.updated += 1
                continue
            if current["effective_start_date"] > run_date:
                raise ConstraintViolationError(
                    name, surrogate,
                    f"run date {run_date.isoformat()} precedes current version start "
                    f"{current['effective_start_date'].isoformat()}"
                )

            store.update(name, surrogate, {"effective_end_date": run_date, "is_current": False})
            try:
                store.insert(name, _new_version(incoming, run_date))
            except ConstraintViolationError:
                store.update(name, surrogate, {
                    "effective_end_date": current["effective_end_date"],
                    "is_current": True,
                })
                raise
            result.updated += 1
            result.inserted += 1
        except ConstraintViolationError as e:
            result.skip(LoadIssue(CONSTRAINT_VIOLATION, name, natural_key, name, run_date, str(e)))

    result.elapsed_seconds = round(time.time() - start_time, 2)
    print(f"  {result.summary_line()}")
    return result
