"""
Type-1 Dimensions

Overwrite-in-place dimensions: date, specialty, department, encounter type,
diagnosis and procedure. One row per natural key; every load re-supplies the
full attribute set from the source snapshot.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Set
import time

from .config import LoadConfig, as_date
from .errors import SOURCE_VALUE_ERRORS, ConstraintViolationError
from .resolver import SurrogateKeyResolver, date_key
from .results import CONSTRAINT_VIOLATION, INVALID_VALUE, LoadIssue, LoadResult
from .schema import SOURCE_TABLES
from .source import SourceSnapshot
from .target import Row, TargetStore


MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def source_key(table_name: str, row: Row) -> Any:
    """Natural key of a source row, a scalar for single-column keys."""
    definition = next((t for t in SOURCE_TABLES if t.name == table_name), None)
    if definition is None or not definition.natural_key:
        return None
    key = tuple(row.get(c) for c in definition.natural_key)
    return key[0] if len(key) == 1 else key


def reject_row(result: Optional[LoadResult], config: LoadConfig, table_name: str, row: Row, error: Exception) -> None:
    """Record a source row whose values cannot be coerced. Without a result the error propagates."""
    if result is None:
        raise error
    result.processed += 1
    result.skip(LoadIssue(INVALID_VALUE, result.table_name, source_key(table_name, row), None,
                          config.run_date, f"{table_name}: {error}"))


def build_rows(
    snapshot: SourceSnapshot,
    config: LoadConfig,
    result: Optional[LoadResult],
    table_name: str,
    row_fn: Callable[[Row], Row]
) -> List[Row]:
    """Apply row_fn to every row of a source table, skipping rows with bad values."""
    rows = []
    for r in snapshot.rows(table_name):
        try:
            rows.append(row_fn(r))
        except SOURCE_VALUE_ERRORS as e:
            reject_row(result, config, table_name, r, e)
    return rows


def build_date_row(d: date) -> Row:
    """Date dimension row with calendar attributes derived from the date itself."""
    return {
        "date_key": date_key(d),
        "calendar_date": d,
        "day_of_month": d.day,
        "month": d.month,
        "month_name": MONTH_NAMES[d.month - 1],
        "quarter": (d.month - 1) // 3 + 1,
        "year": d.year,
        "is_weekend": d.weekday() >= 5,
    }


def collect_reference_dates(snapshot: SourceSnapshot, config: Optional[LoadConfig] = None,
                            result: Optional[LoadResult] = None) -> Set[date]:
    """Every date referenced by a downstream fact or bridge row."""
    sources = (
        ("encounters", "encounter_date"),
        ("encounters", "discharge_date"),
        ("encounter_procedures", "procedure_date"),
        ("billing", "claim_date"),
    )
    dates = set()
    for table_name, column in sources:
        for r in snapshot.rows(table_name):
            try:
                d = as_date(r.get(column))
            except SOURCE_VALUE_ERRORS as e:
                reject_row(result, config, table_name, r, ValueError(f"{column}: {e}"))
                continue
            if d is not None:
                dates.add(d)
    return dates


# Dimension builders
def build_dim_date(snapshot: SourceSnapshot, config: LoadConfig, result: Optional[LoadResult] = None) -> List[Row]:
    return [build_date_row(d) for d in sorted(collect_reference_dates(snapshot, config, result))]


def build_dim_specialty(snapshot: SourceSnapshot, config: LoadConfig, result: Optional[LoadResult] = None) -> List[Row]:
    return build_rows(snapshot, config, result, "specialties", lambda r: {
        "specialty_id": r["specialty_id"],
        "specialty_name": r.get("specialty_name"),
        "specialty_code": r.get("specialty_code"),
    })


def build_dim_department(snapshot: SourceSnapshot, config: LoadConfig, result: Optional[LoadResult] = None) -> List[Row]:
    return build_rows(snapshot, config, result, "departments", lambda r: {
        "department_id": r["department_id"],
        "department_name": r.get("department_name"),
        "floor": r.get("floor"),
        "capacity": r.get("capacity"),
    })


def build_dim_encounter_type(snapshot: SourceSnapshot, config: LoadConfig,
                             result: Optional[LoadResult] = None) -> List[Row]:
    codes = sorted({r["encounter_type"] for r in snapshot.rows("encounters") if r.get("encounter_type")})
    return [
        {
            "encounter_type_code": code,
            "encounter_type_description": f"{code} Encounter",
        }
        for code in codes
    ]


def build_dim_diagnosis(snapshot: SourceSnapshot, config: LoadConfig, result: Optional[LoadResult] = None) -> List[Row]:
    return build_rows(snapshot, config, result, "diagnoses", lambda r: {
        "diagnosis_id": r["diagnosis_id"],
        "icd10_code": r.get("icd10_code"),
        "icd10_description": r.get("icd10_description"),
    })


def build_dim_procedure(snapshot: SourceSnapshot, config: LoadConfig, result: Optional[LoadResult] = None) -> List[Row]:
    return build_rows(snapshot, config, result, "procedures", lambda r: {
        "procedure_id": r["procedure_id"],
        "cpt_code": r.get("cpt_code"),
        "cpt_description": r.get("cpt_description"),
    })


@dataclass(frozen=True)
class Type1DimensionDef:
    """A Type-1 dimension and the builder producing its source rows."""
    name: str
    build_fn: Callable[[SourceSnapshot, LoadConfig, Optional[LoadResult]], List[Row]]


TYPE1_DIMENSIONS: Dict[str, Type1DimensionDef] = {
    "dim_date": Type1DimensionDef("dim_date", build_dim_date),
    "dim_specialty": Type1DimensionDef("dim_specialty", build_dim_specialty),
    "dim_department": Type1DimensionDef("dim_department", build_dim_department),
    "dim_encounter_type": Type1DimensionDef("dim_encounter_type", build_dim_encounter_type),
    "dim_diagnosis": Type1DimensionDef("dim_diagnosis", build_dim_diagnosis),
    "dim_procedure": Type1DimensionDef("dim_procedure", build_dim_procedure),
}


def distinct_by_natural_key(rows: List[Row], natural_key: tuple) -> Dict[tuple, Row]:
    """Last occurrence of each natural key wins. Rows with a null key are kept under None."""
    distinct: Dict[Any, Row] = {}
    for r in rows:
        nk = tuple(r.get(c) for c in natural_key)
        distinct[None if any(v is None for v in nk) else nk] = r
    return distinct


def overwrite_changes(current: Row, incoming: Row, columns) -> Dict[str, Any]:
    """Columns whose incoming value differs from the stored one."""
    return {c: incoming.get(c) for c in columns if current.get(c) != incoming.get(c)}


def load_type1_dimension(
    store: TargetStore,
    snapshot: SourceSnapshot,
    config: LoadConfig,
    name: str,
    resolver: Optional[SurrogateKeyResolver] = None
) -> LoadResult:
    """Insert new natural keys and overwrite the attributes of existing ones."""
    start_time = time.time()
    dimension = TYPE1_DIMENSIONS[name]
    defn = store.registry[name]
    resolver = resolver or SurrogateKeyResolver(store)
    result = LoadResult(name, defn.category)

    attribute_columns = [
        c for c in defn.columns if c not in defn.primary_key and c not in defn.natural_key
    ]
    source_rows = distinct_by_natural_key(dimension.build_fn(snapshot, config, result), defn.natural_key)

    for nk, incoming in source_rows.items():
        result.processed += 1
        if nk is None:
            result.skip(LoadIssue(CONSTRAINT_VIOLATION, name, None, name, config.run_date,
                                  "source row has a null natural key"))
            continue
        natural_key = nk[0] if len(nk) == 1 else nk
        try:
            surrogate = resolver.try_resolve(name, natural_key)
            if surrogate is None:
                store.insert(name, incoming)
                result.inserted += 1
                continue

            current = store.get(name, surrogate)
            changes = overwrite_changes(current, incoming, attribute_columns)
            if changes:
                store.update(name, surrogate, changes)
                result.updated += 1
            else:
                result.unchanged += 1
        except ConstraintViolationError as e:
            result.skip(LoadIssue(CONSTRAINT_VIOLATION, name, natural_key, name, config.run_date, str(e)))

    result.elapsed_seconds = round(time.time() - start_time, 2)
    print(f"  {result.summary_line()}")
    return result
