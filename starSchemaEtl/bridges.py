"""
Bridge Tables

Encounter-to-diagnosis and encounter-to-procedure links, keyed by
(encounter_key, diagnosis_key|procedure_key). Links whose encounter has no
fact row yet are skipped and picked up by a later run.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
import time

from .config import LoadConfig, as_date
from .errors import SOURCE_VALUE_ERRORS, AmbiguousTemporalMatchError, ConstraintViolationError, UnresolvedKeyError
from .resolver import SurrogateKeyResolver
from .results import AMBIGUOUS_MATCH, CONSTRAINT_VIOLATION, INVALID_VALUE, UNRESOLVED_KEY, LoadIssue, LoadResult
from .source import SourceSnapshot
from .target import Row, TargetStore


def _sequence_order(link: Row) -> Tuple[int, Any]:
    seq = link.get("diagnosis_sequence")
    return (0, seq) if isinstance(seq, int) else (1, 0)


def _procedure_date_order(link: Row) -> Tuple[int, Any]:
    try:
        d = as_date(link.get("procedure_date"))
    except SOURCE_VALUE_ERRORS:
        d = None
    return (1, 0) if d is None else (0, d)


def collapse_links(links, detail_column: str, order: Callable[[Row], Any]) -> List[Row]:
    """One link per (encounter_id, detail id), keeping the first by `order`."""
    kept: Dict[Tuple[Any, Any], Row] = {}
    for link in sorted(links, key=order):
        kept.setdefault((link.get("encounter_id"), link.get(detail_column)), link)
    return list(kept.values())


def diagnosis_bridge_row(resolver: SurrogateKeyResolver, link: Row) -> Row:
    sequence = link.get("diagnosis_sequence")
    return {
        "encounter_key": resolver.resolve("fact_encounters", link.get("encounter_id")),
        "diagnosis_key": resolver.resolve("dim_diagnosis", link.get("diagnosis_id")),
        "diagnosis_sequence": sequence,
        "is_primary_diagnosis": sequence == 1,
    }


def procedure_bridge_row(resolver: SurrogateKeyResolver, link: Row) -> Row:
    return {
        "encounter_key": resolver.resolve("fact_encounters", link.get("encounter_id")),
        "procedure_key": resolver.resolve("dim_procedure", link.get("procedure_id")),
        "procedure_date_key": resolver.resolve_date(link.get("procedure_date")),
    }


@dataclass(frozen=True)
class BridgeDef:
    """A bridge table and how its rows are built from source links."""
    name: str
    source_table: str
    detail_column: str
    order_fn: Callable[[Row], Any]
    build_fn: Callable[[SurrogateKeyResolver, Row], Row]
    refresh_columns: Tuple[str, ...]


BRIDGES: Dict[str, BridgeDef] = {
    "bridge_encounter_diagnoses": BridgeDef(
        "bridge_encounter_diagnoses", "encounter_diagnoses", "diagnosis_id",
        _sequence_order, diagnosis_bridge_row,
        ("diagnosis_sequence", "is_primary_diagnosis"),
    ),
    "bridge_encounter_procedures": BridgeDef(
        "bridge_encounter_procedures", "encounter_procedures", "procedure_id",
        _procedure_date_order, procedure_bridge_row,
        ("procedure_date_key",),
    ),
}


def load_bridge(
    store: TargetStore,
    snapshot: SourceSnapshot,
    config: LoadConfig,
    name: str,
    resolver: Optional[SurrogateKeyResolver] = None
) -> LoadResult:
    """Upsert bridge rows on their composite key."""
    start_time = time.time()
    bridge = BRIDGES[name]
    defn = store.registry[name]
    resolver = resolver or SurrogateKeyResolver(store)
    result = LoadResult(name, defn.category)

    links = collapse_links(snapshot.rows(bridge.source_table), bridge.detail_column, bridge.order_fn)
    for link in links:
        result.processed += 1
        natural_key = (link.get("encounter_id"), link.get(bridge.detail_column))
        try:
            row = bridge.build_fn(resolver, link)
            key = tuple(row[c] for c in defn.primary_key)
            current = store.get(name, key)
            if current is None:
                store.insert(name, row)
                result.inserted += 1
                continue

            changes = {c: row[c] for c in bridge.refresh_columns if current.get(c) != row[c]}
            if changes:
                store.update(name, key, changes)
                result.updated += 1
            else:
                result.unchanged += 1
        except AmbiguousTemporalMatchError as e:
            result.skip(LoadIssue(AMBIGUOUS_MATCH, name, natural_key, e.table_name, config.run_date, str(e)))
        except UnresolvedKeyError as e:
            result.skip(LoadIssue(UNRESOLVED_KEY, name, natural_key, e.table_name, config.run_date, str(e)))
        except ConstraintViolationError as e:
            result.skip(LoadIssue(CONSTRAINT_VIOLATION, name, natural_key, None, config.run_date, str(e)))
        except SOURCE_VALUE_ERRORS as e:
            result.skip(LoadIssue(INVALID_VALUE, name, natural_key, None, config.run_date, f"bad source value: {e}"))

    result.elapsed_seconds = round(time.time() - start_time, 2)
    print(f"  {result.summary_line()}")
    return result
