"""
Encounter Fact

One fact row per source encounter. Dimension keys are resolved once, at first
insert, with Type-2 dimensions matched on the encounter date; later runs only
refresh the measure columns.
"""

from typing import Any, Dict, Mapping, Optional
import time

from .config import LoadConfig, as_date
from .errors import SOURCE_VALUE_ERRORS, AmbiguousTemporalMatchError, ConstraintViolationError, UnresolvedKeyError
from .metrics import MEASURE_COLUMNS, aggregate_encounter_metrics
from .resolver import SurrogateKeyResolver
from .results import AMBIGUOUS_MATCH, CONSTRAINT_VIOLATION, INVALID_VALUE, UNRESOLVED_KEY, LoadIssue, LoadResult
from .source import SourceSnapshot
from .target import Row, TargetStore


FACT_TABLE = "fact_encounters"


def resolve_encounter_keys(
    resolver: SurrogateKeyResolver,
    encounter: Mapping[str, Any],
    providers: Mapping[Any, Row]
) -> Dict[str, Optional[int]]:
    """All dimension keys of an encounter. Raises UnresolvedKeyError on the first miss."""
    encounter_date = as_date(encounter.get("encounter_date"))
    if encounter_date is None:
        raise UnresolvedKeyError("dim_date", None, message="encounter has no encounter_date")

    provider_id = encounter.get("provider_id")
    provider = providers.get(provider_id)
    if provider is None:
        raise UnresolvedKeyError(
            "dim_specialty", None,
            message=f"provider {provider_id!r} is missing from the source providers table"
        )
    specialty_id = provider.get("specialty_id")
    if specialty_id is None:
        raise UnresolvedKeyError(
            "dim_specialty", None,
            message=f"provider {provider_id!r} has no specialty mapping"
        )

    return {
        "date_key": resolver.resolve_date(encounter_date),
        "discharge_date_key": resolver.resolve_date(encounter.get("discharge_date")),
        "patient_key": resolver.resolve("dim_patient", encounter.get("patient_id"), encounter_date),
        "provider_key": resolver.resolve("dim_provider", provider_id, encounter_date),
        "specialty_key": resolver.resolve("dim_specialty", specialty_id),
        "department_key": resolver.resolve("dim_department", encounter.get("department_id")),
        "encounter_type_key": resolver.resolve("dim_encounter_type", encounter.get("encounter_type")),
    }


def load_fact_encounters(
    store: TargetStore,
    snapshot: SourceSnapshot,
    config: LoadConfig,
    resolver: Optional[SurrogateKeyResolver] = None
) -> LoadResult:
    """Upsert one fact row per encounter."""
    start_time = time.time()
    resolver = resolver or SurrogateKeyResolver(store)
    defn = store.registry[FACT_TABLE]
    result = LoadResult(FACT_TABLE, defn.category)

    providers = snapshot.by_key("providers", "provider_id")
    diagnoses = snapshot.group_by("encounter_diagnoses", "encounter_id")
    procedures = snapshot.group_by("encounter_procedures", "encounter_id")
    billing = snapshot.group_by("billing", "encounter_id")

    for encounter in snapshot.rows("encounters"):
        if encounter.get("encounter_id") is None:
            result.processed += 1
            result.skip(LoadIssue(CONSTRAINT_VIOLATION, FACT_TABLE, None, None, config.run_date,
                                  "source encounter has a null encounter_id"))

    for encounter_id, encounter in snapshot.by_key("encounters", "encounter_id").items():
        result.processed += 1
        try:
            measures = aggregate_encounter_metrics(
                encounter,
                diagnoses.get(encounter_id, []),
                procedures.get(encounter_id, []),
                billing.get(encounter_id, []),
            ).to_row()

            encounter_key = resolver.try_resolve(FACT_TABLE, encounter_id)
            if encounter_key is not None:
                current = store.get(FACT_TABLE, encounter_key)
                changes = {
                    c: measures[c] for c in MEASURE_COLUMNS if current.get(c) != measures[c]
                }
                if changes:
                    store.update(FACT_TABLE, encounter_key, changes)
                    result.updated += 1
                else:
                    result.unchanged += 1
                continue

            keys = resolve_encounter_keys(resolver, encounter, providers)
            store.insert(FACT_TABLE, {"encounter_id": encounter_id, **keys, **measures})
            result.inserted += 1
        except AmbiguousTemporalMatchError as e:
            result.skip(LoadIssue(AMBIGUOUS_MATCH, FACT_TABLE, encounter_id, e.table_name,
                                  config.run_date, str(e)))
        except UnresolvedKeyError as e:
            result.skip(LoadIssue(UNRESOLVED_KEY, FACT_TABLE, encounter_id, e.table_name,
                                  config.run_date, str(e)))
        except ConstraintViolationError as e:
            result.skip(LoadIssue(CONSTRAINT_VIOLATION, FACT_TABLE, encounter_id, None,
                                  config.run_date, str(e)))
        except SOURCE_VALUE_ERRORS as e:
            result.skip(LoadIssue(INVALID_VALUE, FACT_TABLE, encounter_id, None,
                                  config.run_date, f"bad source value: {e}"))

    result.elapsed_seconds = round(time.time() - start_time, 2)
    print(f"  {result.summary_line()}")
    return result
