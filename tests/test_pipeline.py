from datetime import date, datetime
import json

import pytest

from starSchemaEtl import (
    InMemorySourceReader,
    InMemoryTargetStore,
    SENTINEL_MAX_DATE,
    SourceReadError,
    TargetStoreError,
    create_config,
    run_pipeline,
)

from conftest import rows_for


def table_counts(target):
    return {name: len(target.rows(name)) for name in target.registry}


def test_end_to_end_patient_history_scenario(tables, store, load_run):
    first = load_run(tables, store, "2024-01-01")
    assert first.success

    tables["patients"][0]["last_name"] = "Smith"
    tables["encounters"].append({
        "encounter_id": 1002, "patient_id": 1, "provider_id": 100, "department_id": 10,
        "encounter_type": "Outpatient", "encounter_date": datetime(2024, 2, 10, 14, 0), "discharge_date": None,
    })
    second = load_run(tables, store, "2024-02-01")
    assert second.success

    version_a, version_b = rows_for(store, "dim_patient", patient_id=1)
    assert (version_a["effective_start_date"], version_a["effective_end_date"], version_a["is_current"]) == \
        (date(2024, 1, 1), date(2024, 2, 1), False)
    assert (version_b["effective_start_date"], version_b["effective_end_date"], version_b["is_current"]) == \
        (date(2024, 2, 1), SENTINEL_MAX_DATE, True)
    assert version_b["effective_end_date"] == date(9999, 12, 31)

    assert rows_for(store, "fact_encounters", encounter_id=1000)[0]["patient_key"] == version_a["patient_key"]
    assert rows_for(store, "fact_encounters", encounter_id=1002)[0]["patient_key"] == version_b["patient_key"]
    assert all(v.passed for v in second.verification)


def test_second_run_with_unchanged_source_writes_nothing(tables, store, load_run):
    load_run(tables, store, "2024-01-01")
    counts = table_counts(store)
    writes = store.write_count

    rerun = load_run(tables, store, "2024-01-01")
    assert rerun.success
    assert rerun.total_rows_written == 0
    assert store.write_count == writes
    assert table_counts(store) == counts


def test_rerun_on_later_date_is_idempotent(tables, store, load_run):
    load_run(tables, store, "2024-01-01")
    counts = table_counts(store)

    rerun = load_run(tables, store, "2024-01-05")
    assert rerun.total_rows_written == 0
    assert table_counts(store) == counts


def test_run_summary_counts_per_component(tables, store, load_run):
    result = load_run(tables, store, "2024-01-01")

    assert [s.stage_name for s in result.stages] == ["dimensions", "facts", "bridges"]
    dimensions = result.stage("dimensions")
    assert dimensions.tables_processed == 8
    facts = result.stage("facts").results[0]
    assert (facts.processed, facts.inserted, facts.updated, facts.skipped) == (2, 2, 0, 0)
    json.dumps(result.to_dict())


def test_partial_failure_is_reported_and_run_continues(tables, store, load_run):
    tables["encounters"][1]["department_id"] = 99
    result = load_run(tables, store, "2024-01-01")

    facts = result.stage("facts").results[0]
    assert result.success
    assert facts.skipped_by_reason() == {"unresolved_key": 1}
    assert facts.issues[0].dimension == "dim_department"
    assert len(store.rows("fact_encounters")) == 1

    tables["departments"].append({"department_id": 99, "department_name": "Annex", "floor": 2, "capacity": 5})
    retry = load_run(tables, store, "2024-01-02")
    assert retry.stage("facts").results[0].inserted == 1
    assert len(store.rows("fact_encounters")) == 2


def test_stage_failure_rolls_back_and_skips_later_stages(tables, load_run):
    class FactWriteFailure(InMemoryTargetStore):
        def _persist(self, changed):
            if "fact_encounters" in changed:
                raise TargetStoreError("fact table unavailable")

    target = FactWriteFailure()
    result = load_run(tables, target, "2024-01-01")

    assert not result.success
    assert result.stage("dimensions").success
    assert not result.stage("facts").success
    assert result.stage("bridges").errors == ["skipped after facts failed"]
    assert target.rows("fact_encounters") == []
    assert len(target.committed_rows("dim_patient")) == 2


def test_source_read_failure_aborts_before_any_write(tables, store):
    class BrokenReader(InMemorySourceReader):
        def read(self, table_name):
            if table_name == "billing":
                raise ConnectionError("source offline")
            return super().read(table_name)

    with pytest.raises(SourceReadError):
        run_pipeline(BrokenReader(tables), store, create_config(run_date="2024-01-01"))
    assert store.write_count == 0


def test_source_rows_missing_columns_are_fatal(tables, store):
    del tables["encounters"][0]["department_id"]
    with pytest.raises(SourceReadError, match="missing columns"):
        run_pipeline(InMemorySourceReader(tables), store, create_config(run_date="2024-01-01"))


def test_parallel_dimension_loads_match_sequential(tables, load_run):
    sequential = InMemoryTargetStore()
    parallel = InMemoryTargetStore()
    load_run(tables, sequential, "2024-01-01")
    result = load_run(tables, parallel, "2024-01-01", parallel_dimensions=True, max_workers=3)

    assert result.success
    assert table_counts(parallel) == table_counts(sequential)
    assert {r["encounter_id"] for r in parallel.rows("fact_encounters")} == {1000, 1001}


def test_unknown_stage_selection_rejected(tables, store):
    with pytest.raises(ValueError):
        run_pipeline(InMemorySourceReader(tables), store, create_config(run_date="2024-01-01"), stages="gold")


def test_run_date_is_required():
    with pytest.raises(ValueError):
        create_config(run_date="")
    with pytest.raises(ValueError):
        create_config(run_date="9999-12-31")


def test_bad_source_values_are_row_level_issues(tables, store, load_run):
    tables["billing"][0]["allowed_amount"] = "n/a"
    tables["encounters"].append({
        "encounter_id": 1002, "patient_id": 1, "provider_id": 100, "department_id": 10,
        "encounter_type": "Outpatient", "encounter_date": "not a date", "discharge_date": None,
    })
    result = load_run(tables, store, "2024-01-01")

    assert result.success
    assert all(s.success for s in result.stages)
    dim_date = next(r for r in result.stage("dimensions").results if r.table_name == "dim_date")
    assert [(i.kind, i.natural_key) for i in dim_date.issues] == [("invalid_value", 1002)]

    facts = result.stage("facts").results[0]
    assert facts.skipped_by_reason() == {"invalid_value": 2}
    assert sorted(i.natural_key for i in facts.issues) == [1000, 1002]
    assert [r["encounter_id"] for r in store.rows("fact_encounters")] == [1001]
