from datetime import date

import pytest

from starSchemaEtl import ConstraintViolationError, InMemoryTargetStore, SENTINEL_MAX_DATE, TargetStoreError


def test_insert_assigns_sequential_surrogate_keys(store):
    first = store.insert("dim_specialty", {"specialty_id": 1, "specialty_name": "Cardiology"})
    second = store.insert("dim_specialty", {"specialty_id": 2, "specialty_name": "Pediatrics"})

    assert first["specialty_key"] == 1
    assert second["specialty_key"] == 2
    assert second["specialty_code"] is None


def test_surrogate_keys_continue_after_existing_rows():
    target = InMemoryTargetStore({"dim_department": [
        {"department_key": 7, "department_id": 10, "department_name": "ER"},
    ]})
    row = target.insert("dim_department", {"department_id": 11})
    assert row["department_key"] == 8


def test_duplicate_natural_key_rejected_for_type1(store):
    store.insert("dim_diagnosis", {"diagnosis_id": 500, "icd10_code": "I10"})
    with pytest.raises(ConstraintViolationError):
        store.insert("dim_diagnosis", {"diagnosis_id": 500, "icd10_code": "I11"})


def test_type2_dimension_allows_versions_of_one_natural_key(store):
    store.insert("dim_provider", {
        "provider_id": 100, "provider_name": "A", "effective_start_date": date(2024, 1, 1),
        "effective_end_date": date(2024, 2, 1), "is_current": False,
    })
    store.insert("dim_provider", {
        "provider_id": 100, "provider_name": "B", "effective_start_date": date(2024, 2, 1),
        "effective_end_date": SENTINEL_MAX_DATE, "is_current": True,
    })
    assert len(store.find_by_natural_key("dim_provider", 100)) == 2


def test_not_null_columns_enforced(store):
    with pytest.raises(ConstraintViolationError, match="cannot be null"):
        store.insert("dim_patient", {"first_name": "Jane"})


def test_foreign_key_violation_rejected(store):
    with pytest.raises(ConstraintViolationError, match="foreign key"):
        store.insert("bridge_encounter_diagnoses", {"encounter_key": 1, "diagnosis_key": 1})


def test_unknown_columns_rejected(store):
    with pytest.raises(ConstraintViolationError, match="unknown columns"):
        store.insert("dim_specialty", {"specialty_id": 1, "colour": "red"})


def test_update_overwrites_only_given_columns(store):
    row = store.insert("dim_department", {"department_id": 10, "department_name": "ER", "floor": 1})
    store.update("dim_department", row["department_key"], {"floor": 2})

    updated = store.get("dim_department", row["department_key"])
    assert updated["floor"] == 2
    assert updated["department_name"] == "ER"


def test_update_rejects_primary_key_change(store):
    row = store.insert("dim_department", {"department_id": 10})
    with pytest.raises(ConstraintViolationError):
        store.update("dim_department", row["department_key"], {"department_key": 99})


def test_update_of_missing_row_rejected(store):
    with pytest.raises(ConstraintViolationError):
        store.update("dim_department", 42, {"floor": 2})


def test_update_cannot_collide_natural_keys(store):
    store.insert("dim_procedure", {"procedure_id": 700})
    other = store.insert("dim_procedure", {"procedure_id": 701})
    with pytest.raises(ConstraintViolationError):
        store.update("dim_procedure", other["procedure_key"], {"procedure_id": 700})


def test_commit_publishes_and_rollback_discards(store):
    store.insert("dim_specialty", {"specialty_id": 1})
    assert store.committed_rows("dim_specialty") == []
    assert store.pending_tables == ["dim_specialty"]

    store.commit()
    assert len(store.committed_rows("dim_specialty")) == 1

    store.insert("dim_specialty", {"specialty_id": 2})
    store.rollback()
    assert [r["specialty_id"] for r in store.rows("dim_specialty")] == [1]
    assert store.pending_tables == []
    assert store.insert("dim_specialty", {"specialty_id": 3})["specialty_key"] == 2


def test_reads_return_copies(store):
    row = store.insert("dim_specialty", {"specialty_id": 1, "specialty_name": "Cardiology"})
    fetched = store.get("dim_specialty", row["specialty_key"])
    fetched["specialty_name"] = "changed"
    assert store.get("dim_specialty", row["specialty_key"])["specialty_name"] == "Cardiology"


def test_persist_failure_surfaces_as_store_error():
    class FailingStore(InMemoryTargetStore):
        def _persist(self, tables):
            raise TargetStoreError("disk full")

    target = FailingStore()
    target.insert("dim_specialty", {"specialty_id": 1})
    with pytest.raises(TargetStoreError):
        target.commit()
    assert target.committed_rows("dim_specialty") == []
