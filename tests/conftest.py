import copy
from datetime import date, datetime
from decimal import Decimal

import pytest

from starSchemaEtl import InMemorySourceReader, InMemoryTargetStore, create_config, run_pipeline
from starSchemaEtl.source import read_source_snapshot


BASE_TABLES = {
    "specialties": [
        {"specialty_id": 1, "specialty_name": "Cardiology", "specialty_code": "CARD"},
        {"specialty_id": 2, "specialty_name": "Pediatrics", "specialty_code": "PED"},
    ],
    "departments": [
        {"department_id": 10, "department_name": "Cardiology Ward", "floor": 3, "capacity": 40},
        {"department_id": 11, "department_name": "Children's Clinic", "floor": 1, "capacity": 25},
    ],
    "providers": [
        {"provider_id": 100, "first_name": "Gregory", "last_name": "House", "credential": "MD", "specialty_id": 1},
        {"provider_id": 101, "first_name": "Lisa", "last_name": "Cuddy", "credential": "MD", "specialty_id": 2},
    ],
    "patients": [
        {"patient_id": 1, "first_name": "Jane", "last_name": "Doe", "gender": "F",
         "date_of_birth": date(1980, 5, 17), "mrn": "MRN001"},
        {"patient_id": 2, "first_name": "John", "last_name": "Roe", "gender": "M",
         "date_of_birth": date(2010, 1, 1), "mrn": "MRN002"},
    ],
    "diagnoses": [
        {"diagnosis_id": 500, "icd10_code": "I10", "icd10_description": "Essential hypertension"},
        {"diagnosis_id": 501, "icd10_code": "E11.9", "icd10_description": "Type 2 diabetes mellitus"},
    ],
    "procedures": [
        {"procedure_id": 700, "cpt_code": "93000", "cpt_description": "Electrocardiogram"},
        {"procedure_id": 701, "cpt_code": "99213", "cpt_description": "Office visit"},
    ],
    "encounters": [
        {"encounter_id": 1000, "patient_id": 1, "provider_id": 100, "department_id": 10,
         "encounter_type": "Inpatient", "encounter_date": datetime(2024, 1, 15, 8, 30),
         "discharge_date": datetime(2024, 1, 18, 12, 0)},
        {"encounter_id": 1001, "patient_id": 2, "provider_id": 101, "department_id": 11,
         "encounter_type": "Outpatient", "encounter_date": datetime(2024, 1, 20, 9, 0),
         "discharge_date": None},
    ],
    "encounter_diagnoses": [
        {"encounter_id": 1000, "diagnosis_id": 500, "diagnosis_sequence": 1},
        {"encounter_id": 1000, "diagnosis_id": 501, "diagnosis_sequence": 2},
        {"encounter_id": 1001, "diagnosis_id": 500, "diagnosis_sequence": 1},
    ],
    "encounter_procedures": [
        {"encounter_id": 1000, "procedure_id": 700, "procedure_date": date(2024, 1, 16)},
        {"encounter_id": 1001, "procedure_id": 701, "procedure_date": date(2024, 1, 20)},
    ],
    "billing": [
        {"billing_id": 1, "encounter_id": 1000, "claim_amount": Decimal("1500.00"),
         "allowed_amount": Decimal("1200.50"), "claim_date": date(2024, 1, 25)},
        {"billing_id": 2, "encounter_id": 1000, "claim_amount": Decimal("300.00"),
         "allowed_amount": Decimal("250.25"), "claim_date": date(2024, 1, 26)},
    ],
}


@pytest.fixture
def tables():
    """A fresh, mutable copy of the baseline source tables."""
    return copy.deepcopy(BASE_TABLES)


@pytest.fixture
def store():
    return InMemoryTargetStore()


@pytest.fixture
def snapshot_of():
    def _snapshot(source_tables):
        return read_source_snapshot(InMemorySourceReader(source_tables))
    return _snapshot


@pytest.fixture
def load_run():
    """Run the full load for the given tables and run date."""
    def _run(source_tables, target, run_date, **kwargs):
        stages = kwargs.pop("stages", "all")
        verify = kwargs.pop("verify", True)
        config = create_config(run_date=run_date, **kwargs)
        return run_pipeline(InMemorySourceReader(source_tables), target, config, stages=stages, verify=verify)
    return _run


def rows_for(target, table_name, **criteria):
    return sorted(
        (r for r in target.rows(table_name) if all(r.get(k) == v for k, v in criteria.items())),
        key=lambda r: tuple(r[c] for c in target.registry[table_name].primary_key)
    )
