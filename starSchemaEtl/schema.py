"""
Star Schema Table Definitions

Source (OLTP) tables read by the load and the target dimension, fact and
bridge tables it maintains. Spark schemas mirror the star_schema DDL types.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from pyspark.sql.types import (
    StructType, StructField, StringType, IntegerType, LongType,
    ShortType, ByteType, DateType, BooleanType, DecimalType
)


@dataclass(frozen=True)
class SourceTableDef:
    """Definition of a source table."""
    name: str
    natural_key: Optional[Tuple[str, ...]]
    columns: Tuple[str, ...]
    category: str


SOURCE_TABLES: Tuple[SourceTableDef, ...] = (
    SourceTableDef("patients", ("patient_id",),
                   ("patient_id", "first_name", "last_name", "gender", "date_of_birth", "mrn"), "entity"),
    SourceTableDef("providers", ("provider_id",),
                   ("provider_id", "first_name", "last_name", "credential", "specialty_id"), "entity"),
    SourceTableDef("specialties", ("specialty_id",),
                   ("specialty_id", "specialty_name", "specialty_code"), "reference"),
    SourceTableDef("departments", ("department_id",),
                   ("department_id", "department_name", "floor", "capacity"), "reference"),
    SourceTableDef("encounters", ("encounter_id",),
                   ("encounter_id", "patient_id", "provider_id", "department_id",
                    "encounter_type", "encounter_date", "discharge_date"), "clinical"),
    SourceTableDef("diagnoses", ("diagnosis_id",),
                   ("diagnosis_id", "icd10_code", "icd10_description"), "reference"),
    SourceTableDef("procedures", ("procedure_id",),
                   ("procedure_id", "cpt_code", "cpt_description"), "reference"),
    SourceTableDef("encounter_diagnoses", ("encounter_id", "diagnosis_id"),
                   ("encounter_id", "diagnosis_id", "diagnosis_sequence"), "clinical"),
    SourceTableDef("encounter_procedures", ("encounter_id", "procedure_id"),
                   ("encounter_id", "procedure_id", "procedure_date"), "clinical"),
    SourceTableDef("billing", ("billing_id",),
                   ("billing_id", "encounter_id", "claim_amount", "allowed_amount", "claim_date"), "financial"),
)

SOURCE_TABLE_NAMES: Tuple[str, ...] = tuple(t.name for t in SOURCE_TABLES)


MONEY = DecimalType(12, 2)

TARGET_SCHEMAS: Dict[str, StructType] = {
    "dim_date": StructType([
        StructField("date_key", IntegerType(), False),
        StructField("calendar_date", DateType(), False),
        StructField("day_of_month", ByteType(), True),
        StructField("month", ByteType(), True),
        StructField("month_name", StringType(), True),
        StructField("quarter", ByteType(), True),
        StructField("year", ShortType(), True),
        StructField("is_weekend", BooleanType(), True),
    ]),

    "dim_patient": StructType([
        StructField("patient_key", IntegerType(), False),
        StructField("patient_id", IntegerType(), False),
        StructField("first_name", StringType(), True),
        StructField("last_name", StringType(), True),
        StructField("gender", StringType(), True),
        StructField("date_of_birth", DateType(), True),
        StructField("age", IntegerType(), True),
        StructField("age_group", StringType(), True),
        StructField("mrn", StringType(), True),
        StructField("effective_start_date", DateType(), True),
        StructField("effective_end_date", DateType(), True),
        StructField("is_current", BooleanType(), True),
    ]),

    "dim_specialty": StructType([
        StructField("specialty_key", IntegerType(), False),
        StructField("specialty_id", IntegerType(), False),
        StructField("specialty_name", StringType(), True),
        StructField("specialty_code", StringType(), True),
    ]),

    "dim_department": StructType([
        StructField("department_key", IntegerType(), False),
        StructField("department_id", IntegerType(), False),
        StructField("department_name", StringType(), True),
        StructField("floor", IntegerType(), True),
        StructField("capacity", IntegerType(), True),
    ]),

    "dim_provider": StructType([
        StructField("provider_key", IntegerType(), False),
        StructField("provider_id", IntegerType(), False),
        StructField("provider_name", StringType(), True),
        StructField("credential", StringType(), True),
        StructField("effective_start_date", DateType(), True),
        StructField("effective_end_date", DateType(), True),
        StructField("is_current", BooleanType(), True),
    ]),

    "dim_encounter_type": StructType([
        StructField("encounter_type_key", IntegerType(), False),
        StructField("encounter_type_code", StringType(), True),
        StructField("encounter_type_description", StringType(), True),
    ]),

    "dim_diagnosis": StructType([
        StructField("diagnosis_key", IntegerType(), False),
        StructField("diagnosis_id", IntegerType(), False),
        StructField("icd10_code", StringType(), True),
        StructField("icd10_description", StringType(), True),
    ]),

    "dim_procedure": StructType([
        StructField("procedure_key", IntegerType(), False),
        StructField("procedure_id", IntegerType(), False),
        StructField("cpt_code", StringType(), True),
        StructField("cpt_description", StringType(), True),
    ]),

    "fact_encounters": StructType([
        StructField("encounter_key", LongType(), False),
        StructField("encounter_id", IntegerType(), False),
        StructField("date_key", IntegerType(), False),
        StructField("discharge_date_key", IntegerType(), True),
        StructField("patient_key", IntegerType(), False),
        StructField("provider_key", IntegerType(), False),
        StructField("specialty_key", IntegerType(), False),
        StructField("department_key", IntegerType(), False),
        StructField("encounter_type_key", IntegerType(), False),
        StructField("diagnosis_count", IntegerType(), True),
        StructField("procedure_count", IntegerType(), True),
        StructField("total_allowed_amount", MONEY, True),
        StructField("total_claim_amount", MONEY, True),
        StructField("length_of_stay_days", IntegerType(), True),
        StructField("is_readmission_candidate", BooleanType(), True),
    ]),

    "bridge_encounter_diagnoses": StructType([
        StructField("encounter_key", LongType(), False),
        StructField("diagnosis_key", IntegerType(), False),
        StructField("diagnosis_sequence", IntegerType(), True),
        StructField("is_primary_diagnosis", BooleanType(), True),
    ]),

    "bridge_encounter_procedures": StructType([
        StructField("encounter_key", LongType(), False),
        StructField("procedure_key", IntegerType(), False),
        StructField("procedure_date_key", IntegerType(), True),
    ]),
}


@dataclass(frozen=True)
class TargetTableDef:
    """Definition of a target star schema table.

    ``primary_key`` is the surrogate key column (or the composite key of a
    bridge). ``natural_key`` is the source identifier; it is unique for every
    category except ``dimension_type2``, where several versions share it.
    ``foreign_keys`` maps a column to the ``(table, column)`` it references.
    """
    name: str
    category: str
    primary_key: Tuple[str, ...]
    natural_key: Tuple[str, ...]
    foreign_keys: Tuple[Tuple[str, str, str], ...] = ()
    auto_increment: bool = True

    @property
    def schema(self) -> StructType:
        return TARGET_SCHEMAS[self.name]

    @property
    def columns(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.schema.fields)

    @property
    def natural_key_unique(self) -> bool:
        return self.category != "dimension_type2"

    @property
    def surrogate_key(self) -> str:
        return self.primary_key[0]


TARGET_TABLE_REGISTRY: Dict[str, TargetTableDef] = {
    # Type-1 dimensions
    "dim_date": TargetTableDef("dim_date", "dimension_type1", ("date_key",), ("date_key",),
                               auto_increment=False),
    "dim_specialty": TargetTableDef("dim_specialty", "dimension_type1", ("specialty_key",), ("specialty_id",)),
    "dim_department": TargetTableDef("dim_department", "dimension_type1", ("department_key",), ("department_id",)),
    "dim_encounter_type": TargetTableDef("dim_encounter_type", "dimension_type1", ("encounter_type_key",),
                                         ("encounter_type_code",)),
    "dim_diagnosis": TargetTableDef("dim_diagnosis", "dimension_type1", ("diagnosis_key",), ("diagnosis_id",)),
    "dim_procedure": TargetTableDef("dim_procedure", "dimension_type1", ("procedure_key",), ("procedure_id",)),
    # Type-2 dimensions
    "dim_patient": TargetTableDef("dim_patient", "dimension_type2", ("patient_key",), ("patient_id",)),
    "dim_provider": TargetTableDef("dim_provider", "dimension_type2", ("provider_key",), ("provider_id",)),
    # Fact
    "fact_encounters": TargetTableDef(
        "fact_encounters", "fact", ("encounter_key",), ("encounter_id",),
        foreign_keys=(
            ("date_key", "dim_date", "date_key"),
            ("discharge_date_key", "dim_date", "date_key"),
            ("patient_key", "dim_patient", "patient_key"),
            ("provider_key", "dim_provider", "provider_key"),
            ("specialty_key", "dim_specialty", "specialty_key"),
            ("department_key", "dim_department", "department_key"),
            ("encounter_type_key", "dim_encounter_type", "encounter_type_key"),
        )
    ),
    # Bridges
    "bridge_encounter_diagnoses": TargetTableDef(
        "bridge_encounter_diagnoses", "bridge", ("encounter_key", "diagnosis_key"),
        ("encounter_key", "diagnosis_key"),
        foreign_keys=(
            ("encounter_key", "fact_encounters", "encounter_key"),
            ("diagnosis_key", "dim_diagnosis", "diagnosis_key"),
        ),
        auto_increment=False
    ),
    "bridge_encounter_procedures": TargetTableDef(
        "bridge_encounter_procedures", "bridge", ("encounter_key", "procedure_key"),
        ("encounter_key", "procedure_key"),
        foreign_keys=(
            ("encounter_key", "fact_encounters", "encounter_key"),
            ("procedure_key", "dim_procedure", "procedure_key"),
            ("procedure_date_key", "dim_date", "date_key"),
        ),
        auto_increment=False
    ),
}


def get_tables_by_category(category: str) -> Tuple[TargetTableDef, ...]:
    """Filter target tables by category."""
    return tuple(t for t in TARGET_TABLE_REGISTRY.values() if t.category == category)
