from decimal import Decimal

import pytest

pyspark = pytest.importorskip("pyspark")

from starSchemaEtl import SparkSourceReader, SparkTargetStore, SourceReadError, create_config, run_pipeline
from starSchemaEtl.config import get_full_table_name

from conftest import rows_for


SOURCE_COLUMNS = {
    "patients": [("patient_id", "INT"), ("first_name", "STRING"), ("last_name", "STRING"), ("gender", "STRING"),
                 ("date_of_birth", "DATE"), ("mrn", "STRING")],
    "providers": [("provider_id", "INT"), ("first_name", "STRING"), ("last_name", "STRING"),
                  ("credential", "STRING"), ("specialty_id", "INT")],
    "specialties": [("specialty_id", "INT"), ("specialty_name", "STRING"), ("specialty_code", "STRING")],
    "departments": [("department_id", "INT"), ("department_name", "STRING"), ("floor", "INT"), ("capacity", "INT")],
    "encounters": [("encounter_id", "INT"), ("patient_id", "INT"), ("provider_id", "INT"), ("department_id", "INT"),
                   ("encounter_type", "STRING"), ("encounter_date", "TIMESTAMP"), ("discharge_date", "TIMESTAMP")],
    "diagnoses": [("diagnosis_id", "INT"), ("icd10_code", "STRING"), ("icd10_description", "STRING")],
    "procedures": [("procedure_id", "INT"), ("cpt_code", "STRING"), ("cpt_description", "STRING")],
    "encounter_diagnoses": [("encounter_id", "INT"), ("diagnosis_id", "INT"), ("diagnosis_sequence", "INT")],
    "encounter_procedures": [("encounter_id", "INT"), ("procedure_id", "INT"), ("procedure_date", "DATE")],
    "billing": [("billing_id", "INT"), ("encounter_id", "INT"), ("claim_amount", "DECIMAL(12,2)"),
                ("allowed_amount", "DECIMAL(12,2)"), ("claim_date", "DATE")],
}


@pytest.fixture(scope="session")
def spark(tmp_path_factory):
    from pyspark.sql import SparkSession
    warehouse = tmp_path_factory.mktemp("warehouse")
    try:
        session = (
            SparkSession.builder
            .master("local[1]")
            .appName("star-schema-etl-tests")
            .config("spark.sql.warehouse.dir", str(warehouse))
            .config("spark.sql.shuffle.partitions", "1")
            .config("spark.ui.enabled", "false")
            .getOrCreate()
        )
    except Exception as e:
        pytest.skip(f"Spark is not available: {e}")
    yield session
    session.stop()


@pytest.fixture
def spark_config(spark):
    config = create_config(run_date="2024-01-01", source_schema="", target_schema="star_schema_test",
                           table_format="parquet")
    spark.sql(f"DROP SCHEMA IF EXISTS {config.target_schema} CASCADE")
    spark.sql(f"CREATE SCHEMA {config.target_schema}")
    return config


def register_source_views(spark, source_tables):
    for name, columns in SOURCE_COLUMNS.items():
        ddl = ", ".join(f"{c} {t}" for c, t in columns)
        rows = [tuple(r.get(c) for c, _ in columns) for r in source_tables[name]]
        spark.createDataFrame(rows, schema=ddl).createOrReplaceTempView(name)


def test_source_reader_returns_row_dicts(spark, spark_config, tables):
    register_source_views(spark, tables)
    rows = SparkSourceReader(spark, spark_config).read("billing")

    assert sorted(r["billing_id"] for r in rows) == [1, 2]
    assert {r["claim_amount"] for r in rows} == {Decimal("1500.00"), Decimal("300.00")}


def test_missing_source_table_raises_source_read_error(spark, spark_config):
    reader = SparkSourceReader(spark, create_config(run_date="2024-01-01", source_schema="no_such_schema"))
    with pytest.raises(SourceReadError):
        reader.read("patients")


def test_committed_tables_survive_a_new_store(spark, spark_config, tables):
    register_source_views(spark, tables)
    first_store = SparkTargetStore(spark, spark_config)
    first = run_pipeline(SparkSourceReader(spark, spark_config), first_store, spark_config, verify=True)
    assert first.success

    fact_table = get_full_table_name(spark_config, "target", "fact_encounters")
    assert spark.table(fact_table).count() == 2

    second_store = SparkTargetStore(spark, spark_config)
    assert len(rows_for(second_store, "dim_patient")) == 2
    fact = rows_for(second_store, "fact_encounters", encounter_id=1000)[0]
    assert fact["total_allowed_amount"] == Decimal("1450.75")

    rerun = run_pipeline(SparkSourceReader(spark, spark_config), second_store, spark_config, verify=True)
    assert rerun.success
    assert rerun.total_rows_written == 0


class FailingWriteStore(SparkTargetStore):
    """Records table overwrites instead of calling Spark. The nth write fails."""

    def __init__(self, config, fail_on_write=None):
        super().__init__(None, config, tables={})
        self.fail_on_write = fail_on_write
        self.writes = 0
        self.published = {}

    def write_table(self, table_name, rows):
        self.writes += 1
        if self.writes == self.fail_on_write:
            raise IOError(f"write of {table_name} failed")
        key_columns = self.registry[table_name].primary_key
        self.published[table_name] = {tuple(r[c] for c in key_columns) for r in rows}
        return table_name


def committed_keys(target, table_name):
    key_columns = target.registry[table_name].primary_key
    return {tuple(r[c] for c in key_columns) for r in target.committed_rows(table_name)}


def test_failed_commit_restores_tables_already_written(tables, load_run):
    target = FailingWriteStore(create_config(run_date="2024-01-01"), fail_on_write=2)
    result = load_run(tables, target, "2024-01-01", stages="dimensions")

    assert not result.success
    assert target.writes == 3
    assert target.published == {"dim_date": set()}
    assert committed_keys(target, "dim_date") == set()


def test_failed_bridge_commit_keeps_earlier_stages_and_recovers(tables, load_run):
    # 8 dimension tables, then the fact table, then the two bridges
    target = FailingWriteStore(create_config(run_date="2024-01-01"), fail_on_write=11)
    result = load_run(tables, target, "2024-01-01")

    assert result.stage("dimensions").success
    assert result.stage("facts").success
    assert not result.stage("bridges").success
    assert target.published["bridge_encounter_diagnoses"] == set()
    assert len(target.published["fact_encounters"]) == 2
    for table_name, keys in target.published.items():
        assert keys == committed_keys(target, table_name)

    target.fail_on_write = None
    retry = load_run(tables, target, "2024-01-01")
    assert retry.success
    assert len(target.published["bridge_encounter_diagnoses"]) == 3
    assert len(target.published["bridge_encounter_procedures"]) == 2
