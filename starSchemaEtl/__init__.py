"""
Healthcare Star Schema Load

Loads a normalized OLTP healthcare dataset into an analytical star schema:
Type-1 and SCD Type-2 dimensions, an encounter-grain fact table and
diagnosis/procedure bridge tables. Every run is stamped with an explicit
run date and can be repeated without duplicating rows.

Usage:
    from pyspark.sql import SparkSession
    spark = SparkSession.builder.getOrCreate()

    from starSchemaEtl import main
    result = main(spark, run_date="2024-02-01", catalog="healthcare_dev")

Without Spark (tests, local runs):
    from starSchemaEtl import (
        create_config,
        InMemorySourceReader,
        InMemoryTargetStore,
        run_pipeline
    )

    config = create_config(run_date="2024-02-01")
    store = InMemoryTargetStore()
    result = run_pipeline(InMemorySourceReader(tables), store, config, verify=True)
"""

from .config import (
    LoadConfig,
    SENTINEL_MAX_DATE,
    create_config,
    create_config_from_widgets,
    setup_widgets,
    get_full_table_name
)

from .errors import (
    StarSchemaError,
    SourceReadError,
    TargetStoreError,
    ConstraintViolationError,
    UnresolvedKeyError,
    AmbiguousTemporalMatchError
)

from .schema import SOURCE_TABLES, TARGET_TABLE_REGISTRY, TARGET_SCHEMAS, TargetTableDef

from .source import SourceReader, InMemorySourceReader, SourceSnapshot, read_source_snapshot
from .target import TargetStore, InMemoryTargetStore
from .spark_io import SparkSourceReader, SparkTargetStore, setup_target_schema

from .resolver import SurrogateKeyResolver, date_key
from .results import LoadIssue, LoadResult
from .dimensions import TYPE1_DIMENSIONS, build_date_row, load_type1_dimension
from .scd import TYPE2_DIMENSIONS, load_type2_dimension
from .metrics import EncounterMetrics, aggregate_encounter_metrics
from .facts import load_fact_encounters
from .bridges import BRIDGES, load_bridge
from .verify import VerificationResult, verify_star_schema

from .run_pipeline import (
    run_pipeline,
    main,
    main_with_widgets,
    PipelineResult,
    StageResult
)

__all__ = [
    # Config
    "LoadConfig",
    "SENTINEL_MAX_DATE",
    "create_config",
    "create_config_from_widgets",
    "setup_widgets",
    "get_full_table_name",
    # Errors
    "StarSchemaError",
    "SourceReadError",
    "TargetStoreError",
    "ConstraintViolationError",
    "UnresolvedKeyError",
    "AmbiguousTemporalMatchError",
    # Schema
    "SOURCE_TABLES",
    "TARGET_TABLE_REGISTRY",
    "TARGET_SCHEMAS",
    "TargetTableDef",
    # Collaborators
    "SourceReader",
    "InMemorySourceReader",
    "SourceSnapshot",
    "read_source_snapshot",
    "TargetStore",
    "InMemoryTargetStore",
    "SparkSourceReader",
    "SparkTargetStore",
    "setup_target_schema",
    # Engine
    "SurrogateKeyResolver",
    "date_key",
    "LoadIssue",
    "LoadResult",
    "TYPE1_DIMENSIONS",
    "build_date_row",
    "load_type1_dimension",
    "TYPE2_DIMENSIONS",
    "load_type2_dimension",
    "EncounterMetrics",
    "aggregate_encounter_metrics",
    "load_fact_encounters",
    "BRIDGES",
    "load_bridge",
    "VerificationResult",
    "verify_star_schema",
    # Pipeline
    "run_pipeline",
    "main",
    "main_with_widgets",
    "PipelineResult",
    "StageResult",
]
