"""
Load Orchestration

End-to-end star schema load: dimensions, then the encounter fact, then the
bridge tables. Each stage commits before the next starts because later stages
resolve surrogate keys written by earlier ones.

Usage:
    from pyspark.sql import SparkSession
    spark = SparkSession.builder.getOrCreate()

    from starSchemaEtl import main
    result = main(spark, run_date="2024-02-01")
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple
import json
import sys
import time
import uuid

from pyspark.sql import SparkSession

from .bridges import BRIDGES, load_bridge
from .config import LoadConfig, create_config, create_config_from_widgets, print_config_summary, setup_widgets
from .dimensions import TYPE1_DIMENSIONS, load_type1_dimension
from .facts import load_fact_encounters
from .results import LoadResult
from .scd import TYPE2_DIMENSIONS, load_type2_dimension
from .source import SourceReader, SourceSnapshot, read_source_snapshot
from .spark_io import SparkSourceReader, SparkTargetStore, setup_target_schema
from .target import InMemoryTargetStore, TargetStore
from .verify import VerificationResult, print_verification, verify_star_schema

Loader = Tuple[str, Callable[[], LoadResult]]

STAGE_ORDER = ("dimensions", "facts", "bridges")

STAGE_SELECTIONS: Dict[str, Tuple[str, ...]] = {
    "all": STAGE_ORDER,
    "dimensions": ("dimensions",),
    "facts": ("facts",),
    "bridges": ("bridges",),
    "facts_bridges": ("facts", "bridges"),
}


@dataclass
class StageResult:
    """Result of a pipeline stage."""
    stage_name: str
    results: List[LoadResult]
    elapsed_seconds: float
    success: bool
    errors: List[str] = field(default_factory=list)

    @property
    def tables_processed(self) -> int:
        return len(self.results)

    @property
    def tables_successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def rows_written(self) -> int:
        return sum(r.rows_written for r in self.results)

    @property
    def rows_skipped(self) -> int:
        return sum(r.skipped for r in self.results)


@dataclass
class PipelineResult:
    """Result of the full load run."""
    run_id: str
    config: LoadConfig
    start_time: datetime
    end_time: datetime
    stages: List[StageResult]
    success: bool
    verification: List[VerificationResult] = field(default_factory=list)

    @property
    def total_elapsed_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def total_rows_written(self) -> int:
        return sum(s.rows_written for s in self.stages)

    def stage(self, name: str) -> Optional[StageResult]:
        return next((s for s in self.stages if s.stage_name == name), None)

    def to_dict(self) -> Dict:
        return {
            "run_id": self.run_id,
            "run_date": self.config.run_date.isoformat(),
            "target": self.config.target_full_path,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "elapsed_seconds": self.total_elapsed_seconds,
            "success": self.success,
            "rows_written": self.total_rows_written,
            "stages": [
                {
                    "name": s.stage_name,
                    "seconds": s.elapsed_seconds,
                    "success": s.success,
                    "errors": s.errors,
                    "tables": [r.to_dict() for r in s.results],
                }
                for s in self.stages
            ],
            "verification": [
                {"check": v.check_name, "table": v.table_name, "passed": v.passed, "violations": v.violations}
                for v in self.verification
            ],
        }


def run_loaders(loaders: List[Loader], parallel: bool = False, max_workers: int = 4) -> List[LoadResult]:
    """Run independent table loaders, optionally on a thread pool. Results keep loader order."""
    if not parallel or len(loaders) < 2:
        return [fn() for _, fn in loaders]
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(fn) for _, fn in loaders]
        return [f.result() for f in futures]


def run_stage(stage_name: str, store: TargetStore, batches: List[List[Loader]], config: LoadConfig) -> StageResult:
    """Run loader batches in order and commit. Any stage-wide error rolls the stage back."""
    start_time = time.time()
    results: List[LoadResult] = []
    try:
        for batch in batches:
            results.extend(run_loaders(batch, config.parallel_dimensions, config.max_workers))
        store.commit()
    except Exception as e:
        store.rollback()
        elapsed = round(time.time() - start_time, 2)
        print(f"  ERROR: {stage_name} stage rolled back - {str(e)}")
        for r in results:
            r.success = False
            r.error = "stage rolled back"
        return StageResult(stage_name, results, elapsed, False, [f"{stage_name}: {str(e)}"])

    elapsed = round(time.time() - start_time, 2)
    return StageResult(stage_name, results, elapsed, True)


def run_dimension_stage(store: TargetStore, snapshot: SourceSnapshot, config: LoadConfig) -> StageResult:
    """Run Type-1 then Type-2 dimension loads."""
    print("\n" + "="*60)
    print("DIMENSION STAGE: Type-1 and SCD Type-2 Dimensions")
    print("="*60)

    type1 = [
        (name, lambda name=name: load_type1_dimension(store, snapshot, config, name))
        for name in TYPE1_DIMENSIONS
    ]
    type2 = [
        (name, lambda name=name: load_type2_dimension(store, snapshot, config, name))
        for name in TYPE2_DIMENSIONS
    ]
    # Dimension kinds are independent of each other, so a parallel run loads them together
    batches = [type1 + type2] if config.parallel_dimensions else [type1, type2]
    return run_stage("dimensions", store, batches, config)


def run_fact_stage(store: TargetStore, snapshot: SourceSnapshot, config: LoadConfig) -> StageResult:
    """Run the encounter fact load."""
    print("\n" + "="*60)
    print("FACT STAGE: Encounter Facts")
    print("="*60)

    loaders = [("fact_encounters", lambda: load_fact_encounters(store, snapshot, config))]
    return run_stage("facts", store, [loaders], config)


def run_bridge_stage(store: TargetStore, snapshot: SourceSnapshot, config: LoadConfig) -> StageResult:
    """Run the bridge table loads."""
    print("\n" + "="*60)
    print("BRIDGE STAGE: Encounter Diagnoses and Procedures")
    print("="*60)

    loaders = [
        (name, lambda name=name: load_bridge(store, snapshot, config, name))
        for name in BRIDGES
    ]
    return run_stage("bridges", store, [loaders], config)


STAGE_RUNNERS: Dict[str, Callable[[TargetStore, SourceSnapshot, LoadConfig], StageResult]] = {
    "dimensions": run_dimension_stage,
    "facts": run_fact_stage,
    "bridges": run_bridge_stage,
}


def print_run_summary(result: PipelineResult) -> None:
    print("\n" + "#"*60)
    print("LOAD EXECUTION SUMMARY")
    print("#"*60)
    print(f"\nRun ID:       {result.run_id}")
    print(f"Run Date:     {result.config.run_date.isoformat()}")
    print(f"Status:       {'SUCCESS' if result.success else 'FAILED'}")
    print(f"Duration:     {result.total_elapsed_seconds:.1f} seconds")
    print(f"Rows Written: {result.total_rows_written:,}")

    print("\nStage Results:")
    print("-" * 60)
    for stage in result.stages:
        status = "OK" if stage.success else "FAILED"
        print(f"  {stage.stage_name.upper():10} | {status:6} | {stage.tables_successful}/{stage.tables_processed} tables | {stage.rows_written:,} written | {stage.rows_skipped:,} skipped | {stage.elapsed_seconds}s")
        for r in stage.results:
            reasons = ", ".join(f"{k}={v}" for k, v in sorted(r.skipped_by_reason().items()))
            print(f"    {r.table_name:28} processed={r.processed:,} inserted={r.inserted:,} updated={r.updated:,} skipped={r.skipped:,}" + (f" ({reasons})" if reasons else ""))
        for err in stage.errors:
            print(f"    ERROR: {err}")

    print("\n" + "#"*60)


def run_pipeline(
    source: SourceReader,
    store: TargetStore,
    config: LoadConfig,
    stages: str = "all",
    verify: bool = False
) -> PipelineResult:
    """Run the star schema load.

    Args:
        source: Source store reader
        store: Target store
        config: Load configuration (carries the run date)
        stages: Which stages to run ('all', 'dimensions', 'facts', 'bridges', 'facts_bridges')
        verify: Run integrity checks on the target after the last stage

    Returns:
        PipelineResult with per-table counts and diagnostics

    Raises:
        SourceReadError: a source table could not be read; nothing is written
    """
    if stages not in STAGE_SELECTIONS:
        raise ValueError(f"Unknown stages '{stages}'. Expected one of {sorted(STAGE_SELECTIONS)}")

    run_id = str(uuid.uuid4())[:8]
    start_time = datetime.now()
    stage_results: List[StageResult] = []

    print("\n" + "#"*60)
    print(f"STAR SCHEMA LOAD - Run: {run_id}")
    print("#"*60)
    print_config_summary(config)
    print(f"\nStages to run: {stages}")

    snapshot = read_source_snapshot(source)

    failed_stage = None
    for stage_name in STAGE_SELECTIONS[stages]:
        if failed_stage is not None:
            print(f"\n  Skipping {stage_name}: missing dependencies ['{failed_stage}']")
            stage_results.append(StageResult(stage_name, [], 0.0, False, [f"skipped after {failed_stage} failed"]))
            continue
        stage_result = STAGE_RUNNERS[stage_name](store, snapshot, config)
        stage_results.append(stage_result)
        if not stage_result.success:
            failed_stage = stage_name

    verification = []
    if verify and isinstance(store, InMemoryTargetStore):
        verification = verify_star_schema(store)
        print_verification(verification)

    result = PipelineResult(
        run_id=run_id,
        config=config,
        start_time=start_time,
        end_time=datetime.now(),
        stages=stage_results,
        success=all(s.success for s in stage_results) and all(v.passed for v in verification),
        verification=verification
    )
    print_run_summary(result)
    return result


def main_with_widgets(spark: SparkSession, dbutils) -> PipelineResult:
    """Main entry point when running with Databricks widgets."""
    setup_widgets(dbutils)
    dbutils.widgets.dropdown("stages", "all", list(STAGE_SELECTIONS), "Load Stages")

    config = create_config_from_widgets(dbutils)
    stages = dbutils.widgets.get("stages")

    setup_target_schema(spark, config)
    return run_pipeline(
        SparkSourceReader(spark, config),
        SparkTargetStore(spark, config),
        config,
        stages=stages,
        verify=True
    )


def main(
    spark: SparkSession,
    run_date: str,
    catalog: str = "",
    source_schema: str = "production",
    target_schema: str = "star_schema",
    table_format: str = "delta",
    parallel_dimensions: bool = False,
    stages: str = "all",
    verify: bool = True
) -> PipelineResult:
    """Main entry point with explicit parameters."""
    config = create_config(
        run_date=run_date,
        catalog=catalog,
        source_schema=source_schema,
        target_schema=target_schema,
        table_format=table_format,
        parallel_dimensions=parallel_dimensions
    )

    setup_target_schema(spark, config)
    return run_pipeline(
        SparkSourceReader(spark, config),
        SparkTargetStore(spark, config),
        config,
        stages=stages,
        verify=verify
    )


# Entry point for running as a script: python -m starSchemaEtl.run_pipeline 2024-02-01
if __name__ == "__main__":
    result = main(SparkSession.builder.getOrCreate(), run_date=sys.argv[1])
    print("\nLoad run metadata (JSON):")
    print(json.dumps(result.to_dict(), indent=2))
