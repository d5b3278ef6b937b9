"""
Spark Collaborators

Source reader and target store backed by Spark tables. The target store
loads the committed star schema into memory at start-up and overwrites each
changed table when a stage commits. A commit that fails part way puts the
tables it already overwrote back to their last committed rows.
"""

from typing import Dict, List, Optional

from pyspark.sql import SparkSession

from .config import LoadConfig, get_full_table_name
from .errors import SourceReadError, TargetStoreError
from .schema import TARGET_TABLE_REGISTRY
from .source import Row, SourceReader
from .target import InMemoryTargetStore


class SparkSourceReader(SourceReader):
    """Reads source tables from `<catalog>.<source_schema>`."""

    def __init__(self, spark: SparkSession, config: LoadConfig):
        self.spark = spark
        self.config = config

    def read(self, table_name: str) -> List[Row]:
        full_table = get_full_table_name(self.config, "source", table_name)
        try:
            return [r.asDict() for r in self.spark.table(full_table).collect()]
        except Exception as e:
            raise SourceReadError(full_table, str(e)) from e


def setup_target_schema(spark: SparkSession, config: LoadConfig) -> None:
    """Create catalog and target schema if they don't exist."""
    if config.catalog:
        spark.sql(f"CREATE CATALOG IF NOT EXISTS {config.catalog}")
        spark.sql(f"USE CATALOG {config.catalog}")
    spark.sql(f"CREATE SCHEMA IF NOT EXISTS {config.target_schema}")
    print(f"Target schema ready: {config.target_full_path}")


def read_target_tables(spark: SparkSession, config: LoadConfig) -> Dict[str, List[Row]]:
    """Committed rows of every existing target table."""
    tables = {}
    for name in TARGET_TABLE_REGISTRY:
        full_table = get_full_table_name(config, "target", name)
        try:
            if not spark.catalog.tableExists(full_table):
                continue
            tables[name] = [r.asDict() for r in spark.table(full_table).collect()]
        except Exception as e:
            raise TargetStoreError(f"Failed to read target table '{full_table}': {e}") from e
        print(f"  Loaded {full_table}: {len(tables[name]):,} rows")
    return tables


class SparkTargetStore(InMemoryTargetStore):
    """Target store persisted as Spark tables in `<catalog>.<target_schema>`."""

    def __init__(self, spark: SparkSession, config: LoadConfig, tables: Optional[Dict[str, List[Row]]] = None):
        self.spark = spark
        self.config = config
        if tables is None:
            tables = read_target_tables(spark, config)
        super().__init__(tables)

    def write_table(self, table_name: str, rows: List[Row]) -> str:
        """Overwrite one Spark table with the given rows."""
        defn = self.registry[table_name]
        full_table = get_full_table_name(self.config, "target", table_name)
        ordered = sorted(rows, key=lambda r: tuple(r[c] for c in defn.primary_key))
        df = self.spark.createDataFrame(
            [tuple(r.get(c) for c in defn.columns) for r in ordered],
            schema=defn.schema
        )
        (
            df.write
            .format(self.config.table_format)
            .mode("overwrite")
            .option("overwriteSchema", "true")
            .saveAsTable(full_table)
        )
        return full_table

    def _persist(self, tables: Dict[str, List[Row]]) -> None:
        """Overwrite every changed table. A failed write restores the tables
        already overwritten in this commit to their last committed rows."""
        written = []
        for table_name, rows in tables.items():
            try:
                full_table = self.write_table(table_name, rows)
            except Exception as e:
                self._restore(written)
                raise TargetStoreError(f"Failed to write target table '{table_name}': {e}") from e
            written.append(table_name)
            print(f"  Committed {full_table} with {len(rows):,} rows")

    def _restore(self, table_names: List[str]) -> None:
        for table_name in reversed(table_names):
            rows = list(self._committed[table_name].values())
            try:
                full_table = self.write_table(table_name, rows)
            except Exception as e:
                raise TargetStoreError(
                    f"Failed to restore target table '{table_name}' after a failed commit: {e}"
                ) from e
            print(f"  Restored {full_table} to {len(rows):,} committed rows")
