"""
Load Configuration

Shared configuration and date helpers for the star schema load engine.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Union


# Open-ended effective_end for current Type-2 versions
SENTINEL_MAX_DATE = date(9999, 12, 31)

DateLike = Union[date, datetime, str]


@dataclass(frozen=True)
class LoadConfig:
    """Immutable configuration for one load run."""
    run_date: date
    catalog: str = ""
    source_schema: str = "production"
    target_schema: str = "star_schema"
    table_format: str = "delta"
    parallel_dimensions: bool = False
    max_workers: int = 4
    initial_effective_start: Optional[date] = None

    @property
    def source_full_path(self) -> str:
        return ".".join(p for p in (self.catalog, self.source_schema) if p)

    @property
    def target_full_path(self) -> str:
        return ".".join(p for p in (self.catalog, self.target_schema) if p)


def as_date(value: Any) -> Optional[date]:
    """Coerce a date, datetime or ISO string to a calendar date. None passes through."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        return date.fromisoformat(text[:10])
    raise TypeError(f"Cannot interpret {value!r} as a date")


def create_config(
    run_date: DateLike,
    catalog: str = "",
    source_schema: str = "production",
    target_schema: str = "star_schema",
    table_format: str = "delta",
    parallel_dimensions: bool = False,
    max_workers: int = 4,
    initial_effective_start: Optional[DateLike] = None
) -> LoadConfig:
    """Create config with explicit parameters."""
    resolved_run_date = as_date(run_date)
    if resolved_run_date is None:
        raise ValueError("run_date is required")
    if resolved_run_date >= SENTINEL_MAX_DATE:
        raise ValueError(f"run_date must be before {SENTINEL_MAX_DATE.isoformat()}")
    if max_workers < 1:
        raise ValueError("max_workers must be at least 1")

    return LoadConfig(
        run_date=resolved_run_date,
        catalog=catalog,
        source_schema=source_schema,
        target_schema=target_schema,
        table_format=table_format,
        parallel_dimensions=parallel_dimensions,
        max_workers=max_workers,
        initial_effective_start=as_date(initial_effective_start)
    )


def create_config_from_widgets(dbutils) -> LoadConfig:
    """Create config from Databricks widgets."""
    return create_config(
        run_date=dbutils.widgets.get("run_date"),
        catalog=dbutils.widgets.get("catalog"),
        source_schema=dbutils.widgets.get("source_schema"),
        target_schema=dbutils.widgets.get("target_schema"),
        table_format=dbutils.widgets.get("table_format"),
        parallel_dimensions=dbutils.widgets.get("parallel_dimensions").lower() == "true",
        initial_effective_start=dbutils.widgets.get("initial_effective_start") or None
    )


def setup_widgets(dbutils) -> None:
    """Setup Databricks widgets with default values."""
    dbutils.widgets.text("run_date", "", "Run Date (YYYY-MM-DD)")
    dbutils.widgets.text("catalog", "", "Catalog Name")
    dbutils.widgets.text("source_schema", "production", "Source Schema")
    dbutils.widgets.text("target_schema", "star_schema", "Target Schema")
    dbutils.widgets.text("table_format", "delta", "Target Table Format")
    dbutils.widgets.dropdown("parallel_dimensions", "false", ["true", "false"], "Parallel Dimension Loads")
    dbutils.widgets.text("initial_effective_start", "", "Initial SCD Effective Start")


def get_full_table_name(config: LoadConfig, layer: str, table_name: str) -> str:
    """Get fully qualified table name."""
    schema_map = {
        "source": config.source_schema,
        "target": config.target_schema
    }
    schema = schema_map.get(layer, layer)
    return ".".join(p for p in (config.catalog, schema, table_name) if p)


def print_config_summary(config: LoadConfig) -> None:
    """Print configuration summary."""
    print("\n" + "="*60)
    print("LOAD CONFIGURATION SUMMARY")
    print("="*60)
    print(f"Run Date:       {config.run_date.isoformat()}")
    print(f"Source Schema:  {config.source_full_path}")
    print(f"Target Schema:  {config.target_full_path}")
    print(f"Table Format:   {config.table_format}")
    print(f"Parallel Dims:  {config.parallel_dimensions} (workers={config.max_workers})")
    if config.initial_effective_start is not None:
        print(f"Initial Start:  {config.initial_effective_start.isoformat()}")
    print("="*60)
