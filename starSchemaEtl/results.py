"""
Load Results

Per-component run reporting: row counts and row-level diagnostics.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional


UNRESOLVED_KEY = "unresolved_key"
AMBIGUOUS_MATCH = "ambiguous_match"
CONSTRAINT_VIOLATION = "constraint_violation"
INVALID_VALUE = "invalid_value"


@dataclass(frozen=True)
class LoadIssue:
    """A skipped row, with enough context to retry it on a later run."""
    kind: str
    table_name: str
    natural_key: Any
    dimension: Optional[str]
    run_date: date
    message: str

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind,
            "table": self.table_name,
            "natural_key": repr(self.natural_key),
            "dimension": self.dimension,
            "run_date": self.run_date.isoformat(),
            "message": self.message,
        }


@dataclass
class LoadResult:
    """Result of loading one target table."""
    table_name: str
    category: str
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    issues: List[LoadIssue] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    success: bool = True
    error: Optional[str] = None

    @property
    def rows_written(self) -> int:
        return self.inserted + self.updated

    def skip(self, issue: LoadIssue) -> None:
        self.skipped += 1
        self.issues.append(issue)
        label = "DATA INTEGRITY" if issue.kind == AMBIGUOUS_MATCH else "SKIP"
        print(f"    {label}: {self.table_name} {issue.natural_key!r} - {issue.message}")

    def skipped_by_reason(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for issue in self.issues:
            counts[issue.kind] = counts.get(issue.kind, 0) + 1
        return counts

    def summary_line(self) -> str:
        return (
            f"{self.table_name}: {self.processed:,} processed, {self.inserted:,} inserted, "
            f"{self.updated:,} updated, {self.skipped:,} skipped in {self.elapsed_seconds}s"
        )

    def to_dict(self) -> Dict:
        return {
            "table": self.table_name,
            "category": self.category,
            "processed": self.processed,
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "skipped_by_reason": self.skipped_by_reason(),
            "seconds": self.elapsed_seconds,
            "success": self.success,
            "error": self.error,
            "issues": [i.to_dict() for i in self.issues],
        }
