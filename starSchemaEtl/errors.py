"""
Load Errors

Exceptions raised by the source and target collaborators and by key resolution.
"""

from datetime import date
from typing import Any, Optional


class StarSchemaError(Exception):
    """Base class for load engine errors."""


class SourceReadError(StarSchemaError):
    """A source table could not be fully read. Fatal for the run."""

    def __init__(self, table_name: str, message: str):
        super().__init__(f"Failed to read source table '{table_name}': {message}")
        self.table_name = table_name


# Raised while coercing the values of one source row; they fail that row only
SOURCE_VALUE_ERRORS = (ValueError, TypeError, ArithmeticError)


class TargetStoreError(StarSchemaError):
    """The target store failed for a whole stage."""


class ConstraintViolationError(TargetStoreError):
    """A single row write was rejected by a key or foreign key constraint."""

    def __init__(self, table_name: str, key: Any, message: str):
        super().__init__(f"{table_name} {key!r}: {message}")
        self.table_name = table_name
        self.key = key


class UnresolvedKeyError(StarSchemaError):
    """No target dimension row matches a natural key."""

    def __init__(self, table_name: str, natural_key: Any, reference_date: Optional[date] = None,
                 message: Optional[str] = None):
        if message is None:
            message = f"no {table_name} row for natural key {natural_key!r}"
            if reference_date is not None:
                message += f" valid on {reference_date.isoformat()}"
        super().__init__(message)
        self.table_name = table_name
        self.natural_key = natural_key
        self.reference_date = reference_date


class AmbiguousTemporalMatchError(UnresolvedKeyError):
    """More than one Type-2 version covers the reference date."""

    def __init__(self, table_name: str, natural_key: Any, reference_date: date, matches: int):
        super().__init__(
            table_name, natural_key, reference_date,
            f"{matches} {table_name} versions for natural key {natural_key!r} "
            f"are valid on {reference_date.isoformat()}"
        )
        self.matches = matches
