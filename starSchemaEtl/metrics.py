"""
Encounter Metrics

Per-encounter measures computed from the source detail rows before the fact
row is written.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Mapping, Optional

from .config import as_date


CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

READMISSION_ENCOUNTER_TYPE = "Inpatient"

# Fact columns refreshed on every run once the row exists
MEASURE_COLUMNS = (
    "diagnosis_count",
    "procedure_count",
    "total_allowed_amount",
    "total_claim_amount",
    "length_of_stay_days",
)


def to_money(value: Any) -> Decimal:
    """DECIMAL(12,2) amount. Nulls count as zero."""
    if value is None:
        return ZERO
    try:
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValueError(f"invalid amount {value!r}") from e


@dataclass(frozen=True)
class EncounterMetrics:
    """Derived measures for one encounter."""
    diagnosis_count: int
    procedure_count: int
    total_allowed_amount: Decimal
    total_claim_amount: Decimal
    length_of_stay_days: Optional[int]
    is_readmission_candidate: bool

    def to_row(self) -> Dict[str, Any]:
        return {
            "diagnosis_count": self.diagnosis_count,
            "procedure_count": self.procedure_count,
            "total_allowed_amount": self.total_allowed_amount,
            "total_claim_amount": self.total_claim_amount,
            "length_of_stay_days": self.length_of_stay_days,
            "is_readmission_candidate": self.is_readmission_candidate,
        }


def aggregate_encounter_metrics(
    encounter: Mapping[str, Any],
    diagnosis_links: Iterable[Mapping[str, Any]] = (),
    procedure_links: Iterable[Mapping[str, Any]] = (),
    billing_rows: Iterable[Mapping[str, Any]] = ()
) -> EncounterMetrics:
    """Compute the fact measures for one encounter.

    Counts are over distinct diagnosis/procedure natural keys. Amount sums over
    no billing rows are zero, never null. Length of stay is whole days from the
    encounter date to the discharge date, or None when not discharged.
    """
    diagnosis_ids = {link["diagnosis_id"] for link in diagnosis_links if link.get("diagnosis_id") is not None}
    procedure_ids = {link["procedure_id"] for link in procedure_links if link.get("procedure_id") is not None}

    total_allowed = ZERO
    total_claim = ZERO
    for b in billing_rows:
        total_allowed += to_money(b.get("allowed_amount"))
        total_claim += to_money(b.get("claim_amount"))

    encounter_date = as_date(encounter.get("encounter_date"))
    discharge_date = as_date(encounter.get("discharge_date"))
    length_of_stay = None
    if encounter_date is not None and discharge_date is not None:
        length_of_stay = (discharge_date - encounter_date).days

    return EncounterMetrics(
        diagnosis_count=len(diagnosis_ids),
        procedure_count=len(procedure_ids),
        total_allowed_amount=total_allowed,
        total_claim_amount=total_claim,
        length_of_stay_days=length_of_stay,
        is_readmission_candidate=encounter.get("encounter_type") == READMISSION_ENCOUNTER_TYPE,
    )
