"""
Purpose
-------
Aggregate a run's normalized bookings into the summary document stored in
the key-value sink, and emit the end-of-run report.

Key behaviors
-------------
- Counts bookings per project and per status; empty values count as "Unknown".
- Totals agreement value and DLD amount and averages agreement value over the
  number of bookings (0 when there are none).
- Carries the per-unit outcomes (successful years with counts, failed years
  with error text) unchanged.
- Converts every pandas/numpy scalar to a plain `int` or `float` so the
  summary is JSON-serializable.

Conventions
-----------
- Breakdown dicts are ordered by count descending.
- The summary is computed over the capped booking sequence, i.e. exactly the
  rows handed to the dataset sink.

Downstream usage
----------------
Call `build_summary(...)` from the orchestrator, wrap it with
`build_summary_document(...)` for the KV sink, and finish the run with
`log_run_report(...)`.
"""

import datetime as dt
from typing import Any, List, Mapping, Sequence, TypedDict

import pandas as pd

from portal_harvest.bookings.bookings_config import HARVEST_METHOD, HARVEST_VERSION
from portal_harvest.bookings.bookings_types import UnitOutcomes
from portal_harvest.logging.harvest_logger import HarvestLogger

UNKNOWN_LABEL: str = "Unknown"
SUMMARY_COLUMNS: List[str] = ["project", "status", "agreementValue", "dldAmount"]


class Financials(TypedDict):
    totalAgreementValue: float
    totalDLDAmount: float
    averageAgreementValue: float


class BookingsSummary(TypedDict):
    """
    Purpose
    -------
    JSON-ready aggregate of one harvest run.

    Fields
    ------
    totalBookings : int
        Number of bookings after the result cap.
    yearBreakdown : list[dict]
        `{"year", "count"}` per successful unit, in request order.
    failedYears : list[dict]
        `{"year", "error"}` per failed unit, in request order.
    projectBreakdown : dict[str, int]
        Bookings per project name.
    statusBreakdown : dict[str, int]
        Bookings per status.
    financials : Financials
        Agreement value and DLD totals plus the average agreement value.
    """

    totalBookings: int
    yearBreakdown: UnitOutcomes
    failedYears: UnitOutcomes
    projectBreakdown: dict[str, int]
    statusBreakdown: dict[str, int]
    financials: Financials


def build_summary(
    bookings: Sequence[Mapping[str, Any]],
    successful_units: UnitOutcomes,
    failed_units: UnitOutcomes,
) -> BookingsSummary:
    """
    Aggregate normalized bookings and unit outcomes into a `BookingsSummary`.

    Parameters
    ----------
    bookings : Sequence[Mapping[str, Any]]
        Normalized (optionally tagged) bookings.
    successful_units : UnitOutcomes
        `{"year", "count"}` entries.
    failed_units : UnitOutcomes
        `{"year", "error"}` entries.

    Returns
    -------
    BookingsSummary
        Summary with plain Python numbers only.
    """

    frame: pd.DataFrame = pd.DataFrame(list(bookings), columns=SUMMARY_COLUMNS)
    total: int = len(frame)
    total_agreement: float = float(frame["agreementValue"].sum()) if total else 0.0
    total_dld: float = float(frame["dldAmount"].sum()) if total else 0.0
    return {
        "totalBookings": total,
        "yearBreakdown": list(successful_units),
        "failedYears": list(failed_units),
        "projectBreakdown": count_labels(frame["project"]),
        "statusBreakdown": count_labels(frame["status"]),
        "financials": {
            "totalAgreementValue": total_agreement,
            "totalDLDAmount": total_dld,
            "averageAgreementValue": total_agreement / total if total else 0.0,
        },
    }


def count_labels(values: pd.Series) -> dict[str, int]:
    """Count occurrences per label, most frequent first; empty labels become "Unknown"."""

    labels: pd.Series = values.fillna("").astype(str).replace("", UNKNOWN_LABEL)
    counts: pd.Series = labels.value_counts(sort=True)
    return {str(label): int(count) for label, count in counts.items()}


def build_summary_document(summary: BookingsSummary, years: Sequence[int]) -> dict[str, Any]:
    """
    Wrap a successful run's summary with run metadata for the KV sink.

    Parameters
    ----------
    summary : BookingsSummary
        Output of `build_summary`.
    years : Sequence[int]
        Years requested for the run.

    Returns
    -------
    dict[str, Any]
        `{"success": True, "summary": ..., "metadata": {...}}`.
    """

    return {
        "success": True,
        "summary": summary,
        "metadata": {
            "scrapedAt": utc_now_iso(),
            "scrapedYears": list(years),
            "method": HARVEST_METHOD,
            "version": HARVEST_VERSION,
        },
    }


def build_failure_document(error: str, required_inputs: Sequence[str]) -> dict[str, Any]:
    """Failure summary stored when a run cannot start."""

    return {
        "success": False,
        "error": error,
        "requiredInputs": list(required_inputs),
        "timestamp": utc_now_iso(),
    }


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def log_run_report(logger: HarvestLogger, summary: BookingsSummary) -> None:
    """
    Emit the end-of-run report as one structured INFO entry.

    Parameters
    ----------
    logger : HarvestLogger
        Run logger.
    summary : BookingsSummary
        Summary of the completed run.

    Returns
    -------
    None

    Notes
    -----
    - Failed units are additionally reported as a WARNING so they surface
      under a WARNING threshold.
    """

    financials: Financials = summary["financials"]
    logger.info(
        "harvest_report",
        msg="Harvest complete",
        context={
            "total_bookings": summary["totalBookings"],
            "years_processed": [
                f"{unit['year']}({unit['count']})" for unit in summary["yearBreakdown"]
            ],
            "total_agreement_value": f"{financials['totalAgreementValue']:,.2f}",
            "total_dld_amount": f"{financials['totalDLDAmount']:,.2f}",
            "average_agreement_value": f"{financials['averageAgreementValue']:,.2f}",
            "project_breakdown": summary["projectBreakdown"],
            "status_breakdown": summary["statusBreakdown"],
        },
    )
    if summary["failedYears"]:
        logger.warning(
            "harvest_failed_units",
            context={"failed_years": [unit["year"] for unit in summary["failedYears"]]},
        )
