"""
Purpose
-------
Orchestrate one harvest run against the partner portal: fetch bookings year by
year through the Aura ApexAction endpoint, normalize them, persist the run
summary to the key-value store, and append every booking to the dataset table.

Key behaviors
-------------
- Validates the three portal credentials before any network call; on failure
  stores a failure summary and raises `MissingCredentialsError`.
- Processes query units (years) sequentially, pausing `REQUEST_DELAY_SECONDS`
  between units.
- Branches on the RPC outcome type:
    * session expired   -> unit failed, remaining units abandoned
    * other failures    -> unit failed, run continues
    * success           -> extract, normalize, tag with provenance
- Caps the accumulated bookings at `max_results` (first N kept).
- Writes the summary under `SUMMARY_KEY`, then the bookings through the safe
  batch writer, and checks that one row was written per booking.
- Emits an end-of-run report.

Conventions
-----------
- A unit that succeeds with zero records is a success with count 0.
- Provenance (`scrapedYear`, `extractedAt`) is stamped here, never by the
  normalizer.
- Configuration comes from the environment (optionally a `.env` file); the log
  level comes from the command line.

Downstream usage
----------------
Run as a module:
    python -m portal_harvest.bookings.harvest_bookings [LOG_LEVEL]
or call `harvest_bookings(...)` with custom sinks.
"""

import json
import os
import sys
import time
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Protocol, Sequence

import requests
from dotenv import load_dotenv

from portal_harvest.bookings.array_extractor import extract_array
from portal_harvest.bookings.aura_client import fetch
from portal_harvest.bookings.booking_normalizer import normalize_booking
from portal_harvest.bookings.bookings_config import (
    DEFAULT_APEX_CLASSNAME,
    DEFAULT_APEX_METHOD,
    DEFAULT_APEX_NAMESPACE,
    DEFAULT_MAX_RESULTS,
    DEFAULT_PAGE_URI,
    DEFAULT_YEARS,
    MISSING_CREDENTIALS_ERROR,
    REQUEST_DELAY_SECONDS,
    REQUIRED_CREDENTIALS,
    SUMMARY_KEY,
)
from portal_harvest.bookings.bookings_errors import MissingCredentialsError, RowCountMismatchError
from portal_harvest.bookings.bookings_summary import (
    BookingsSummary,
    build_failure_document,
    build_summary,
    build_summary_document,
    log_run_report,
    utc_now_iso,
)
from portal_harvest.bookings.bookings_types import (
    ApexTarget,
    Credentials,
    NormalizedBooking,
    ResponseEnvelope,
    RpcApplicationError,
    RpcMalformed,
    RpcSessionExpired,
    RpcSuccess,
    RpcTransportError,
    TaggedBooking,
    UnitOutcomes,
    build_query_parameter,
)
from portal_harvest.loading.load_bookings import PostgresDatasetSink, PostgresKeyValueSink
from portal_harvest.loading.safe_batch_writer import BookingSink, WriteReport, write_all
from portal_harvest.logging.harvest_logger import HarvestLogger, initialize_logger
from portal_harvest.utils.db_utils import connect_to_db

SESSION_EXPIRED_ERROR: str = "Session expired - please update authentication tokens"


class KeyValueSink(Protocol):
    def set_value(self, key: str, value: Mapping[str, Any]) -> None: ...


@dataclass
class HarvestResult:
    """
    Purpose
    -------
    Everything a caller may want to inspect after a run.

    Attributes
    ----------
    bookings : list[TaggedBooking]
        Capped, tagged bookings handed to the dataset sink.
    successful_units : UnitOutcomes
        `{"year", "count"}` per successful unit.
    failed_units : UnitOutcomes
        `{"year", "error"}` per failed unit.
    summary : BookingsSummary
        Summary stored under `SUMMARY_KEY`.
    write_report : WriteReport
        Counters of the dataset write.
    aborted : bool
        True when the run stopped early on an expired session.
    """

    bookings: List[TaggedBooking]
    successful_units: UnitOutcomes
    failed_units: UnitOutcomes
    summary: BookingsSummary
    write_report: WriteReport
    aborted: bool = False


@dataclass
class UnitCollection:
    bookings: List[TaggedBooking] = field(default_factory=list)
    successful_units: UnitOutcomes = field(default_factory=list)
    failed_units: UnitOutcomes = field(default_factory=list)
    aborted: bool = False


def main() -> None:
    """
    Entry point: load configuration, open the database and HTTP session, and
    run the harvest.

    Parameters
    ----------
    None
        Configuration is read from `sys.argv` via `extract_cli_args` and from
        environment variables (see `load_credentials`, `load_target`,
        `parse_years`, `parse_max_results`, and `connect_to_db`).

    Returns
    -------
    None

    Raises
    ------
    MissingCredentialsError
        If any portal credential is empty; the failure summary is committed
        before the error propagates.
    ValueError
        If HARVEST_YEARS or HARVEST_MAX_RESULTS cannot be parsed.
    psycopg2.Error
        Propagated from database connectivity or writes.
    """

    load_dotenv()
    logger_level: str = extract_cli_args()
    years: List[int] = parse_years(os.getenv("HARVEST_YEARS"))
    max_results: int = parse_max_results(os.getenv("HARVEST_MAX_RESULTS"))
    credentials: Credentials = load_credentials()
    target: ApexTarget = load_target()
    logger: HarvestLogger = initialize_logger(
        component_name="harvest_bookings",
        level=logger_level,
        run_meta={"years": years, "max_results": max_results},
    )
    with connect_to_db() as conn:
        dataset_sink = PostgresDatasetSink(conn, logger.run_id)
        kv_sink = PostgresKeyValueSink(conn)
        try:
            with requests.Session() as session:
                harvest_bookings(
                    years,
                    credentials,
                    target,
                    dataset_sink,
                    kv_sink,
                    logger,
                    max_results=max_results,
                    session=session,
                )
        except MissingCredentialsError:
            conn.commit()
            raise


def extract_cli_args() -> str:
    """
    Read the optional log level from the command line.

    Returns
    -------
    str
        `sys.argv[1]` when given, otherwise "INFO". Invalid levels are handled
        by `initialize_logger`.
    """

    logger_level: str = "INFO"
    if len(sys.argv) > 1:
        logger_level = sys.argv[1]
    return logger_level


def harvest_bookings(
    years: Sequence[int],
    credentials: Credentials,
    target: ApexTarget,
    dataset_sink: BookingSink,
    kv_sink: KeyValueSink,
    logger: HarvestLogger,
    max_results: int = DEFAULT_MAX_RESULTS,
    session: requests.Session | None = None,
) -> HarvestResult:
    """
    Run a full harvest over `years` and persist its results.

    Parameters
    ----------
    years : Sequence[int]
        Query units, processed in order.
    credentials : Credentials
        Portal tokens; all three must be non-empty.
    target : ApexTarget
        Remote procedure identity.
    dataset_sink : BookingSink
        Size-limited, append-only destination for bookings.
    kv_sink : KeyValueSink
        Destination for the run summary.
    logger : HarvestLogger
        Structured run logger.
    max_results : int, default=DEFAULT_MAX_RESULTS
        Maximum number of bookings kept across all units.
    session : requests.Session | None, default=None
        HTTP session to reuse; a new one is opened and closed when None.

    Returns
    -------
    HarvestResult
        Bookings written, unit outcomes, summary, and write counters.

    Raises
    ------
    MissingCredentialsError
        If any credential is empty; raised before any portal call.
    RecordTooLargeError
        If a single booking cannot be written to the dataset sink.
    RowCountMismatchError
        If the dataset sink did not receive exactly one row per booking.
    SizeExceededError
        If the summary is too large for the key-value sink.

    Notes
    -----
    - Unit failures other than session expiry never stop the run.
    - The summary is stored even when every unit failed.
    """

    require_credentials(credentials, kv_sink, logger)
    logger.info(
        "harvest_start",
        context={
            "years": list(years),
            "max_results": max_results,
            "classname": target.classname,
            "method": target.method,
            "cookie_header_chars": len(credentials.cookie_header),
        },
    )
    collection: UnitCollection
    if session is None:
        with requests.Session() as own_session:
            collection = collect_units(years, credentials, target, own_session, logger)
    else:
        collection = collect_units(years, credentials, target, session, logger)

    bookings: List[TaggedBooking] = apply_result_cap(collection.bookings, max_results, logger)
    summary: BookingsSummary = build_summary(
        bookings, collection.successful_units, collection.failed_units
    )
    kv_sink.set_value(SUMMARY_KEY, build_summary_document(summary, years))
    logger.info("summary_stored", context={"key": SUMMARY_KEY})

    report: WriteReport = write_all(bookings, dataset_sink, logger)
    if report.rows_written != len(bookings):
        logger.error(
            "row_count_mismatch",
            context={"expected": len(bookings), "written": report.rows_written},
        )
        raise RowCountMismatchError(len(bookings), report.rows_written)

    log_run_report(logger, summary)
    return HarvestResult(
        bookings=bookings,
        successful_units=collection.successful_units,
        failed_units=collection.failed_units,
        summary=summary,
        write_report=report,
        aborted=collection.aborted,
    )


def require_credentials(
    credentials: Credentials, kv_sink: KeyValueSink, logger: HarvestLogger
) -> None:
    """
    Stop the run when a credential is missing.

    Raises
    ------
    MissingCredentialsError
        After logging the missing names and storing the failure summary.
    """

    missing: List[str] = credentials.missing_fields()
    if not missing:
        return
    logger.error(
        "missing_credentials",
        msg=MISSING_CREDENTIALS_ERROR,
        context={"missing": missing, "required_inputs": REQUIRED_CREDENTIALS},
    )
    kv_sink.set_value(
        SUMMARY_KEY, build_failure_document(MISSING_CREDENTIALS_ERROR, REQUIRED_CREDENTIALS)
    )
    raise MissingCredentialsError(missing)


def collect_units(
    years: Sequence[int],
    credentials: Credentials,
    target: ApexTarget,
    session: requests.Session,
    logger: HarvestLogger,
) -> UnitCollection:
    """
    Fetch, extract, normalize, and tag each query unit in order.

    Parameters
    ----------
    years : Sequence[int]
        Query units.
    credentials : Credentials
        Portal tokens.
    target : ApexTarget
        Remote procedure identity.
    session : requests.Session
        Shared HTTP session.
    logger : HarvestLogger
        Run logger.

    Returns
    -------
    UnitCollection
        Accumulated bookings and per-unit outcomes; `aborted` is set when the
        session expired.

    Notes
    -----
    - Sleeps `REQUEST_DELAY_SECONDS` before every unit except the first, so
      there is no pause after the last unit or after an abort.
    """

    collection = UnitCollection()
    for index, year in enumerate(years):
        if index > 0:
            logger.debug("unit_delay", context={"seconds": REQUEST_DELAY_SECONDS})
            time.sleep(REQUEST_DELAY_SECONDS)
        logger.info("unit_start", context={"year": year})
        envelope: ResponseEnvelope = fetch(
            build_query_parameter(year), credentials, target, session, logger
        )
        if isinstance(envelope, RpcSessionExpired):
            collection.failed_units.append({"year": year, "error": SESSION_EXPIRED_ERROR})
            collection.aborted = True
            logger.error(
                "harvest_aborted",
                msg=SESSION_EXPIRED_ERROR,
                context={"year": year, "abandoned_years": list(years[index + 1 :])},
            )
            break
        if isinstance(envelope, RpcSuccess):
            extracted_at: str = utc_now_iso()
            tagged: List[TaggedBooking] = [
                tag_booking(normalize_booking(raw), year, extracted_at)
                for raw in extract_array(envelope.payload, logger)
            ]
            collection.bookings.extend(tagged)
            collection.successful_units.append({"year": year, "count": len(tagged)})
            logger.info("unit_complete", context={"year": year, "count": len(tagged)})
            continue
        error_text: str = describe_failure(envelope)
        collection.failed_units.append({"year": year, "error": error_text})
        logger.warning("unit_failed", msg=error_text, context={"year": year})
    return collection


def tag_booking(booking: NormalizedBooking, year: int, extracted_at: str) -> TaggedBooking:
    """Return a new record carrying the query unit and extraction time."""

    return TaggedBooking(**booking, scrapedYear=year, extractedAt=extracted_at)


def describe_failure(envelope: ResponseEnvelope) -> str:
    """
    Render a failed RPC outcome as the error text stored in `failedYears`.

    Parameters
    ----------
    envelope : ResponseEnvelope
        RpcApplicationError, RpcTransportError, or RpcMalformed.

    Returns
    -------
    str
        Portal error message(s) for application errors, the transport or
        decoding reason otherwise.
    """

    if isinstance(envelope, RpcApplicationError):
        detail: Any = envelope.detail
        if isinstance(detail, list):
            messages: List[str] = [
                str(item["message"])
                for item in detail
                if isinstance(item, dict) and item.get("message")
            ]
            if messages:
                return "Apex error: " + "; ".join(messages)
        return "Apex error: " + json.dumps(detail, default=str)
    if isinstance(envelope, (RpcTransportError, RpcMalformed)):
        return envelope.reason
    return f"Unexpected outcome: {type(envelope).__name__}"


def apply_result_cap(
    bookings: List[TaggedBooking], max_results: int, logger: HarvestLogger
) -> List[TaggedBooking]:
    """Keep the first `max_results` bookings, logging any truncation."""

    if len(bookings) <= max_results:
        return bookings
    logger.warning(
        "results_truncated",
        msg=f"Limiting results from {len(bookings)} to {max_results}",
        context={"collected": len(bookings), "max_results": max_results},
    )
    return bookings[:max_results]


def load_credentials() -> Credentials:
    """Read the portal tokens from PORTAL_COOKIE_HEADER, PORTAL_AURA_TOKEN, PORTAL_AURA_CONTEXT."""

    return Credentials(
        cookie_header=os.getenv("PORTAL_COOKIE_HEADER", "").strip(),
        aura_token=os.getenv("PORTAL_AURA_TOKEN", "").strip(),
        aura_context=os.getenv("PORTAL_AURA_CONTEXT", "").strip(),
    )


def load_target() -> ApexTarget:
    """Build the Apex target from optional PORTAL_APEX_* / PORTAL_PAGE_URI overrides."""

    return ApexTarget(
        namespace=os.getenv("PORTAL_APEX_NAMESPACE", DEFAULT_APEX_NAMESPACE),
        classname=os.getenv("PORTAL_APEX_CLASSNAME") or DEFAULT_APEX_CLASSNAME,
        method=os.getenv("PORTAL_APEX_METHOD") or DEFAULT_APEX_METHOD,
        page_uri=os.getenv("PORTAL_PAGE_URI") or DEFAULT_PAGE_URI,
    )


def parse_years(raw_years: str | None) -> List[int]:
    """
    Parse a comma-separated list of years.

    Parameters
    ----------
    raw_years : str | None
        Value of HARVEST_YEARS, e.g. "2024,2025".

    Returns
    -------
    list[int]
        Years in the given order; `DEFAULT_YEARS` when unset or blank.

    Raises
    ------
    ValueError
        If any entry is not an integer.
    """

    if raw_years is None or not raw_years.strip():
        return list(DEFAULT_YEARS)
    try:
        return [int(part) for part in raw_years.split(",") if part.strip()]
    except ValueError as e:
        raise ValueError(
            f"HARVEST_YEARS must be a comma-separated list of integers, got {raw_years!r}"
        ) from e


def parse_max_results(raw_max_results: str | None) -> int:
    """
    Parse HARVEST_MAX_RESULTS; `DEFAULT_MAX_RESULTS` when unset or blank.

    Raises
    ------
    ValueError
        If the value is not a positive integer.
    """

    if raw_max_results is None or not raw_max_results.strip():
        return DEFAULT_MAX_RESULTS
    try:
        max_results: int = int(raw_max_results)
    except ValueError as e:
        raise ValueError(
            f"HARVEST_MAX_RESULTS must be a positive integer, got {raw_max_results!r}"
        ) from e
    if max_results <= 0:
        raise ValueError(f"HARVEST_MAX_RESULTS must be a positive integer, got {max_results}")
    return max_results


if __name__ == "__main__":
    main()
