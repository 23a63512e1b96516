"""
Purpose
-------
Unit tests for the orchestration in `portal_harvest.bookings.harvest_bookings`.

Key behaviors
-------------
- Units are processed in order with a fixed pause between them and none after
  the last unit or an abort.
- Session expiry abandons the remaining units; other failures are recorded
  and the run continues.
- Results are capped, tagged with provenance, summarized into the KV sink, and
  written one row per booking.
- Missing credentials store a failure summary and raise before any fetch.
- Environment parsing and the `main` wiring behave as documented.

Conventions
-----------
- `fetch` and `time.sleep` are patched at the module symbol; sinks are the
  in-memory doubles from the shared test utilities.

Downstream usage
----------------
Run with `pytest -q tests/test_portal_harvest/test_bookings`.
"""

import sys
from typing import Any, List, TypeAlias
from unittest.mock import MagicMock, call

import pytest
from pytest import MonkeyPatch
from pytest_mock import MockerFixture

from portal_harvest.bookings import harvest_bookings as hb
from portal_harvest.bookings.bookings_config import (
    DEFAULT_APEX_CLASSNAME,
    DEFAULT_MAX_RESULTS,
    DEFAULT_YEARS,
    REQUEST_DELAY_SECONDS,
    SUMMARY_KEY,
)
from portal_harvest.bookings.bookings_errors import MissingCredentialsError, RowCountMismatchError
from portal_harvest.bookings.bookings_types import (
    ApexTarget,
    Credentials,
    RpcApplicationError,
    RpcMalformed,
    RpcSessionExpired,
    RpcSuccess,
    RpcTransportError,
)
from portal_harvest.loading.load_bookings import PostgresDatasetSink, PostgresKeyValueSink
from portal_harvest.loading.safe_batch_writer import WriteReport
from tests.test_portal_harvest.harvest_testing_utils import (
    LimitedSink,
    MemoryKeyValueSink,
    RecordingLogger,
    make_raw_bookings,
)

CREDENTIALS = Credentials(cookie_header="sid=1", aura_token="tok", aura_context="{}")
TARGET = ApexTarget()
HarvestRun: TypeAlias = tuple[
    hb.HarvestResult, MagicMock, MagicMock, LimitedSink, MemoryKeyValueSink, RecordingLogger
]


def run_harvest(
    mocker: MockerFixture,
    envelopes: List[Any],
    years: List[int],
    max_results: int = DEFAULT_MAX_RESULTS,
    credentials: Credentials = CREDENTIALS,
    sink: LimitedSink | None = None,
) -> HarvestRun:
    mock_fetch: MagicMock = mocker.patch(
        "portal_harvest.bookings.harvest_bookings.fetch", side_effect=envelopes
    )
    mock_sleep: MagicMock = mocker.patch("portal_harvest.bookings.harvest_bookings.time.sleep")
    dataset_sink = sink if sink is not None else LimitedSink()
    kv_sink = MemoryKeyValueSink()
    logger = RecordingLogger()
    result = hb.harvest_bookings(
        years,
        credentials,
        TARGET,
        dataset_sink,
        kv_sink,
        logger,
        max_results=max_results,
        session=MagicMock(),
    )
    return result, mock_fetch, mock_sleep, dataset_sink, kv_sink, logger


def test_harvest_bookings_mixed_outcomes(mocker: MockerFixture) -> None:
    """
    Successes, an empty success, and a failure are all recorded; the run completes.

    Raises
    ------
    AssertionError
        If outcomes, pacing, provenance, or persisted results differ.
    """

    envelopes = [
        RpcSuccess(payload={"returnValue": make_raw_bookings(2, "A")}),
        RpcSuccess(payload={}),
        RpcTransportError(status_code=500, reason="HTTP 500: Server Error"),
        RpcSuccess(payload=make_raw_bookings(1, "D")),
    ]
    result, mock_fetch, mock_sleep, sink, kv_sink, _ = run_harvest(
        mocker, envelopes, [2022, 2023, 2024, 2025]
    )

    assert [c.args[0] for c in mock_fetch.call_args_list] == [
        {"selectedYear": 2022},
        {"selectedYear": 2023},
        {"selectedYear": 2024},
        {"selectedYear": 2025},
    ]
    assert mock_sleep.call_args_list == [call(REQUEST_DELAY_SECONDS)] * 3
    assert result.successful_units == [
        {"year": 2022, "count": 2},
        {"year": 2023, "count": 0},
        {"year": 2025, "count": 1},
    ]
    assert result.failed_units == [{"year": 2024, "error": "HTTP 500: Server Error"}]
    assert result.aborted is False
    assert [b["bookingId"] for b in result.bookings] == ["A-1", "A-2", "D-1"]
    assert [b["scrapedYear"] for b in result.bookings] == [2022, 2022, 2025]
    assert all(b["extractedAt"].endswith("Z") for b in result.bookings)
    assert sink.written == result.bookings
    assert result.write_report.rows_written == 3

    document = kv_sink.values[SUMMARY_KEY]
    assert document["success"] is True
    assert document["summary"]["totalBookings"] == 3
    assert document["summary"]["failedYears"] == result.failed_units
    assert document["metadata"]["scrapedYears"] == [2022, 2023, 2024, 2025]


def test_harvest_bookings_session_expired_aborts(mocker: MockerFixture) -> None:
    """
    Session expiry stops the run: no further fetches and no further pauses.

    Raises
    ------
    AssertionError
        If later units are fetched, extra pauses occur, or results are lost.
    """

    envelopes = [
        RpcSuccess(payload=make_raw_bookings(2)),
        RpcSessionExpired(detail=[{"message": "INVALID_SESSION_ID"}]),
        RpcSuccess(payload=make_raw_bookings(5)),
    ]
    result, mock_fetch, mock_sleep, sink, kv_sink, logger = run_harvest(
        mocker, envelopes, [2023, 2024, 2025]
    )

    assert mock_fetch.call_count == 2
    assert mock_sleep.call_count == 1
    assert result.aborted is True
    assert result.failed_units == [{"year": 2024, "error": hb.SESSION_EXPIRED_ERROR}]
    assert logger.context_of("harvest_aborted")["abandoned_years"] == [2025]
    assert len(sink.written) == 2
    assert kv_sink.values[SUMMARY_KEY]["summary"]["totalBookings"] == 2


def test_harvest_bookings_all_units_fail(mocker: MockerFixture) -> None:
    """
    When every unit fails the summary is still stored and nothing is written.

    Raises
    ------
    AssertionError
        If the summary is missing or the dataset sink is called.
    """

    envelopes = [
        RpcApplicationError(detail=[{"message": "Apex CPU time limit exceeded"}]),
        RpcMalformed(reason="Response body is not JSON"),
    ]
    result, _, _, sink, kv_sink, _ = run_harvest(mocker, envelopes, [2024, 2025])
    assert result.failed_units == [
        {"year": 2024, "error": "Apex error: Apex CPU time limit exceeded"},
        {"year": 2025, "error": "Response body is not JSON"},
    ]
    assert sink.attempts == []
    assert kv_sink.values[SUMMARY_KEY]["summary"]["totalBookings"] == 0


def test_harvest_bookings_result_cap(mocker: MockerFixture) -> None:
    """
    Only the first `max_results` bookings are kept, summarized, and written.

    Raises
    ------
    AssertionError
        If the cap is not applied or not logged.
    """

    envelopes = [
        RpcSuccess(payload=make_raw_bookings(3, "A")),
        RpcSuccess(payload=make_raw_bookings(3, "B")),
    ]
    result, _, _, sink, kv_sink, logger = run_harvest(
        mocker, envelopes, [2024, 2025], max_results=4
    )
    assert [b["bookingId"] for b in sink.written] == ["A-1", "A-2", "A-3", "B-1"]
    assert kv_sink.values[SUMMARY_KEY]["summary"]["totalBookings"] == 4
    assert result.successful_units == [{"year": 2024, "count": 3}, {"year": 2025, "count": 3}]
    assert "results_truncated" in logger.events("WARNING")


def test_harvest_bookings_splits_large_writes(mocker: MockerFixture) -> None:
    """
    A size-limited dataset sink still receives every booking in order.

    Raises
    ------
    AssertionError
        If rows are missing or out of order.
    """

    result, _, _, sink, _, _ = run_harvest(
        mocker, [RpcSuccess(payload=make_raw_bookings(7))], [2025], sink=LimitedSink(max_items=3)
    )
    assert sink.written == result.bookings
    assert result.write_report.splits == 2


def test_harvest_bookings_missing_credentials(mocker: MockerFixture) -> None:
    """
    Missing credentials store a failure summary and raise before any fetch.

    Raises
    ------
    AssertionError
        If a fetch happens, the error is not raised, or no failure summary is stored.
    """

    mock_fetch: MagicMock = mocker.patch("portal_harvest.bookings.harvest_bookings.fetch")
    kv_sink = MemoryKeyValueSink()
    logger = RecordingLogger()
    credentials = Credentials(cookie_header="sid=1", aura_token="", aura_context="")
    with pytest.raises(MissingCredentialsError) as exc_info:
        hb.harvest_bookings([2025], credentials, TARGET, LimitedSink(), kv_sink, logger)
    assert exc_info.value.missing == ["auraToken", "auraContext"]
    mock_fetch.assert_not_called()
    document = kv_sink.values[SUMMARY_KEY]
    assert document["success"] is False
    assert document["requiredInputs"] == ["cookieHeader", "auraToken", "auraContext"]
    assert logger.events("ERROR") == ["missing_credentials"]


def test_harvest_bookings_row_count_mismatch(mocker: MockerFixture) -> None:
    """
    A writer reporting fewer rows than bookings violates the post-condition.

    Raises
    ------
    AssertionError
        If RowCountMismatchError is not raised.
    """

    mocker.patch(
        "portal_harvest.bookings.harvest_bookings.write_all",
        return_value=WriteReport(rows_written=1, write_calls=1, splits=0),
    )
    with pytest.raises(RowCountMismatchError):
        run_harvest(mocker, [RpcSuccess(payload=make_raw_bookings(2))], [2025])


@pytest.mark.parametrize(
    "detail, expected",
    [
        ([{"message": "first"}, {"message": "second"}], "Apex error: first; second"),
        ({"code": 7}, 'Apex error: {"code": 7}'),
    ],
)
def test_describe_failure_application_error(detail: Any, expected: str) -> None:
    """
    Application errors render portal messages, or the raw detail as JSON.

    Raises
    ------
    AssertionError
        If the rendered text differs.
    """

    assert hb.describe_failure(RpcApplicationError(detail=detail)) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [(None, DEFAULT_YEARS), ("", DEFAULT_YEARS), ("2024", [2024]), ("2023, 2025,", [2023, 2025])],
)
def test_parse_years(raw: str | None, expected: List[int]) -> None:
    """
    HARVEST_YEARS parsing keeps order and defaults when blank.

    Raises
    ------
    AssertionError
        If the parsed list differs.
    """

    assert hb.parse_years(raw) == expected


def test_parse_years_invalid() -> None:
    """
    Non-integer years raise ValueError.

    Raises
    ------
    AssertionError
        If no ValueError is raised.
    """

    with pytest.raises(ValueError, match="HARVEST_YEARS"):
        hb.parse_years("2024,twenty")


@pytest.mark.parametrize(
    "raw, expected", [(None, DEFAULT_MAX_RESULTS), (" ", DEFAULT_MAX_RESULTS), ("50", 50)]
)
def test_parse_max_results(raw: str | None, expected: int) -> None:
    """
    HARVEST_MAX_RESULTS parsing defaults when blank.

    Raises
    ------
    AssertionError
        If the parsed value differs.
    """

    assert hb.parse_max_results(raw) == expected


@pytest.mark.parametrize("raw", ["0", "-5", "many"])
def test_parse_max_results_invalid(raw: str) -> None:
    """
    Non-positive or non-integer limits raise ValueError.

    Raises
    ------
    AssertionError
        If no ValueError is raised.
    """

    with pytest.raises(ValueError, match="HARVEST_MAX_RESULTS"):
        hb.parse_max_results(raw)


def test_load_credentials_and_target(monkeypatch: MonkeyPatch) -> None:
    """
    Credentials are stripped and target overrides fall back to defaults.

    Raises
    ------
    AssertionError
        If credential values or target fields differ.
    """

    monkeypatch.setenv("PORTAL_COOKIE_HEADER", " sid=1 ")
    monkeypatch.setenv("PORTAL_AURA_TOKEN", "tok")
    monkeypatch.delenv("PORTAL_AURA_CONTEXT", raising=False)
    monkeypatch.delenv("PORTAL_APEX_CLASSNAME", raising=False)
    monkeypatch.setenv("PORTAL_APEX_METHOD", "getOtherData")
    credentials = hb.load_credentials()
    assert credentials.cookie_header == "sid=1"
    assert credentials.missing_fields() == ["auraContext"]
    target = hb.load_target()
    assert target.classname == DEFAULT_APEX_CLASSNAME
    assert target.method == "getOtherData"


@pytest.mark.parametrize("argv, expected", [(["prog"], "INFO"), (["prog", "DEBUG"], "DEBUG")])
def test_extract_cli_args(monkeypatch: MonkeyPatch, argv: List[str], expected: str) -> None:
    """
    The log level is the first CLI argument, INFO by default.

    Raises
    ------
    AssertionError
        If the level differs.
    """

    monkeypatch.setattr(sys, "argv", argv)
    assert hb.extract_cli_args() == expected


def mock_main_collaborators(mocker: MockerFixture, monkeypatch: MonkeyPatch) -> MagicMock:
    monkeypatch.setattr(sys, "argv", ["prog", "WARNING"])
    monkeypatch.setenv("HARVEST_YEARS", "2024,2025")
    monkeypatch.delenv("HARVEST_MAX_RESULTS", raising=False)
    monkeypatch.setenv("PORTAL_COOKIE_HEADER", "sid=1")
    monkeypatch.setenv("PORTAL_AURA_TOKEN", "tok")
    monkeypatch.setenv("PORTAL_AURA_CONTEXT", "{}")
    mocker.patch("portal_harvest.bookings.harvest_bookings.load_dotenv")
    mocker.patch(
        "portal_harvest.bookings.harvest_bookings.initialize_logger", return_value=RecordingLogger()
    )
    mocker.patch("portal_harvest.bookings.harvest_bookings.requests.Session")
    conn: MagicMock = MagicMock()
    conn.__enter__.return_value = conn
    mocker.patch("portal_harvest.bookings.harvest_bookings.connect_to_db", return_value=conn)
    return conn


def test_main_wiring(mocker: MockerFixture, monkeypatch: MonkeyPatch) -> None:
    """
    `main` builds both PostgreSQL sinks on one connection and runs the harvest.

    Raises
    ------
    AssertionError
        If the harvest is not called with the configured years and sinks.
    """

    conn: MagicMock = mock_main_collaborators(mocker, monkeypatch)
    mock_harvest: MagicMock = mocker.patch(
        "portal_harvest.bookings.harvest_bookings.harvest_bookings"
    )
    hb.main()
    mock_harvest.assert_called_once()
    args = mock_harvest.call_args.args
    assert args[0] == [2024, 2025]
    assert isinstance(args[3], PostgresDatasetSink) and args[3].conn is conn
    assert isinstance(args[4], PostgresKeyValueSink) and args[4].conn is conn
    conn.commit.assert_not_called()


def test_main_commits_failure_summary(mocker: MockerFixture, monkeypatch: MonkeyPatch) -> None:
    """
    On missing credentials `main` commits the failure summary and re-raises.

    Raises
    ------
    AssertionError
        If the error is swallowed or nothing is committed.
    """

    conn: MagicMock = mock_main_collaborators(mocker, monkeypatch)
    mocker.patch(
        "portal_harvest.bookings.harvest_bookings.harvest_bookings",
        side_effect=MissingCredentialsError(["auraToken"]),
    )
    with pytest.raises(MissingCredentialsError):
        hb.main()
    conn.commit.assert_called_once_with()
