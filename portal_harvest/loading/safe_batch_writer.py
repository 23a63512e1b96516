"""
Purpose
-------
Persist an ordered sequence of normalized bookings to a size-limited,
append-only sink, splitting writes adaptively when the sink rejects them as
too large.

Key behaviors
-------------
- Attempts the whole sequence as one write first.
- On `SizeExceededError` for a chunk of n > 1 records, splits it at
  ceil(n / 2) and retries both halves, left half first.
- On `SizeExceededError` for a single record, raises `RecordTooLargeError`
  naming that record; the run stops.
- Reports the number of rows written, write calls made, and splits performed.

Conventions
-----------
- Work is driven by an explicit LIFO stack; right halves are pushed before
  left halves so records reach the sink in input order.
- Records are never modified and never partially written.
- Any sink exception other than `SizeExceededError` propagates unchanged.

Downstream usage
----------------
Call `write_all(records, sink, logger)` with any object exposing
`write(chunk) -> None` (see `BookingSink`).
"""

import math
from dataclasses import dataclass
from typing import Any, List, Mapping, Protocol, Sequence

from portal_harvest.bookings.bookings_errors import RecordTooLargeError, SizeExceededError
from portal_harvest.logging.harvest_logger import HarvestLogger


class BookingSink(Protocol):
    """Append-only destination that raises `SizeExceededError` for oversized writes."""

    def write(self, chunk: Sequence[Mapping[str, Any]]) -> None: ...


@dataclass
class WriteReport:
    """
    Purpose
    -------
    Outcome counters of one `write_all` call.

    Attributes
    ----------
    rows_written : int
        Records accepted by the sink.
    write_calls : int
        Calls made to `sink.write`, including rejected ones.
    splits : int
        Number of times a rejected chunk was halved.
    """

    rows_written: int = 0
    write_calls: int = 0
    splits: int = 0


def write_all(
    records: Sequence[Mapping[str, Any]], sink: BookingSink, logger: HarvestLogger
) -> WriteReport:
    """
    Write every record to `sink`, splitting chunks that are too large.

    Parameters
    ----------
    records : Sequence[Mapping[str, Any]]
        Ordered records to persist; may be empty.
    sink : BookingSink
        Destination exposing `write(chunk)`.
    logger : HarvestLogger
        Structured logger for split and completion events.

    Returns
    -------
    WriteReport
        Counters for the completed write.

    Raises
    ------
    RecordTooLargeError
        If a single record is rejected by the sink.
    Exception
        Any other exception raised by `sink.write` is propagated.

    Notes
    -----
    - An empty `records` performs no sink call.
    - The concatenation of accepted chunks equals `records`, in order.
    """

    report = WriteReport()
    stack: List[Sequence[Mapping[str, Any]]] = [records] if records else []
    while stack:
        chunk = stack.pop()
        report.write_calls += 1
        try:
            sink.write(chunk)
        except SizeExceededError as e:
            if len(chunk) == 1:
                logger.error(
                    "record_too_large",
                    msg="A single booking exceeds the sink write limit",
                    context={"payload_bytes": e.payload_bytes},
                )
                raise RecordTooLargeError(chunk[0]) from e
            middle: int = math.ceil(len(chunk) / 2)
            stack.append(chunk[middle:])
            stack.append(chunk[:middle])
            report.splits += 1
            logger.warning(
                "write_chunk_split",
                msg="Sink rejected chunk as too large; splitting",
                context={
                    "chunk_size": len(chunk),
                    "left_size": middle,
                    "right_size": len(chunk) - middle,
                    "payload_bytes": e.payload_bytes,
                },
            )
            continue
        report.rows_written += len(chunk)
        logger.debug(
            "write_chunk_accepted",
            context={"chunk_size": len(chunk), "rows_written": report.rows_written},
        )
    logger.info(
        "write_all_complete",
        context={
            "rows_written": report.rows_written,
            "write_calls": report.write_calls,
            "splits": report.splits,
        },
    )
    return report
