"""
Purpose
-------
Exception taxonomy for the bookings harvester. Only conditions that must stop
or reroute control flow are exceptions; per-call RPC outcomes are returned as
data (see `bookings_types.ResponseEnvelope`).

Key behaviors
-------------
- `MissingCredentialsError` stops a run before any portal call is made.
- `SizeExceededError` is raised by sinks and recovered by the safe batch
  writer through splitting.
- `RecordTooLargeError` is terminal and names the offending booking.
- `RowCountMismatchError` signals a violated dataset post-condition.

Conventions
-----------
- Every exception derives from `HarvestError` so job runners can catch the
  family with one clause.

Downstream usage
----------------
Raise `SizeExceededError` from any sink `write(...)` implementation when a
chunk is too large; let the other exceptions propagate to the entry point.
"""

from typing import Any, Mapping, Sequence


class HarvestError(Exception):
    """Base class for all harvester errors."""


class MissingCredentialsError(HarvestError, ValueError):
    """
    Raised when one or more of the three portal credentials is empty.

    Parameters
    ----------
    missing : Sequence[str]
        Names of the configuration entries that are missing.
    """

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required authentication parameters: {', '.join(self.missing)}")


class SizeExceededError(HarvestError):
    """
    Raised by a sink when a single write is larger than it accepts.

    Parameters
    ----------
    chunk_size : int
        Number of records in the rejected write.
    payload_bytes : int | None, default=None
        Serialized size of the rejected write, when known.
    """

    def __init__(self, chunk_size: int, payload_bytes: int | None = None) -> None:
        self.chunk_size = chunk_size
        self.payload_bytes = payload_bytes
        super().__init__(
            f"Write of {chunk_size} record(s) rejected as too large (bytes={payload_bytes})"
        )


class RecordTooLargeError(HarvestError):
    """
    Raised when a single record cannot be written even on its own.

    Parameters
    ----------
    record : Mapping[str, Any]
        The offending record; its booking identifiers are quoted in the message
        so an operator can trim its fields.
    """

    def __init__(self, record: Mapping[str, Any]) -> None:
        self.record = record
        self.booking_id = str(record.get("bookingId", ""))
        self.salesforce_id = str(record.get("salesforceId", ""))
        super().__init__(
            "Single record exceeds the sink write limit: "
            f"bookingId={self.booking_id!r} salesforceId={self.salesforce_id!r}"
        )


class RowCountMismatchError(HarvestError):
    """
    Raised when the dataset sink did not receive exactly one row per booking.

    Parameters
    ----------
    expected : int
        Number of normalized bookings handed to the writer.
    written : int
        Number of rows the writer reports as durably written.
    """

    def __init__(self, expected: int, written: int) -> None:
        self.expected = expected
        self.written = written
        super().__init__(f"Dataset row count {written} does not match booking count {expected}")
