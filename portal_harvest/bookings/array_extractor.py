"""
Purpose
-------
Locate the booking list inside a successful Aura payload whose shape is not
contractually fixed. The list may arrive bare, one level under a well-known
key, or behind a doubled `returnValue` indirection.

Key behaviors
-------------
- Returns a bare list unchanged.
- Walks `CANDIDATE_ARRAY_PATHS` in priority order and returns the first value
  that is a list.
- Falls back to a one-level structural scan: the first non-empty list value
  whose first element is a mapping.
- Returns an empty list when nothing matches and reports it as
  "zero records detected"; never raises.

Conventions
-----------
- The structural scan only inspects the first element of each list; it is a
  heuristic, not a guarantee.
- Every resolution carries a location label ("bare", a dotted candidate path,
  "scan:<key>", or "none") so operators can tell an empty result apart from
  an outdated candidate list.

Downstream usage
----------------
Call `extract_array(payload, logger)` on `RpcSuccess.payload`; use
`resolve_array_location(payload)` directly when the label is needed.
"""

from typing import Any, List, Mapping

from portal_harvest.bookings.bookings_config import CANDIDATE_ARRAY_PATHS, SourcePath
from portal_harvest.bookings.bookings_types import RawBooking
from portal_harvest.logging.harvest_logger import HarvestLogger

NO_LOCATION: str = "none"
BARE_LOCATION: str = "bare"
SCAN_PREFIX: str = "scan:"


def extract_array(payload: Any, logger: HarvestLogger | None = None) -> List[RawBooking]:
    """
    Return the record list contained in `payload`, or an empty list.

    Parameters
    ----------
    payload : Any
        Unresolved success payload (list, mapping, scalar, or None).
    logger : HarvestLogger | None, default=None
        Optional logger; structural-scan matches and empty results are reported.

    Returns
    -------
    List[RawBooking]
        The located list (the same object found in the payload) or `[]`.

    Raises
    ------
    None
    """

    records, location = resolve_array_location(payload)
    if logger is not None:
        if location == NO_LOCATION:
            logger.warning(
                "zero_records_detected",
                msg="No record array found in payload",
                context={"payload_type": type(payload).__name__, "keys": payload_keys(payload)},
            )
        elif location.startswith(SCAN_PREFIX):
            logger.warning(
                "array_resolved_by_structural_scan",
                msg="Record array found outside the candidate paths",
                context={"location": location, "record_count": len(records)},
            )
        else:
            logger.debug(
                "array_resolved",
                context={"location": location, "record_count": len(records)},
            )
    return records


def resolve_array_location(payload: Any) -> tuple[List[RawBooking], str]:
    """
    Resolve where the record list lives in `payload`.

    Parameters
    ----------
    payload : Any
        Unresolved success payload.

    Returns
    -------
    tuple[List[RawBooking], str]
        `(records, location)` where location is "bare", a dotted candidate
        path (e.g., "returnValue.returnValue"), "scan:<key>", or "none".
    """

    if isinstance(payload, list):
        return payload, BARE_LOCATION
    if not isinstance(payload, Mapping):
        return [], NO_LOCATION
    for path in CANDIDATE_ARRAY_PATHS:
        value: Any = follow_path(payload, path)
        if isinstance(value, list):
            return value, ".".join(path)
    for key, value in payload.items():
        if looks_like_record_list(value):
            return value, f"{SCAN_PREFIX}{key}"
    return [], NO_LOCATION


def follow_path(payload: Mapping[str, Any], path: SourcePath) -> Any | None:
    """Walk `path` through nested mappings; None as soon as a step is missing."""

    current: Any = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def looks_like_record_list(value: Any) -> bool:
    """True for a non-empty list whose first element is a mapping."""

    return isinstance(value, list) and bool(value) and isinstance(value[0], Mapping)


def payload_keys(payload: Any) -> List[str]:
    """Top-level keys of a mapping payload, for diagnostics."""

    if isinstance(payload, Mapping):
        return [str(key) for key in payload.keys()]
    return []
