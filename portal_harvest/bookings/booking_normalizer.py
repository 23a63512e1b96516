"""
Purpose
-------
Map one raw portal booking (arbitrary, nested, optional fields) into the fixed
flat `NormalizedBooking` schema.

Key behaviors
-------------
- Reads every target field from one or more candidate source paths in
  priority order via `read_path`.
- Applies the field default ("" for text, 0 for numbers) when no candidate
  yields a present value.
- Coerces numbers safely: malformed, boolean, or non-finite values become 0.
- Derives formatted companions (AED currency strings, dd/mm/yyyy dates) only
  from present source values; derivation failures yield "".

Conventions
-----------
- A value is "present" when it is neither None nor the empty string.
- Mappings and lists found at a text field's path count as absent.
- The normalizer is pure and total: it never raises, never mutates its input,
  and does not stamp provenance or timestamps.

Downstream usage
----------------
Call `normalize_booking(raw)` for each record returned by the extractor, then
let the orchestration layer add provenance with `tag_booking`.
"""

import math
from typing import Any, List, Mapping

import pandas as pd

from portal_harvest.bookings.bookings_config import (
    BOOKING_FIELDS,
    CURRENCY_FIELDS,
    CURRENCY_PREFIX,
    DATE_FIELDS,
    DISPLAY_DATE_FORMAT,
    PERSON_FIELDS,
    SourcePath,
)
from portal_harvest.bookings.bookings_types import NormalizedBooking, RawBooking

DATE_PARSE_ERRORS: tuple[type[BaseException], ...] = (
    ValueError,
    TypeError,
    OverflowError,
    pd.errors.OutOfBoundsDatetime,
)


def normalize_booking(raw: RawBooking) -> NormalizedBooking:
    """
    Produce the flat normalized view of one raw booking.

    Parameters
    ----------
    raw : RawBooking
        Raw booking mapping as returned by the portal; may be empty.

    Returns
    -------
    NormalizedBooking
        A new mapping containing every schema field.

    Raises
    ------
    None
    """

    if not isinstance(raw, Mapping):
        raw = {}
    normalized: dict[str, Any] = {}
    for name, kind, paths in BOOKING_FIELDS:
        if kind == "number":
            normalized[name] = to_number(read_path(raw, paths, 0))
        else:
            normalized[name] = to_text(read_path(raw, paths, ""))
    for name, relation in PERSON_FIELDS:
        normalized[name] = full_name(raw.get(relation))
    for formatted_name, source_name in CURRENCY_FIELDS:
        normalized[formatted_name] = format_currency(normalized[source_name])
    for formatted_name, source_name in DATE_FIELDS:
        normalized[formatted_name] = format_date(normalized[source_name])
    return NormalizedBooking(**normalized)  # type: ignore[typeddict-item]


def read_path(record: Mapping[str, Any], candidate_paths: List[SourcePath], default: Any) -> Any:
    """
    Return the first present value found along `candidate_paths`.

    Parameters
    ----------
    record : Mapping[str, Any]
        Source mapping.
    candidate_paths : List[SourcePath]
        Key paths tried in order, e.g. `[("Unit__r", "Name"), ("Unit_Number__c",)]`.
    default : Any
        Returned when no path yields a present value.

    Returns
    -------
    Any
        The first value that is neither None nor "" (lists and mappings at the
        end of a path are skipped), else `default`.
    """

    for path in candidate_paths:
        current: Any = record
        for key in path:
            if not isinstance(current, Mapping):
                current = None
                break
            current = current.get(key)
        if current is None or current == "" or isinstance(current, (Mapping, list)):
            continue
        return current
    return default


def to_number(value: Any) -> int | float:
    """
    Coerce a source value to a finite number, defaulting to 0.

    Parameters
    ----------
    value : Any
        Candidate numeric value (int, float, or numeric string).

    Returns
    -------
    int | float
        Ints stay ints; floats and numeric strings become floats; anything
        else (booleans, NaN, infinities, ints beyond float range, garbage
        text) becomes 0.
    """

    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        try:
            float(value)
        except OverflowError:
            return 0
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            number: float = float(value.strip().replace(",", ""))
        except ValueError:
            return 0
        return number if math.isfinite(number) else 0
    return 0


def to_text(value: Any) -> str:
    """Render a present source value as text; booleans as "true"/"false"."""

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return ""
        try:
            return str(value)
        except ValueError:
            # int above the interpreter's digit limit
            return ""
    return ""


def full_name(person: Any) -> str:
    """Join `FirstName` and `LastName` of a related person record, trimmed."""

    if not isinstance(person, Mapping):
        return ""
    first: str = to_text(read_path(person, [("FirstName",)], ""))
    last: str = to_text(read_path(person, [("LastName",)], ""))
    return f"{first} {last}".strip()


def format_currency(amount: int | float) -> str:
    """Format a non-zero amount as "AED 1,234.50"; zero yields ""."""

    if not amount:
        return ""
    try:
        return f"{CURRENCY_PREFIX} {amount:,.2f}"
    except (OverflowError, ValueError):
        return ""


def format_date(value: str) -> str:
    """
    Render an ISO-like date string as dd/mm/yyyy.

    Parameters
    ----------
    value : str
        Source date text, e.g. "2024-03-15" or "2024-03-15T10:00:00.000Z".

    Returns
    -------
    str
        Formatted date, or "" when `value` is empty, unparsable, or a relative
        keyword such as "now" or "today".
    """

    if not value or not value.lstrip()[:1].isdigit():
        return ""
    try:
        timestamp: pd.Timestamp = pd.Timestamp(value)
    except DATE_PARSE_ERRORS:
        return ""
    if pd.isna(timestamp):
        return ""
    return timestamp.strftime(DISPLAY_DATE_FORMAT)
