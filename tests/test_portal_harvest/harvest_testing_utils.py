"""
Purpose
-------
Shared test doubles for the harvester: a recording logger, in-memory dataset
and key-value sinks, and representative raw portal records.

Key behaviors
-------------
- `RecordingLogger` mimics the `HarvestLogger` interface used by the package
  and stores every call as `(level, event, msg, context)`.
- `LimitedSink` accepts chunks up to `max_items` records and raises
  `SizeExceededError` otherwise, recording accepted and attempted chunks.
- `MemoryKeyValueSink` stores values in a dict.

Conventions
-----------
- Doubles perform no I/O.

Downstream usage
----------------
`from tests.test_portal_harvest.harvest_testing_utils import RecordingLogger, LimitedSink`
"""

from typing import Any, Dict, List, Mapping, Sequence, Tuple

from portal_harvest.bookings.bookings_errors import SizeExceededError


class RecordingLogger:
    """
    Purpose
    -------
    Minimal stand-in for `HarvestLogger` used in unit tests.

    Attributes
    ----------
    records : list[tuple[str, str, str | None, dict[str, Any]]]
        `(level, event, msg, context)` for every call.
    run_id : str
        Fixed run identifier.
    """

    def __init__(self) -> None:
        self.records: List[Tuple[str, str, str | None, Dict[str, Any]]] = []
        self.run_id: str = "test_run_id"

    def emit(
        self, event: str, level: str = "INFO", msg: str | None = None, context: dict | None = None
    ) -> None:
        self.records.append((level, event, msg, context or {}))

    def debug(self, event: str, msg: str | None = None, context: dict | None = None) -> None:
        self.emit(event, "DEBUG", msg, context)

    def info(self, event: str, msg: str | None = None, context: dict | None = None) -> None:
        self.emit(event, "INFO", msg, context)

    def warning(self, event: str, msg: str | None = None, context: dict | None = None) -> None:
        self.emit(event, "WARNING", msg, context)

    def error(self, event: str, msg: str | None = None, context: dict | None = None) -> None:
        self.emit(event, "ERROR", msg, context)

    def events(self, level: str | None = None) -> List[str]:
        """Event names in call order, optionally filtered by level."""

        return [event for lvl, event, _, _ in self.records if level is None or lvl == level]

    def context_of(self, event: str) -> Dict[str, Any]:
        """Context of the first record with `event`."""

        for _, recorded_event, _, context in self.records:
            if recorded_event == event:
                return context
        raise KeyError(event)


class LimitedSink:
    """
    Purpose
    -------
    In-memory dataset sink rejecting chunks larger than `max_items`.

    Attributes
    ----------
    attempts : list[int]
        Size of every chunk passed to `write`.
    chunks : list[list[Mapping[str, Any]]]
        Accepted chunks, in write order.
    """

    def __init__(self, max_items: int | None = None) -> None:
        self.max_items = max_items
        self.attempts: List[int] = []
        self.chunks: List[List[Mapping[str, Any]]] = []

    def write(self, chunk: Sequence[Mapping[str, Any]]) -> None:
        self.attempts.append(len(chunk))
        if self.max_items is not None and len(chunk) > self.max_items:
            raise SizeExceededError(len(chunk))
        self.chunks.append(list(chunk))

    @property
    def written(self) -> List[Mapping[str, Any]]:
        return [record for chunk in self.chunks for record in chunk]


class MemoryKeyValueSink:
    def __init__(self) -> None:
        self.values: Dict[str, Any] = {}

    def set_value(self, key: str, value: Mapping[str, Any]) -> None:
        self.values[key] = value


RAW_BOOKING: Dict[str, Any] = {
    "Id": "a0B5g00000XyZ1",
    "Name": "BK-2025-0001",
    "Primary_Applicant_Name__c": "Jane Doe",
    "Nationality_V2__c": "British",
    "Project__r": {"Name": "Sobha Hartland"},
    "Unit__r": {
        "Name": "HT-1204",
        "No_of_Bedroom__c": "2 BR",
        "Chargeable_Area__c": 1250.5,
        "Tower__r": {"Tower_Type__c": "Residential"},
    },
    "Tower_Name__c": "Hartland Tower A",
    "Agreement_Value__c": 2500000,
    "DLD_Amount__c": "100000.50",
    "DLD_Percentage__c": "4%",
    "Paid_Percentage__c": 20,
    "Status__c": "Booked",
    "Current_Status__c": "Active",
    "Signed_Status__c": "Signed",
    "Pre_registration__c": "Yes",
    "SPA_Executed__c": True,
    "SPA_Executed_Date__c": "2025-02-10",
    "Booking_Date__c": "2025-01-15",
    "Signed_Date__c": "2025-02-01T09:30:00.000Z",
    "Sales_Managers__r": {"FirstName": "Omar", "LastName": "Khan"},
    "Sales_Head__r": {"FirstName": "", "LastName": "Ali"},
    "Channel_Partner__r": {"Name": "Baraca Realty"},
    "Channel_Partner_Contact_Person__c": "Sam Lee",
    "Opportunity__r": {"Name": "Opp HT-1204"},
    "Opportunity__c": "0065g00000AbCd",
}


def make_raw_bookings(count: int, prefix: str = "BK") -> List[Dict[str, Any]]:
    """Build `count` small raw records with distinct `Name` values."""

    return [
        {"Name": f"{prefix}-{index}", "Id": f"id-{index}", "Agreement_Value__c": 1000 * index}
        for index in range(1, count + 1)
    ]
