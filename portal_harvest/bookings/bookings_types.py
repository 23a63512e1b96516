"""
Purpose
-------
Type aliases and lightweight data structures shared across the bookings
harvester: credentials, the remote procedure target, the discriminated RPC
outcome, and the raw/normalized booking record shapes.

Key behaviors
-------------
- Defines `RawBooking` and `QueryParameter` as schema-less mappings.
- Defines `NormalizedBooking` / `TaggedBooking` as fixed-shape TypedDicts.
- Defines the `ResponseEnvelope` union so orchestration branches on the
  outcome type instead of matching exception text.
- Builds the default `QueryParameter` for a year.

Conventions
-----------
- Envelope variants are frozen dataclasses; `RpcSessionExpired` subclasses
  `RpcApplicationError`, so an `isinstance(..., RpcApplicationError)` check
  covers both.
- Credential values are opaque; only presence is validated.

Downstream usage
----------------
Import these aliases in the client, extractor, normalizer, writer, and
orchestrator instead of repeating raw dict types.
"""

from dataclasses import dataclass, field
from typing import Any, List, TypeAlias, TypedDict, Union

from portal_harvest.bookings.bookings_config import (
    DEFAULT_APEX_CLASSNAME,
    DEFAULT_APEX_METHOD,
    DEFAULT_APEX_NAMESPACE,
    DEFAULT_PAGE_URI,
)

RawBooking: TypeAlias = dict[str, Any]
QueryParameter: TypeAlias = dict[str, Any]
UnitOutcomes: TypeAlias = List[dict[str, Any]]


@dataclass(frozen=True)
class Credentials:
    """
    Purpose
    -------
    Carry the three opaque portal tokens captured from a browser session.

    Parameters
    ----------
    cookie_header : str
        Full `Cookie` header value (session token).
    aura_token : str
        `aura.token` form value (action token).
    aura_context : str
        `aura.context` form value (context blob, JSON text).

    Notes
    -----
    - `__repr__` hides the values so credentials never reach logs.
    """

    cookie_header: str = field(repr=False)
    aura_token: str = field(repr=False)
    aura_context: str = field(repr=False)

    def missing_fields(self) -> List[str]:
        """Return the configuration names of empty credentials, in a stable order."""

        missing: List[str] = []
        if not self.cookie_header:
            missing.append("cookieHeader")
        if not self.aura_token:
            missing.append("auraToken")
        if not self.aura_context:
            missing.append("auraContext")
        return missing


@dataclass(frozen=True)
class ApexTarget:
    """
    Purpose
    -------
    Identify the Apex controller method invoked through the Aura endpoint and
    the portal page the call pretends to originate from.

    Parameters
    ----------
    namespace : str
        Apex namespace; empty for the portal's own controllers.
    classname : str
        Apex controller class name.
    method : str
        Apex method name.
    page_uri : str
        Portal page path sent as `aura.pageURI` and used for the Referer.
    """

    namespace: str = DEFAULT_APEX_NAMESPACE
    classname: str = DEFAULT_APEX_CLASSNAME
    method: str = DEFAULT_APEX_METHOD
    page_uri: str = DEFAULT_PAGE_URI


@dataclass(frozen=True)
class RpcSuccess:
    """Action state SUCCESS, or a drifted envelope treated as success with no payload."""

    payload: Any


@dataclass(frozen=True)
class RpcApplicationError:
    """Action state ERROR; `detail` is the portal's error list as returned."""

    detail: Any


@dataclass(frozen=True)
class RpcSessionExpired(RpcApplicationError):
    """Application error whose detail marks the portal session as no longer valid."""


@dataclass(frozen=True)
class RpcTransportError:
    """Non-2xx status, timeout, or connection failure; `status_code` is None without a response."""

    status_code: int | None
    reason: str


@dataclass(frozen=True)
class RpcMalformed:
    """HTTP success whose body could not be decoded as JSON."""

    reason: str


ResponseEnvelope: TypeAlias = Union[
    RpcSuccess, RpcApplicationError, RpcSessionExpired, RpcTransportError, RpcMalformed
]


class NormalizedBooking(TypedDict):
    """
    Purpose
    -------
    Fixed flat schema produced by the normalizer; every key is always present.

    Notes
    -----
    - Text fields default to "", numeric fields to 0.
    - Formatted companions are "" unless derived from a present source value.
    """

    bookingId: str
    salesforceId: str
    customerName: str
    nationality: str
    project: str
    unitNumber: str
    towerName: str
    towerType: str
    bedrooms: str
    areaSqFt: float
    agreementValue: float
    agreementValueFormatted: str
    dldAmount: float
    dldAmountFormatted: str
    dldPercentage: str
    paidPercentage: float
    status: str
    currentStatus: str
    signedStatus: str
    preRegistration: str
    spaExecuted: str
    spaExecutedDate: str
    bookingDate: str
    bookingDateFormatted: str
    signedDate: str
    signedDateFormatted: str
    salesManager: str
    salesHead: str
    channelPartner: str
    contactPerson: str
    opportunityName: str
    opportunityId: str


class TaggedBooking(NormalizedBooking):
    """NormalizedBooking plus provenance added by the orchestration layer."""

    scrapedYear: int
    extractedAt: str


def build_query_parameter(year: int) -> QueryParameter:
    """
    Build the Apex method parameters for one query unit.

    Parameters
    ----------
    year : int
        Booking year to select.

    Returns
    -------
    QueryParameter
        `{"selectedYear": year}`.
    """

    return {"selectedYear": year}
