"""
Purpose
-------
Central configuration for the partner-portal bookings harvester: endpoint and
header constants for the Aura ApexAction call, request pacing, candidate
locations for the record array, the normalized field table, and persistence
limits. Provides a single source of truth to keep behavior consistent across
modules.

Key behaviors
-------------
- Defines the portal origin, Aura endpoint, action descriptor, and fixed
  browser-like request headers.
- Defines `REQUEST_DELAY_SECONDS`, the fixed pause between query units.
- Enumerates `CANDIDATE_ARRAY_PATHS`, checked in order when resolving where the
  booking list lives inside a successful payload.
- Enumerates `SESSION_EXPIRED_MARKERS`, substrings of an error detail that mark
  the portal session as dead.
- Describes every normalized booking field in `BOOKING_FIELDS` as
  (name, kind, candidate source paths).
- Names the KV key, table names, and byte limits used by the PostgreSQL sinks.

Conventions
-----------
- Source paths are tuples of keys walked through nested mappings; the first
  path yielding a present value wins.
- Field kinds are "text" (default "") or "number" (default 0).
- Constants are treated as read-only; callers should not mutate them at runtime.

Downstream usage
----------------
Import the needed constants rather than hard-coding values:
- `AURA_ENDPOINT_URL`, `PORTAL_ORIGIN`, `AURA_ACTION_*` : RPC client.
- `CANDIDATE_ARRAY_PATHS` : adaptive extractor.
- `BOOKING_FIELDS`, `CURRENCY_FIELDS`, `DATE_FIELDS`, `PERSON_FIELDS` : normalizer.
- `SUMMARY_KEY`, `DATASET_*`, `KV_*` : loaders.
"""

from typing import List, Literal, TypeAlias

SourcePath: TypeAlias = tuple[str, ...]
FieldKind: TypeAlias = Literal["text", "number"]

PORTAL_ORIGIN: str = "https://www.sobhapartnerportal.com"
AURA_ENDPOINT_URL: str = (
    PORTAL_ORIGIN + "/partnerportal/s/sfsites/aura?r=18&aura.ApexAction.execute=1"
)
AURA_ACTION_ID: str = "197;a"
AURA_ACTION_DESCRIPTOR: str = "aura://ApexActionController/ACTION$execute"
AURA_CALLING_DESCRIPTOR: str = "UNKNOWN"

DEFAULT_APEX_NAMESPACE: str = ""
DEFAULT_APEX_CLASSNAME: str = "SitevisitChartController"
DEFAULT_APEX_METHOD: str = "getBookingDataDetails"
DEFAULT_PAGE_URI: str = "/partnerportal/s/performance"
DEFAULT_USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
)

REQUEST_ID_LENGTH: int = 16
REQUEST_ID_ALPHABET: str = "abcdefghijklmnopqrstuvwxyz0123456789"
REQUEST_TIMEOUT: tuple[float, float] = (5.0, 60.0)
REQUEST_DELAY_SECONDS: float = 2.0  # fixed pause between query units
ENVELOPE_PREVIEW_CHARS: int = 500

SESSION_EXPIRED_MARKERS: tuple[str, ...] = ("expired", "INVALID_SESSION_ID", "aura:invalidSession")

DEFAULT_YEARS: List[int] = [2025]
DEFAULT_MAX_RESULTS: int = 10000
HARVEST_METHOD: str = "direct_aura_api"
HARVEST_VERSION: str = "1.0.0"

CANDIDATE_ARRAY_PATHS: List[SourcePath] = [
    ("returnValue", "returnValue"),
    ("returnValue",),
    ("records",),
    ("data",),
    ("result",),
    ("items",),
    ("bookings",),
    ("bookingList",),
    ("lstBookings",),
    ("bookingDetails",),
]

BOOKING_FIELDS: List[tuple[str, FieldKind, List[SourcePath]]] = [
    ("bookingId", "text", [("Name",), ("Booking_Number__c",)]),
    ("salesforceId", "text", [("Id",)]),
    (
        "customerName",
        "text",
        [("Primary_Applicant_Name__c",), ("Customer_Name__c",), ("Lead__r", "Name")],
    ),
    ("nationality", "text", [("Nationality_V2__c",), ("Customer_Nationality__c",)]),
    ("project", "text", [("Project__r", "Name"), ("Project_Name__c",)]),
    ("unitNumber", "text", [("Unit__r", "Name"), ("Unit_Number__c",)]),
    ("towerName", "text", [("Tower_Name__c",), ("Tower__r", "Name")]),
    ("towerType", "text", [("Unit__r", "Tower__r", "Tower_Type__c")]),
    ("bedrooms", "text", [("Unit__r", "No_of_Bedroom__c"), ("Unit_Type__c",)]),
    (
        "areaSqFt",
        "number",
        [("Unit__r", "Chargeable_Area__c"), ("Area__c",), ("Unit__r", "Total_Area__c")],
    ),
    ("agreementValue", "number", [("Agreement_Value__c",)]),
    ("dldAmount", "number", [("DLD_Amount__c",)]),
    ("dldPercentage", "text", [("DLD_Percentage__c",)]),
    ("paidPercentage", "number", [("Paid_Percentage__c",)]),
    ("status", "text", [("Status__c",), ("Booking_Status__c",)]),
    ("currentStatus", "text", [("Current_Status__c",)]),
    ("signedStatus", "text", [("Signed_Status__c",)]),
    ("preRegistration", "text", [("Pre_registration__c",)]),
    ("spaExecuted", "text", [("SPA_Executed__c",)]),
    ("spaExecutedDate", "text", [("SPA_Executed_Date__c",)]),
    ("bookingDate", "text", [("Booking_Date__c",), ("CreatedDate",)]),
    ("signedDate", "text", [("Signed_Date__c",)]),
    ("channelPartner", "text", [("Channel_Partner__r", "Name"), ("Broker_Company__c",)]),
    ("contactPerson", "text", [("Channel_Partner_Contact_Person__c",)]),
    ("opportunityName", "text", [("Opportunity__r", "Name")]),
    ("opportunityId", "text", [("Opportunity__c",)]),
]

# (output field, related-record key) pairs rendered as "FirstName LastName"
PERSON_FIELDS: List[tuple[str, str]] = [
    ("salesManager", "Sales_Managers__r"),
    ("salesHead", "Sales_Head__r"),
]
# (formatted field, numeric source field)
CURRENCY_FIELDS: List[tuple[str, str]] = [
    ("agreementValueFormatted", "agreementValue"),
    ("dldAmountFormatted", "dldAmount"),
]
# (formatted field, text source field)
DATE_FIELDS: List[tuple[str, str]] = [
    ("bookingDateFormatted", "bookingDate"),
    ("signedDateFormatted", "signedDate"),
]
CURRENCY_PREFIX: str = "AED"
DISPLAY_DATE_FORMAT: str = "%d/%m/%Y"

SUMMARY_KEY: str = "SUMMARY"
KV_TABLE: str = "harvest_key_value_store"
KV_MAX_VALUE_BYTES: int = 1024 * 1024
DATASET_TABLE: str = "harvest_booking_rows"
DATASET_MAX_WRITE_BYTES: int = 9 * 1024 * 1024

REQUIRED_CREDENTIALS: List[str] = ["cookieHeader", "auraToken", "auraContext"]
MISSING_CREDENTIALS_ERROR: str = "Missing required authentication parameters"
