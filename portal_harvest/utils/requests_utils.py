"""
Purpose
-------
Provide the single-shot HTTP helpers used to talk to the partner portal.
Centralizes transport-layer logic (header construction, form POST, status
validation, failure description) so the RPC client only deals with
classification of the decoded body.

Key behaviors
-------------
- Builds browser-like headers for a form-encoded Aura POST, including a fresh
  random correlation identifier per call.
- Issues exactly one POST per call; no retries, no back-off.
- Validates the HTTP status via `raise_for_status`.
- Converts a `requests` failure into a (status_code, reason) pair.

Conventions
-----------
- The User-Agent comes from the `USER_AGENT` environment variable when set,
  otherwise from a fixed desktop browser string.
- Timeout is a tuple `(connect_timeout, read_timeout)` passed directly to
  `requests`.
- Correlation ids are 16 lowercase alphanumeric characters; uniqueness is
  practical only.

Downstream usage
----------------
Import `post_form` for the portal call and `describe_request_failure` to build
a transport error outcome. Do not parse or interpret JSON in this module; call
`response.json()` in the caller after a validated response is returned.
"""

import os
import random

import requests

from portal_harvest.bookings.bookings_config import (
    DEFAULT_USER_AGENT,
    PORTAL_ORIGIN,
    REQUEST_ID_ALPHABET,
    REQUEST_ID_LENGTH,
    REQUEST_TIMEOUT,
)


def post_form(
    url: str,
    form: dict[str, str],
    header: dict[str, str],
    timeout: tuple[float, float] = REQUEST_TIMEOUT,
    session: requests.Session | None = None,
) -> requests.Response:
    """
    Send a single form-encoded POST request and validate its status.

    Parameters
    ----------
    url : str
        The target URL.
    form : dict[str, str]
        Form fields; URL-encoded by `requests`.
    header : dict[str, str]
        Headers to include in the request.
    timeout : tuple[float, float], default=REQUEST_TIMEOUT
        (connect_timeout, read_timeout) passed to `requests`.
    session : requests.Session | None, default=None
        Optional `requests.Session` to use for the request.

    Returns
    -------
    requests.Response
        The response object, guaranteed to have a 2xx status.

    Raises
    ------
    requests.HTTPError
        If the response status code indicates a client or server error.
    requests.RequestException
        On timeouts, connection failures, or other transport errors.
    """

    if session is not None:
        response = session.post(url, data=form, headers=header, timeout=timeout)
    else:
        response = requests.post(url, data=form, headers=header, timeout=timeout)
    response.raise_for_status()
    return response


def create_header(page_uri: str, cookie_header: str, lds_endpoint: str) -> dict[str, str]:
    """
    Construct the portal request header for one Aura action call.

    Parameters
    ----------
    page_uri : str
        Portal page path the call originates from; used for the Referer.
    cookie_header : str
        Opaque session cookie header, passed through unchanged.
    lds_endpoint : str
        Value for `X-SFDC-LDS-Endpoints`, e.g.
        "ApexActionController.execute:SitevisitChartController.getBookingDataDetails".

    Returns
    -------
    dict[str, str]
        Header dictionary with a fresh `X-SFDC-Request-Id`.
    """

    return {
        "Accept": "*/*",
        "Accept-Language": "en-US,en;q=0.9",
        "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
        "Cookie": cookie_header,
        "Origin": PORTAL_ORIGIN,
        "Referer": PORTAL_ORIGIN + page_uri,
        "User-Agent": os.environ.get("USER_AGENT") or DEFAULT_USER_AGENT,
        "X-SFDC-Request-Id": generate_request_id(),
        "X-SFDC-LDS-Endpoints": lds_endpoint,
    }


def generate_request_id(length: int = REQUEST_ID_LENGTH) -> str:
    """
    Return a random lowercase-alphanumeric correlation identifier.

    Parameters
    ----------
    length : int, default=REQUEST_ID_LENGTH
        Number of characters.

    Returns
    -------
    str
        Identifier drawn from `REQUEST_ID_ALPHABET`.
    """

    return "".join(random.choices(REQUEST_ID_ALPHABET, k=length))


def describe_request_failure(exception: requests.RequestException) -> tuple[int | None, str]:
    """
    Reduce a `requests` failure to a status code (when available) and a reason.

    Parameters
    ----------
    exception : requests.RequestException
        Exception raised by `post_form`.

    Returns
    -------
    tuple[int | None, str]
        `(status_code, reason)`; `status_code` is None for network-level
        errors (timeouts, refused connections) that carry no response.
    """

    response = getattr(exception, "response", None)
    status_code: int | None = getattr(response, "status_code", None)
    if status_code is not None:
        reason: str = getattr(response, "reason", None) or str(exception)
        return status_code, f"HTTP {status_code}: {reason}"
    return None, f"{type(exception).__name__}: {exception}"
