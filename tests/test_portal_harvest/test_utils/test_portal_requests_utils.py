"""
Purpose
-------
Exercise the single-shot HTTP helpers in `portal_harvest.utils.requests_utils`
without real I/O.

Key behaviors
-------------
- `post_form` posts form data through the given session (or `requests.post`)
  and validates the status with `raise_for_status`.
- `create_header` carries the cookie, referer, LDS endpoint, and a fresh
  16-character lowercase-alphanumeric request id; USER_AGENT overrides the default.
- `describe_request_failure` distinguishes HTTP errors from network errors.

Conventions
-----------
- Sessions and responses are `MagicMock` objects.

Downstream usage
----------------
Run with `pytest -q tests/test_portal_harvest/test_utils`.
"""

import re
from unittest.mock import MagicMock

import pytest
import requests
from pytest import MonkeyPatch
from pytest_mock import MockerFixture

from portal_harvest.bookings.bookings_config import DEFAULT_USER_AGENT, PORTAL_ORIGIN
from portal_harvest.utils.requests_utils import (
    create_header,
    describe_request_failure,
    generate_request_id,
    post_form,
)

TEST_URL: str = "https://example.com/aura"
TEST_FORM: dict[str, str] = {"message": "{}", "aura.token": "tok"}
TEST_HEADER: dict[str, str] = {"Cookie": "sid=1"}
TEST_TIMEOUT: tuple[float, float] = (1.0, 2.0)
LDS_ENDPOINT: str = "ApexActionController.execute:Ctrl.method"


def test_post_form_session() -> None:
    """
    The session's `post` is called once with form data and the status checked.

    Raises
    ------
    AssertionError
        If arguments are not forwarded or `raise_for_status` is skipped.
    """

    session: MagicMock = MagicMock()
    response = post_form(TEST_URL, TEST_FORM, TEST_HEADER, TEST_TIMEOUT, session)
    session.post.assert_called_once_with(
        TEST_URL, data=TEST_FORM, headers=TEST_HEADER, timeout=TEST_TIMEOUT
    )
    assert response is session.post.return_value
    response.raise_for_status.assert_called_once_with()


def test_post_form_without_session(mocker: MockerFixture) -> None:
    """
    Without a session the module-level `requests.post` is used.

    Raises
    ------
    AssertionError
        If `requests.post` is not called.
    """

    mock_post: MagicMock = mocker.patch("portal_harvest.utils.requests_utils.requests.post")
    post_form(TEST_URL, TEST_FORM, TEST_HEADER, TEST_TIMEOUT)
    mock_post.assert_called_once_with(
        TEST_URL, data=TEST_FORM, headers=TEST_HEADER, timeout=TEST_TIMEOUT
    )


def test_post_form_http_error() -> None:
    """
    A non-2xx status surfaces as `requests.HTTPError`.

    Raises
    ------
    AssertionError
        If the HTTP error does not propagate.
    """

    session: MagicMock = MagicMock()
    session.post.return_value.raise_for_status.side_effect = requests.HTTPError("500")
    with pytest.raises(requests.HTTPError):
        post_form(TEST_URL, TEST_FORM, TEST_HEADER, TEST_TIMEOUT, session)


def test_create_header_fields(monkeypatch: MonkeyPatch) -> None:
    """
    Header carries cookie, origin, referer, LDS endpoint, and a fresh request id.

    Raises
    ------
    AssertionError
        If any header value differs.
    """

    monkeypatch.delenv("USER_AGENT", raising=False)
    header = create_header("/partnerportal/s/performance", "sid=abc", LDS_ENDPOINT)
    assert header["Cookie"] == "sid=abc"
    assert header["Origin"] == PORTAL_ORIGIN
    assert header["Referer"] == PORTAL_ORIGIN + "/partnerportal/s/performance"
    assert header["X-SFDC-LDS-Endpoints"] == LDS_ENDPOINT
    assert header["User-Agent"] == DEFAULT_USER_AGENT
    assert header["Content-Type"].startswith("application/x-www-form-urlencoded")
    assert re.fullmatch(r"[a-z0-9]{16}", header["X-SFDC-Request-Id"])


def test_create_header_user_agent_override(monkeypatch: MonkeyPatch) -> None:
    """
    USER_AGENT replaces the default browser string.

    Raises
    ------
    AssertionError
        If the override is ignored.
    """

    monkeypatch.setenv("USER_AGENT", "harvest-bot/1.0")
    assert create_header("/p", "c", LDS_ENDPOINT)["User-Agent"] == "harvest-bot/1.0"


def test_generate_request_id_varies() -> None:
    """
    Consecutive ids differ in practice and respect the requested length.

    Raises
    ------
    AssertionError
        If ids repeat across a small sample or have the wrong length.
    """

    ids = {generate_request_id() for _ in range(20)}
    assert len(ids) == 20
    assert len(generate_request_id(8)) == 8


def test_describe_request_failure_http() -> None:
    """
    HTTP errors report the status code and reason.

    Raises
    ------
    AssertionError
        If the status code or reason text differ.
    """

    response: MagicMock = MagicMock(status_code=503, reason="Service Unavailable")
    status_code, reason = describe_request_failure(requests.HTTPError(response=response))
    assert status_code == 503
    assert reason == "HTTP 503: Service Unavailable"


def test_describe_request_failure_network() -> None:
    """
    Network errors have no status code and name the exception type.

    Raises
    ------
    AssertionError
        If a status code is reported or the type is missing from the reason.
    """

    status_code, reason = describe_request_failure(requests.ConnectTimeout("timed out"))
    assert status_code is None
    assert reason == "ConnectTimeout: timed out"
