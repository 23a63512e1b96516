"""
Purpose
-------
Call the partner portal's Aura ApexAction endpoint for one query unit and
classify the outcome into a `ResponseEnvelope`.

Key behaviors
-------------
- Builds the JSON action envelope naming the Apex controller method and its
  parameters, and the form body carrying the three opaque credentials.
- Issues exactly one POST per `fetch` call; never retries.
- Classifies the result:
    * transport failure (non-2xx, timeout, connection) -> RpcTransportError
    * undecodable body                                 -> RpcMalformed
    * action state "ERROR" with a session marker       -> RpcSessionExpired
    * action state "ERROR" otherwise                   -> RpcApplicationError
    * action state "SUCCESS"                           -> RpcSuccess(returnValue)
    * any other shape                                  -> RpcSuccess(None)

Conventions
-----------
- Only the first action of the response is inspected; the request carries a
  single action.
- Session-expired detection is a case-insensitive substring match over the
  JSON-serialized error detail against `SESSION_EXPIRED_MARKERS`.
- Credential values are never logged.

Downstream usage
----------------
Call `fetch(...)` from the orchestration loop and branch on the returned
envelope type. Hand `RpcSuccess.payload` to the adaptive extractor unresolved.
"""

import json
from typing import Any

import requests

from portal_harvest.bookings.bookings_config import (
    AURA_ACTION_DESCRIPTOR,
    AURA_ACTION_ID,
    AURA_CALLING_DESCRIPTOR,
    AURA_ENDPOINT_URL,
    ENVELOPE_PREVIEW_CHARS,
    REQUEST_TIMEOUT,
    SESSION_EXPIRED_MARKERS,
)
from portal_harvest.bookings.bookings_types import (
    ApexTarget,
    Credentials,
    QueryParameter,
    ResponseEnvelope,
    RpcApplicationError,
    RpcMalformed,
    RpcSessionExpired,
    RpcSuccess,
    RpcTransportError,
)
from portal_harvest.logging.harvest_logger import HarvestLogger
from portal_harvest.utils.requests_utils import create_header, describe_request_failure, post_form


def fetch(
    query_parameter: QueryParameter,
    credentials: Credentials,
    target: ApexTarget,
    session: requests.Session,
    logger: HarvestLogger,
    timeout: tuple[float, float] = REQUEST_TIMEOUT,
) -> ResponseEnvelope:
    """
    Invoke the Apex method once and classify the response.

    Parameters
    ----------
    query_parameter : QueryParameter
        Parameters forwarded as the Apex method's `params`.
    credentials : Credentials
        Opaque portal tokens; presence is checked by the caller.
    target : ApexTarget
        Remote procedure identity and originating page.
    session : requests.Session
        Shared HTTP session for the run.
    logger : HarvestLogger
        Structured logger.
    timeout : tuple[float, float], default=REQUEST_TIMEOUT
        (connect_timeout, read_timeout) for the single POST.

    Returns
    -------
    ResponseEnvelope
        One of RpcSuccess, RpcApplicationError, RpcSessionExpired,
        RpcTransportError, RpcMalformed.

    Raises
    ------
    None
        Transport and decoding failures are returned as envelopes.
    """

    form: dict[str, str] = build_form(query_parameter, credentials, target)
    header: dict[str, str] = create_header(
        target.page_uri, credentials.cookie_header, build_lds_endpoint(target)
    )
    logger.debug(
        "aura_request_sent",
        context={
            "request_id": header["X-SFDC-Request-Id"],
            "classname": target.classname,
            "method": target.method,
            "params": query_parameter,
        },
    )
    try:
        response: requests.Response = post_form(
            AURA_ENDPOINT_URL, form, header, timeout=timeout, session=session
        )
    except requests.RequestException as e:
        status_code, reason = describe_request_failure(e)
        logger.error(
            "aura_transport_error",
            msg=reason,
            context={"status_code": status_code, "params": query_parameter},
        )
        return RpcTransportError(status_code=status_code, reason=reason)
    logger.info("aura_response_received", context={"status_code": response.status_code})
    try:
        body: Any = response.json()
    except ValueError as e:
        logger.error(
            "aura_response_not_json",
            context={"preview": response.text[:ENVELOPE_PREVIEW_CHARS]},
        )
        return RpcMalformed(reason=f"Response body is not JSON: {e}")
    return classify_response(body, logger)


def classify_response(body: Any, logger: HarvestLogger) -> ResponseEnvelope:
    """
    Map a decoded Aura response body to a `ResponseEnvelope`.

    Parameters
    ----------
    body : Any
        Decoded JSON body.
    logger : HarvestLogger
        Structured logger for error and drift diagnostics.

    Returns
    -------
    ResponseEnvelope
        RpcSuccess, RpcApplicationError, or RpcSessionExpired.

    Notes
    -----
    - Unknown envelopes are tolerated: they become `RpcSuccess(None)` so the
      extractor reports zero records instead of the unit failing.
    """

    action: Any = first_action(body)
    state: Any = action.get("state") if isinstance(action, dict) else None
    if state == "SUCCESS":
        return RpcSuccess(payload=action.get("returnValue"))
    if state == "ERROR":
        detail: Any = action.get("error")
        if is_session_expired(detail):
            logger.error(
                "session_expired",
                msg="Portal session is no longer valid; update authentication tokens",
                context={"detail": detail},
            )
            return RpcSessionExpired(detail=detail)
        logger.error("aura_application_error", context={"detail": detail})
        return RpcApplicationError(detail=detail)
    logger.warning(
        "unexpected_response_envelope",
        context={
            "state": state,
            "preview": json.dumps(body, default=str)[:ENVELOPE_PREVIEW_CHARS],
        },
    )
    return RpcSuccess(payload=None)


def first_action(body: Any) -> Any | None:
    """Return `body["actions"][0]` when the body has that shape, else None."""

    if not isinstance(body, dict):
        return None
    actions: Any = body.get("actions")
    if isinstance(actions, list) and actions:
        return actions[0]
    return None


def is_session_expired(detail: Any) -> bool:
    """
    Decide whether an application error detail marks the session as dead.

    Parameters
    ----------
    detail : Any
        The action's `error` value (usually a list of mappings).

    Returns
    -------
    bool
        True when any of `SESSION_EXPIRED_MARKERS` occurs in the serialized
        detail, compared case-insensitively.

    Notes
    -----
    - Known fragility: matching is textual, so a change of wording on the
      portal side silently turns expiry into a plain application error.
    """

    text: str = json.dumps(detail, default=str).casefold()
    return any(marker.casefold() in text for marker in SESSION_EXPIRED_MARKERS)


def build_action_message(query_parameter: QueryParameter, target: ApexTarget) -> dict[str, Any]:
    """
    Build the Aura `message` envelope for one ApexAction call.

    Parameters
    ----------
    query_parameter : QueryParameter
        Apex method parameters.
    target : ApexTarget
        Remote procedure identity.

    Returns
    -------
    dict[str, Any]
        `{"actions": [ { id, descriptor, callingDescriptor, params } ]}`.
    """

    return {
        "actions": [
            {
                "id": AURA_ACTION_ID,
                "descriptor": AURA_ACTION_DESCRIPTOR,
                "callingDescriptor": AURA_CALLING_DESCRIPTOR,
                "params": {
                    "namespace": target.namespace,
                    "classname": target.classname,
                    "method": target.method,
                    "params": query_parameter,
                    "cacheable": False,
                    "isContinuation": False,
                },
            }
        ]
    }


def build_form(
    query_parameter: QueryParameter, credentials: Credentials, target: ApexTarget
) -> dict[str, str]:
    """
    Build the form fields of the POST body.

    Parameters
    ----------
    query_parameter : QueryParameter
        Apex method parameters.
    credentials : Credentials
        Opaque tokens forwarded as `aura.context` and `aura.token`.
    target : ApexTarget
        Supplies the `aura.pageURI` value.

    Returns
    -------
    dict[str, str]
        Fields `message`, `aura.context`, `aura.pageURI`, `aura.token`.
    """

    return {
        "message": json.dumps(build_action_message(query_parameter, target)),
        "aura.context": credentials.aura_context,
        "aura.pageURI": target.page_uri,
        "aura.token": credentials.aura_token,
    }


def build_lds_endpoint(target: ApexTarget) -> str:
    """Return the `X-SFDC-LDS-Endpoints` header value for `target`."""

    return f"ApexActionController.execute:{target.classname}.{target.method}"
