"""Callback URL parsing and validation against a pending attempt."""

from __future__ import annotations

from typing import Any, Mapping, Optional
from urllib.parse import parse_qs, urlencode, urlparse

from oauthflow.exceptions import (
    CallbackMissingCodeError,
    ProviderDeniedError,
    StateMismatchError,
)
from oauthflow.models import CallbackPayload, PendingAttempt

_CALLBACK_KEYS = ("code", "state", "error", "error_description")


def _flatten(params: dict[str, list[str]]) -> dict[str, str]:
    return {key: values[0] for key, values in params.items() if values}


def parse_callback_url(url: str, channel: str = "unknown") -> CallbackPayload:
    """Extract the callback parameters from *url*.

    Some providers (and some redirect pages) put the parameters in the
    fragment rather than the query string, so both are read. When both
    carry the same key the query string wins.
    """
    parsed = urlparse(url)
    query = _flatten(parse_qs(parsed.query, keep_blank_values=False))
    fragment = _flatten(parse_qs(parsed.fragment, keep_blank_values=False))

    values: dict[str, Optional[str]] = {
        key: query.get(key) or fragment.get(key) for key in _CALLBACK_KEYS
    }
    return CallbackPayload(
        url=url,
        channel=channel,
        query=query,
        fragment=fragment,
        **values,
    )


def build_callback_url(values: Mapping[str, Any], base: str = "") -> str:
    """Render the callback parameters in *values* as a query on *base*.

    Used when a callback arrives as bare fields rather than a URL, so every
    payload carries a URL the host can re-parse.
    """
    params = {key: str(values[key]) for key in _CALLBACK_KEYS if values.get(key)}
    return f"{base}?{urlencode(params)}"


def validate_callback_state(payload: CallbackPayload, expected_state: str) -> CallbackPayload:
    """Check *payload* against the state the attempt was started with.

    Checks run in a fixed order: a provider error first, then a missing
    code, then the state comparison.

    Raises:
        ProviderDeniedError: The provider returned ``error``.
        CallbackMissingCodeError: No authorization code in query or fragment.
        StateMismatchError: ``state`` does not match.
    """
    if payload.error:
        raise ProviderDeniedError(payload.error, payload.error_description)
    if not payload.code:
        raise CallbackMissingCodeError(payload.url, payload.query, payload.fragment)
    if payload.state != expected_state:
        raise StateMismatchError(payload.state)
    return payload


def validate_callback(payload: CallbackPayload, attempt: PendingAttempt) -> CallbackPayload:
    """Check *payload* against *attempt*. See :func:`validate_callback_state`."""
    return validate_callback_state(payload, attempt.state)
