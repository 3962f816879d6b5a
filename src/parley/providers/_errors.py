"""Shared provider-side error helpers.

Providers wrap SDK exceptions into APIError so callers see one error type
with a status code and an actionable hint, whichever backend failed.
"""

from __future__ import annotations

import asyncio

import httpx

from parley.config import API_KEY_ENV_VARS
from parley.errors import APIError, RateLimitError, _walk_exception_chain


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def _is_network_error(exc: BaseException) -> bool:
    return any(
        isinstance(e, (httpx.TimeoutException, httpx.TransportError))
        for e in _walk_exception_chain(exc)
    )


def _derive_hint(provider: str, status_code: int | None, exc: BaseException) -> str | None:
    """Generate a hint where naming the fix is useful."""
    cause_lower = str(exc).lower()
    if status_code in {401, 403} or (
        status_code == 400 and ("api key" in cause_lower or "api_key" in cause_lower)
    ):
        env_var = API_KEY_ENV_VARS.get(provider, "the API key")
        return f"Check credentials/permissions (try setting {env_var} or Config.api_key)."
    if status_code == 404:
        return "Check the model name; the backend does not know it."
    if status_code == 429:
        return "The backend is rate limiting this key; Parley does not retry."
    if status_code is None and _is_network_error(exc):
        return "The backend could not be reached; check network access and base_url."
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map provider SDK exceptions into APIError with a status code and hint."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    derived_hint = hint if hint is not None else _derive_hint(provider, status_code, exc)

    msg = message or f"{provider} {phase} failed"
    err_cls: type[APIError] = RateLimitError if status_code == 429 else APIError

    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=derived_hint,
        status_code=status_code,
        provider=provider,
        phase=phase,
    )
