# src/core/errors.py — v1
"""Pipeline error taxonomy and provider error classification."""

from __future__ import annotations

import asyncio


class PipelineError(Exception):
    """Base class for all retrieval pipeline errors."""


class RemoteUnavailable(PipelineError):
    """Provider is down, unreachable or refused the connection."""


class RemoteTimeout(PipelineError):
    """A remote call exceeded its per-attempt timeout."""


class InvalidResponse(PipelineError):
    """Provider returned a malformed or empty payload."""


class InvalidRequest(PipelineError):
    """Request rejected by the provider as malformed. Never retried."""


class NoCandidates(PipelineError):
    """Retrieval yielded nothing after every fallback."""


class GenerationFailed(PipelineError):
    """Answer generation failed after retries were exhausted."""


class RetryExhausted(PipelineError):
    """All attempts of a remote call failed."""

    def __init__(
        self, operation: str, error_type: str, attempts: int, last_error: BaseException
    ) -> None:
        self.operation = operation
        self.error_type = error_type
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Operation '{operation}' failed after {attempts} attempt(s) "
            f"({error_type}): {last_error}"
        )


NON_RETRYABLE_ERROR_TYPES = frozenset({"invalid_request"})


def classify_error(error: BaseException) -> str:
    """Classify an exception into a retry error type.

    Typed pipeline errors are classified by type. Provider SDK errors are
    classified from their class name and message since every SDK names
    them differently.
    """
    if isinstance(error, InvalidRequest):
        return "invalid_request"
    if isinstance(error, (RemoteTimeout, asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    if isinstance(error, InvalidResponse):
        return "invalid_response"
    if isinstance(error, (RemoteUnavailable, ConnectionError)):
        return "unavailable"

    msg = str(error).lower()
    name = type(error).__name__.lower()

    if "timeout" in name or "timed out" in msg:
        return "timeout"
    if "ratelimit" in name or "429" in msg or "rate limit" in msg:
        return "rate_limit"
    if "badrequest" in name or "unprocessable" in name or "400" in msg or "422" in msg:
        return "invalid_request"
    if "authentication" in name or "permissiondenied" in name or "401" in msg or "403" in msg:
        return "invalid_request"
    if "connection" in name or "unavailable" in msg:
        return "unavailable"
    if any(c in msg for c in ("500", "502", "503", "504", "server error")):
        return "server_error"
    if "json" in msg or "decode" in msg or "parse" in msg:
        return "invalid_response"
    return "unknown"


def is_retryable(error: BaseException) -> bool:
    """Whether a failed attempt may be retried."""
    return classify_error(error) not in NON_RETRYABLE_ERROR_TYPES
