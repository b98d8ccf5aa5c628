"""Map engine errors and submission results onto candidate outcomes."""

from saferedeem.redeem.errors import (
    AuthFailure,
    ChainRevert,
    EndpointUnavailable,
    TransientNetworkError,
)
from saferedeem.redeem.models import Outcome, SubmissionResult

# Errors that end the whole run instead of a single candidate
FATAL_ERRORS: tuple[type[Exception], ...] = (AuthFailure, EndpointUnavailable)

DETAIL_LIMIT = 120


def truncate(text: str, limit: int = DETAIL_LIMIT) -> str:
    """Shorten diagnostic text for logs and reports."""
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def classify_error(error: Exception) -> Outcome:
    """Classify a non-fatal failure.

    Reverts mean there is nothing to redeem (already redeemed, unresolved),
    so they are skipped rather than retried.
    """
    if isinstance(error, FATAL_ERRORS):
        raise ValueError(f"{type(error).__name__} is fatal and cannot be classified")
    if isinstance(error, ChainRevert):
        return Outcome.SKIPPED
    if isinstance(error, TransientNetworkError):
        return Outcome.RETRYABLE
    return Outcome.FAILED


def classify_submission(result: SubmissionResult) -> Outcome:
    return Outcome.SUCCESS if result.confirmed else Outcome.FAILED
