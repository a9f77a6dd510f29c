from __future__ import annotations

import logging
from typing import Callable, NamedTuple, Optional, TypeVar

from secretsync.core.errors import (
    AuthorizationError,
    MissingRemoteSecretError,
    RemoteArgumentError,
    RemoteUnavailableError,
    SyncError,
)

T = TypeVar("T")

MAX_RETRIES = 3
BACKOFF_BASE = {
    "unavailable": 0.2,  # 5xx
    "throttled": 1.0,  # rate limiting
}
ERROR_FOR = {
    "not_found": MissingRemoteSecretError,
    "auth": AuthorizationError,
    "argument": RemoteArgumentError,
    "unavailable": RemoteUnavailableError,
    "throttled": RemoteUnavailableError,
    "deadline": RemoteUnavailableError,
    "unknown": SyncError,
}


class Failure(NamedTuple):
    kind: str
    retry_after: Optional[float] = None


def backoff_delay(failure: Failure, attempt: int) -> float:
    # server-provided hint wins when positive
    if failure.retry_after is not None and failure.retry_after > 0:
        return float(failure.retry_after)
    return BACKOFF_BASE[failure.kind] * (2 ** (attempt - 1))


def call_with_retry(
    call: Callable[[], T],
    classify: Callable[[BaseException], Failure],
    *,
    log: logging.Logger,
    sleep: Callable[[float], None],
    provider: str,
    op: str,
    secret: str,
) -> T:
    """Run ``call``, retrying transient failures and mapping SDK errors.

    5xx and throttling are retried up to ``MAX_RETRIES`` times with exponential
    backoff; every other failure is raised immediately as a ``core.errors`` class.
    """
    attempts = 0
    while True:
        attempts += 1
        try:
            return call()
        except Exception as exc:
            failure = classify(exc)
            if failure.kind in BACKOFF_BASE and attempts <= MAX_RETRIES:
                delay = backoff_delay(failure, attempts)
                if log.isEnabledFor(logging.WARNING):
                    log.warning(
                        "%s %s retry (%s): secret=%s, attempt=%d/%d, next_backoff=%.1fs, error=%s",
                        provider,
                        op,
                        failure.kind,
                        secret,
                        attempts,
                        MAX_RETRIES,
                        delay,
                        exc.__class__.__name__,
                    )
                sleep(delay)
                continue
            if log.isEnabledFor(logging.ERROR):
                log.error(
                    "%s %s failed (%s): secret=%s, error=%s",
                    provider,
                    op,
                    failure.kind,
                    secret,
                    exc.__class__.__name__,
                )
            raise ERROR_FOR[failure.kind](f"{provider} {op} {secret}: {exc}") from exc


def status_failure(status: Optional[int], retry_after: Optional[float] = None) -> Failure:
    """Classify a bare HTTP status code."""
    if status is None:
        return Failure("unknown")
    if status == 404:
        return Failure("not_found")
    if status in (401, 403):
        return Failure("auth")
    if status == 429:
        return Failure("throttled", retry_after)
    if status in (408, 504):
        return Failure("deadline")
    if status >= 500:
        return Failure("unavailable")
    if 400 <= status < 500:
        return Failure("argument")
    return Failure("unknown")


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
