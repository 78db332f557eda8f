"""Retry wrapper for outbound Keycloak calls.

Transient faults (HTTP 5xx, 429, connection refused, timeout) are retried
with exponential backoff; anything else surfaces immediately as an
``IdentityProviderError``. Callers decide what to do with the error.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

import requests

from .exceptions import IdentityProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule: initial, initial*multiplier, ... capped at max_backoff."""
    max_retries: int = 3
    initial_backoff: float = 1.0
    multiplier: float = 2.0
    max_backoff: float = 5.0

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1-based)."""
        delay = self.initial_backoff * (self.multiplier ** (retry_number - 1))
        return min(delay, self.max_backoff)


def as_provider_error(operation: str, exc: Exception) -> IdentityProviderError:
    """Normalize transport exceptions into IdentityProviderError."""
    if isinstance(exc, IdentityProviderError):
        return exc
    return IdentityProviderError(operation, None, f"{type(exc).__name__}: {exc}")


def is_transient(exc: Exception) -> bool:
    if isinstance(exc, IdentityProviderError):
        return exc.transient
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


def call_with_retry(
    operation: str,
    func: Callable[[], T],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``func`` and retry it on transient faults.

    Args:
        operation: Name used in logs and in the raised error
        func: Zero-argument callable performing exactly one outbound call
        policy: Backoff schedule (defaults to 3 retries, 1s doubling, 5s cap)
        sleep: Injected for tests

    Raises:
        IdentityProviderError: On a permanent fault or when retries are exhausted
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return func()
        except (IdentityProviderError, requests.ConnectionError, requests.Timeout) as exc:
            error = as_provider_error(operation, exc)
            if not is_transient(exc):
                _reraise(error, exc)
            if attempt >= policy.max_retries:
                logger.error(
                    "Retries exhausted for '%s' after %d attempts: %s",
                    operation, attempt + 1, error,
                )
                _reraise(error, exc)
            attempt += 1
            delay = policy.delay_for(attempt)
            logger.warning(
                "Retrying '%s' (attempt %d/%d) in %.1fs due to: %s",
                operation, attempt, policy.max_retries, delay, error,
            )
            sleep(delay)


def _reraise(error: IdentityProviderError, original: Exception):
    if error is original:
        raise error
    raise error from original
