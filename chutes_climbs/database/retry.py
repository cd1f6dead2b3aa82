"""
Chutes & Climbs - Store Retry Helper

Retries store calls on transient connection errors with exponential backoff.
Only idempotent calls (reads, absolute positions, flags, heartbeats, deletes)
should be wrapped; inserts are retried by their callers' own logic. The
caller's client is reused across attempts; httpx reconnects on its own.
"""

import logging
import time
from typing import Callable, TypeVar

from httpx import TransportError

from chutes_climbs.config.settings import get_settings
from chutes_climbs.errors import StoreWriteFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (TransportError, ConnectionError, OSError)


def with_retry(
    fn: Callable[..., T],
    *args,
    retries: int | None = None,
    backoff: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs,
) -> T:
    """
    Call *fn*, retrying on transient connection errors.

    Args:
        fn: Store operation to call
        retries: Extra attempts after the first (default: settings.store_retries)
        backoff: Initial delay in seconds, doubled per attempt
        sleep: Delay function (injectable for tests)

    Raises:
        StoreWriteFailed: If every attempt failed
    """
    if retries is None or backoff is None:
        settings = get_settings()
        retries = settings.store_retries if retries is None else retries
        backoff = settings.retry_backoff if backoff is None else backoff

    name = getattr(fn, "__qualname__", repr(fn))
    for attempt in range(retries + 1):
        try:
            return fn(*args, **kwargs)
        except TRANSIENT_ERRORS as exc:
            if attempt == retries:
                logger.error("%s failed after %d attempts: %s", name, attempt + 1, exc)
                raise StoreWriteFailed(f"{name} failed: {exc}") from exc
            delay = backoff * (2 ** attempt)
            logger.warning(
                "%s failed (%s), retrying in %.2fs (%d/%d)",
                name, type(exc).__name__, delay, attempt + 1, retries,
            )
            sleep(delay)
    raise AssertionError("unreachable")
