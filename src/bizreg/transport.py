# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Result delivery: publisher protocol and retry policy.

The lifecycle hands every result to a ``Publisher`` through
``deliver_with_retry()``: each attempt is bounded by *timeout*, failures are
retried with exponential backoff (``retry_delay * 2**n``), and a
``TransportClosedError`` (the receiving context is gone) stops immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from .errors import TransportClosedError, TransportError

logger = logging.getLogger("bizreg.transport")


@runtime_checkable
class Publisher(Protocol):
    """Messaging collaborator that receives detection notices."""

    async def publish(self, message: dict[str, Any]) -> Any: ...


async def deliver_with_retry(
    publisher: Publisher,
    message: dict[str, Any],
    *,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    timeout: float = 5.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    """Publish *message*, retrying up to *max_retries* times.

    Returns:
        Whatever the publisher returned for the successful attempt.

    Raises:
        TransportClosedError: The receiving context is gone (not retried).
        TransportError: Every attempt failed or timed out.
    """
    action = message.get("action", "?")
    last_error: BaseException | None = None
    for retry in range(max_retries + 1):
        if retry:
            delay = retry_delay * 2 ** (retry - 1)
            logger.warning("Delivery of %s failed, retrying (%d/%d) in %.1fs", action, retry, max_retries, delay)
            await sleep(delay)
        try:
            return await asyncio.wait_for(publisher.publish(message), timeout=timeout)
        except TransportClosedError as e:
            e.attempts = retry + 1
            logger.info("Receiver closed, dropping %s: %s", action, e)
            raise
        except TimeoutError as e:
            last_error = e
        except (TransportError, OSError) as e:
            last_error = e
    raise TransportError(
        f"delivery of {action} failed after {max_retries + 1} attempts: {type(last_error).__name__}",
        attempts=max_retries + 1,
    ) from last_error
