from __future__ import annotations

import asyncio
import random


def compute_backoff(
    attempt: int, base_delay_ms: float, backoff: float = 1.0, jitter_ms: float = 0
) -> float:
    """Delay in milliseconds before retry number ``attempt`` (1-based)."""
    delay = base_delay_ms * backoff ** max(attempt - 1, 0)
    if jitter_ms:
        delay += random.uniform(0, jitter_ms)
    return delay


async def schedule_retry(delay_ms: float) -> None:
    """Sleep for ``delay_ms`` before retrying."""
    if delay_ms > 0:
        await asyncio.sleep(delay_ms / 1000)
