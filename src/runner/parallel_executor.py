"""Concurrent account execution.

Each account gets its own browser, so concurrency is bounded by a
semaphore rather than a thread pool.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional

from src.runner.metrics import AccountRunMetrics, RunMetrics

logger = logging.getLogger(__name__)


async def run_parallel(
    account_ids: list[int],
    run_fn: Callable[[int], Awaitable[AccountRunMetrics]],
    concurrency: int = 2,
    start_delay: tuple[float, float] = (0.0, 0.0),
    time_budget_seconds: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RunMetrics:
    """Run accounts with at most *concurrency* in flight.

    Args:
        account_ids: Accounts to process, in order.
        run_fn: Coroutine function that runs one account and returns metrics.
        concurrency: Maximum number of simultaneous runs.
        start_delay: Random pause before each run starts, in seconds.
        time_budget_seconds: Accounts not started before the budget runs out
            are skipped. None means no budget.
        sleep: Injected for tests.

    Returns:
        RunMetrics with one entry per account that was started.
    """
    run_metrics = RunMetrics()
    run_metrics.start()
    semaphore = asyncio.Semaphore(max(1, concurrency))
    deadline = None if time_budget_seconds is None else time.time() + time_budget_seconds

    async def worker(account_id: int):
        async with semaphore:
            if deadline is not None and time.time() >= deadline:
                logger.warning("Time budget exceeded, skipping account %d", account_id)
                return
            low, high = start_delay
            if high > 0:
                await sleep(random.uniform(low, high))
            try:
                m = await run_fn(account_id)
            except Exception as e:
                logger.error("Account %d: ERROR - %s", account_id, e)
                m = AccountRunMetrics(account_id=account_id, error_kind="AUTOMATION_FAILED")
            run_metrics.add(m)
            logger.info(
                "Account %d: %s at %s%s (%.1fs)",
                account_id, m.status.upper(), m.stage,
                f" [{m.error_kind}]" if m.error_kind else "", m.elapsed_seconds,
            )

    await asyncio.gather(*(worker(aid) for aid in account_ids))
    run_metrics.finish()
    return run_metrics
