"""Retry rounds over accounts that have not succeeded yet."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from src.runner.metrics import AccountRunMetrics, RunMetrics
from src.runner.parallel_executor import run_parallel

logger = logging.getLogger(__name__)


async def retry_rounds(
    store,
    run_fn: Callable[[int], Awaitable[AccountRunMetrics]],
    *,
    max_attempts: int = 5,
    max_rounds: int = 10,
    concurrency: int = 1,
    start_delay: tuple[float, float] = (0.0, 0.0),
) -> list[RunMetrics]:
    """Run rounds until nothing is retryable or *max_rounds* is reached.

    An account is retryable while its last run soft-failed and it has fewer
    than *max_attempts* attempts; every run records an attempt, so the loop
    terminates.
    """
    rounds: list[RunMetrics] = []
    for round_no in range(1, max_rounds + 1):
        accounts = store.retryable_accounts(max_attempts)
        if not accounts:
            logger.info("Nothing left to retry after %d rounds", round_no - 1)
            break
        ids = [a.id for a in accounts]
        logger.info("Retry round %d/%d: %d accounts", round_no, max_rounds, len(ids))
        metrics = await run_parallel(ids, run_fn, concurrency=concurrency, start_delay=start_delay)
        rounds.append(metrics)
        logger.info(
            "Round %d: %d/%d succeeded", round_no, metrics.num_succeeded, len(metrics.accounts),
        )
    return rounds
