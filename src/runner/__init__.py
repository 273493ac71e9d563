"""Entry points: configuration, single-account runs, batches, retries and crawl."""

from __future__ import annotations

from src.runner.account_runner import AccountRunner
from src.runner.config import AppConfig, load_config
from src.runner.metrics import AccountRunMetrics, RunMetrics
from src.runner.parallel_executor import run_parallel
from src.runner.retry import retry_rounds

__all__ = [
    "AccountRunMetrics",
    "AccountRunner",
    "AppConfig",
    "RunMetrics",
    "load_config",
    "retry_rounds",
    "run_parallel",
]
