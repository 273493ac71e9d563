"""Metrics tracking for account runs."""

from __future__ import annotations

import json
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class AccountRunMetrics:
    """Outcome of one account's wizard run."""
    account_id: int
    status: str = "hard_fail"
    stage: str = "unknown"
    error_kind: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == "success"


@dataclass
class RunMetrics:
    """Aggregate metrics for a batch of accounts."""
    accounts: list[AccountRunMetrics] = field(default_factory=list)
    total_elapsed_seconds: float = 0.0
    start_time: float = 0.0

    def start(self):
        self.start_time = time.time()

    def finish(self):
        self.total_elapsed_seconds = time.time() - self.start_time

    def add(self, metrics: AccountRunMetrics):
        self.accounts.append(metrics)

    @property
    def num_succeeded(self) -> int:
        return sum(1 for a in self.accounts if a.success)

    @property
    def success_rate(self) -> float:
        if not self.accounts:
            return 0.0
        return self.num_succeeded / len(self.accounts)

    @property
    def failures_by_kind(self) -> dict[str, int]:
        return dict(Counter(a.error_kind for a in self.accounts if not a.success and a.error_kind))

    @property
    def avg_time_per_account(self) -> float:
        if not self.accounts:
            return 0.0
        return sum(a.elapsed_seconds for a in self.accounts) / len(self.accounts)

    def to_dict(self) -> dict:
        return {
            "summary": {
                "total_accounts": len(self.accounts),
                "succeeded": self.num_succeeded,
                "success_rate": f"{self.success_rate:.1%}",
                "total_elapsed_seconds": round(self.total_elapsed_seconds, 1),
                "avg_seconds_per_account": round(self.avg_time_per_account, 1),
                "failures_by_kind": self.failures_by_kind,
            },
            "accounts": [
                {
                    "id": a.account_id,
                    "status": a.status,
                    "stage": a.stage,
                    "error_kind": a.error_kind,
                    "elapsed_seconds": round(a.elapsed_seconds, 2),
                }
                for a in self.accounts
            ],
        }

    def save(self, path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    def print_summary(self):
        d = self.to_dict()["summary"]
        print(f"\n{'='*50}")
        print("Run Summary")
        print(f"{'='*50}")
        for k, v in d.items():
            print(f"  {k}: {v}")
        print(f"{'='*50}")
