"""Account and run persistence (SQLAlchemy)."""

from __future__ import annotations

from src.store.account_store import AccountStore
from src.store.csv_import import ImportReport, import_csv
from src.store.models import Account, Base, ProcessRun

__all__ = [
    "Account",
    "AccountStore",
    "Base",
    "ImportReport",
    "ProcessRun",
    "import_csv",
]
