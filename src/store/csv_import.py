"""Bulk account import from CSV (comma or tab separated)."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from src.store.account_store import AccountStore

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("first_name", "last_name", "email", "password", "country_code")

_OPTIONAL_TEXT = ("location_street", "location_city", "location_state", "location_post_code",
                  "phone", "last_error_code", "last_error_message")


@dataclass
class ImportReport:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


def detect_delimiter(first_line: str) -> str:
    return "\t" if first_line.count("\t") > first_line.count(",") else ","


def _parse_datetime(value: str) -> Optional[datetime]:
    value = (value or "").strip()
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)


def _parse_date(value: str) -> Optional[date]:
    value = (value or "").strip()
    if not value:
        return None
    return date.fromisoformat(value[:10])


def row_to_fields(row: dict[str, str]) -> dict:
    """Map one CSV row to account columns; raises ValueError on bad data."""
    row = {(k or "").strip(): (v or "").strip() for k, v in row.items()}
    missing = [c for c in REQUIRED_COLUMNS if not row.get(c)]
    if missing:
        raise ValueError(f"missing {', '.join(missing)}")

    fields: dict = {c: row[c] for c in REQUIRED_COLUMNS}
    fields["country_code"] = fields["country_code"].upper()
    for column in _OPTIONAL_TEXT:
        if row.get(column):
            fields[column] = row[column]
    if row.get("birth_date"):
        fields["birth_date"] = _parse_date(row["birth_date"])
    if row.get("attempt_count"):
        fields["attempt_count"] = int(row["attempt_count"])
    for column in ("last_attempt_at", "success_at", "site_created_at"):
        if row.get(column):
            fields[column] = _parse_datetime(row[column])
    return fields


def import_csv(store: AccountStore, path: str | Path, *, force: bool = False) -> ImportReport:
    """Create accounts from *path*; existing emails are skipped unless *force*."""
    path = Path(path)
    report = ImportReport()
    with open(path, newline="", encoding="utf-8") as f:
        first_line = f.readline()
        f.seek(0)
        reader = csv.DictReader(f, delimiter=detect_delimiter(first_line))
        for line_no, row in enumerate(reader, start=2):
            try:
                fields = row_to_fields(row)
            except ValueError as e:
                report.errors.append(f"line {line_no}: {e}")
                continue

            existing = store.find_by_email(fields["email"])
            if existing is None:
                store.add_account(**fields)
                report.created += 1
            elif force:
                store.update_account(existing.id, **fields)
                report.updated += 1
                logger.info("Force-updated %s", fields["email"])
            else:
                report.skipped += 1
                logger.info("Skipping existing account %s", fields["email"])

    logger.info("CSV import from %s: %s", path, report.to_dict())
    return report
