"""Parse job tiles from the listing feed HTML."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

CONTAINER_SELECTOR = '[data-test="job-tile-list"]'
TILE_SELECTORS = ('section[data-ev-sublocation="job_feed_tile"]', "section.air3-card-section")

_ID_PATTERNS = (re.compile(r"_~0([0-9a-z]+)/", re.I), re.compile(r"_~0?([0-9a-z]+)", re.I))
_HOURLY_RANGE = re.compile(r"\$(\d+(?:\.\d+)?)\s*-\s*\$?(\d+(?:\.\d+)?)")
_AMOUNT = re.compile(r"\$(\d[\d,]*)")
_RATING_WIDTH = re.compile(r"width:\s*(\d+(?:\.\d+)?)px")
_RELATIVE = re.compile(r"(\d+)")

# Width in px of a full five-star rating bar.
_FULL_RATING_PX = 78


class ListingParseError(Exception):
    pass


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FixedBudget(_Model):
    amount: int
    currency: str = "USD"


class HourlyRange(_Model):
    min: float
    max: float
    currency: str = "USD"


class ClientSummary(_Model):
    country: str = ""
    payment_verified: bool = False
    rating: float = 0.0
    total_spent: str = "$0"


class ListingRecord(_Model):
    external_id: Optional[str] = Field(default=None, alias="jobId")
    title: str
    url: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list, alias="skills")
    project_type: Literal["fixed", "hourly"] = "hourly"
    budget: Optional[FixedBudget] = None
    hourly: Optional[HourlyRange] = None
    experience_level: str = ""
    posted_at: Optional[datetime] = None
    client: ClientSummary = Field(default_factory=ClientSummary)
    page_number: int
    extracted_at: datetime
    id_missing: bool = False

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


def extract_job_id(href: str | None) -> Optional[str]:
    if not href:
        return None
    for pattern in _ID_PATTERNS:
        match = pattern.search(href)
        if match:
            return f"~0{match.group(1)}"
    return None


def _text(node) -> str:
    return " ".join(node.get_text(" ").split()) if node is not None else ""


def parse_rating(style: str | None) -> float:
    match = _RATING_WIDTH.search(style or "")
    if not match:
        return 0.0
    return round(float(match.group(1)) / _FULL_RATING_PX * 5, 1)


def parse_posted(text: str, now: datetime) -> datetime:
    """'5 minutes ago' / '2 hours ago' / 'yesterday' style to a timestamp."""
    lowered = text.lower()
    match = _RELATIVE.search(lowered)
    n = int(match.group(1)) if match else 1
    if "minute" in lowered:
        return now - timedelta(minutes=n)
    if "hour" in lowered:
        return now - timedelta(hours=n)
    if "yesterday" in lowered:
        return now - timedelta(days=1)
    if "day" in lowered:
        return now - timedelta(days=n)
    if "week" in lowered:
        return now - timedelta(weeks=n)
    return now


def parse_tile(section, page_number: int, base_url: str, now: datetime) -> Optional[ListingRecord]:
    link = section.select_one("h3 a") or section.select_one("h2 a")
    title = _text(link)
    if not title:
        return None
    href = link.get("href") or ""
    job_id = extract_job_id(href)

    job_type = _text(section.select_one('[data-test="job-type"]'))
    budget_text = _text(section.select_one('[data-test="budget"]'))
    project_type = "fixed" if "fixed" in job_type.lower() else "hourly"

    budget = None
    hourly = None
    if project_type == "fixed":
        match = _AMOUNT.search(budget_text or job_type)
        if match:
            budget = FixedBudget(amount=int(match.group(1).replace(",", "")))
    else:
        match = _HOURLY_RANGE.search(job_type)
        if match:
            hourly = HourlyRange(min=float(match.group(1)), max=float(match.group(2)))

    rating_node = section.select_one(".air3-rating-foreground")
    verified_text = _text(section.select_one('[data-test="payment-verification-status"]'))
    client = ClientSummary(
        country=_text(section.select_one('[data-test="client-country"]')),
        payment_verified="verified" in verified_text.lower() and "unverified" not in verified_text.lower(),
        rating=parse_rating(rating_node.get("style") if rating_node is not None else None),
        total_spent=_text(section.select_one('[data-test="formatted-amount"]')) or "$0",
    )

    posted_text = _text(section.select_one('[data-test="posted-on"]'))
    return ListingRecord(
        external_id=job_id,
        title=title,
        url=urljoin(base_url, href) if href else "",
        description=_text(section.select_one('[data-test="job-description-text"]')),
        tags=[_text(t) for t in section.select('[data-test="attr-item"]') if _text(t)],
        project_type=project_type,
        budget=budget,
        hourly=hourly,
        experience_level=_text(section.select_one('[data-test="contractor-tier"]')),
        posted_at=parse_posted(posted_text, now) if posted_text else None,
        client=client,
        page_number=page_number,
        extracted_at=now,
        id_missing=job_id is None,
    )


def parse_listings(html: str, page_number: int, base_url: str,
                   now: datetime | None = None) -> list[ListingRecord]:
    """All tiles in the listing container, in page order.

    Raises:
        ListingParseError: the container is not in *html*.
    """
    now = now or datetime.now(timezone.utc)
    soup = BeautifulSoup(html or "", "html.parser")
    container = soup.select_one(CONTAINER_SELECTOR)
    if container is None:
        raise ListingParseError("listing container not found")

    sections = []
    for selector in TILE_SELECTORS:
        sections = container.select(selector)
        if sections:
            break

    records = []
    for section in sections:
        record = parse_tile(section, page_number, base_url, now)
        if record is None:
            logger.debug("Skipping tile without a title")
            continue
        records.append(record)
    return records
