"""Listing tile parsing."""

from datetime import datetime, timedelta, timezone

import pytest

from src.crawler.listing_parser import (
    ListingParseError,
    extract_job_id,
    parse_listings,
    parse_posted,
    parse_rating,
)

BASE = "https://www.example.com"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def tile(title, href="", job_type="Hourly: $25.00 - $50.00", budget="", extra=""):
    return f"""
    <section data-ev-sublocation="job_feed_tile">
      <h3><a href="{href}">{title}</a></h3>
      <span data-test="job-type">{job_type}</span>
      <span data-test="budget">{budget}</span>
      {extra}
    </section>"""


def feed(*tiles):
    return f'<div data-test="job-tile-list">{"".join(tiles)}</div>'


def test_job_id_from_href():
    assert extract_job_id("/jobs/Build-a-scraper_~01abc123/?referrer=feed") == "~01abc123"
    assert extract_job_id("/jobs/Other_~0fff") == "~0fff"
    assert extract_job_id("/jobs/no-id/") is None
    assert extract_job_id(None) is None


def test_rating_from_bar_width():
    assert parse_rating("width: 78px") == 5.0
    assert parse_rating("width: 62.4px;") == 4.0
    assert parse_rating("") == 0.0


def test_posted_relative_times():
    assert parse_posted("Posted 5 minutes ago", NOW) == NOW - timedelta(minutes=5)
    assert parse_posted("2 hours ago", NOW) == NOW - timedelta(hours=2)
    assert parse_posted("yesterday", NOW) == NOW - timedelta(days=1)
    assert parse_posted("3 days ago", NOW) == NOW - timedelta(days=3)
    assert parse_posted("last week", NOW) == NOW - timedelta(weeks=1)
    assert parse_posted("just now", NOW) == NOW


def test_hourly_tile():
    extra = """
      <p data-test="job-description-text">Need a   crawler.</p>
      <span data-test="attr-item">Python</span><span data-test="attr-item">Playwright</span>
      <span data-test="contractor-tier">Expert</span>
      <span data-test="posted-on">10 minutes ago</span>
      <span data-test="payment-verification-status">Payment verified</span>
      <span data-test="client-country">Germany</span>
      <div class="air3-rating-foreground" style="width: 70.2px"></div>
      <span data-test="formatted-amount">$10K+</span>
    """
    [record] = parse_listings(feed(tile("Crawler dev", "/jobs/Crawler_~01aa/", extra=extra)), 2, BASE, NOW)

    assert record.external_id == "~01aa"
    assert record.url == "https://www.example.com/jobs/Crawler_~01aa/"
    assert record.description == "Need a crawler."
    assert record.tags == ["Python", "Playwright"]
    assert record.project_type == "hourly"
    assert (record.hourly.min, record.hourly.max) == (25.0, 50.0)
    assert record.budget is None
    assert record.experience_level == "Expert"
    assert record.posted_at == NOW - timedelta(minutes=10)
    assert record.client.payment_verified
    assert record.client.country == "Germany"
    assert record.client.rating == 4.5
    assert record.client.total_spent == "$10K+"
    assert record.page_number == 2
    assert not record.id_missing


def test_fixed_price_tile_and_json_shape():
    html = feed(tile("Logo", "/jobs/Logo_~01bb/", job_type="Fixed price", budget="$1,500"))
    [record] = parse_listings(html, 1, BASE, NOW)

    assert record.project_type == "fixed"
    assert record.budget.amount == 1500
    assert record.hourly is None

    data = record.to_json()
    assert data["jobId"] == "~01bb"
    assert data["projectType"] == "fixed"
    assert data["skills"] == []
    assert data["client"]["paymentVerified"] is False
    assert data["pageNumber"] == 1


def test_tiles_without_id_or_title():
    html = feed(tile("No id here", "/jobs/plain/"), tile(""))
    records = parse_listings(html, 1, BASE, NOW)

    assert len(records) == 1
    assert records[0].external_id is None
    assert records[0].id_missing


def test_unverified_payment():
    extra = '<span data-test="payment-verification-status">Payment unverified</span>'
    [record] = parse_listings(feed(tile("X", "/jobs/X_~01cc/", extra=extra)), 1, BASE, NOW)
    assert not record.client.payment_verified


def test_missing_container_raises():
    with pytest.raises(ListingParseError):
        parse_listings("<html><body>nothing</body></html>", 1, BASE, NOW)


def test_empty_container_is_empty_list():
    assert parse_listings(feed(), 1, BASE, NOW) == []
