"""Paginated listing crawl on top of the interaction primitives."""

from __future__ import annotations

from src.crawler.engine import CrawlSettings, CrawlSummary, ListingCrawler
from src.crawler.listing_parser import ListingParseError, ListingRecord, parse_listings
from src.crawler.sink import JsonlSink

__all__ = [
    "CrawlSettings",
    "CrawlSummary",
    "JsonlSink",
    "ListingCrawler",
    "ListingParseError",
    "ListingRecord",
    "parse_listings",
]
