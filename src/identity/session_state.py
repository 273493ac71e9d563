"""Browser session capture and restore.

A ``SessionState`` bundles cookies grouped by origin, per-origin
localStorage and a little identity metadata.  It is persisted as a base64
encoded JSON blob on the account record, so the JSON keys are kept stable
(``httpOnly``, ``sameSite``, ``localStorage``, ``ua``, ``tz``, ``lang``,
``proxy_label``).
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError

logger = logging.getLogger(__name__)

_READ_STORAGE_JS = """\
() => {
    const out = {};
    for (let i = 0; i < window.localStorage.length; i++) {
        const key = window.localStorage.key(i);
        if (key !== null) out[key] = window.localStorage.getItem(key) || '';
    }
    return out;
}"""

_WRITE_STORAGE_JS = """\
(items) => {
    for (const [key, value] of Object.entries(items)) {
        window.localStorage.setItem(key, value);
    }
    return Object.keys(items).length;
}"""

_READ_META_JS = """\
() => ({
    ua: navigator.userAgent,
    tz: Intl.DateTimeFormat().resolvedOptions().timeZone,
    lang: navigator.language,
})"""


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CookieRecord:
    name: str
    value: str
    domain: str
    path: str = "/"
    http_only: bool = False
    secure: bool = False
    same_site: str = "Lax"
    expires: Optional[float] = None

    @classmethod
    def from_playwright(cls, cookie: dict) -> "CookieRecord":
        expires = cookie.get("expires")
        return cls(
            name=cookie["name"],
            value=cookie["value"],
            domain=cookie.get("domain", ""),
            path=cookie.get("path", "/"),
            http_only=bool(cookie.get("httpOnly", False)),
            secure=bool(cookie.get("secure", False)),
            same_site=cookie.get("sameSite") or "Lax",
            expires=expires if expires is not None and expires >= 0 else None,
        )

    def to_playwright(self) -> dict:
        cookie = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "httpOnly": self.http_only,
            "secure": self.secure,
            "sameSite": self.same_site,
        }
        if self.expires is not None:
            cookie["expires"] = self.expires
        return cookie

    def to_json(self) -> dict:
        data = self.to_playwright()
        data.setdefault("expires", None)
        return data

    @classmethod
    def from_json(cls, data: dict) -> "CookieRecord":
        return cls.from_playwright(data)


@dataclass(frozen=True)
class CookieGroup:
    origin: str
    items: tuple[CookieRecord, ...] = ()


@dataclass(frozen=True)
class StorageSnapshot:
    origin: str
    local_storage: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionMeta:
    ua: str = ""
    tz: str = ""
    lang: str = ""
    proxy_label: Optional[str] = None


@dataclass(frozen=True)
class SessionState:
    cookies: tuple[CookieGroup, ...] = ()
    storage: tuple[StorageSnapshot, ...] = ()
    meta: SessionMeta = field(default_factory=SessionMeta)

    def all_cookies(self) -> list[CookieRecord]:
        return [c for group in self.cookies for c in group.items]

    def to_dict(self) -> dict:
        meta = {"ua": self.meta.ua, "tz": self.meta.tz, "lang": self.meta.lang}
        if self.meta.proxy_label:
            meta["proxy_label"] = self.meta.proxy_label
        return {
            "cookies": [
                {"origin": g.origin, "items": [c.to_json() for c in g.items]}
                for g in self.cookies
            ],
            "storage": [
                {"origin": s.origin, "localStorage": dict(s.local_storage)}
                for s in self.storage
            ],
            "meta": meta,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionState":
        meta = data.get("meta") or {}
        return cls(
            cookies=tuple(
                CookieGroup(g["origin"], tuple(CookieRecord.from_json(c) for c in g.get("items", [])))
                for g in data.get("cookies", [])
            ),
            storage=tuple(
                StorageSnapshot(s["origin"], dict(s.get("localStorage") or {}))
                for s in data.get("storage", [])
            ),
            meta=SessionMeta(
                ua=meta.get("ua", ""),
                tz=meta.get("tz", ""),
                lang=meta.get("lang", ""),
                proxy_label=meta.get("proxy_label"),
            ),
        )

    def encode(self) -> str:
        raw = json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    @classmethod
    def decode(cls, blob: str) -> "SessionState":
        """Raises ValueError for blobs that are not valid encoded state."""
        try:
            data = json.loads(base64.b64decode(blob.encode("ascii"), validate=True))
        except (binascii.Error, UnicodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Invalid session blob: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("Invalid session blob: not an object")
        return cls.from_dict(data)


def group_cookies(cookies: list[dict]) -> tuple[CookieGroup, ...]:
    """Group Playwright cookies by their domain without the leading dot."""
    groups: dict[str, list[CookieRecord]] = {}
    for cookie in cookies:
        origin = cookie.get("domain", "").lstrip(".")
        groups.setdefault(origin, []).append(CookieRecord.from_playwright(cookie))
    return tuple(CookieGroup(origin, tuple(items)) for origin, items in groups.items())


# ---------------------------------------------------------------------------
# Capture / restore
# ---------------------------------------------------------------------------

class SessionService:
    def __init__(self, navigation_timeout: float = 30.0):
        self.navigation_timeout = navigation_timeout

    async def capture(self, page, proxy_label: str | None = None) -> SessionState:
        cookies = await page.context.cookies()
        origin = origin_of(page.url)
        storage: tuple[StorageSnapshot, ...] = ()
        if origin:
            items = await page.evaluate(_READ_STORAGE_JS)
            storage = (StorageSnapshot(origin, dict(items or {})),)
        meta = await page.evaluate(_READ_META_JS) or {}

        state = SessionState(
            cookies=group_cookies(cookies),
            storage=storage,
            meta=SessionMeta(
                ua=meta.get("ua", ""),
                tz=meta.get("tz", ""),
                lang=meta.get("lang", ""),
                proxy_label=proxy_label,
            ),
        )
        logger.info(
            "Captured session: %d cookies across %d origins, %d storage keys",
            len(cookies), len(state.cookies), sum(len(s.local_storage) for s in storage),
        )
        return state

    async def restore(self, page, state: SessionState) -> bool:
        """Apply *state* to the page's context.

        User agent first, then cookies (before any navigation), then each
        storage origin is visited and its keys written.  A failing origin is
        logged and skipped.  Returns False only when the cookies could not be
        applied.
        """
        context = page.context
        if state.meta.ua:
            try:
                await context.set_extra_http_headers({"User-Agent": state.meta.ua})
            except PlaywrightError as e:
                logger.warning("Could not apply stored user agent: %s", e)

        cookies = [c.to_playwright() for c in state.all_cookies()]
        if cookies:
            try:
                await context.add_cookies(cookies)
            except PlaywrightError as e:
                logger.error("Could not restore cookies: %s", e)
                return False

        for snapshot in state.storage:
            try:
                await page.goto(
                    snapshot.origin, wait_until="domcontentloaded",
                    timeout=self.navigation_timeout * 1000,
                )
                await page.evaluate(_WRITE_STORAGE_JS, snapshot.local_storage)
            except PlaywrightError as e:
                logger.warning("Skipping storage restore for %s: %s", snapshot.origin, e)

        logger.info("Restored session (%d cookies, %d storage origins)", len(cookies), len(state.storage))
        return True
