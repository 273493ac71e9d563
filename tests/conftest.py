"""Shared fixtures: an in-memory stand-in for a Playwright page.

The fake keeps a registry of selector -> elements and implements the subset
of the Locator / Page API the project calls.  Elements carry just enough
state (value, visibility, checked) for typing, selection and navigation
tests; hooks let a test react to clicks and keystrokes.
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest
from playwright.async_api import Error as PlaywrightError

from src.identity.session_state import _READ_META_JS, _READ_STORAGE_JS, _WRITE_STORAGE_JS, origin_of
from src.interaction.primitives import ArtifactRecorder, InteractionSettings, Interactor
from src.otp.models import PurchasedNumber, VerificationOrder
from src.otp.provider import SMS_MAN, SmsProviderClient
from src.otp.service import OtpService
from src.store.account_store import AccountStore


class FakeElement:
    def __init__(
        self,
        text: str = "",
        value: str = "",
        *,
        visible: bool = True,
        enabled: bool = True,
        editable: bool = True,
        checked: Optional[bool] = None,
        form_field: bool = True,
        on_click: Optional[Callable] = None,
        on_input: Optional[Callable] = None,
        readback: Optional[Callable[[str], str]] = None,
    ):
        self.text = text
        self.value = value
        self.visible = visible
        self.enabled = enabled
        self.editable = editable
        self.checked = checked
        self.form_field = form_field
        self.on_click = on_click
        self.on_input = on_input
        self.readback = readback
        self.clicks = 0
        self.presses: list[str] = []
        self.files: Optional[str] = None
        self._selected_all = False
        self.page: Optional["FakePage"] = None

    async def click(self, **kwargs):
        if not self.visible:
            raise PlaywrightError("element is not visible")
        self.clicks += 1
        if self.checked is not None:
            self.checked = True
        if self.on_click is not None:
            self.on_click(self)

    async def scroll_into_view_if_needed(self, **kwargs):
        return None

    async def press(self, key: str, **kwargs):
        self.presses.append(key)
        if key == "ControlOrMeta+A":
            self._selected_all = True
            return
        if key == "Backspace":
            self.value = "" if self._selected_all else self.value[:-1]
        self._selected_all = False
        if self.on_input is not None:
            self.on_input(self)

    async def press_sequentially(self, text: str, **kwargs):
        if self._selected_all:
            self.value = ""
            self._selected_all = False
        self.value += text
        if self.on_input is not None:
            self.on_input(self)

    async def set_input_files(self, files, **kwargs):
        self.files = files
        if self.on_input is not None:
            self.on_input(self)

    async def input_value(self, **kwargs) -> str:
        if not self.form_field:
            raise PlaywrightError("not an input")
        return self.readback(self.value) if self.readback else self.value

    async def inner_text(self, **kwargs) -> str:
        return self.text or self.value

    async def is_visible(self) -> bool:
        return self.visible

    async def is_enabled(self) -> bool:
        return self.enabled

    async def is_editable(self) -> bool:
        return self.editable

    async def is_checked(self) -> bool:
        if self.checked is None:
            raise PlaywrightError("not a checkbox or radio")
        return self.checked


class FakeLocator:
    """Lazy view over the page registry, like a real Locator."""

    def __init__(self, page: "FakePage", key: str, has_text: Optional[str] = None, index: Optional[int] = None):
        self.page = page
        self.key = key
        self.has_text = has_text
        self.index = index

    def _all(self) -> list[FakeElement]:
        elements = [e for sel in self.key.split(", ") for e in self.page.elements.get(sel, [])]
        if self.has_text is not None:
            elements = [e for e in elements if self.has_text in (e.text or e.value)]
        return elements

    def _target(self) -> FakeElement:
        elements = self._all()
        i = self.index or 0
        if i >= len(elements):
            raise PlaywrightError(f"no element for {self.key}")
        return elements[i]

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self.page, self.key, self.has_text, 0)

    def nth(self, index: int) -> "FakeLocator":
        return FakeLocator(self.page, self.key, self.has_text, index)

    async def count(self) -> int:
        return len(self._all())

    async def wait_for(self, state: str = "visible", timeout: float | None = None):
        elements = self._all()
        if state == "attached" and elements:
            return
        if state == "visible" and any(e.visible for e in elements):
            return
        if state == "hidden" and not any(e.visible for e in elements):
            return
        raise PlaywrightError(f"Timeout waiting for {self.key} to be {state}")

    def __getattr__(self, name):
        # Element actions act on the bound element.
        return getattr(self._target(), name)


class FakeKeyboard:
    def __init__(self):
        self.pressed: list[str] = []

    async def press(self, key: str):
        self.pressed.append(key)


class FakeMouse:
    def __init__(self):
        self.clicks: list[tuple[float, float]] = []

    async def click(self, x: float, y: float):
        self.clicks.append((x, y))


class FakeContext:
    def __init__(self):
        self.cookie_jar: list[dict] = []
        self.headers: dict[str, str] = {}
        self.fail_cookies = False

    async def cookies(self) -> list[dict]:
        return [dict(c) for c in self.cookie_jar]

    async def add_cookies(self, cookies: list[dict]):
        if self.fail_cookies:
            raise PlaywrightError("cookie rejected")
        self.cookie_jar.extend(dict(c) for c in cookies)

    async def set_extra_http_headers(self, headers: dict[str, str]):
        self.headers.update(headers)


class FakePage:
    def __init__(self, url: str = "about:blank", html: str = ""):
        self.url = url
        self.html = html
        self.elements: dict[str, list[FakeElement]] = {}
        self.routes: dict[str, str] = {}
        self.failing_urls: set[str] = set()
        self.visits: list[str] = []
        self.storage: dict[str, dict[str, str]] = {}
        self.meta = {"ua": "Mozilla/5.0 Test", "tz": "UTC", "lang": "en-US"}
        self.context = FakeContext()
        self.keyboard = FakeKeyboard()
        self.mouse = FakeMouse()
        self.screenshots: list[str] = []

    # registry ----------------------------------------------------------

    def add(self, selector: str, element: FakeElement | None = None, **kwargs) -> FakeElement:
        element = element or FakeElement(**kwargs)
        element.page = self
        self.elements.setdefault(selector, []).append(element)
        return element

    def remove(self, selector: str):
        self.elements.pop(selector, None)

    def navigate(self, url: str, html: str | None = None):
        self.url = url
        self.html = self.routes.get(url, "") if html is None else html

    # page API ------------------------------------------------------------

    def locator(self, selector: str, has_text: str | None = None) -> FakeLocator:
        return FakeLocator(self, selector, has_text)

    def get_by_role(self, role: str, name: str | None = None) -> FakeLocator:
        return FakeLocator(self, f"role={role}", name)

    def get_by_placeholder(self, text: str) -> FakeLocator:
        return FakeLocator(self, f"placeholder={text}")

    async def content(self) -> str:
        return self.html

    async def goto(self, url: str, **kwargs):
        self.visits.append(url)
        if url in self.failing_urls:
            raise PlaywrightError(f"net::ERR_CONNECTION_RESET at {url}")
        self.navigate(url)

    async def wait_for_selector(self, selector: str, timeout: float | None = None):
        await self.locator(selector).first.wait_for(state="attached", timeout=timeout)

    async def evaluate(self, script: str, arg=None):
        origin = origin_of(self.url)
        if script == _READ_STORAGE_JS:
            return dict(self.storage.get(origin, {}))
        if script == _WRITE_STORAGE_JS:
            self.storage.setdefault(origin, {}).update(arg or {})
            return len(arg or {})
        if script == _READ_META_JS:
            return dict(self.meta)
        raise AssertionError(f"unexpected script: {script[:40]}")

    async def screenshot(self, path: str, full_page: bool = False):
        Path(path).write_bytes(b"\x89PNG")
        self.screenshots.append(path)


# ---------------------------------------------------------------------------
# Verification provider
# ---------------------------------------------------------------------------

class FakeProviderClient:
    label = "SMS_MAN"

    def __init__(self, active=(), checks=()):
        self.active = list(active)
        self.checks = list(checks)
        self.purchases = 0
        self.cancelled = []
        self.checked = []

    async def list_active_orders(self):
        return list(self.active)

    async def purchase_number(self, region):
        self.purchases += 1
        return PurchasedNumber(order_id=f"new-{self.purchases}", phone_number="15550001111")

    async def check_order(self, order_id):
        self.checked.append(order_id)
        item = self.checks.pop(0) if self.checks else None
        if isinstance(item, Exception):
            raise item
        return item

    async def cancel_order(self, order_id):
        self.cancelled.append(order_id)
        return True


def order(order_id, phone, **extra):
    return VerificationOrder.model_validate({"orderid": order_id, "phonenumber": phone, **extra})


def unavailable_provider_service(store) -> OtpService:
    """OTP service over a real client whose provider answers every call with 503."""
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    client = SmsProviderClient.for_profile(SMS_MAN, "test-key", transport=transport)
    clock = FakeClock()
    return OtpService(client, store, poll_interval=5, sleep=clock.sleep, clock=clock)


async def no_sleep(seconds: float):
    return None


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    async def sleep(self, seconds: float):
        self.t += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

FAST_SETTINGS = InteractionSettings(
    locate_timeout=1.0,
    locate_passes=2,
    pass_backoff=(0.0, 0.0),
    char_delay=(0.0, 0.0),
    action_delay=(0.0, 0.0),
    listbox_timeout=0.1,
    strict_fill=False,
)


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def ui(page, tmp_path):
    return Interactor(page, FAST_SETTINGS, ArtifactRecorder(tmp_path / "shots"), sleep=no_sleep,
                      rng=random.Random(7))


@pytest.fixture
def store(tmp_path):
    store = AccountStore(f"sqlite:///{tmp_path / 'accounts.db'}")
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture
def account(store):
    return store.add_account(
        first_name="Jane",
        last_name="Doe",
        email="jane@example.com",
        password="s3cret-pass",
        country_code="US",
        location_street="1 Main St",
        location_city="Springfield",
        location_post_code="12345",
    )
