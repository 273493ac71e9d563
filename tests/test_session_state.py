"""Session capture/restore and the persisted blob format."""

import base64
import json

import pytest

from src.identity.session_state import SessionService, SessionState, group_cookies, origin_of
from tests.conftest import FakePage

ORIGIN = "https://www.upwork.com"

COOKIES = [
    {"name": "master_access_token", "value": "abc", "domain": ".upwork.com", "path": "/",
     "httpOnly": True, "secure": True, "sameSite": "None", "expires": 1900000000.0},
    {"name": "visitor_id", "value": "v1", "domain": "www.upwork.com", "path": "/",
     "httpOnly": False, "secure": False, "sameSite": "Lax", "expires": -1},
]


def logged_in_page():
    page = FakePage(f"{ORIGIN}/nx/create-profile/title")
    page.context.cookie_jar = [dict(c) for c in COOKIES]
    page.storage[ORIGIN] = {"theme": "dark", "onboarding": "3"}
    return page


async def test_capture_restore_capture_is_stable():
    service = SessionService()
    first = await service.capture(logged_in_page(), proxy_label="gate:10005")

    fresh = FakePage()
    assert await service.restore(fresh, SessionState.decode(first.encode()))
    second = await service.capture(fresh, proxy_label="gate:10005")

    assert second.to_dict() == first.to_dict()
    assert fresh.context.headers == {"User-Agent": "Mozilla/5.0 Test"}
    assert fresh.visits == [ORIGIN]


async def test_blob_uses_stable_json_keys():
    state = await SessionService().capture(logged_in_page())
    data = json.loads(base64.b64decode(state.encode()))

    cookie = data["cookies"][0]["items"][0]
    assert {"httpOnly", "sameSite", "expires"} <= set(cookie)
    assert data["storage"][0] == {"origin": ORIGIN, "localStorage": {"theme": "dark", "onboarding": "3"}}
    assert set(data["meta"]) == {"ua", "tz", "lang"}


def test_cookies_grouped_by_bare_domain():
    groups = group_cookies(COOKIES)

    assert [g.origin for g in groups] == ["upwork.com", "www.upwork.com"]
    # Session cookies have no expiry.
    assert groups[1].items[0].expires is None


async def test_restore_skips_failing_storage_origin():
    page = FakePage()
    page.failing_urls.add(ORIGIN)
    state = SessionState.from_dict({
        "cookies": [],
        "storage": [{"origin": ORIGIN, "localStorage": {"k": "v"}}],
        "meta": {"ua": "UA"},
    })

    assert await SessionService().restore(page, state)
    assert page.storage == {}


async def test_restore_reports_cookie_failure():
    state = await SessionService().capture(logged_in_page())
    page = FakePage()
    page.context.fail_cookies = True

    assert await SessionService().restore(page, state) is False


@pytest.mark.parametrize("blob", ["not base64!", base64.b64encode(b"[1, 2]").decode(), ""])
def test_decode_rejects_garbage(blob):
    with pytest.raises(ValueError):
        SessionState.decode(blob)


def test_origin_of():
    assert origin_of("https://www.upwork.com/nx/find-work?x=1") == ORIGIN
    assert origin_of("about:blank") == ""
