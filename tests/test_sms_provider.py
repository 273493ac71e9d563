"""Provider HTTP client against httpx.MockTransport."""

from urllib.parse import parse_qs

import httpx
import pytest

from src.errors import InsufficientBalanceError, ProviderError
from src.otp.provider import SMS_MAN, SmsProviderClient


def client_for(routes, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        if seen is not None:
            seen.append((request.url.path, form))
        reply = routes.get(request.url.path)
        if reply is None:
            return httpx.Response(404)
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)

    return SmsProviderClient.for_profile(SMS_MAN, "test-key", transport=httpx.MockTransport(handler))


def test_missing_api_key_is_rejected():
    with pytest.raises(ProviderError):
        SmsProviderClient.for_profile(SMS_MAN, "")


async def test_purchase_checks_balance_then_buys():
    seen = []
    client = client_for({
        "/request/balance": {"balance": "3.50"},
        "/purchase/sms": {"success": 1, "orderid": 777, "phonenumber": "15552223333"},
    }, seen)

    async with client:
        purchased = await client.purchase_number("US")

    assert purchased.order_id == "777"
    assert purchased.phone_number == "15552223333"
    path, form = seen[1]
    assert path == "/purchase/sms"
    assert form == {"country": "1", "service": "962", "quantity": "1", "key": "test-key"}


async def test_zero_balance_blocks_purchase():
    client = client_for({"/request/balance": {"balance": 0}})

    with pytest.raises(InsufficientBalanceError):
        await client.purchase_number("US")
    await client.aclose()


async def test_refused_purchase_raises():
    client = client_for({
        "/request/balance": {"balance": 5},
        "/purchase/sms": {"success": 0, "message": "No numbers available"},
    })

    with pytest.raises(ProviderError, match="No numbers available"):
        await client.purchase_number("GB")
    await client.aclose()


async def test_unknown_region_raises():
    client = client_for({})

    with pytest.raises(ProviderError):
        await client.purchase_number("ZZ")
    await client.aclose()


async def test_check_order_extracts_code():
    client = client_for({"/sms/check": {"success": 1, "sms": "Your verification code: 135790", "status": 3}})

    async with client:
        result = await client.check_order("777")

    assert result.order_id == "777"
    assert result.code == "135790"


async def test_check_order_error_payload_is_none():
    client = client_for({"/sms/check": {"success": 0, "message": "Order not found"}})

    async with client:
        assert await client.check_order("1") is None


async def test_http_errors_become_provider_errors():
    client = client_for({"/request/balance": httpx.Response(500, text="down")})

    with pytest.raises(ProviderError, match="HTTP 500"):
        await client.get_balance()
    await client.aclose()


async def test_invalid_json_is_provider_error():
    client = client_for({"/request/balance": httpx.Response(200, text="<html>")})

    with pytest.raises(ProviderError, match="invalid JSON"):
        await client.get_balance()
    await client.aclose()


async def test_active_orders_skip_malformed_entries():
    client = client_for({"/request/active": {"data": [
        {"orderid": "1", "phonenumber": "15550000001"},
        {"phonenumber": "no id"},
    ]}})

    async with client:
        orders = await client.list_active_orders()

    assert [o.order_id for o in orders] == ["1"]


async def test_cancel_and_catalogue_endpoints():
    seen = []
    client = client_for({
        "/sms/cancel": {"success": 1},
        "/country/retrieve_all": [{"ID": "1", "name": "United States"}],
    }, seen)

    async with client:
        assert await client.cancel_order("9")
        countries = await client.list_countries()

    assert countries[0]["name"] == "United States"
    # Catalogue calls are not keyed.
    assert "key" not in seen[1][1]
