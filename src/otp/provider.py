"""Async client for the SMS verification providers.

Both supported providers expose the same API: form-encoded POSTs with a
single ``key`` field and JSON responses.  Only the base URL and the label
stored on the account differ.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from src.errors import InsufficientBalanceError, ProviderError
from src.otp.models import PurchasedNumber, VerificationOrder

logger = logging.getLogger(__name__)

# Service id for the target site on both providers.
DEFAULT_SERVICE_ID = "962"

COUNTRY_IDS: dict[str, str] = {
    "US": "1",
    "GB": "2",
    "UK": "2",
    "UA": "25",
    "ID": "2",
}


@dataclass(frozen=True)
class ProviderProfile:
    label: str
    base_url: str
    api_key_env: str


SMS_MAN = ProviderProfile("SMS_MAN", "https://api.sms-man.com", "SMSMAN_API_KEY")
SMSPOOL = ProviderProfile("SMSPOOL", "https://api.smspool.net", "SMSPOOL_API_KEY")

PROVIDERS: dict[str, ProviderProfile] = {
    "sms_man": SMS_MAN,
    "smspool": SMSPOOL,
}


class SmsProviderClient:
    """Thin wrapper over one provider's HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        label: str,
        *,
        service_id: str = DEFAULT_SERVICE_ID,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ProviderError(f"{label}: API key is not set")
        self.label = label
        self.service_id = service_id
        self._api_key = api_key
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    @classmethod
    def for_profile(cls, profile: ProviderProfile, api_key: str, **kwargs) -> "SmsProviderClient":
        return cls(profile.base_url, api_key, profile.label, **kwargs)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "SmsProviderClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def _post(self, path: str, form: dict[str, str] | None = None, *, keyed: bool = True) -> Any:
        data = dict(form or {})
        if keyed:
            data["key"] = self._api_key
        try:
            response = await self._client.post(path, data=data)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(f"{self.label} {path}: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.label} {path}: {e}") from e
        except ValueError as e:
            raise ProviderError(f"{self.label} {path}: invalid JSON response") from e

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_balance(self) -> float:
        data = await self._post("/request/balance")
        balance = float((data or {}).get("balance") or 0)
        logger.info("%s balance: %s", self.label, balance)
        return balance

    async def list_countries(self) -> list[dict]:
        data = await self._post("/country/retrieve_all", keyed=False)
        return list(data or [])

    async def list_services(self) -> list[dict]:
        data = await self._post("/service/retrieve_all", keyed=False)
        return list(data or [])

    async def purchase_number(self, region: str) -> PurchasedNumber:
        """Buy one number for *region*. Raises ProviderError on refusal."""
        country = COUNTRY_IDS.get(region.upper())
        if country is None:
            raise ProviderError(f"{self.label}: no country id for region {region!r}")

        balance = await self.get_balance()
        if balance <= 0:
            raise InsufficientBalanceError(f"{self.label}: balance is {balance}")

        data = await self._post("/purchase/sms", {
            "country": country,
            "service": self.service_id,
            "quantity": "1",
        })
        if not isinstance(data, dict) or data.get("success") != 1:
            message = data.get("message") if isinstance(data, dict) else data
            raise ProviderError(f"{self.label}: purchase failed: {message or 'unknown error'}")

        purchased = PurchasedNumber.model_validate(data)
        if not purchased.order_id:
            raise ProviderError(f"{self.label}: purchase returned no order id")
        logger.info("%s purchased %s (order %s)", self.label, purchased.phone_number, purchased.order_id)
        return purchased

    async def check_order(self, order_id: str) -> Optional[VerificationOrder]:
        """Current state of *order_id*; None when the provider reports an error."""
        data = await self._post("/sms/check", {"orderid": order_id})
        if not isinstance(data, dict):
            return None
        if data.get("success") != 1 and data.get("status") not in (1, 3, "1", "3"):
            logger.warning("%s check for %s failed: %s", self.label, order_id, data)
            return None
        data.setdefault("orderid", order_id)
        return VerificationOrder.model_validate(data)

    async def cancel_order(self, order_id: str) -> bool:
        data = await self._post("/sms/cancel", {"orderid": order_id})
        ok = isinstance(data, dict) and data.get("success") == 1
        if not ok:
            logger.warning("%s could not cancel %s: %s", self.label, order_id, data)
        return ok

    async def list_active_orders(self) -> list[VerificationOrder]:
        data = await self._post("/request/active")
        if isinstance(data, dict):
            data = data.get("data") or data.get("orders") or []
        orders = []
        for item in data or []:
            try:
                orders.append(VerificationOrder.model_validate(item))
            except ValueError as e:
                logger.debug("Skipping malformed order %s: %s", item, e)
        logger.info("%s has %d active orders", self.label, len(orders))
        return orders
