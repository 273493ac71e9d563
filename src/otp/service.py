"""Phone number provisioning and OTP polling with reconciliation.

An account owns at most one live verification order.  Before buying a
number the service looks for the account's stored phone among the
provider's active orders and reuses that order; a purchased number is
written to the account before the first poll so a crash cannot orphan it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol

from src.errors import ProviderError
from src.otp.models import VerificationOrder, same_phone, with_country_code
from src.otp.provider import SmsProviderClient

logger = logging.getLogger(__name__)

MANUAL_LABEL = "MANUAL"


class OtpSource(Protocol):
    label: str

    async def acquire_number(self, account_id: int, region: str) -> Optional[str]:
        ...

    async def wait_for_code(self, account_id: int, region: str, timeout: float) -> Optional[str]:
        ...


class OtpService:
    def __init__(
        self,
        client: SmsProviderClient,
        store,
        *,
        poll_interval: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.store = store
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        # account id -> order id for orders opened or adopted by this process
        self._inflight: dict[int, str] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    @property
    def label(self) -> str:
        return self.client.label

    def _lock(self, account_id: int) -> asyncio.Lock:
        return self._locks.setdefault(account_id, asyncio.Lock())

    async def _stored_phone(self, account_id: int) -> Optional[str]:
        account = await asyncio.to_thread(self.store.get, account_id)
        return account.phone

    async def _find_existing(self, account_id: int, region: str) -> Optional[VerificationOrder]:
        """Active provider order for the account's stored phone, if any."""
        account = await asyncio.to_thread(self.store.get, account_id)
        if not account.phone or account.otp_provider != self.label:
            return None
        for order in await self.client.list_active_orders():
            if order.is_stale():
                continue
            if same_phone(order.phone_number, account.phone, region):
                logger.info(
                    "Account %d: reusing order %s for %s", account_id, order.order_id, account.phone,
                )
                return order
        logger.info("Account %d: no active order for stored phone %s", account_id, account.phone)
        return None

    async def _purchase(self, account_id: int, region: str) -> str:
        purchased = await self.client.purchase_number(region)
        phone = with_country_code(purchased.phone_number, region)
        await asyncio.to_thread(self.store.set_phone, account_id, phone, self.label)
        self._inflight[account_id] = purchased.order_id
        logger.info("Account %d: assigned %s (order %s)", account_id, phone, purchased.order_id)
        return phone

    async def acquire_number(self, account_id: int, region: str) -> Optional[str]:
        """Phone number to enter for the account, buying one only if none is live."""
        async with self._lock(account_id):
            if account_id in self._inflight:
                return await self._stored_phone(account_id)
            existing = await self._find_existing(account_id, region)
            if existing is not None:
                self._inflight[account_id] = existing.order_id
                return await self._stored_phone(account_id)
            return await self._purchase(account_id, region)

    async def wait_for_code(self, account_id: int, region: str, timeout: float) -> Optional[str]:
        """Poll the account's order until a code arrives or *timeout* elapses."""
        async with self._lock(account_id):
            order_id = self._inflight.get(account_id)
            if order_id is None:
                existing = await self._find_existing(account_id, region)
                if existing is not None:
                    if existing.has_code:
                        return existing.code
                    order_id = existing.order_id
                else:
                    await self._purchase(account_id, region)
                    order_id = self._inflight[account_id]
                self._inflight[account_id] = order_id

        deadline = self._clock() + timeout
        while True:
            try:
                order = await self.client.check_order(order_id)
            except ProviderError as e:
                logger.warning("Account %d: check of order %s failed: %s", account_id, order_id, e)
                order = None
            if order is not None and order.has_code:
                logger.info("Account %d: code received on order %s", account_id, order_id)
                self._inflight.pop(account_id, None)
                return order.code
            if self._clock() + self.poll_interval > deadline:
                break
            await self._sleep(self.poll_interval)

        logger.warning("Account %d: no code on order %s within %ss", account_id, order_id, timeout)
        self._inflight.pop(account_id, None)
        try:
            await self.client.cancel_order(order_id)
        except ProviderError as e:
            logger.warning("Account %d: could not cancel order %s: %s", account_id, order_id, e)
        return None


class ManualOtpSource:
    """Codes typed in by an operator (``set-otp``) and picked up from the store."""

    label = MANUAL_LABEL

    def __init__(
        self,
        store,
        *,
        poll_interval: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    async def acquire_number(self, account_id: int, region: str) -> Optional[str]:
        phone = (await asyncio.to_thread(self.store.get, account_id)).phone
        if not phone:
            logger.warning("Account %d has no phone on record for manual verification", account_id)
        return phone

    async def wait_for_code(self, account_id: int, region: str, timeout: float) -> Optional[str]:
        deadline = self._clock() + timeout
        logger.info("Waiting up to %ss for an operator code for account %d", timeout, account_id)
        while True:
            code = await asyncio.to_thread(self.store.take_otp, account_id)
            if code:
                return code
            if self._clock() + self.poll_interval > deadline:
                return None
            await self._sleep(self.poll_interval)
