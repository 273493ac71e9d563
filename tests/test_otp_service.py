"""OTP service reconciliation and polling with a fake provider client."""

import threading
from datetime import datetime, timedelta, timezone

from src.errors import ProviderError
from src.otp.models import VerificationOrder
from src.otp.service import ManualOtpSource, OtpService
from tests.conftest import FakeClock, FakeProviderClient, order


def service(client, store, clock=None):
    clock = clock or FakeClock()
    return OtpService(client, store, poll_interval=5, sleep=clock.sleep, clock=clock)


async def test_existing_code_returned_without_purchase(store, account):
    store.set_phone(account.id, "+15557654321", "SMS_MAN")
    client = FakeProviderClient(active=[
        order("other", "15550000000"),
        order("mine", "5557654321", sms="Your code is 482913"),
    ])

    code = await service(client, store).wait_for_code(account.id, "US", timeout=60)

    assert code == "482913"
    assert client.purchases == 0
    assert client.checked == []


async def test_existing_order_is_reused_for_number(store, account):
    store.set_phone(account.id, "+15557654321", "SMS_MAN")
    client = FakeProviderClient(active=[order("mine", "+1 (555) 765-4321")])
    otp = service(client, store)

    assert await otp.acquire_number(account.id, "US") == "+15557654321"
    assert client.purchases == 0


async def test_stale_or_foreign_orders_are_ignored(store, account):
    store.set_phone(account.id, "+15557654321", "SMSPOOL")
    expired = datetime.now(timezone.utc) - timedelta(minutes=1)
    client = FakeProviderClient(active=[order("old", "15557654321", expiry=expired.isoformat())])

    phone = await service(client, store).acquire_number(account.id, "US")

    assert client.purchases == 1
    assert phone == "+15550001111"


async def test_purchase_is_persisted_before_polling(store, account):
    client = FakeProviderClient(checks=[None, ProviderError("502"), order("new-1", "", code="7788")])
    otp = service(client, store)

    phone = await otp.acquire_number(account.id, "US")
    assert store.get(account.id).phone == phone == "+15550001111"
    assert store.get(account.id).otp_provider == "SMS_MAN"

    code = await otp.wait_for_code(account.id, "US", timeout=60)

    assert code == "7788"
    assert client.purchases == 1
    assert client.checked == ["new-1", "new-1", "new-1"]


async def test_second_acquire_does_not_buy_again(store, account):
    client = FakeProviderClient()
    otp = service(client, store)

    first = await otp.acquire_number(account.id, "US")
    second = await otp.acquire_number(account.id, "US")

    assert first == second
    assert client.purchases == 1


async def test_timeout_cancels_order(store, account):
    clock = FakeClock()
    client = FakeProviderClient()
    otp = service(client, store, clock)
    await otp.acquire_number(account.id, "US")

    assert await otp.wait_for_code(account.id, "US", timeout=20) is None
    assert client.cancelled == ["new-1"]
    assert clock.t <= 20


async def test_manual_source_reads_operator_code(store, account):
    clock = FakeClock()
    source = ManualOtpSource(store, poll_interval=1, sleep=clock.sleep, clock=clock)

    assert await source.wait_for_code(account.id, "US", timeout=3) is None

    store.set_otp(account.id, "112233")
    assert await source.wait_for_code(account.id, "US", timeout=3) == "112233"
    assert store.get(account.id).otp is None


def test_order_model_aliases():
    parsed = VerificationOrder.model_validate(
        {"order_code": 991, "number": 15551112222, "full_code": "Code: 4455", "status": 1},
    )
    assert parsed.order_id == "991"
    assert parsed.phone_number == "15551112222"
    assert parsed.code == "4455"
    assert parsed.has_code


class ThreadRecordingStore:
    """Wraps the store and notes which thread each call runs on."""

    def __init__(self, store):
        self.store = store
        self.threads = []

    def __getattr__(self, name):
        method = getattr(self.store, name)

        def call(*args, **kwargs):
            self.threads.append(threading.get_ident())
            return method(*args, **kwargs)
        return call


async def test_store_calls_run_off_the_event_loop(store, account):
    recording = ThreadRecordingStore(store)
    client = FakeProviderClient(checks=[order("new-1", "", code="4455")])
    otp = service(client, recording)

    await otp.acquire_number(account.id, "US")
    await otp.wait_for_code(account.id, "US", timeout=10)
    source = ManualOtpSource(recording, poll_interval=1, sleep=FakeClock().sleep, clock=FakeClock())
    store.set_otp(account.id, "9900")
    await source.acquire_number(account.id, "US")
    await source.wait_for_code(account.id, "US", timeout=3)

    assert len(recording.threads) >= 4
    assert threading.get_ident() not in recording.threads
