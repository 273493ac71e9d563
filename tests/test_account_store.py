"""Account store queries and bookkeeping on a temporary SQLite file."""

from datetime import datetime

import pytest

from src.errors import AccountNotFound


def add(store, n, **fields):
    return store.add_account(
        first_name=f"User{n}", last_name="Test", email=f"user{n}@example.com",
        password="pw", country_code="US", **fields,
    )


def test_get_unknown_account_raises(store):
    with pytest.raises(AccountNotFound) as exc:
        store.get(404)
    assert exc.value.account_id == 404


def test_unknown_fields_rejected(store):
    with pytest.raises(ValueError):
        store.add_account(first_name="A", last_name="B", email="a@b.c", password="x", nickname="nope")


def test_record_attempt_counts_and_status(store, account):
    store.record_attempt(account.id, "soft_fail", "TITLE_STEP_STUCK", "still on /title")
    store.record_attempt(account.id, "soft_fail", "CAPTCHA_DETECTED", "captcha widget")

    refreshed = store.get(account.id)
    assert refreshed.attempt_count == 2
    assert refreshed.last_status == "soft_fail"
    assert refreshed.last_error_code == "CAPTCHA_DETECTED"
    assert refreshed.last_attempt_at is not None


def test_pending_and_retryable_selection(store):
    fresh = add(store, 1)
    soft = add(store, 2)
    hard = add(store, 3)
    exhausted = add(store, 4)
    done = add(store, 5)

    store.record_attempt(soft.id, "soft_fail", "RATE_NEXT_NOT_FOUND")
    store.record_attempt(hard.id, "hard_fail", "BAD_CREDENTIALS")
    for _ in range(5):
        store.record_attempt(exhausted.id, "soft_fail", "STAGE_LOOP")
    store.record_attempt(done.id, "success")
    store.mark_success(done.id)

    assert [a.id for a in store.pending_accounts()] == [fresh.id]
    assert [a.id for a in store.retryable_accounts(max_attempts=5)] == [soft.id]

    stats = store.stats(max_attempts=5)
    assert stats == {
        "total": 5,
        "successful": 1,
        "pending": 1,
        "failed": 3,
        "captcha_flagged": 0,
        "exceeded_max_attempts": 1,
    }


def test_record_run_keeps_history(store, account):
    started = datetime(2026, 1, 1, 12, 0, 0)
    store.record_run(account.id, status="soft_fail", stage="title", error_kind="TITLE_STEP_STUCK",
                     evidence="still on /title", url="https://x/title",
                     artifacts={"title_before": "/tmp/a.png"}, started_at=started)
    store.record_run(account.id, status="success", stage="completion", error_kind=None,
                     evidence=None, url="https://x/finish", artifacts={}, started_at=started)

    runs = store.runs_for(account.id)
    assert [r.status for r in runs] == ["soft_fail", "success"]
    assert runs[0].artifacts == {"title_before": "/tmp/a.png"}
    assert runs[0].finished_at >= started


def test_flags_and_milestones(store, account):
    store.mark_rate_step(account.id)
    store.flag_captcha(account.id)
    store.mark_avatar_uploaded(account.id)

    refreshed = store.get(account.id)
    assert refreshed.rate_step_completed_at is not None
    assert refreshed.avatar_uploaded_at is not None
    assert refreshed.avatar_uploaded_at.tzinfo is None
    assert refreshed.captcha_flagged_at is not None
    assert store.stats(5)["captcha_flagged"] == 1


def test_session_blob_roundtrip(store, account):
    store.save_session(account.id, "blob==")
    assert store.get(account.id).last_session_state == "blob=="
    store.clear_session(account.id)
    assert store.get(account.id).last_session_state is None


def test_manual_otp_is_taken_once(store, account):
    store.set_otp(account.id, "654321")

    assert store.take_otp(account.id) == "654321"
    assert store.take_otp(account.id) is None


def test_set_phone_records_provider(store, account):
    store.set_phone(account.id, "+15551234567", "SMS_MAN")

    refreshed = store.get(account.id)
    assert refreshed.phone == "+15551234567"
    assert refreshed.otp_provider == "SMS_MAN"


def test_find_by_email(store, account):
    assert store.find_by_email("jane@example.com").id == account.id
    assert store.find_by_email("nobody@example.com") is None
