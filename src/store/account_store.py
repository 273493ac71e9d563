"""Account record store.

One ``AccountStore`` is created by the CLI runner and injected into the
components that read or update accounts.  All writes are short
transactions; the proxy port claim is the only read-then-write sequence
and runs under a process-wide lock plus the UNIQUE constraint on
``accounts.last_proxy_port``.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from src.errors import AccountNotFound, ProxyPoolExhausted
from src.store.models import Account, Base, ProcessRun, utcnow

logger = logging.getLogger(__name__)

_CLAIM_RETRIES = 5

# Columns a caller may set through add_account / update_account.
ACCOUNT_FIELDS = (
    "first_name", "last_name", "email", "password", "country_code",
    "location_street", "location_city", "location_state", "location_post_code",
    "birth_date", "phone", "otp_provider", "attempt_count", "last_attempt_at",
    "last_status", "last_error_code", "last_error_message", "success_at",
    "captcha_flagged_at", "site_created_at",
)


class AccountStore:
    def __init__(self, database_url: str):
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine = create_engine(database_url, connect_args=connect_args)
        self.Session = sessionmaker(self.engine, expire_on_commit=False)
        self._lock = threading.Lock()

    def create_all(self):
        Base.metadata.create_all(self.engine)

    def dispose(self):
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, account_id: int) -> Account:
        with self.Session() as session:
            account = session.get(Account, account_id)
            if account is None:
                raise AccountNotFound(account_id)
            return account

    def find_by_email(self, email: str) -> Optional[Account]:
        with self.Session() as session:
            return session.scalars(select(Account).where(Account.email == email)).first()

    def pending_accounts(self, limit: int | None = None) -> list[Account]:
        """Accounts never attempted and not yet successful."""
        stmt = (
            select(Account)
            .where(Account.success_at.is_(None), Account.attempt_count == 0)
            .order_by(Account.id)
        )
        if limit:
            stmt = stmt.limit(limit)
        with self.Session() as session:
            return list(session.scalars(stmt))

    def retryable_accounts(self, max_attempts: int, limit: int | None = None) -> list[Account]:
        """Soft-failed accounts still below the attempt bound."""
        stmt = (
            select(Account)
            .where(
                Account.success_at.is_(None),
                Account.last_status == "soft_fail",
                Account.attempt_count < max_attempts,
            )
            .order_by(Account.attempt_count, Account.id)
        )
        if limit:
            stmt = stmt.limit(limit)
        with self.Session() as session:
            return list(session.scalars(stmt))

    def runs_for(self, account_id: int) -> list[ProcessRun]:
        with self.Session() as session:
            stmt = select(ProcessRun).where(ProcessRun.account_id == account_id).order_by(ProcessRun.id)
            return list(session.scalars(stmt))

    def stats(self, max_attempts: int) -> dict:
        with self.Session() as session:
            def count(*where) -> int:
                return session.scalar(select(func.count(Account.id)).where(*where)) or 0

            return {
                "total": count(),
                "successful": count(Account.success_at.is_not(None)),
                "pending": count(Account.success_at.is_(None), Account.attempt_count == 0),
                "failed": count(Account.success_at.is_(None), Account.attempt_count > 0),
                "captcha_flagged": count(Account.captcha_flagged_at.is_not(None)),
                "exceeded_max_attempts": count(
                    Account.success_at.is_(None), Account.attempt_count >= max_attempts,
                ),
            }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_account(self, **fields) -> Account:
        unknown = set(fields) - set(ACCOUNT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown account fields: {sorted(unknown)}")
        with self.Session.begin() as session:
            account = Account(**fields)
            session.add(account)
            session.flush()
            return account

    def update_account(self, account_id: int, **fields) -> Account:
        unknown = set(fields) - set(ACCOUNT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown account fields: {sorted(unknown)}")
        return self._update(account_id, **fields)

    def _update(self, account_id: int, **values) -> Account:
        with self.Session.begin() as session:
            account = session.get(Account, account_id)
            if account is None:
                raise AccountNotFound(account_id)
            for key, value in values.items():
                setattr(account, key, value)
            return account

    def record_attempt(self, account_id: int, status: str, error_code: str | None = None,
                       error_message: str | None = None):
        with self.Session.begin() as session:
            account = session.get(Account, account_id)
            if account is None:
                raise AccountNotFound(account_id)
            account.attempt_count = (account.attempt_count or 0) + 1
            account.last_attempt_at = utcnow()
            account.last_status = status
            account.last_error_code = error_code
            account.last_error_message = error_message

    def record_run(self, account_id: int, *, status: str, stage: str, error_kind: str | None,
                   evidence: str | None, url: str | None, artifacts: dict,
                   started_at: datetime) -> int:
        with self.Session.begin() as session:
            run = ProcessRun(
                account_id=account_id,
                started_at=started_at,
                finished_at=utcnow(),
                status=status,
                stage=stage,
                error_kind=error_kind,
                evidence=evidence,
                url=url,
                artifacts=dict(artifacts),
            )
            session.add(run)
            session.flush()
            return run.id

    def mark_success(self, account_id: int):
        now = utcnow()
        self._update(account_id, success_at=now, onboarding_completed_at=now)

    def mark_rate_step(self, account_id: int):
        self._update(account_id, rate_step_completed_at=utcnow())

    def flag_captcha(self, account_id: int):
        self._update(account_id, captcha_flagged_at=utcnow())

    def mark_avatar_uploaded(self, account_id: int):
        self._update(account_id, avatar_uploaded_at=utcnow())

    def save_session(self, account_id: int, blob: str):
        self._update(account_id, last_session_state=blob)

    def clear_session(self, account_id: int):
        self._update(account_id, last_session_state=None)

    def set_phone(self, account_id: int, phone: str, provider: str):
        self._update(account_id, phone=phone, otp_provider=provider)

    def set_otp(self, account_id: int, code: str | None):
        self._update(account_id, otp=code)

    def take_otp(self, account_id: int) -> Optional[str]:
        """Return the operator-supplied code and clear it."""
        with self.Session.begin() as session:
            account = session.get(Account, account_id)
            if account is None:
                raise AccountNotFound(account_id)
            code = account.otp
            if code:
                account.otp = None
            return code

    # ------------------------------------------------------------------
    # Proxy ports
    # ------------------------------------------------------------------

    def claim_proxy_port(self, account_id: int, port_range: tuple[int, int], *, rotate: bool = False) -> int:
        """Claim a port in *port_range* for *account_id* and persist it.

        The stored port is kept when it is in range, not held by another
        account and *rotate* is not set.  Otherwise the first free port
        (after the current one when rotating) is written in the same
        transaction that checked it.
        """
        low, high = port_range
        for attempt in range(1, _CLAIM_RETRIES + 1):
            with self._lock:
                try:
                    with self.Session.begin() as session:
                        port = self._claim(session, account_id, low, high, rotate)
                    return port
                except IntegrityError as e:
                    logger.warning(
                        "Port claim for account %d collided (attempt %d/%d): %s",
                        account_id, attempt, _CLAIM_RETRIES, e.orig,
                    )
        raise ProxyPoolExhausted(f"Could not claim a proxy port for account {account_id}")

    def _claim(self, session, account_id: int, low: int, high: int, rotate: bool) -> int:
        account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFound(account_id)
        current = account.last_proxy_port
        taken = set(session.scalars(
            select(Account.last_proxy_port).where(
                Account.id != account_id, Account.last_proxy_port.is_not(None),
            )
        ))

        in_range = current is not None and low <= current <= high
        if in_range and current not in taken and not rotate:
            return current

        free = [p for p in _rotation_order(low, high, current if rotate else None) if p not in taken]
        if rotate:
            free = [p for p in free if p != current]
        if not free:
            if rotate and in_range and current not in taken:
                logger.warning("No other free port for account %d, keeping %d", account_id, current)
                return current
            raise ProxyPoolExhausted(f"All ports {low}-{high} are taken")

        port = free[0]
        account.last_proxy_port = port
        session.flush()
        logger.info("Account %d assigned proxy port %d (was %s)", account_id, port, current)
        return port


def _rotation_order(low: int, high: int, after: int | None) -> Iterable[int]:
    if after is None or not low <= after <= high:
        return range(low, high + 1)
    return list(range(after + 1, high + 1)) + list(range(low, after + 1))
