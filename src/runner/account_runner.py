"""Run the wizard (or the listing crawl) for one stored account.

Wires the pieces together: proxy port, browser, stored session, OTP
source, interaction primitives and the controller.  Each call owns its
browser and closes it before returning.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from src.errors import ProviderError, ProxyPoolExhausted
from src.identity.browser import BrowserSession
from src.identity.proxy import ProxyAllocator, ProxyIdentity
from src.identity.session_state import SessionService, SessionState
from src.interaction.primitives import ArtifactRecorder, Interactor
from src.otp.provider import PROVIDERS, SmsProviderClient
from src.otp.service import ManualOtpSource, OtpService, OtpSource
from src.runner.config import AppConfig
from src.runner.metrics import AccountRunMetrics
from src.store.account_store import AccountStore
from src.wizard.context import AccountProfile, StageContext
from src.wizard.controller import AutomationController
from src.wizard.stage_detector import StageDetector
from src.wizard.stage_handlers import build_handlers
from src.wizard.stages import RunResult, WizardStage

logger = logging.getLogger(__name__)


@dataclass
class OpenedBrowser:
    page: object
    proxy: Optional[ProxyIdentity]
    restored: bool


class AccountRunner:
    def __init__(self, config: AppConfig, store: AccountStore, *, headless: bool | None = None):
        self.config = config
        self.store = store
        self.headless = config.browser.headless if headless is None else headless
        self.proxies = ProxyAllocator(
            store,
            config.proxy.host,
            config.proxy.username,
            config.proxy.password,
            config.proxy.port_range,
        )
        self.sessions = SessionService(config.browser.navigation_timeout)
        self.handlers = build_handlers()
        # Shared across concurrent runs so per-account locks and in-flight orders are honored.
        self._otp: Optional[OtpSource] = None
        self._otp_client: Optional[SmsProviderClient] = None

    # ------------------------------------------------------------------
    # OTP source
    # ------------------------------------------------------------------

    def otp_source(self) -> Optional[OtpSource]:
        if self._otp is not None:
            return self._otp
        otp = self.config.otp
        if otp.provider == "manual":
            self._otp = ManualOtpSource(self.store, poll_interval=otp.poll_interval)
            return self._otp
        try:
            self._otp_client = SmsProviderClient.for_profile(PROVIDERS[otp.provider], otp.api_key)
        except ProviderError as e:
            logger.warning("SMS provider unavailable (%s); phone verification will fail", e)
            return None
        self._otp = OtpService(self._otp_client, self.store, poll_interval=otp.poll_interval)
        return self._otp

    async def aclose(self):
        if self._otp_client is not None:
            await self._otp_client.aclose()
            self._otp_client = None
        self._otp = None

    # ------------------------------------------------------------------
    # Browser
    # ------------------------------------------------------------------

    def _stored_session(self, account_id: int, blob: str | None) -> Optional[SessionState]:
        if not blob:
            return None
        try:
            return SessionState.decode(blob)
        except ValueError as e:
            logger.warning("Discarding unreadable session for account %d: %s", account_id, e)
            self.store.clear_session(account_id)
            return None

    @asynccontextmanager
    async def open_browser(self, account_id: int, *, restore_session: bool = True) -> AsyncIterator[OpenedBrowser]:
        account = self.store.get(account_id)

        proxy = None
        if self.proxies.enabled:
            try:
                proxy = await asyncio.to_thread(self.proxies.allocate, account_id)
            except ProxyPoolExhausted as e:
                logger.error("No proxy port for account %d: %s; running direct", account_id, e)

        state = self._stored_session(account_id, account.last_session_state) if restore_session else None
        browser = BrowserSession(
            headless=self.headless,
            proxy=proxy,
            viewport=self.config.browser.viewport,
            user_agent=state.meta.ua if state and state.meta.ua else None,
            timezone_id=state.meta.tz if state and state.meta.tz else None,
            navigation_timeout=self.config.browser.navigation_timeout,
        )
        page = await browser.start()
        try:
            restored = False
            if state is not None:
                restored = await self.sessions.restore(page, state)
                logger.info("Account %d: session %s", account_id, "restored" if restored else "not restored")
            yield OpenedBrowser(page=page, proxy=proxy, restored=restored)
        finally:
            await browser.stop()

    # ------------------------------------------------------------------
    # Wizard run
    # ------------------------------------------------------------------

    async def run(
        self,
        account_id: int,
        *,
        restore_session: bool = True,
        start_stage: WizardStage | None = None,
    ) -> RunResult:
        account = self.store.get(account_id)
        logger.info("Account %d (%s): starting run", account_id, account.email)
        recorder = ArtifactRecorder(
            self.config.browser.artifacts_dir / str(account_id),
            enabled=self.config.browser.capture_artifacts,
        )

        async with self.open_browser(account_id, restore_session=restore_session) as opened:
            ui = Interactor(opened.page, self.config.interaction, recorder)
            ctx = StageContext(
                page=opened.page,
                ui=ui,
                detector=StageDetector(),
                account=AccountProfile.from_record(account),
                content=self.config.profile,
                settings=self.config.wizard,
                otp=self.otp_source(),
            )
            controller = AutomationController(
                self.handlers,
                store=self.store,
                sessions=self.sessions,
                proxies=self.proxies,
                proxy_label=opened.proxy.label if opened.proxy else None,
            )
            start_url = self.config.site.wizard_url if opened.restored else self.config.site.login_url
            return await controller.run(
                ctx,
                start_url=start_url,
                start_stage=start_stage,
                restored_session=opened.restored,
            )

    async def run_with_metrics(self, account_id: int) -> AccountRunMetrics:
        t0 = time.time()
        result = await self.run(account_id)
        return AccountRunMetrics(
            account_id=account_id,
            status=result.status.value,
            stage=result.stage.value,
            error_kind=result.error_kind,
            elapsed_seconds=time.time() - t0,
        )
