"""Automation controller: the wizard state machine.

The controller resolves the live stage, dispatches to its handler and
follows the handler's declared next stage until the wizard completes or a
handler fails.  It owns every side effect on the account record: attempts,
session blobs, challenge flags, proxy rotation and run history.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from playwright.async_api import Error as PlaywrightError

from src.store.models import utcnow
from src.wizard.challenge_guard import CHALLENGE_KINDS
from src.wizard.context import StageContext
from src.wizard.stage_handlers import StageHandler, looks_authenticated
from src.wizard.stages import DEFAULT_SEQUENCE, RunResult, RunStatus, WizardStage, next_in_sequence

logger = logging.getLogger(__name__)


class AutomationController:
    def __init__(
        self,
        handlers: dict[WizardStage, StageHandler],
        *,
        store=None,
        sessions=None,
        proxies=None,
        proxy_label: str | None = None,
        sequence: tuple[WizardStage, ...] = DEFAULT_SEQUENCE,
        cancel_event: asyncio.Event | None = None,
    ):
        self.handlers = handlers
        self.store = store
        self.sessions = sessions
        self.proxies = proxies
        self.proxy_label = proxy_label
        self.sequence = sequence
        self.cancel_event = cancel_event or asyncio.Event()

    def cancel(self):
        """Stop before the next stage; the running handler is not interrupted."""
        self.cancel_event.set()

    async def run(
        self,
        ctx: StageContext,
        *,
        start_url: str | None = None,
        start_stage: WizardStage | None = None,
        restored_session: bool = False,
    ) -> RunResult:
        started_at = utcnow()
        t0 = time.time()
        result = await self._drive(ctx, start_url, start_stage, restored_session)
        logger.info(
            "Account %d finished: %s at %s%s (%.1fs)",
            ctx.account.account_id, result.status.value, result.stage.value,
            f" [{result.error_kind}]" if result.error_kind else "", time.time() - t0,
        )
        await self._finish(ctx, result, started_at)
        return result

    async def _drive(self, ctx, start_url, start_stage, restored_session) -> RunResult:
        stage = start_stage or WizardStage.UNKNOWN
        try:
            if start_url:
                try:
                    await ctx.page.goto(start_url, wait_until="domcontentloaded",
                                        timeout=ctx.settings.navigation_timeout * 1000)
                except PlaywrightError as e:
                    return RunResult.hard_fail(stage, "NAVIGATION_FAILED", str(e), location=start_url)

            live = await ctx.detector.resolve(ctx.page)
            if restored_session and live is WizardStage.CREDENTIALS:
                logger.warning("Stored session for account %d is no longer valid", ctx.account.account_id)
                self._store_call("clear_session", ctx.account.account_id)

            if start_stage is None:
                stage = live if live is not WizardStage.UNKNOWN else self.sequence[0]
            logger.info("Account %d: starting at stage %s", ctx.account.account_id, stage.value)

            transitions = 0
            max_transitions = ctx.settings.max_transitions
            while True:
                if self.cancel_event.is_set():
                    return RunResult.soft_fail(stage, "RUN_CANCELLED", location=ctx.page.url,
                                               artifacts=ctx.ui.recorder.snapshot())
                transitions += 1
                if transitions > max_transitions:
                    return RunResult.soft_fail(
                        stage, "STAGE_LOOP", f"more than {max_transitions} transitions",
                        location=ctx.page.url, artifacts=ctx.ui.recorder.snapshot(),
                    )

                # The site may have skipped or reordered stages since the last one.
                live = await ctx.detector.resolve(ctx.page)
                if live is not WizardStage.UNKNOWN and live is not stage:
                    logger.info("Expected %s, page is at %s", stage.value, live.value)
                    stage = live

                handler = self.handlers.get(stage)
                if handler is None:
                    return RunResult.soft_fail(stage, "NO_HANDLER", f"no handler for {stage.value}",
                                               location=ctx.page.url, artifacts=ctx.ui.recorder.snapshot())

                logger.info("=" * 60)
                logger.info("  Account %d: %s", ctx.account.account_id, stage.value.upper())
                logger.info("=" * 60)
                result = await handler.handle(ctx)
                await self._after_stage(ctx, stage, result)
                if not result.ok or stage is WizardStage.COMPLETION:
                    return result
                stage = self._next(stage, result)
        except Exception as e:
            logger.exception("Automation failed at stage %s", stage.value)
            return RunResult.hard_fail(
                stage, "AUTOMATION_FAILED", f"{type(e).__name__}: {e}",
                location=getattr(ctx.page, "url", ""), artifacts=ctx.ui.recorder.snapshot(),
            )

    def _next(self, stage: WizardStage, result: RunResult) -> WizardStage:
        if result.next_stage is not None and result.next_stage is not WizardStage.UNKNOWN:
            return result.next_stage
        return next_in_sequence(stage)

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def _store_call(self, method: str, *args, **kwargs):
        if self.store is None:
            return None
        try:
            return getattr(self.store, method)(*args, **kwargs)
        except Exception as e:
            logger.error("Store %s failed for %s: %s", method, args[:1], e)
            return None

    async def _save_session(self, ctx: StageContext):
        if self.sessions is None or self.store is None:
            return
        try:
            state = await self.sessions.capture(ctx.page, proxy_label=self.proxy_label)
        except PlaywrightError as e:
            logger.warning("Session capture failed: %s", e)
            return
        self._store_call("save_session", ctx.account.account_id, state.encode())

    async def _after_stage(self, ctx: StageContext, stage: WizardStage, result: RunResult):
        account_id = ctx.account.account_id
        if result.ok and stage is WizardStage.CREDENTIALS:
            await self._save_session(ctx)
        elif result.ok and stage is WizardStage.RATE:
            self._store_call("mark_rate_step", account_id)
        elif result.ok and stage is WizardStage.LOCATION and "avatar_uploaded" in ctx.milestones:
            self._store_call("mark_avatar_uploaded", account_id)
        elif result.ok and stage is WizardStage.COMPLETION:
            self._store_call("mark_success", account_id)

        if result.status is RunStatus.SOFT_FAIL and result.error_kind in CHALLENGE_KINDS:
            logger.warning("Account %d hit %s; flagging and rotating proxy", account_id, result.error_kind)
            self._store_call("flag_captcha", account_id)
            if self.proxies is not None and self.proxies.enabled:
                try:
                    await asyncio.to_thread(self.proxies.rotate, account_id)
                except Exception as e:
                    logger.error("Proxy rotation failed for account %d: %s", account_id, e)

    async def _finish(self, ctx: StageContext, result: RunResult, started_at: datetime):
        account_id = ctx.account.account_id
        if result.error_kind not in CHALLENGE_KINDS and looks_authenticated(result.location):
            await self._save_session(ctx)
        self._store_call(
            "record_attempt", account_id, result.status.value, result.error_kind, result.evidence,
        )
        self._store_call(
            "record_run", account_id,
            status=result.status.value,
            stage=result.stage.value,
            error_kind=result.error_kind,
            evidence=result.evidence,
            url=result.location,
            artifacts=result.captured_artifacts,
            started_at=started_at,
        )
