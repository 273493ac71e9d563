"""Stage handlers for the profile wizard.

Most stages are data: a ``StageSpec`` lists the actions to perform and the
controls that advance the wizard, and one generic ``StageHandler`` runs
them.  Credentials, verification and completion have their own handler
classes on top of the same contract::

    handle(ctx) -> RunResult

Every handler checks it is on its stage, captures before/after
screenshots, performs its actions through the ``Interactor`` and confirms
the page moved on.  Handlers never touch the account store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError

from src.errors import ProviderError
from src.interaction.primitives import FillOutcome
from src.interaction.selectors import (
    EDIT_BUTTON,
    MODAL,
    MODAL_TITLE,
    NEXT_BUTTON,
    SAVE_BUTTON,
    SelectorLike,
    add_button,
    with_text,
)
from src.otp.models import national_number
from src.wizard.challenge_guard import BAD_CREDENTIALS, find_challenge, find_login_error
from src.wizard.context import StageContext
from src.wizard.stages import RunResult, WizardStage

logger = logging.getLogger(__name__)

ValueFn = Callable[[StageContext], Optional[str]]


@dataclass(frozen=True)
class Failure:
    kind: str
    evidence: Optional[str] = None


async def _is_checked(element) -> Optional[bool]:
    """Checked state, or None for elements that are not checkable."""
    try:
        return await element.is_checked()
    except PlaywrightError:
        return None


async def _text_of(element) -> str:
    try:
        return (await element.inner_text()).strip()
    except PlaywrightError:
        return ""


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class Action:
    async def run(self, ctx: StageContext) -> Optional[Failure]:
        raise NotImplementedError


@dataclass(frozen=True)
class ClickControl(Action):
    candidates: tuple[SelectorLike, ...]
    kind: str
    optional: bool = False
    timeout: Optional[float] = None

    async def run(self, ctx):
        if await ctx.ui.click(self.candidates, self.timeout):
            return None
        if self.optional:
            logger.info("Optional control for %s not present", self.kind)
            return None
        return Failure(self.kind)


@dataclass(frozen=True)
class ChooseOption(Action):
    """Click a radio/checkbox style option and confirm it stays selected."""
    candidates: tuple[SelectorLike, ...]
    kind: str

    async def run(self, ctx):
        element = await ctx.ui.locate(self.candidates)
        if element is None:
            return Failure(self.kind)
        if await _is_checked(element):
            return None
        if not await ctx.ui.click_element(element):
            return Failure(self.kind, "option could not be clicked")
        if await _is_checked(element) is False:
            return Failure(self.kind, "option did not stay selected")
        return None


@dataclass(frozen=True)
class FillText(Action):
    candidates: tuple[SelectorLike, ...]
    value: ValueFn
    kind: str
    optional: bool = False
    strict: Optional[bool] = None

    async def run(self, ctx):
        text = self.value(ctx)
        if not text:
            return None
        element = await ctx.ui.locate(self.candidates, editable=True,
                                      timeout=3.0 if self.optional else None)
        if element is None:
            return None if self.optional else Failure(f"{self.kind}_NOT_FOUND")
        outcome = await ctx.ui.type_with_verification(element, text, strict=self.strict)
        if outcome is FillOutcome.FAILED:
            return Failure(f"{self.kind}_NOT_VERIFIED", f"could not enter {text!r}")
        return None


@dataclass(frozen=True)
class Typeahead(Action):
    candidates: tuple[SelectorLike, ...]
    value: ValueFn
    kind: str
    optional: bool = False
    skip_if_filled: bool = False
    allow_free_text: bool = True

    async def run(self, ctx):
        text = self.value(ctx)
        if not text:
            return None
        element = await ctx.ui.locate(self.candidates, editable=True,
                                      timeout=3.0 if self.optional else None)
        if element is None:
            return None if self.optional else Failure(f"{self.kind}_NOT_FOUND")
        if self.skip_if_filled:
            current = (await ctx.ui.read_value(element)).strip()
            if current:
                logger.info("%s already holds %r, leaving it", self.kind, current)
                return None
        outcome = await ctx.ui.select_from_dropdown(element, text, allow_free_text=self.allow_free_text)
        if not outcome.ok:
            return Failure(f"{self.kind}_NOT_SELECTED", f"no option for {text!r}")
        return None


@dataclass(frozen=True)
class ChooseFromList(Action):
    """Non-typeahead dropdown: open the toggle, click the labelled option."""
    toggle: tuple[SelectorLike, ...]
    value: ValueFn
    kind: str
    optional: bool = False

    async def run(self, ctx):
        text = self.value(ctx)
        if not text:
            return None
        if await ctx.ui.choose_option(self.toggle, text):
            return None
        return None if self.optional else Failure(self.kind, f"option {text!r}")


@dataclass(frozen=True)
class ClickTokens(Action):
    """Select skill tokens by label, falling back to the first suggestion."""
    kind: str
    minimum: int = 1
    maximum: int = 3

    async def run(self, ctx):
        selected = 0
        for skill in ctx.content.skills:
            if selected >= self.maximum:
                break
            token = await ctx.ui.locate(
                (f'[role="button"][aria-label="{skill}"]', with_text(".air3-token", skill)),
                timeout=3.0, passes=1,
            )
            if token is not None and await ctx.ui.click_element(token):
                selected += 1
                logger.info("Selected skill %s", skill)

        if selected < self.minimum:
            if await ctx.ui.click(('.air3-token:not(.air3-token-selected)', ".air3-token"), timeout=5.0):
                selected += 1
                logger.info("Selected first suggested skill")
        if selected < self.minimum:
            return Failure(self.kind, f"{selected} skill tokens selected")
        return None


@dataclass(frozen=True)
class ModalField:
    candidates: tuple[SelectorLike, ...]
    value: ValueFn
    mode: str = "text"   # text | typeahead | list
    required: bool = True


@dataclass(frozen=True)
class ModalEntry(Action):
    """Add one entry through the section's modal unless one already exists."""
    section: str
    title_phrase: str
    fields: tuple[ModalField, ...]
    kind: str
    close_timeout: float = 10.0

    async def run(self, ctx):
        if await ctx.ui.exists(EDIT_BUTTON, timeout=2.0):
            logger.info("%s entry already present, not adding another", self.section)
            return None

        if not await ctx.ui.click(add_button(self.section)):
            return Failure(f"{self.kind}_ADD_NOT_FOUND")
        if await ctx.ui.locate(MODAL) is None:
            return Failure(f"{self.kind}_MODAL_NOT_OPENED")

        title = await ctx.ui.locate((MODAL_TITLE,), timeout=3.0, passes=1)
        if title is not None:
            text = await _text_of(title)
            if text and self.title_phrase not in text.lower():
                return Failure(f"{self.kind}_WRONG_MODAL", text)

        for item in self.fields:
            failure = await self._fill(ctx, item)
            if failure is not None:
                return failure

        if not await ctx.ui.click(SAVE_BUTTON):
            return Failure(f"{self.kind}_SAVE_NOT_FOUND")
        try:
            await ctx.page.locator('[role="dialog"]').first.wait_for(
                state="hidden", timeout=self.close_timeout * 1000,
            )
        except PlaywrightError:
            return Failure(f"{self.kind}_MODAL_STILL_OPEN")
        return None

    async def _fill(self, ctx, item: ModalField) -> Optional[Failure]:
        text = item.value(ctx)
        if not text:
            return None
        if item.mode == "list":
            if await ctx.ui.choose_option(item.candidates, text) or not item.required:
                return None
            return Failure(f"{self.kind}_FIELD_NOT_SET", text)

        element = await ctx.ui.locate(item.candidates, editable=True,
                                      timeout=None if item.required else 3.0)
        if element is None:
            if item.required:
                return Failure(f"{self.kind}_FIELD_NOT_FOUND", str(item.candidates[0]))
            return None
        if item.mode == "typeahead":
            ok = (await ctx.ui.select_from_dropdown(element, text)).ok
        else:
            ok = (await ctx.ui.type_with_verification(element, text)).ok
        if not ok and item.required:
            return Failure(f"{self.kind}_FIELD_NOT_SET", text)
        return None


@dataclass(frozen=True)
class DismissOverlays(Action):
    async def run(self, ctx):
        await ctx.ui.dismiss_overlays()
        return None


# Birth date input format by account country.
DATE_FORMATS: dict[str, str] = {
    "US": "%m/%d/%Y",
    "GB": "%Y-%m-%d",
    "UK": "%Y-%m-%d",
    "UA": "%Y-%m-%d",
    "ID": "%d/%m/%Y",
}


def format_birth_date(value: date, country: str) -> str:
    return value.strftime(DATE_FORMATS.get(country.upper(), DATE_FORMATS["US"]))


@dataclass(frozen=True)
class BirthDate(Action):
    candidates: tuple[SelectorLike, ...]
    kind: str = "LOCATION_BIRTH_DATE"

    async def run(self, ctx):
        born = ctx.birth_date()
        if born is None:
            return None
        element = await ctx.ui.locate(self.candidates, editable=True, timeout=5.0)
        if element is None:
            logger.info("No birth date field on this page")
            return None
        text = format_birth_date(born, ctx.region)
        outcome = await ctx.ui.type_with_verification(element, text)
        # The date picker keeps focus until dismissed.
        await ctx.ui.dismiss_overlays()
        if outcome is FillOutcome.FAILED:
            return Failure(f"{self.kind}_NOT_VERIFIED", text)
        return None


@dataclass(frozen=True)
class PhoneField(Action):
    candidates: tuple[SelectorLike, ...]
    kind: str = "LOCATION_PHONE"

    async def run(self, ctx):
        element = await ctx.ui.locate(self.candidates, editable=True, timeout=5.0)
        if element is None:
            logger.info("No phone field on this page")
            return None
        # A stage re-entered within the run keeps the number it already has.
        phone = ctx.values.get("phone")
        if not phone and ctx.otp is not None:
            try:
                phone = await ctx.otp.acquire_number(ctx.account.account_id, ctx.region)
            except ProviderError as e:
                return Failure("OTP_PROVIDER_ERROR", str(e))
        phone = phone or ctx.account.phone
        if not phone:
            return Failure(f"{self.kind}_UNAVAILABLE", "no phone number for verification")
        ctx.values["phone"] = phone
        number = national_number(phone, ctx.region)
        outcome = await ctx.ui.type_with_verification(element, number)
        if outcome is FillOutcome.FAILED:
            return Failure(f"{self.kind}_NOT_VERIFIED", number)
        return None


PHOTO_INPUT = 'input[type="file"]'
OPEN_PHOTO_LOADER = ('button[data-qa="open-loader"]', 'button[data-ev-label="open_loader"]',
                     with_text("button", "Upload photo"))
PHOTO_PREVIEW = ('button[data-test="delete"]', ".air3-image-crop-delete", '[data-ev-label="image_crop_delete"]')
ATTACH_PHOTO = ('button[data-qa="btn-save"]', 'button[data-ev-label="btn_save"]',
                with_text("button", "Attach photo"))


@dataclass(frozen=True)
class UploadPhoto(Action):
    """Attach the configured profile photo.

    Best effort: a missing file, loader or confirmation is logged and the
    stage carries on without a photo.  A confirmed upload is recorded as the
    ``avatar_uploaded`` milestone.
    """
    preview_timeout: float = 15.0

    async def run(self, ctx):
        path = ctx.settings.profile_photo
        if not path:
            return None
        if not Path(path).is_file():
            logger.warning("Profile photo %s not found; skipping upload", path)
            return None

        file_input = ctx.page.locator(PHOTO_INPUT)
        try:
            if await file_input.count() == 0:
                await ctx.ui.click(OPEN_PHOTO_LOADER, timeout=5.0)
            if await file_input.count() == 0:
                logger.warning("No file input for the profile photo")
                return None
            await file_input.first.set_input_files(str(path))
        except PlaywrightError as e:
            logger.warning("Profile photo upload failed: %s", e)
            return None

        if not await ctx.ui.exists(PHOTO_PREVIEW, timeout=self.preview_timeout):
            logger.warning("Profile photo upload not confirmed")
            return None
        if not await ctx.ui.click(ATTACH_PHOTO, timeout=5.0):
            logger.warning("No attach control for the profile photo")
            return None
        await ctx.ui.delay()
        ctx.milestones.add("avatar_uploaded")
        logger.info("Profile photo attached")
        return None


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StageSpec:
    stage: WizardStage
    actions: tuple[Action, ...] = ()
    # None: the actions themselves move the wizard on.
    advance: Optional[tuple[SelectorLike, ...]] = NEXT_BUTTON


class StageHandler:
    def __init__(self, spec: StageSpec):
        self.spec = spec

    @property
    def stage(self) -> WizardStage:
        return self.spec.stage

    @property
    def name(self) -> str:
        return self.stage.name

    def _soft(self, ctx, kind, evidence=None) -> RunResult:
        return RunResult.soft_fail(
            self.stage, kind, evidence, location=ctx.page.url, artifacts=ctx.ui.recorder.snapshot(),
        )

    def _hard(self, ctx, kind, evidence=None) -> RunResult:
        return RunResult.hard_fail(
            self.stage, kind, evidence, location=ctx.page.url, artifacts=ctx.ui.recorder.snapshot(),
        )

    async def handle(self, ctx: StageContext) -> RunResult:
        stage = await ctx.detector.resolve(ctx.page)
        if stage is not self.stage:
            return self._soft(ctx, f"{self.name}_PAGE_NOT_FOUND", f"page resolves to {stage.value}")

        logger.info("Stage %s: starting at %s", self.stage.value, ctx.page.url)
        await ctx.ui.capture(f"{self.stage.value}_before")

        failure = await self.perform(ctx)
        if failure is not None:
            await ctx.ui.capture(f"{self.stage.value}_error")
            logger.warning("Stage %s failed: %s %s", self.stage.value, failure.kind, failure.evidence or "")
            return self._soft(ctx, failure.kind, failure.evidence)
        return await self.advance(ctx)

    async def perform(self, ctx: StageContext) -> Optional[Failure]:
        for action in self.spec.actions:
            failure = await action.run(ctx)
            if failure is not None:
                return failure
            await ctx.ui.delay()
        return None

    async def advance(self, ctx: StageContext) -> RunResult:
        if self.spec.advance is not None and not await ctx.ui.click(self.spec.advance):
            await ctx.ui.capture(f"{self.stage.value}_error")
            return self._soft(ctx, f"{self.name}_NEXT_NOT_FOUND")

        next_stage = await ctx.detector.wait_for_progress(ctx.page, self.stage, ctx.settings.progress_timeout)
        if next_stage is None:
            await ctx.ui.capture(f"{self.stage.value}_error")
            return self._soft(ctx, f"{self.name}_STEP_STUCK", f"still on {ctx.page.url}")

        await ctx.ui.capture(f"{self.stage.value}_after")
        logger.info("Stage %s done -> %s", self.stage.value, next_stage.value)
        return RunResult.success(
            self.stage, location=ctx.page.url, artifacts=ctx.ui.recorder.snapshot(), next_stage=next_stage,
        )


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

USERNAME_INPUT = ("#login_username", '[aria-label*="Username"]', 'input[name="login[username]"]')
USERNAME_CONTINUE = ("button#login_password_continue", with_text("button", "Continue"))
PASSWORD_INPUT = ("#login_password", 'input[type="password"]')
PASSWORD_SUBMIT = ("button#login_control_continue", with_text("button", "Log in"))

# Paths that only an authenticated browser reaches.
AUTHENTICATED_MARKERS = ("/nx/create-profile", "/ab/account-security", "/dashboard", "/welcome", "/nx/find-work")


def looks_authenticated(url: str) -> bool:
    if "/ab/account-security/login" in url:
        return False
    return any(marker in url for marker in AUTHENTICATED_MARKERS)


class CredentialsHandler(StageHandler):
    def __init__(self):
        super().__init__(StageSpec(WizardStage.CREDENTIALS, advance=None))

    async def _goto(self, ctx, url) -> Optional[RunResult]:
        try:
            await ctx.page.goto(url, wait_until="domcontentloaded",
                                timeout=ctx.settings.navigation_timeout * 1000)
        except PlaywrightError as e:
            return self._hard(ctx, "NAVIGATION_FAILED", str(e))
        return None

    async def _into_wizard(self, ctx) -> RunResult:
        """Authenticated: make sure the page is inside the wizard."""
        stage = await ctx.detector.resolve(ctx.page)
        if stage in (WizardStage.UNKNOWN, WizardStage.CREDENTIALS):
            failed = await self._goto(ctx, ctx.settings.wizard_url)
            if failed is not None:
                return failed
            stage = await ctx.detector.resolve(ctx.page)
        await ctx.ui.capture("credentials_after")
        return RunResult.success(
            self.stage, location=ctx.page.url, artifacts=ctx.ui.recorder.snapshot(), next_stage=stage,
        )

    async def _challenge(self, ctx) -> Optional[RunResult]:
        challenge = find_challenge(await ctx.page.content())
        if challenge is None:
            return None
        await ctx.ui.capture("credentials_challenge")
        logger.warning("Challenge on login: %s (%s)", challenge.kind, challenge.evidence)
        return self._soft(ctx, challenge.kind, challenge.evidence)

    async def handle(self, ctx: StageContext) -> RunResult:
        if looks_authenticated(ctx.page.url):
            logger.info("Already authenticated at %s", ctx.page.url)
            return await self._into_wizard(ctx)

        if await ctx.detector.resolve(ctx.page) is not WizardStage.CREDENTIALS:
            failed = await self._goto(ctx, ctx.settings.login_url)
            if failed is not None:
                return failed
            if looks_authenticated(ctx.page.url):
                return await self._into_wizard(ctx)
            if await ctx.detector.resolve(ctx.page) is not WizardStage.CREDENTIALS:
                return self._soft(ctx, "CREDENTIALS_PAGE_NOT_FOUND", ctx.page.url)

        await ctx.ui.capture("credentials_before")
        blocked = await self._challenge(ctx)
        if blocked is not None:
            return blocked

        username = await ctx.ui.locate(USERNAME_INPUT, editable=True)
        if username is None:
            return self._soft(ctx, "CREDENTIALS_USERNAME_NOT_FOUND")
        if await ctx.ui.type_with_verification(username, ctx.account.email, strict=True) is FillOutcome.FAILED:
            return self._soft(ctx, "CREDENTIALS_USERNAME_NOT_VERIFIED")
        await ctx.ui.press("Enter")

        password = await ctx.ui.locate(PASSWORD_INPUT, editable=True, timeout=8.0)
        if password is None:
            await ctx.ui.click(USERNAME_CONTINUE, timeout=3.0)
            password = await ctx.ui.locate(PASSWORD_INPUT, editable=True, timeout=8.0)
        if password is None:
            return await self._challenge(ctx) or self._soft(ctx, "CREDENTIALS_PASSWORD_NOT_FOUND")

        if await ctx.ui.type_with_verification(password, ctx.account.password, strict=True) is FillOutcome.FAILED:
            return self._soft(ctx, "CREDENTIALS_PASSWORD_NOT_VERIFIED")
        await ctx.ui.press("Enter")
        return await self._await_login(ctx)

    async def _await_login(self, ctx) -> RunResult:
        deadline = ctx.detector.now() + ctx.settings.progress_timeout
        clicked_submit = False
        while True:
            html = await ctx.page.content()
            error = find_login_error(html)
            if error:
                await ctx.ui.capture("credentials_rejected")
                return self._hard(ctx, BAD_CREDENTIALS, error)
            challenge = find_challenge(html)
            if challenge is not None:
                await ctx.ui.capture("credentials_challenge")
                return self._soft(ctx, challenge.kind, challenge.evidence)
            if looks_authenticated(ctx.page.url):
                logger.info("Logged in as %s", ctx.account.email)
                return await self._into_wizard(ctx)

            if ctx.detector.now() >= deadline:
                await ctx.ui.capture("credentials_error")
                return self._soft(ctx, "CREDENTIALS_STEP_STUCK", ctx.page.url)
            if not clicked_submit:
                # Enter is not always wired to the form; the button is.
                clicked_submit = await ctx.ui.click(PASSWORD_SUBMIT, timeout=2.0)
            await ctx.detector.pause()


# ---------------------------------------------------------------------------
# Phone verification
# ---------------------------------------------------------------------------

SEND_CODE = ("button#submitPhone", with_text("button", "Send code"))
PIN_INPUTS = ".pincode-input"
SINGLE_CODE_INPUT = ('input[autocomplete="one-time-code"]', 'input[name*="code"]')
VERIFY_CODE = ("button#checkPin", with_text("button", "Verify"))
FORM_ERROR = ".air3-form-message-error"


class VerificationHandler(StageHandler):
    def __init__(self):
        super().__init__(StageSpec(WizardStage.VERIFICATION, advance=None))

    async def perform(self, ctx: StageContext) -> Optional[Failure]:
        if ctx.otp is None:
            return Failure("OTP_SOURCE_MISSING", "no verification source configured")
        # A second code would need a second number.
        if "phone_verified" in ctx.milestones:
            phone = ctx.values.get("phone", "")
            return Failure("VERIFICATION_REPEATED", f"{phone} already verified in this run")

        if not await ctx.ui.exists((PIN_INPUTS,) + SINGLE_CODE_INPUT, timeout=2.0):
            if not await ctx.ui.click(SEND_CODE):
                return Failure("VERIFICATION_SEND_NOT_FOUND")

        try:
            code = await ctx.otp.wait_for_code(ctx.account.account_id, ctx.region, ctx.settings.otp_timeout)
        except ProviderError as e:
            return Failure("OTP_PROVIDER_ERROR", str(e))
        if not code:
            return Failure("OTP_NOT_RECEIVED", f"no code within {ctx.settings.otp_timeout:.0f}s")

        failure = await self._enter_code(ctx, code)
        if failure is not None:
            return failure
        if not await ctx.ui.click(VERIFY_CODE):
            return Failure("VERIFICATION_VERIFY_NOT_FOUND")
        failure = await self._check_error(ctx)
        if failure is None:
            ctx.milestones.add("phone_verified")
        return failure

    async def advance(self, ctx: StageContext) -> RunResult:
        """Wait for the modal to close; if it leaves the location form behind, submit that too."""
        timeout = ctx.settings.progress_timeout
        next_stage = await ctx.detector.wait_for_progress(ctx.page, self.stage, timeout)
        if next_stage is WizardStage.LOCATION:
            logger.info("Verification closed on the location form, moving on")
            if not await ctx.ui.click(NEXT_BUTTON):
                await ctx.ui.capture(f"{self.stage.value}_error")
                return self._soft(ctx, f"{self.name}_NEXT_NOT_FOUND", "location form left open")
            next_stage = await ctx.detector.wait_for_progress(ctx.page, WizardStage.LOCATION, timeout)
            if next_stage is WizardStage.VERIFICATION:
                await ctx.ui.capture(f"{self.stage.value}_error")
                return self._soft(ctx, "VERIFICATION_REPEATED", "verification asked again after a verified code")
        if next_stage is None:
            await ctx.ui.capture(f"{self.stage.value}_error")
            return self._soft(ctx, f"{self.name}_STEP_STUCK", f"still on {ctx.page.url}")

        await ctx.ui.capture(f"{self.stage.value}_after")
        logger.info("Stage %s done -> %s", self.stage.value, next_stage.value)
        return RunResult.success(
            self.stage, location=ctx.page.url, artifacts=ctx.ui.recorder.snapshot(), next_stage=next_stage,
        )

    async def _enter_code(self, ctx, code: str) -> Optional[Failure]:
        pins = ctx.page.locator(PIN_INPUTS)
        try:
            count = await pins.count()
            if count >= len(code):
                for i, digit in enumerate(code):
                    box = pins.nth(i)
                    await box.click()
                    await box.press_sequentially(digit)
                    await ctx.ui.delay(ctx.ui.settings.char_delay)
                return None
        except PlaywrightError as e:
            return Failure("OTP_ENTRY_FAILED", str(e))

        element = await ctx.ui.locate(SINGLE_CODE_INPUT, editable=True, timeout=5.0)
        if element is None:
            return Failure("OTP_INPUT_NOT_FOUND")
        if await ctx.ui.type_with_verification(element, code, strict=True) is FillOutcome.FAILED:
            return Failure("OTP_ENTRY_FAILED", code)
        return None

    async def _check_error(self, ctx) -> Optional[Failure]:
        error = await ctx.ui.locate((FORM_ERROR,), timeout=3.0, passes=1)
        if error is None:
            return None
        text = await _text_of(error)
        lowered = text.lower()
        if "expired" in lowered:
            return Failure("OTP_EXPIRED", text)
        if "invalid" in lowered or "incorrect" in lowered:
            return Failure("OTP_INVALID", text)
        if text:
            return Failure("VERIFICATION_ERROR", text)
        return None


class CompletionHandler(StageHandler):
    def __init__(self):
        super().__init__(StageSpec(WizardStage.COMPLETION, advance=None))

    async def handle(self, ctx: StageContext) -> RunResult:
        stage = await ctx.detector.resolve(ctx.page)
        if stage is not WizardStage.COMPLETION:
            return self._soft(ctx, "COMPLETION_PAGE_NOT_FOUND", f"page resolves to {stage.value}")
        await ctx.ui.capture("completion")
        logger.info("Profile wizard completed at %s", ctx.page.url)
        return RunResult.success(self.stage, location=ctx.page.url, artifacts=ctx.ui.recorder.snapshot())


# ---------------------------------------------------------------------------
# Stage table
# ---------------------------------------------------------------------------

def _employment(key: str) -> ValueFn:
    return lambda ctx: ctx.content.employment.get(key)


def _education(key: str) -> ValueFn:
    return lambda ctx: ctx.content.education.get(key)


def _address(key: str) -> ValueFn:
    return lambda ctx: ctx.address().get(key)


STAGE_SPECS: tuple[StageSpec, ...] = (
    StageSpec(
        WizardStage.WELCOME,
        advance=('button[data-qa="get-started-btn"]', with_text("button", "Get started")) + NEXT_BUTTON,
    ),
    StageSpec(WizardStage.EXPERIENCE, actions=(
        ChooseOption((
            'input[type="radio"][value="FREELANCED_BEFORE"]',
            '.air3-btn-box:has(input[value="FREELANCED_BEFORE"])',
            ".air3-btn-box",
            'input[type="radio"]',
        ), "EXPERIENCE_OPTION_NOT_FOUND"),
    )),
    StageSpec(WizardStage.GOAL, actions=(
        ChooseOption((
            'input[type="radio"][value="EXPLORING"]',
            '.air3-btn-box:has(input[value="EXPLORING"])',
            ".air3-btn-box",
            'input[type="radio"]',
        ), "GOAL_OPTION_NOT_FOUND"),
    )),
    StageSpec(WizardStage.WORK_PREFERENCE, actions=(
        ChooseOption((
            'input[type="checkbox"][aria-labelledby*="button-box"]',
            '.air3-btn-box:has(input[type="checkbox"])',
            'input[type="checkbox"]',
        ), "WORK_PREFERENCE_OPTION_NOT_FOUND"),
    )),
    StageSpec(
        WizardStage.RESUME_IMPORT,
        advance=('button[data-qa="resume-fill-manually-btn"]', with_text("button", "Fill out manually")),
    ),
    StageSpec(WizardStage.CATEGORIES, actions=(
        ClickControl((
            'a[data-ev-label="category_activate"]',
            ".air3-list-nav-link",
            ".air3-list-nav-item a",
        ), "CATEGORIES_CATEGORY_NOT_FOUND"),
        ChooseOption((
            'label[data-test="checkbox-label"]',
            ".air3-checkbox-label",
            '.specialties input[type="checkbox"]',
        ), "CATEGORIES_SPECIALTY_NOT_FOUND"),
    )),
    StageSpec(WizardStage.SKILLS, actions=(ClickTokens("SKILLS_NOT_SELECTED"),)),
    StageSpec(WizardStage.TITLE, actions=(
        FillText(('input[aria-labelledby="title-label"]', 'input[type="text"]'),
                 lambda ctx: ctx.job_title(), "TITLE_INPUT"),
    )),
    StageSpec(WizardStage.EMPLOYMENT, actions=(
        ModalEntry("employment", "work experience", (
            ModalField(('[data-qa="employment-dialog-body"] input[aria-labelledby="title-label"]',
                        'input[aria-labelledby="title-label"]'), _employment("title")),
            ModalField(('input[aria-labelledby="company-label"]',), _employment("company")),
            ModalField(('input[aria-labelledby="location-label"]',), _employment("location"),
                       mode="typeahead", required=False),
            ModalField(('textarea[aria-labelledby="description-label"]',), _employment("description"),
                       required=False),
        ), "EMPLOYMENT"),
    )),
    StageSpec(WizardStage.EDUCATION, actions=(
        ModalEntry("education", "education", (
            ModalField(('[data-qa="education-dialog-body"] input[aria-labelledby="school-label"]',
                        'input[aria-labelledby="school-label"]'), _education("school"), mode="typeahead"),
            ModalField(('input[aria-labelledby="degree-label"]',), _education("degree"), mode="typeahead"),
            ModalField(('input[aria-labelledby="area-of-study-label"]',), _education("field_of_study"),
                       mode="typeahead", required=False),
            ModalField(('[data-qa="year-from"]',), _education("year_from"), mode="list", required=False),
            ModalField(('[data-qa="year-to"]',), _education("year_to"), mode="list", required=False),
            ModalField(('textarea[aria-labelledby="description-label"]',), _education("description"),
                       required=False),
        ), "EDUCATION"),
    )),
    StageSpec(WizardStage.LANGUAGES, actions=(
        ChooseFromList((
            '[data-ev-label="dropdown_toggle"][data-test="dropdown-toggle"]',
            '[role="combobox"][aria-labelledby*="dropdown-label-english"]',
            '[data-test="dropdown-toggle"]',
        ), lambda ctx: ctx.content.language_proficiency, "LANGUAGES_PROFICIENCY_NOT_SET"),
    )),
    StageSpec(WizardStage.OVERVIEW, actions=(
        FillText(('textarea[aria-labelledby="overview-label"]', "textarea"),
                 lambda ctx: ctx.overview(), "OVERVIEW_INPUT"),
    )),
    StageSpec(WizardStage.RATE, actions=(
        FillText(('input[data-test="currency-input"]', 'input[aria-describedby*="hourly-rate"]'),
                 lambda ctx: ctx.hourly_rate(), "RATE_INPUT"),
    )),
    StageSpec(WizardStage.GENERAL),
    StageSpec(WizardStage.LOCATION, actions=(
        UploadPhoto(),
        BirthDate(('input[placeholder="mm/dd/yyyy"]', ".air3-datepicker input", 'input[aria-labelledby*="date-of-birth"]')),
        Typeahead(('input[placeholder="Enter street address"]', '[data-qa="input-address"] input'),
                  _address("street"), "LOCATION_STREET"),
        Typeahead(('input[placeholder="Enter city"]', '[data-qa="input-city"] input'),
                  _address("city"), "LOCATION_CITY", skip_if_filled=True),
        Typeahead(('[data-qa="address-state-input"]', 'input[placeholder*="state"]'),
                  _address("state"), "LOCATION_STATE", optional=True, skip_if_filled=True),
        FillText(('input[placeholder*="ZIP"]', '[data-qa="zip"]', '[data-qa="zip"] input'),
                 _address("post_code"), "LOCATION_POST_CODE", optional=True),
        PhoneField(('input[type="tel"]', '[data-qa="phone-number"] input')),
        DismissOverlays(),
    )),
    StageSpec(
        WizardStage.SUBMIT,
        advance=('button[data-qa="submit-profile-top-btn"]', 'button[data-qa="submit-profile-bottom-btn"]',
                 with_text("button", "Submit profile")),
    ),
)


def build_handlers() -> dict[WizardStage, StageHandler]:
    handlers: dict[WizardStage, StageHandler] = {spec.stage: StageHandler(spec) for spec in STAGE_SPECS}
    handlers[WizardStage.CREDENTIALS] = CredentialsHandler()
    handlers[WizardStage.VERIFICATION] = VerificationHandler()
    handlers[WizardStage.COMPLETION] = CompletionHandler()
    return handlers
