"""Interaction primitives against the fake page (no browser)."""

import pytest

from src.interaction.primitives import ArtifactRecorder, FillOutcome, Interactor, SelectOutcome
from src.interaction.selectors import as_strategies, css, role, with_text
from tests.conftest import FAST_SETTINGS, FakeElement


async def test_locate_walks_chain_until_visible_enabled(page, ui):
    page.add("#hidden", visible=False)
    page.add("#disabled", enabled=False)
    target = page.add("#ok", text="Next")

    element = await ui.locate(["#missing", "#hidden", "#disabled", "#ok"])

    assert element is not None
    assert await element.inner_text() == "Next"
    await element.click()
    assert target.clicks == 1


async def test_locate_skips_read_only_when_editable_requested(page, ui):
    page.add("input", value="locked", editable=False)
    page.add("input", value="")

    element = await ui.locate(["input"], editable=True)

    assert element is not None
    assert await element.input_value() == ""


async def test_locate_returns_none_instead_of_raising(ui):
    assert await ui.locate(["#nope", with_text("button", "Nope")], timeout=0.5) is None
    assert await ui.exists(["#nope"]) is False


async def test_text_and_role_strategies_resolve(page, ui):
    page.add("button", text="Cancel")
    page.add("button", text="Save changes")
    page.add("role=button", text="Close dialog")

    save = await ui.locate([with_text("button", "Save")])
    close = await ui.locate([role("button", "Close")])

    assert await save.inner_text() == "Save changes"
    assert await close.inner_text() == "Close dialog"


def test_plain_strings_become_css_strategies():
    strategies = as_strategies(["#a", with_text("button", "Go")])
    assert strategies[0] == css("#a")
    assert strategies[1].text == "Go"


async def test_type_with_verification_replaces_existing_value(page, ui):
    field = page.add("#email", value="old@example.com")
    element = await ui.locate(["#email"], editable=True)

    outcome = await ui.type_with_verification(element, "jane@example.com")

    assert outcome is FillOutcome.VERIFIED
    assert field.value == "jane@example.com"


async def test_lenient_fill_accepts_non_empty_mismatch(page, ui):
    page.add("#rate", readback=lambda v: v + ".00")
    element = await ui.locate(["#rate"])

    assert await ui.type_with_verification(element, "15") is FillOutcome.ACCEPTED
    assert FillOutcome.ACCEPTED.ok


async def test_strict_fill_rejects_mismatch(page, ui):
    page.add("#username", readback=lambda v: v.upper())
    element = await ui.locate(["#username"])

    outcome = await ui.type_with_verification(element, "jane@example.com", strict=True)

    assert outcome is FillOutcome.FAILED


async def test_empty_readback_fails_even_when_lenient(page, ui):
    page.add("#title", readback=lambda v: "")
    element = await ui.locate(["#title"])

    assert await ui.type_with_verification(element, "Engineer") is FillOutcome.FAILED


async def test_fill_reads_contenteditable_text(page, ui):
    page.add("#bio", form_field=False)

    assert await ui.fill(["#bio"], "Hello") is FillOutcome.VERIFIED


async def test_dropdown_selects_first_option(page, ui):
    listbox = page.add('[role="listbox"]', visible=False)
    field = page.add("#city", on_input=lambda el: setattr(listbox, "visible", bool(el.value)))

    outcome = await ui.select_from_dropdown(await ui.locate(["#city"]), "Springfield")

    assert outcome is SelectOutcome.SELECTED
    assert field.presses[-2:] == ["ArrowDown", "Enter"]


async def test_dropdown_nudges_when_list_is_slow(page, ui):
    listbox = page.add(".air3-menu-list", visible=False)
    page.add("#street", on_input=lambda el: setattr(listbox, "visible", el.value.endswith(" ")))

    outcome = await ui.select_from_dropdown(await ui.locate(["#street"]), "1 Main St")

    assert outcome is SelectOutcome.SELECTED


async def test_dropdown_falls_back_to_free_text(page, ui):
    field = page.add("#state")

    outcome = await ui.select_from_dropdown(await ui.locate(["#state"]), "Ohio")

    assert outcome is SelectOutcome.FREE_TEXT
    assert field.value == "Ohio"
    assert "Enter" not in field.presses


async def test_dropdown_without_free_text_fails(page, ui):
    page.add("#school")

    outcome = await ui.select_from_dropdown(await ui.locate(["#school"]), "MIT", allow_free_text=False)

    assert outcome is SelectOutcome.FAILED


async def test_choose_option_opens_toggle_and_clicks_label(page, ui):
    options = []

    def open_menu(_):
        options.append(page.add('[role="option"]', text="Conversational"))
        options.append(page.add('[role="option"]', text="Fluent"))

    page.add("#proficiency", on_click=open_menu)

    assert await ui.choose_option(["#proficiency"], "Fluent")
    assert [o.clicks for o in options] == [0, 1]


async def test_dismiss_overlays_never_raises(page, ui):
    class BrokenMouse:
        async def click(self, x, y):
            raise RuntimeError("detached")

    page.mouse = BrokenMouse()

    assert await ui.dismiss_overlays() is False
    assert page.keyboard.pressed == ["Escape"]


async def test_dismiss_overlays_uses_close_control(page, ui):
    close = page.add('button[aria-label="Close"]')

    assert await ui.dismiss_overlays() is True
    assert close.clicks == 1
    assert page.mouse.clicks == [(5, 5)]


async def test_capture_records_artifact(page, ui, tmp_path):
    path = await ui.capture("title_before")

    assert path is not None
    assert ui.recorder.snapshot() == {"title_before": path}
    assert path.startswith(str(tmp_path / "shots"))


async def test_capture_failure_is_swallowed(page, ui):
    async def broken(**kwargs):
        raise OSError("disk full")

    page.screenshot = broken

    assert await ui.capture("rate_after") is None
    assert ui.recorder.snapshot() == {}


@pytest.mark.parametrize("passes", [1, 3])
async def test_locate_sleeps_between_passes_only(page, passes):
    sleeps = []

    async def record(seconds):
        sleeps.append(seconds)

    interactor = Interactor(page, FAST_SETTINGS, ArtifactRecorder(None), sleep=record)

    assert await interactor.locate(["#never"], timeout=0.3, passes=passes) is None
    assert len(sleeps) == passes - 1


def test_fake_element_defaults():
    element = FakeElement()
    assert element.visible and element.enabled and element.editable
