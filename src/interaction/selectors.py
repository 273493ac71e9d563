"""Typed selector strategies and the shared selector chains.

A selector chain is an ordered tuple of ``SelectorStrategy`` values.  The
resolver in ``primitives.locate`` evaluates them in order, so the most
specific (and most stable) selector goes first and broad fallbacks last.
Plain strings are accepted anywhere a strategy is and are treated as CSS.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Union


class StrategyKind(Enum):
    CSS = "css"
    TEXT = "text"          # element matching a CSS scope and containing text
    ROLE = "role"          # ARIA role plus accessible name
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class SelectorStrategy:
    kind: StrategyKind
    value: str
    text: str | None = None

    def resolve(self, page):
        """Return a Playwright ``Locator`` for this strategy on *page*."""
        if self.kind is StrategyKind.CSS:
            return page.locator(self.value)
        if self.kind is StrategyKind.TEXT:
            return page.locator(self.value, has_text=self.text)
        if self.kind is StrategyKind.ROLE:
            return page.get_by_role(self.value, name=self.text)
        return page.get_by_placeholder(self.value)

    def describe(self) -> str:
        if self.text is not None:
            return f"{self.kind.value}:{self.value}[{self.text}]"
        return f"{self.kind.value}:{self.value}"


SelectorLike = Union[str, SelectorStrategy]


def css(selector: str) -> SelectorStrategy:
    return SelectorStrategy(StrategyKind.CSS, selector)


def with_text(scope: str, text: str) -> SelectorStrategy:
    return SelectorStrategy(StrategyKind.TEXT, scope, text)


def role(name: str, accessible_name: str) -> SelectorStrategy:
    return SelectorStrategy(StrategyKind.ROLE, name, accessible_name)


def placeholder(text: str) -> SelectorStrategy:
    return SelectorStrategy(StrategyKind.PLACEHOLDER, text)


def as_strategies(candidates: Iterable[SelectorLike]) -> tuple[SelectorStrategy, ...]:
    return tuple(c if isinstance(c, SelectorStrategy) else css(c) for c in candidates)


# ---------------------------------------------------------------------------
# Shared chains
# ---------------------------------------------------------------------------

NEXT_BUTTON: tuple[SelectorLike, ...] = (
    'button[data-qa="next-btn"]',
    'button[data-ev-label="next_btn"]',
    'button[data-test="next-button"]',
    'button[data-ev-label="wizard_next"]',
    with_text("button", "Next"),
    with_text('[role="button"]', "Next"),
    with_text("button", "Continue"),
    with_text("button", "Skip"),
    '[role="button"][aria-label*="Next"]',
    '[role="button"][aria-label*="Skip"]',
    '[data-test="next-button"]',
)

EDIT_BUTTON: tuple[SelectorLike, ...] = (
    'button[data-qa="edit-item"]',
    'button[data-ev-label="edit_item"]',
    'button[aria-label="Edit"]',
)

SAVE_BUTTON: tuple[SelectorLike, ...] = (
    'button[data-qa="btn-save"]',
    'button[data-ev-label="btn_save"]',
    '.air3-modal-footer button.air3-btn-primary',
    with_text("button", "Save"),
)

MODAL: tuple[SelectorLike, ...] = (
    '[role="dialog"]',
    ".air3-modal-content",
)

MODAL_TITLE = "h2.air3-modal-title"

MODAL_CLOSE: tuple[SelectorLike, ...] = (
    'button[aria-label="Close"]',
    'button[data-qa="close"]',
    ".air3-modal-close",
)

LISTBOX = '[role="listbox"], .air3-menu-list, .air3-typeahead-menu-list-container'


def add_button(section: str) -> tuple[SelectorLike, ...]:
    """Add-entry controls for a carousel section such as ``employment``."""
    return (
        f'button[data-qa="{section}-add-btn"]',
        f'button[data-ev-label="{section}_add_btn"]',
        f'button[aria-labelledby="add-{section}-label"]',
        'a[data-ev-label="add_more_link"] button',
        ".carousel-list-add-new button",
        with_text("button", f"Add {section}"),
    )
