"""Resilient element lookup, typing and selection on top of Playwright."""

from __future__ import annotations

from src.interaction.primitives import (
    ArtifactRecorder,
    FillOutcome,
    InteractionSettings,
    Interactor,
    SelectOutcome,
)
from src.interaction.selectors import SelectorStrategy, StrategyKind, css, placeholder, role, with_text

__all__ = [
    "ArtifactRecorder",
    "FillOutcome",
    "InteractionSettings",
    "Interactor",
    "SelectOutcome",
    "SelectorStrategy",
    "StrategyKind",
    "css",
    "placeholder",
    "role",
    "with_text",
]
