"""Profile wizard automation: stage detection, handlers and the controller."""

from __future__ import annotations

from src.wizard.context import AccountProfile, ProfileContent, StageContext, WizardSettings
from src.wizard.controller import AutomationController
from src.wizard.stage_detector import StageDetector, detect_stage
from src.wizard.stage_handlers import StageHandler, StageSpec, build_handlers
from src.wizard.stages import DEFAULT_SEQUENCE, RunResult, RunStatus, WizardStage

__all__ = [
    "AccountProfile",
    "AutomationController",
    "DEFAULT_SEQUENCE",
    "ProfileContent",
    "RunResult",
    "RunStatus",
    "StageContext",
    "StageDetector",
    "StageHandler",
    "StageSpec",
    "WizardSettings",
    "WizardStage",
    "build_handlers",
    "detect_stage",
]
