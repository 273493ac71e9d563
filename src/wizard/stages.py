"""Wizard stage identities and the run outcome type."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class WizardStage(Enum):
    CREDENTIALS = "credentials"
    WELCOME = "welcome"
    EXPERIENCE = "experience"
    GOAL = "goal"
    WORK_PREFERENCE = "work_preference"
    RESUME_IMPORT = "resume_import"
    CATEGORIES = "categories"
    SKILLS = "skills"
    TITLE = "title"
    EMPLOYMENT = "employment"
    EDUCATION = "education"
    LANGUAGES = "languages"
    OVERVIEW = "overview"
    RATE = "rate"
    GENERAL = "general"
    LOCATION = "location"
    VERIFICATION = "verification"
    SUBMIT = "submit"
    COMPLETION = "completion"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> "WizardStage":
        """Accept ``work-preference``, ``WORK_PREFERENCE`` or ``work_preference``."""
        key = value.strip().lower().replace("-", "_")
        for stage in cls:
            if stage.value == key:
                return stage
        raise ValueError(f"Unknown wizard stage: {value!r}")


WIZARD_PREFIX = "/nx/create-profile"

# Path segment under WIZARD_PREFIX for each stage reachable by URL.
STAGE_PATHS: dict[WizardStage, str] = {
    WizardStage.WELCOME: "welcome",
    WizardStage.EXPERIENCE: "experience",
    WizardStage.GOAL: "goal",
    WizardStage.WORK_PREFERENCE: "work-preference",
    WizardStage.RESUME_IMPORT: "resume-import",
    WizardStage.CATEGORIES: "categories",
    WizardStage.SKILLS: "skills",
    WizardStage.TITLE: "title",
    WizardStage.EMPLOYMENT: "employment",
    WizardStage.EDUCATION: "education",
    WizardStage.LANGUAGES: "languages",
    WizardStage.OVERVIEW: "overview",
    WizardStage.RATE: "rate",
    WizardStage.GENERAL: "general",
    WizardStage.LOCATION: "location",
    WizardStage.SUBMIT: "submit",
    WizardStage.COMPLETION: "finish",
}

LOGIN_PATH = "/ab/account-security/login"

DEFAULT_SEQUENCE: tuple[WizardStage, ...] = (
    WizardStage.CREDENTIALS,
    WizardStage.WELCOME,
    WizardStage.EXPERIENCE,
    WizardStage.GOAL,
    WizardStage.WORK_PREFERENCE,
    WizardStage.RESUME_IMPORT,
    WizardStage.CATEGORIES,
    WizardStage.SKILLS,
    WizardStage.TITLE,
    WizardStage.EMPLOYMENT,
    WizardStage.EDUCATION,
    WizardStage.LANGUAGES,
    WizardStage.OVERVIEW,
    WizardStage.RATE,
    WizardStage.GENERAL,
    WizardStage.LOCATION,
    WizardStage.VERIFICATION,
    WizardStage.SUBMIT,
    WizardStage.COMPLETION,
)


def next_in_sequence(stage: WizardStage) -> WizardStage:
    """Stage that follows *stage* in the default order (COMPLETION is last)."""
    try:
        idx = DEFAULT_SEQUENCE.index(stage)
    except ValueError:
        return DEFAULT_SEQUENCE[0]
    return DEFAULT_SEQUENCE[min(idx + 1, len(DEFAULT_SEQUENCE) - 1)]


class RunStatus(Enum):
    SUCCESS = "success"
    SOFT_FAIL = "soft_fail"
    HARD_FAIL = "hard_fail"


@dataclass(frozen=True)
class RunResult:
    status: RunStatus
    stage: WizardStage
    error_kind: Optional[str] = None
    evidence: Optional[str] = None
    captured_artifacts: dict[str, str] = field(default_factory=dict)
    location: str = ""
    next_stage: Optional[WizardStage] = None

    @classmethod
    def success(cls, stage, *, location="", artifacts=None, next_stage=None, evidence=None) -> "RunResult":
        return cls(RunStatus.SUCCESS, stage, None, evidence, dict(artifacts or {}), location, next_stage)

    @classmethod
    def soft_fail(cls, stage, error_kind, evidence=None, *, location="", artifacts=None) -> "RunResult":
        return cls(RunStatus.SOFT_FAIL, stage, error_kind, evidence, dict(artifacts or {}), location)

    @classmethod
    def hard_fail(cls, stage, error_kind, evidence=None, *, location="", artifacts=None) -> "RunResult":
        return cls(RunStatus.HARD_FAIL, stage, error_kind, evidence, dict(artifacts or {}), location)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.status is RunStatus.SOFT_FAIL

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "stage": self.stage.value,
            "error_kind": self.error_kind,
            "evidence": self.evidence,
            "captured_artifacts": dict(self.captured_artifacts),
            "location": self.location,
        }
