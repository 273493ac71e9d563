"""Everything a stage handler needs for one run, passed explicitly."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from src.interaction.primitives import Interactor
from src.otp.service import OtpSource
from src.wizard.stage_detector import StageDetector


@dataclass(frozen=True)
class AccountProfile:
    """Read-only snapshot of the account a run acts for."""
    account_id: int
    first_name: str
    last_name: str
    email: str
    password: str
    country_code: str = "US"
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    post_code: Optional[str] = None
    birth_date: Optional[date] = None
    phone: Optional[str] = None

    @classmethod
    def from_record(cls, account) -> "AccountProfile":
        return cls(
            account_id=account.id,
            first_name=account.first_name,
            last_name=account.last_name,
            email=account.email,
            password=account.password,
            country_code=(account.country_code or "US").upper(),
            street=account.location_street,
            city=account.location_city,
            state=account.location_state,
            post_code=account.location_post_code,
            birth_date=account.birth_date,
            phone=account.phone,
        )


@dataclass(frozen=True)
class ProfileContent:
    """Profile text entered into the wizard (config/profile.yaml)."""
    job_titles: tuple[str, ...] = ("Software Developer",)
    skills: tuple[str, ...] = ()
    employment: dict = field(default_factory=dict)
    education: dict = field(default_factory=dict)
    overviews: tuple[str, ...] = ()
    hourly_rate: tuple[int, int] = (10, 20)
    language_proficiency: str = "Fluent"
    defaults: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict | None) -> "ProfileContent":
        data = data or {}
        rate = data.get("hourly_rate") or (10, 20)
        return cls(
            job_titles=tuple(data.get("job_titles") or cls.job_titles),
            skills=tuple(data.get("skills") or ()),
            employment=dict(data.get("employment") or {}),
            education=dict(data.get("education") or {}),
            overviews=tuple(data.get("overviews") or ()),
            hourly_rate=(int(rate[0]), int(rate[1])),
            language_proficiency=data.get("language_proficiency", "Fluent"),
            defaults=dict(data.get("defaults") or {}),
        )


@dataclass(frozen=True)
class WizardSettings:
    login_url: str = "https://www.upwork.com/ab/account-security/login"
    wizard_url: str = "https://www.upwork.com/nx/create-profile"
    navigation_timeout: float = 30.0
    progress_timeout: float = 20.0
    max_transitions: int = 40
    otp_timeout: float = 180.0
    profile_photo: Optional[str] = None


@dataclass
class StageContext:
    page: Any
    ui: Interactor
    detector: StageDetector
    account: AccountProfile
    content: ProfileContent
    settings: WizardSettings = field(default_factory=WizardSettings)
    otp: Optional[OtpSource] = None
    rng: random.Random = field(default_factory=random.Random)
    # Choices made once per run (title, overview, rate) so retries of a stage agree.
    values: dict[str, str] = field(default_factory=dict)
    # Things done in this run that the controller records (phone_verified, avatar_uploaded).
    milestones: set[str] = field(default_factory=set)

    @property
    def region(self) -> str:
        return self.account.country_code

    def choose(self, key: str, options) -> str:
        if key not in self.values:
            options = list(options)
            self.values[key] = self.rng.choice(options) if options else ""
        return self.values[key]

    def job_title(self) -> str:
        return self.choose("title", self.content.job_titles)

    def overview(self) -> str:
        return self.choose("overview", self.content.overviews)

    def hourly_rate(self) -> str:
        if "rate" not in self.values:
            low, high = self.content.hourly_rate
            self.values["rate"] = str(self.rng.randint(low, high))
        return self.values["rate"]

    def address(self) -> dict[str, str]:
        defaults = self.content.defaults
        return {
            "street": self.account.street or defaults.get("street", ""),
            "city": self.account.city or defaults.get("city", ""),
            "state": self.account.state or defaults.get("state", ""),
            "post_code": self.account.post_code or defaults.get("post_code", ""),
        }

    def birth_date(self) -> Optional[date]:
        if self.account.birth_date:
            return self.account.birth_date
        raw = self.content.defaults.get("birth_date")
        if isinstance(raw, date):
            return raw
        return date.fromisoformat(str(raw)) if raw else None
