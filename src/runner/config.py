"""Load config/automation.yaml, config/profile.yaml and .env into one object."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv

from src.crawler.engine import CrawlSettings
from src.errors import ConfigError
from src.interaction.primitives import InteractionSettings
from src.otp.provider import PROVIDERS
from src.wizard.context import ProfileContent, WizardSettings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
CONFIG_DIR = PROJECT_ROOT / "config"


@dataclass(frozen=True)
class SiteConfig:
    base_url: str = "https://www.upwork.com"
    login_path: str = "/ab/account-security/login"
    wizard_path: str = "/nx/create-profile"
    feed_path: str = "/nx/find-work/most-recent"

    @property
    def login_url(self) -> str:
        return self.base_url.rstrip("/") + self.login_path

    @property
    def wizard_url(self) -> str:
        return self.base_url.rstrip("/") + self.wizard_path

    @property
    def feed_url(self) -> str:
        return self.base_url.rstrip("/") + self.feed_path


@dataclass(frozen=True)
class BrowserConfig:
    headless: bool = True
    viewport: tuple[int, int] = (1280, 800)
    navigation_timeout: float = 30.0
    artifacts_dir: Path = PROJECT_ROOT / "screenshots"
    capture_artifacts: bool = True


@dataclass(frozen=True)
class ProxyConfig:
    host: str = ""
    username: str = ""
    password: str = ""
    port_range: tuple[int, int] = (10001, 10100)


@dataclass(frozen=True)
class OtpConfig:
    provider: str = "sms_man"
    api_key: str = ""
    poll_interval: float = 5.0
    manual_timeout: float = 300.0


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 5
    max_rounds: int = 10
    delay_between_accounts: tuple[float, float] = (5.0, 10.0)


@dataclass(frozen=True)
class AppConfig:
    site: SiteConfig = field(default_factory=SiteConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    interaction: InteractionSettings = field(default_factory=InteractionSettings)
    wizard: WizardSettings = field(default_factory=WizardSettings)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    otp: OtpConfig = field(default_factory=OtpConfig)
    crawl: CrawlSettings = field(default_factory=CrawlSettings)
    crawl_out: Path = PROJECT_ROOT / "out" / "jobs.jsonl"
    retry: RetryConfig = field(default_factory=RetryConfig)
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'data' / 'accounts.db'}"
    profile: ProfileContent = field(default_factory=ProfileContent)


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def _resolve(path_value: str, root: Path) -> Path:
    path = Path(path_value)
    return path if path.is_absolute() else root / path


def _sqlite_url(url: str, root: Path) -> str:
    """Anchor relative sqlite paths at the project root."""
    prefix = "sqlite:///"
    if url.startswith(prefix) and not url.startswith(prefix + "/") and url != "sqlite://":
        relative = url[len(prefix):]
        if relative and relative != ":memory:":
            return prefix + str(root / relative)
    return url


def load_config(config_dir: str | Path | None = None, env_file: str | Path | None = None) -> AppConfig:
    """Build an ``AppConfig``; environment variables override the YAML.

    Raises:
        ConfigError: a config file is missing or malformed.
    """
    config_dir = Path(config_dir) if config_dir else CONFIG_DIR
    root = config_dir.parent
    load_dotenv(Path(env_file) if env_file else root / ".env")

    raw = _read_yaml(config_dir / "automation.yaml")
    profile = _read_yaml(config_dir / "profile.yaml")

    site_raw = raw.get("site") or {}
    site = SiteConfig(**{k: v for k, v in site_raw.items() if k in SiteConfig.__dataclass_fields__})

    browser_raw = raw.get("browser") or {}
    viewport = browser_raw.get("viewport") or {}
    browser = BrowserConfig(
        headless=bool(browser_raw.get("headless", True)),
        viewport=(int(viewport.get("width", 1280)), int(viewport.get("height", 800))),
        navigation_timeout=float(browser_raw.get("navigation_timeout", 30.0)),
        artifacts_dir=_resolve(browser_raw.get("artifacts_dir", "screenshots"), root),
        capture_artifacts=bool(browser_raw.get("capture_artifacts", True)),
    )

    wizard_raw = raw.get("wizard") or {}
    photo = wizard_raw.get("profile_photo")
    wizard = WizardSettings(
        login_url=site.login_url,
        wizard_url=site.wizard_url,
        navigation_timeout=browser.navigation_timeout,
        progress_timeout=float(wizard_raw.get("progress_timeout", 20.0)),
        max_transitions=int(wizard_raw.get("max_transitions", 40)),
        otp_timeout=float(wizard_raw.get("otp_timeout", 180.0)),
        profile_photo=str(_resolve(photo, root)) if photo else None,
    )

    proxy_raw = raw.get("proxy") or {}
    port_range = proxy_raw.get("port_range") or (10001, 10100)
    proxy = ProxyConfig(
        host=os.getenv("PROXY_HOST") or proxy_raw.get("host", ""),
        username=os.getenv("PROXY_USERNAME", ""),
        password=os.getenv("PROXY_PASSWORD", ""),
        port_range=(int(port_range[0]), int(port_range[1])),
    )

    otp_raw = raw.get("otp") or {}
    provider = (os.getenv("OTP_PROVIDER") or otp_raw.get("provider", "sms_man")).lower()
    if provider != "manual" and provider not in PROVIDERS:
        raise ConfigError(f"Unknown OTP provider {provider!r}; expected one of {sorted(PROVIDERS)} or 'manual'")
    api_key = os.getenv(PROVIDERS[provider].api_key_env, "") if provider in PROVIDERS else ""
    otp = OtpConfig(
        provider=provider,
        api_key=api_key,
        poll_interval=float(otp_raw.get("poll_interval", 5.0)),
        manual_timeout=float(otp_raw.get("manual_timeout", 300.0)),
    )

    crawl_raw = raw.get("crawl") or {}
    retry_raw = raw.get("retry") or {}
    delay = retry_raw.get("delay_between_accounts") or (5.0, 10.0)
    retry = RetryConfig(
        max_attempts=int(retry_raw.get("max_attempts", 5)),
        max_rounds=int(retry_raw.get("max_rounds", 10)),
        delay_between_accounts=(float(delay[0]), float(delay[1])),
    )

    database_url = os.getenv("DATABASE_URL") or (raw.get("database") or {}).get("url") \
        or AppConfig.database_url

    config = AppConfig(
        site=site,
        browser=browser,
        interaction=InteractionSettings.from_dict(raw.get("interaction")),
        wizard=wizard,
        proxy=proxy,
        otp=otp,
        crawl=CrawlSettings.from_dict(crawl_raw),
        crawl_out=_resolve(crawl_raw.get("out", "out/jobs.jsonl"), root),
        retry=retry,
        database_url=_sqlite_url(database_url, root),
        profile=ProfileContent.from_dict(profile),
    )
    logger.debug(
        "Loaded config from %s (otp=%s, proxy=%s)", config_dir, otp.provider, proxy.host or "none",
    )
    return config
