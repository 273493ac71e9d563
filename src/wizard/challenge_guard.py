"""Detect bot challenges and login errors from page HTML.

Challenges are never solved.  A hit ends the run as a soft failure with a
kind the controller uses to flag the account and rotate its proxy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

CAPTCHA_DETECTED = "CAPTCHA_DETECTED"
VERIFICATION_FAILED = "VERIFICATION_FAILED"
SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
MFA_REQUIRED = "MFA_REQUIRED"
BAD_CREDENTIALS = "BAD_CREDENTIALS"

CHALLENGE_KINDS = frozenset({CAPTCHA_DETECTED, VERIFICATION_FAILED, SUSPICIOUS_ACTIVITY, MFA_REQUIRED})

_NETWORK_BLOCK_PHRASES = (
    "we cannot verify your request due to network restrictions",
    "traffic blocking at your location",
)

_SUSPICIOUS_PHRASES = (
    "suspicious activity",
    "unusual activity",
    "verify you are human",
    "are you a robot",
)

_BAD_CREDENTIAL_PHRASES = (
    "password is incorrect",
    "incorrect password",
    "username is incorrect",
    "username or password is incorrect",
    "we don't recognize that email",
)

_CAPTCHA_FRAME_MARKERS = ("captcha", "challenges.cloudflare.com", "arkoselabs", "funcaptcha", "turnstile")

_OTP_INPUTS = (
    'input[autocomplete="one-time-code"]',
    "input#deviceAuthOtp_otp",
    'input[name*="otp"]',
)


@dataclass(frozen=True)
class Challenge:
    kind: str
    evidence: str


def _text(node) -> str:
    return " ".join(node.get_text(" ").split())


def find_challenge(html: str) -> Optional[Challenge]:
    """Return the first challenge signal present in *html*, if any."""
    soup = BeautifulSoup(html or "", "html.parser")
    body = _text(soup).lower()

    for node in soup.select(".air3-form-message-error, [role='alert']"):
        text = _text(node)
        if any(p in text.lower() for p in _NETWORK_BLOCK_PHRASES):
            return Challenge(CAPTCHA_DETECTED, text)
    for phrase in _NETWORK_BLOCK_PHRASES:
        if phrase in body:
            return Challenge(CAPTCHA_DETECTED, phrase)

    for node in soup.select(".air3-alert-content"):
        text = _text(node)
        if "verification failed" in text.lower():
            return Challenge(VERIFICATION_FAILED, text)

    for frame in soup.find_all("iframe"):
        src = " ".join(filter(None, [frame.get("src"), frame.get("title"), frame.get("id")])).lower()
        if any(m in src for m in _CAPTCHA_FRAME_MARKERS):
            return Challenge(CAPTCHA_DETECTED, f"captcha frame: {src[:120]}")
    if soup.select_one(".g-recaptcha, .h-captcha, #px-captcha, .cf-turnstile"):
        return Challenge(CAPTCHA_DETECTED, "captcha widget")

    for phrase in _SUSPICIOUS_PHRASES:
        if phrase in body:
            return Challenge(SUSPICIOUS_ACTIVITY, phrase)

    for selector in _OTP_INPUTS:
        if soup.select_one(selector) is not None:
            return Challenge(MFA_REQUIRED, f"one-time code input: {selector}")
    return None


def find_login_error(html: str) -> Optional[str]:
    """Text of a bad-credentials message, if the login form shows one."""
    soup = BeautifulSoup(html or "", "html.parser")
    for node in soup.select(".air3-form-message-error, [role='alert'], .alert-danger"):
        text = _text(node)
        if any(p in text.lower() for p in _BAD_CREDENTIAL_PHRASES):
            return text
    return None
