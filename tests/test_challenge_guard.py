"""Challenge and login-error detection from HTML."""

import pytest

from src.wizard.challenge_guard import (
    CAPTCHA_DETECTED,
    CHALLENGE_KINDS,
    MFA_REQUIRED,
    SUSPICIOUS_ACTIVITY,
    VERIFICATION_FAILED,
    find_challenge,
    find_login_error,
)


@pytest.mark.parametrize("html, kind", [
    ('<div role="alert">We cannot verify your request due to network restrictions.</div>', CAPTCHA_DETECTED),
    ("<p>Traffic blocking at your location is in effect</p>", CAPTCHA_DETECTED),
    ('<div class="air3-alert-content">Verification failed. Try again.</div>', VERIFICATION_FAILED),
    ('<iframe title="reCAPTCHA" src="https://www.google.com/recaptcha/api2"></iframe>', CAPTCHA_DETECTED),
    ('<div class="cf-turnstile"></div>', CAPTCHA_DETECTED),
    ("<h1>We noticed unusual activity on your account</h1>", SUSPICIOUS_ACTIVITY),
    ('<input autocomplete="one-time-code">', MFA_REQUIRED),
])
def test_challenge_kinds(html, kind):
    challenge = find_challenge(f"<html><body>{html}</body></html>")

    assert challenge is not None
    assert challenge.kind == kind
    assert challenge.kind in CHALLENGE_KINDS
    assert challenge.evidence


def test_network_block_beats_later_signals():
    html = ('<div role="alert">We cannot verify your request due to network restrictions</div>'
            '<input name="otp_code">')
    assert find_challenge(html).kind == CAPTCHA_DETECTED


def test_clean_page_has_no_challenge():
    assert find_challenge("<html><body><h1>Add your title</h1><input name='title'></body></html>") is None
    assert find_challenge("") is None


def test_login_error_text():
    html = '<div class="air3-form-message-error">Oops! Password is incorrect.</div>'
    assert find_login_error(html) == "Oops! Password is incorrect."
    assert find_login_error('<div role="alert">Please wait</div>') is None
