"""SMS verification: provider client, number reconciliation and code polling."""

from __future__ import annotations

from src.otp.models import OrderStatus, VerificationOrder, extract_code, national_number, same_phone
from src.otp.provider import PROVIDERS, SMS_MAN, SMSPOOL, ProviderProfile, SmsProviderClient
from src.otp.service import ManualOtpSource, OtpService, OtpSource

__all__ = [
    "ManualOtpSource",
    "OrderStatus",
    "OtpService",
    "OtpSource",
    "PROVIDERS",
    "ProviderProfile",
    "SMSPOOL",
    "SMS_MAN",
    "SmsProviderClient",
    "VerificationOrder",
    "extract_code",
    "national_number",
    "same_phone",
]
