"""Provider response models and phone number helpers."""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

OTP_PATTERN = re.compile(r"\b\d{4,6}\b")

# Dial prefixes for the regions numbers are bought in.
DIAL_PREFIXES: dict[str, str] = {
    "US": "+1",
    "GB": "+44",
    "UK": "+44",
    "UA": "+380",
    "ID": "+62",
}


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


def extract_code(message: str | None) -> Optional[str]:
    """First 4-6 digit group in an SMS body."""
    if not message:
        return None
    match = OTP_PATTERN.search(message)
    return match.group(0) if match else None


def digits(phone: str | None) -> str:
    return re.sub(r"\D", "", phone or "")


def with_country_code(phone: str, region: str) -> str:
    """E.164-style ``+<cc><number>``; numbers already carrying the code are kept."""
    number = digits(phone)
    prefix = DIAL_PREFIXES.get(region.upper())
    if prefix is None:
        return f"+{number}"
    cc = prefix[1:]
    if number.startswith(cc):
        return f"+{number}"
    return f"{prefix}{number}"


def national_number(phone: str, region: str) -> str:
    """Digits without the region's country code (what the site's phone input expects)."""
    number = digits(phone)
    prefix = DIAL_PREFIXES.get(region.upper())
    if prefix and number.startswith(prefix[1:]):
        return number[len(prefix) - 1:]
    return number


def same_phone(a: str | None, b: str | None, region: str) -> bool:
    """Compare two numbers by digits, tolerating a missing country code on either side."""
    if not digits(a) or not digits(b):
        return False
    return digits(with_country_code(a, region)) == digits(with_country_code(b, region))


class VerificationOrder(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderid", "order_code", "request_id"))
    phone_number: str = Field(
        default="", validation_alias=AliasChoices("phone_number", "phonenumber", "number"),
    )
    code: str = ""
    sms: str = Field(default="", validation_alias=AliasChoices("sms", "full_code"))
    status: OrderStatus = OrderStatus.PENDING
    expiry: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("expiry", "expiration"))

    @field_validator("order_id", "phone_number", "code", "sms", mode="before")
    @classmethod
    def _stringify(cls, value):
        return "" if value is None else str(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value):
        # Providers report 3 / "completed" once the SMS has arrived.
        if str(value).strip().lower() in ("3", "completed", "complete", "received"):
            return OrderStatus.COMPLETED
        return OrderStatus.PENDING

    @model_validator(mode="after")
    def _code_from_sms(self):
        if not self.code:
            self.code = extract_code(self.sms) or ""
        else:
            self.code = extract_code(self.code) or self.code
        if self.code:
            self.status = OrderStatus.COMPLETED
        return self

    @property
    def has_code(self) -> bool:
        return bool(self.code)

    def is_stale(self, now: datetime | None = None) -> bool:
        if self.expiry is None:
            return False
        now = now or datetime.now(self.expiry.tzinfo)
        return self.expiry <= now


class PurchasedNumber(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderid"))
    phone_number: str = Field(validation_alias=AliasChoices("phone_number", "phonenumber", "number"))

    @field_validator("order_id", "phone_number", mode="before")
    @classmethod
    def _stringify(cls, value):
        return "" if value is None else str(value)
