"""Exception types shared across the automation packages.

Stage operations report expected failures through ``RunResult``; these
exceptions cover configuration problems, provider/protocol failures and
store lookups that callers are expected to handle explicitly.
"""

from __future__ import annotations


class AutomationError(Exception):
    """Base class for errors raised by this project."""


class ConfigError(AutomationError):
    """Configuration file missing or malformed."""


class AccountNotFound(AutomationError):
    def __init__(self, account_id: int):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class ProxyPoolExhausted(AutomationError):
    """Every port in the configured proxy range is held by another account."""


class ProviderError(AutomationError):
    """The SMS verification provider returned an HTTP or protocol error."""


class InsufficientBalanceError(ProviderError):
    pass
