"""Browser identity: launch settings, proxy ports and session persistence."""

from __future__ import annotations

from src.identity.browser import BrowserSession
from src.identity.proxy import ProxyAllocator, ProxyIdentity
from src.identity.session_state import (
    CookieGroup,
    CookieRecord,
    SessionMeta,
    SessionService,
    SessionState,
    StorageSnapshot,
)

__all__ = [
    "BrowserSession",
    "CookieGroup",
    "CookieRecord",
    "ProxyAllocator",
    "ProxyIdentity",
    "SessionMeta",
    "SessionService",
    "SessionState",
    "StorageSnapshot",
]
