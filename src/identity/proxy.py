"""Outbound proxy identity per account."""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_PORT_RANGE = (10001, 10100)


@dataclass(frozen=True)
class ProxyIdentity:
    host: str
    port: int
    username: str = ""
    password: str = ""

    @property
    def label(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def server(self) -> str:
        return f"http://{self.host}:{self.port}"

    def to_playwright(self) -> dict:
        proxy = {"server": self.server}
        if self.username:
            proxy["username"] = self.username
            proxy["password"] = self.password
        return proxy


class ProxyAllocator:
    """Hands out proxy identities backed by the store's port claims.

    Ports are unique across accounts; an account keeps its stored port for
    as long as nobody else holds it.
    """

    def __init__(self, store, host: str, username: str = "", password: str = "",
                 port_range: tuple[int, int] = DEFAULT_PORT_RANGE):
        low, high = port_range
        if low > high:
            raise ValueError(f"Invalid port range {port_range}")
        self.store = store
        self.host = host
        self.username = username
        self.password = password
        self.port_range = (low, high)

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def _identity(self, port: int) -> ProxyIdentity:
        return ProxyIdentity(self.host, port, self.username, self.password)

    def allocate(self, account_id: int) -> ProxyIdentity:
        port = self.store.claim_proxy_port(account_id, self.port_range)
        logger.info("Account %d uses proxy %s:%d", account_id, self.host, port)
        return self._identity(port)

    def rotate(self, account_id: int) -> ProxyIdentity:
        """Move the account to the next free port, e.g. after a bot challenge."""
        port = self.store.claim_proxy_port(account_id, self.port_range, rotate=True)
        logger.info("Account %d rotated to proxy port %d", account_id, port)
        return self._identity(port)
