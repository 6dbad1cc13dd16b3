"""Directory (Active Directory) authentication seam.

The bind itself is delegated to an injected ``DirectoryAuthenticator``; the
service only consumes its outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(slots=True)
class DirectoryResult:
    success: bool
    error: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    # Set when no directory is configured and local login should be used instead.
    fallback: bool = False


@dataclass(frozen=True, slots=True)
class DirectoryConfig:
    server: str = ""
    port: int = 389
    base_dn: str = ""
    domain: str = ""
    bind_user: str = ""
    bind_password: str = ""
    group_filter: str = ""

    @classmethod
    def from_settings(cls, row) -> "DirectoryConfig":
        return cls(
            server=row.ad_server or "",
            port=row.ad_port or 389,
            base_dn=row.ad_base_dn or "",
            domain=row.ad_domain or "",
            bind_user=row.ad_bind_user or "",
            bind_password=row.ad_bind_password or "",
            group_filter=row.ad_group_filter or "",
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.server)

    def bind_identity(self, username: str) -> str:
        if "@" in username or not self.domain:
            return username
        return f"{username}@{self.domain}"


class DirectoryAuthenticator(Protocol):
    async def bind(self, username: str, password: str, config: DirectoryConfig) -> DirectoryResult:
        ...

    async def test_connection(self, config: DirectoryConfig) -> DirectoryResult:
        ...


class UnconfiguredDirectory:
    """Default authenticator when no directory integration is installed."""

    async def bind(self, username: str, password: str, config: DirectoryConfig) -> DirectoryResult:
        return DirectoryResult(success=False, error="Directory authentication is not available", fallback=True)

    async def test_connection(self, config: DirectoryConfig) -> DirectoryResult:
        return DirectoryResult(success=False, error="Directory authentication is not available")


def clean_username(username: str) -> str:
    """``jdoe@corp.local`` -> ``jdoe``; usernames are stored without the domain."""
    cleaned = (username or "").strip()
    if "@" in cleaned:
        cleaned = cleaned.split("@", 1)[0]
    return cleaned
