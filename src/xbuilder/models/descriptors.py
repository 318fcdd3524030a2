"""
Server and registry descriptors.

Read-only reference data resolved by the configuration layer and handed to
executors at construction time.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from xbuilder.errors import ConfigurationError


class AuthType(Enum):
    PASSWORD = "password"
    KEY = "key"


@dataclass(frozen=True)
class ServerAuth:
    type: AuthType
    password: str | None = None
    key_path: str | None = None

    def __repr__(self) -> str:
        return f"ServerAuth(type={self.type.value}, key_path={self.key_path!r})"


@dataclass(frozen=True)
class ServerDescriptor:
    """A remote host reachable over SSH."""

    name: str
    host: str
    username: str
    auth: ServerAuth
    port: int = 22

    @property
    def address(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"


@dataclass(frozen=True)
class RegistryDescriptor:
    """An image registry with optional login credentials."""

    name: str
    url: str
    username: str | None = None
    password: str | None = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    def __repr__(self) -> str:
        return f"RegistryDescriptor(name={self.name!r}, url={self.url!r}, username={self.username!r})"


def servers_from_dict(raw: Mapping[str, Any] | None) -> dict[str, ServerDescriptor]:
    """Map the ``servers`` section of a resolved document to descriptors."""
    servers = {}
    for name, entry in (raw or {}).items():
        auth = entry.get("auth") or {}
        try:
            auth_type = AuthType(auth.get("type") or ("key" if auth.get("key_path") else "password"))
        except ValueError as e:
            raise ConfigurationError(f"Server {name!r}: unknown auth type {auth.get('type')!r}") from e
        servers[name] = ServerDescriptor(
            name=name,
            host=entry.get("host") or "",
            username=entry.get("username") or "",
            auth=ServerAuth(type=auth_type, password=auth.get("password"), key_path=auth.get("key_path")),
            port=int(entry.get("port") or 22),
        )
    return servers


def registries_from_dict(raw: Mapping[str, Any] | None) -> dict[str, RegistryDescriptor]:
    """Map the ``registries`` section of a resolved document to descriptors."""
    return {
        name: RegistryDescriptor(
            name=name,
            url=entry.get("url") or "",
            username=entry.get("username"),
            password=entry.get("password"),
        )
        for name, entry in (raw or {}).items()
    }
