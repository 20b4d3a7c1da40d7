"""Server configuration.

Every setting can come from the environment:

    CARDDAV_HOST               listening address (default 127.0.0.1)
    CARDDAV_PORT               listening port (default 8080)
    CARDDAV_PREFIX             URL prefix of the CardDAV tree (default /carddav)
    CARDDAV_REALM              Basic auth realm
    CARDDAV_DEBUG              log every request and response (1/true/yes/on)
    CARDDAV_VCARD_VERSION      version of server generated vCards (3.0 or 4.0)
    CARDDAV_MAX_RESOURCE_SIZE  largest accepted vCard in bytes
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .carddav.carddav import MAX_RESOURCE_SIZE
from .carddav.vcard import VCARD_VERSIONS

DEFAULT_REALM = "Life System CardDAV"


def _env_flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


@dataclass
class CardDAVConfig:
    """CardDAV server configuration."""

    host: str = "127.0.0.1"
    port: int = 8080
    prefix: str = "/carddav"
    realm: str = DEFAULT_REALM
    debug: bool = False
    vcard_version: str = "3.0"
    max_resource_size: int = MAX_RESOURCE_SIZE

    def __post_init__(self) -> None:
        """Validate configuration."""
        self.prefix = self.prefix.rstrip("/")
        if self.prefix and not self.prefix.startswith("/"):
            raise ValueError(f"prefix must start with '/': {self.prefix!r}")
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if self.vcard_version not in VCARD_VERSIONS:
            raise ValueError(f"unsupported vCard version: {self.vcard_version}")
        if self.max_resource_size <= 0:
            raise ValueError("max_resource_size must be positive")
        if not self.realm or '"' in self.realm:
            raise ValueError(f"invalid realm: {self.realm!r}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> CardDAVConfig:
        """Build a configuration from CARDDAV_* environment variables."""
        env = os.environ if env is None else env
        return cls(
            host=env.get("CARDDAV_HOST") or "127.0.0.1",
            port=_env_int(env, "CARDDAV_PORT", 8080),
            prefix=env.get("CARDDAV_PREFIX", "/carddav"),
            realm=env.get("CARDDAV_REALM") or DEFAULT_REALM,
            debug=_env_flag(env.get("CARDDAV_DEBUG")),
            vcard_version=env.get("CARDDAV_VCARD_VERSION") or "3.0",
            max_resource_size=_env_int(env, "CARDDAV_MAX_RESOURCE_SIZE", MAX_RESOURCE_SIZE),
        )
