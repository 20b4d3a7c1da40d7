"""A CardDAV server for the Life System contact store."""

from .auth import BasicAuthenticator, MemoryUserDirectory
from .carddav import CardDAVEngine, MemoryCardDAVStore
from .config import CardDAVConfig
from .server import Handler, create_app
from .webdav import ConditionalMatch

__version__ = "0.1.0"

__all__ = [
    "BasicAuthenticator",
    "MemoryUserDirectory",
    "CardDAVEngine",
    "MemoryCardDAVStore",
    "CardDAVConfig",
    "Handler",
    "create_app",
    "ConditionalMatch",
]
