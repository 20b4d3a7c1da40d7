"""CardDAV support for life-carddav."""

from .backend import CardDAVStore
from .carddav import (
    CAPABILITY_ADDRESSBOOK,
    AddressBook,
    AddressBookQuery,
    CardDAVPaths,
    Contact,
    ContactGroup,
    PropFilter,
    ResourceKind,
    SyncChanges,
    TextMatch,
    Tombstone,
)
from .memory_backend import MemoryCardDAVStore
from .sync import CardDAVEngine, decode_sync_token, encode_sync_token
from .vcard import (
    ContactAddress,
    ContactEmail,
    ContactPhone,
    ContactUrl,
    InvalidVCard,
    VCardContact,
    VCardGroup,
    generate,
    generate_etag,
    generate_group,
    parse,
    parse_group,
    parse_resource,
)

__all__ = [
    "CardDAVStore",
    "MemoryCardDAVStore",
    "CAPABILITY_ADDRESSBOOK",
    "AddressBook",
    "AddressBookQuery",
    "CardDAVPaths",
    "Contact",
    "ContactGroup",
    "PropFilter",
    "ResourceKind",
    "SyncChanges",
    "TextMatch",
    "Tombstone",
    "CardDAVEngine",
    "decode_sync_token",
    "encode_sync_token",
    "ContactAddress",
    "ContactEmail",
    "ContactPhone",
    "ContactUrl",
    "InvalidVCard",
    "VCardContact",
    "VCardGroup",
    "generate",
    "generate_etag",
    "generate_group",
    "parse",
    "parse_group",
    "parse_resource",
]
