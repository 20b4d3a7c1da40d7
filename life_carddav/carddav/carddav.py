"""CardDAV types.

CardDAV is defined in RFC 6352.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from urllib.parse import quote

from .vcard import VCardContact

# CardDAV capability
CAPABILITY_ADDRESSBOOK = "addressbook"

VCARD_CONTENT_TYPE = "text/vcard; charset=utf-8"

# 1 MiB advertised as max-resource-size and enforced on PUT
MAX_RESOURCE_SIZE = 1048576

DEFAULT_ADDRESSBOOK_NAME = "Contacts"
DEFAULT_ADDRESSBOOK_COLOR = "#007AFF"


def utcnow() -> datetime:
    return datetime.now(UTC)


class ResourceKind(str, Enum):
    """Kind of resource stored in an address book."""

    CONTACT = "contact"
    GROUP = "group"


@dataclass
class AddressBook:
    """CardDAV address book collection owned by one user."""

    id: str
    user_id: str
    name: str = DEFAULT_ADDRESSBOOK_NAME
    color: str | None = None
    description: str | None = None
    sync_token: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Contact:
    """Contact resource.

    vcard_data is the authoritative representation; the remaining fields
    are a read-optimised projection of it. Multi-valued fields are stored
    as JSON arrays.
    """

    id: str
    user_id: str
    address_book_id: str | None
    vcard_data: str
    etag: str
    display_name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    nickname: str | None = None
    primary_email: str | None = None
    primary_phone: str | None = None
    organization: str | None = None
    job_title: str | None = None
    birthday: str | None = None
    notes: str | None = None
    emails: str | None = None
    phone_numbers: str | None = None
    addresses: str | None = None
    urls: str | None = None
    photo_data: str | None = None
    photo_media_type: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def last_modified(self) -> datetime:
        return self.updated_at or self.created_at

    @classmethod
    def from_vcard(
        cls,
        contact_id: str,
        user_id: str,
        address_book_id: str | None,
        vcard_data: str,
        etag: str,
        parsed: VCardContact,
        created_at: datetime,
        updated_at: datetime,
    ) -> Contact:
        """Build a contact record from vCard text and its parsed fields."""
        return cls(
            id=contact_id,
            user_id=user_id,
            address_book_id=address_book_id,
            vcard_data=vcard_data,
            etag=etag,
            display_name=parsed.display_name,
            given_name=parsed.given_name,
            family_name=parsed.family_name,
            nickname=parsed.nickname,
            primary_email=parsed.emails[0].value if parsed.emails else None,
            primary_phone=parsed.phone_numbers[0].value if parsed.phone_numbers else None,
            organization=parsed.organization,
            job_title=parsed.job_title,
            birthday=parsed.birthday,
            notes=parsed.notes,
            emails=_to_json(parsed.emails),
            phone_numbers=_to_json(parsed.phone_numbers),
            addresses=_to_json(parsed.addresses),
            urls=_to_json(parsed.urls),
            photo_data=parsed.photo_data,
            photo_media_type=parsed.photo_media_type,
            created_at=created_at,
            updated_at=updated_at,
        )


def _to_json(items: list) -> str | None:
    if not items:
        return None
    return json.dumps([asdict(item) for item in items])


@dataclass
class ContactGroup:
    """Contact group resource. Membership is held by the store."""

    id: str
    user_id: str
    address_book_id: str | None
    display_name: str
    vcard_data: str
    etag: str
    description: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def last_modified(self) -> datetime:
        return self.updated_at or self.created_at


@dataclass
class Tombstone:
    """Record of a deleted resource, kept for incremental sync."""

    id: str
    user_id: str
    address_book_id: str | None
    resource_type: ResourceKind
    deleted_at: datetime = field(default_factory=utcnow)


@dataclass
class SyncChanges:
    """Changes to one address book since a sync token."""

    sync_token: str
    contacts: list[Contact] = field(default_factory=list)
    groups: list[ContactGroup] = field(default_factory=list)
    deleted_contact_ids: list[str] = field(default_factory=list)
    deleted_group_ids: list[str] = field(default_factory=list)
    full: bool = True


@dataclass
class TextMatch:
    """Text matching filter."""

    text: str
    negate_condition: bool = False
    match_type: str = "contains"  # contains, equals, starts-with, ends-with


@dataclass
class PropFilter:
    """Property filter for address book queries."""

    name: str
    is_not_defined: bool = False
    text_match: TextMatch | None = None


@dataclass
class AddressBookQuery:
    """CardDAV addressbook-query REPORT request."""

    prop_filters: list[PropFilter] = field(default_factory=list)
    test: str = "anyof"  # anyof, allof
    limit: int = 0  # <= 0 means unlimited


@dataclass(frozen=True)
class CardDAVPaths:
    """URL layout of the CardDAV tree under a prefix."""

    prefix: str = "/carddav"

    @property
    def principal(self) -> str:
        return f"{self.prefix}/"

    @property
    def home_set(self) -> str:
        return f"{self.prefix}/addressbooks/"

    def addressbook(self, address_book_id: str) -> str:
        return f"{self.home_set}{quote(address_book_id)}/"

    def resource(self, address_book_id: str, resource_id: str) -> str:
        return f"{self.addressbook(address_book_id)}{quote(resource_id)}.vcf"
