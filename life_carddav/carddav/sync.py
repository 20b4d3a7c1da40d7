"""CardDAV engine: address books, conditional writes and incremental sync.

Sync tokens are opaque to clients but are simply the base64 encoding of
an ISO-8601 timestamp with millisecond precision. A sync with token T
returns every resource updated at or after T and a 404 for every
tombstone recorded at or after T.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from urllib.parse import unquote

from ..internal import HTTPError
from ..webdav import ConditionalMatch
from .backend import CardDAVStore
from .carddav import (
    DEFAULT_ADDRESSBOOK_COLOR,
    DEFAULT_ADDRESSBOOK_NAME,
    MAX_RESOURCE_SIZE,
    AddressBook,
    AddressBookQuery,
    Contact,
    ContactGroup,
    ResourceKind,
    SyncChanges,
    Tombstone,
    utcnow,
)
from .report import parse_sync_token
from .vcard import (
    InvalidVCard,
    VCardContact,
    VCardGroup,
    generate,
    generate_etag,
    generate_group,
    parse_resource,
)

logger = logging.getLogger("life_carddav.sync")

Clock = Callable[[], datetime]

# Characters XML 1.0 cannot carry; such a body could never be sent back in address-data
_XML_INVALID_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


def encode_sync_token(moment: datetime) -> str:
    """Encode a timestamp as a sync token."""
    iso = moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return base64.b64encode(iso.encode("ascii")).decode("ascii")


def decode_sync_token(token: str | None) -> datetime | None:
    """Decode a sync token back to its timestamp.

    Returns:
        The timestamp, or None when the token is absent or malformed; the
        caller then performs a full sync
    """
    token = parse_sync_token(token)
    if token is None:
        return None
    try:
        iso = base64.b64decode(token, validate=True).decode("ascii")
        moment = datetime.fromisoformat(iso.replace("Z", "+00:00"))
    except (ValueError, binascii.Error):
        logger.debug(f"Ignoring malformed sync token {token!r}")
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def resource_id_from_href(href: str) -> str | None:
    """Extract the resource identifier from an href ending in <id>.vcf."""
    path = unquote(href.strip()).rstrip("/")
    name = path.rsplit("/", 1)[-1]
    if not name.endswith(".vcf") or len(name) == len(".vcf"):
        return None
    return name[: -len(".vcf")]


@dataclass
class PutResult:
    """Outcome of storing a vCard."""

    created: bool
    etag: str
    resource: Contact | ContactGroup


@dataclass
class MultigetResult:
    contacts: list[Contact]
    groups: list[ContactGroup]
    missing_hrefs: list[str]


class CardDAVEngine:
    """Protocol-independent CardDAV operations on top of a CardDAVStore.

    Args:
        store: Persistence backend
        clock: Returns the current time; injected for deterministic tests
        max_resource_size: Largest accepted vCard in bytes
        vcard_version: Version used when the server itself generates vCards
    """

    def __init__(
        self,
        store: CardDAVStore,
        clock: Clock | None = None,
        max_resource_size: int = MAX_RESOURCE_SIZE,
        vcard_version: str = "3.0",
    ) -> None:
        self.store = store
        self.clock: Clock = clock or utcnow
        self.max_resource_size = max_resource_size
        self.vcard_version = vcard_version

    def now(self) -> datetime:
        return self.clock()

    # Address books

    async def address_books(self, user_id: str) -> list[AddressBook]:
        """List the user's address books, creating the default one if none exist."""
        books = await self.store.list_addressbooks(user_id)
        if not books:
            book = await self.store.create_addressbook(
                user_id, DEFAULT_ADDRESSBOOK_NAME, color=DEFAULT_ADDRESSBOOK_COLOR
            )
            logger.info(f"Created default address book {book.id} for user {user_id}")
            books = [book]
        return books

    async def address_book(self, user_id: str, address_book_id: str) -> AddressBook:
        """Get an address book.

        Raises:
            HTTPError: If the user has no such address book (404)
        """
        book = await self.store.get_addressbook(user_id, address_book_id)
        if book is None:
            raise HTTPError(404, Exception(f"address book {address_book_id} not found"))
        return book

    async def list_resources(
        self, user_id: str, address_book_id: str
    ) -> tuple[AddressBook, list[Contact], list[ContactGroup]]:
        """Get an address book with every contact and group in it."""
        book = await self.address_book(user_id, address_book_id)
        contacts = await self.store.list_contacts(user_id, address_book_id)
        groups = await self.store.list_groups(user_id, address_book_id)
        return book, contacts, groups

    # Resources

    async def get_resource(
        self, user_id: str, address_book_id: str, resource_id: str
    ) -> Contact | ContactGroup:
        """Resolve a resource identifier, contacts first, then groups.

        Raises:
            HTTPError: If neither exists (404)
        """
        resource = await self._find(user_id, address_book_id, resource_id)
        if resource is None:
            raise HTTPError(404, Exception(f"resource {resource_id} not found"))
        return resource

    async def _find(
        self, user_id: str, address_book_id: str, resource_id: str
    ) -> Contact | ContactGroup | None:
        contact = await self.store.get_contact(user_id, address_book_id, resource_id)
        if contact is not None:
            return contact
        return await self.store.get_group(user_id, address_book_id, resource_id)

    async def put_resource(
        self,
        user_id: str,
        address_book_id: str,
        resource_id: str,
        vcard_data: str,
        if_match: ConditionalMatch | str = "",
        if_none_match: ConditionalMatch | str = "",
    ) -> PutResult:
        """Create or replace a contact or group from an uploaded vCard.

        The body decides whether the resource is a contact or a group.
        If-Match naming a resource that does not exist is not an error;
        the resource is created.

        Args:
            user_id: Owner
            address_book_id: Target address book
            resource_id: Identifier taken from the request path
            vcard_data: Request body
            if_match: If-Match header value
            if_none_match: If-None-Match header value

        Returns:
            Whether the resource was created, and its new ETag

        Raises:
            HTTPError: 413 if too large, 404 for an unknown address book,
                400 for text that is not a vCard or cannot be embedded in XML,
                412 on a failed precondition
        """
        if len(vcard_data.encode("utf-8")) > self.max_resource_size:
            raise HTTPError(413, Exception(f"vCard exceeds {self.max_resource_size} bytes"))

        await self.address_book(user_id, address_book_id)

        if _XML_INVALID_RE.search(vcard_data):
            raise HTTPError(400, Exception("vCard contains characters not allowed in XML"))

        parsed = parse_resource(vcard_data)
        if isinstance(parsed, InvalidVCard):
            raise HTTPError(400, Exception(f"invalid vCard: {parsed.reason}"))

        if_match = ConditionalMatch(if_match or "")
        if_none_match = ConditionalMatch(if_none_match or "")

        if isinstance(parsed, VCardGroup):
            existing_group = await self.store.get_group(user_id, address_book_id, resource_id)
            _check_preconditions(existing_group, if_match, if_none_match)
            group = await self._store_group(
                user_id, address_book_id, resource_id, vcard_data, parsed, existing_group
            )
            return PutResult(created=existing_group is None, etag=group.etag, resource=group)

        existing = await self.store.get_contact(user_id, address_book_id, resource_id)
        _check_preconditions(existing, if_match, if_none_match)
        contact = await self._store_contact(
            user_id, address_book_id, resource_id, vcard_data, parsed, existing
        )
        return PutResult(created=existing is None, etag=contact.etag, resource=contact)

    async def _store_contact(
        self,
        user_id: str,
        address_book_id: str,
        contact_id: str,
        vcard_data: str,
        parsed: VCardContact,
        existing: Contact | None,
    ) -> Contact:
        now = self.now()
        contact = Contact.from_vcard(
            contact_id=contact_id,
            user_id=user_id,
            address_book_id=address_book_id,
            vcard_data=vcard_data,
            etag=generate_etag(vcard_data),
            parsed=parsed,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        if existing is None:
            logger.info(
                f"Creating contact {contact_id} ({contact.etag}) in address book {address_book_id}"
            )
            return await self.store.insert_contact(contact)
        logger.info(
            f"Updating contact {contact_id} ({contact.etag}) in address book {address_book_id}"
        )
        return await self.store.update_contact(contact)

    async def _store_group(
        self,
        user_id: str,
        address_book_id: str,
        group_id: str,
        vcard_data: str,
        parsed: VCardGroup,
        existing: ContactGroup | None,
    ) -> ContactGroup:
        now = self.now()
        group = ContactGroup(
            id=group_id,
            user_id=user_id,
            address_book_id=address_book_id,
            display_name=parsed.display_name,
            description=parsed.description,
            vcard_data=vcard_data,
            etag=generate_etag(vcard_data),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        if existing is None:
            logger.info(
                f"Creating group {group_id} with {len(parsed.member_ids)} members "
                f"in address book {address_book_id}"
            )
            return await self.store.insert_group(group, parsed.member_ids)
        logger.info(
            f"Replacing group {group_id} with {len(parsed.member_ids)} members "
            f"in address book {address_book_id}"
        )
        return await self.store.update_group(group, parsed.member_ids)

    async def delete_resource(
        self,
        user_id: str,
        address_book_id: str,
        resource_id: str,
        if_match: ConditionalMatch | str = "",
    ) -> Tombstone:
        """Delete a contact or group and record a tombstone.

        Raises:
            HTTPError: 404 if nothing matches, 412 if If-Match does not match
        """
        resource = await self.get_resource(user_id, address_book_id, resource_id)

        if_match = ConditionalMatch(if_match or "")
        if if_match.is_set() and not if_match.match_etag(resource.etag):
            logger.info(f"If-Match {if_match} does not match {resource.etag} for {resource_id}")
            raise HTTPError(412, Exception("If-Match condition failed"))

        kind = ResourceKind.CONTACT if isinstance(resource, Contact) else ResourceKind.GROUP
        tombstone = Tombstone(
            id=resource.id,
            user_id=user_id,
            address_book_id=resource.address_book_id,
            resource_type=kind,
            deleted_at=self.now(),
        )
        if isinstance(resource, Contact):
            await self.store.delete_contact(resource, tombstone)
        else:
            await self.store.delete_group(resource, tombstone)

        logger.info(f"Deleted {kind.value} {resource_id} from address book {address_book_id}")
        return tombstone

    async def group_member_ids(
        self, user_id: str, address_book_id: str, group_id: str
    ) -> list[str]:
        """List the contact identifiers of a group.

        Raises:
            HTTPError: If the group does not exist (404)
        """
        group = await self.store.get_group(user_id, address_book_id, group_id)
        if group is None:
            raise HTTPError(404, Exception(f"group {group_id} not found"))
        return await self.store.get_group_member_ids(group_id)

    # Reports

    async def multiget(
        self, user_id: str, address_book_id: str, hrefs: list[str]
    ) -> MultigetResult:
        """Fetch resources by href.

        Hrefs that do not end in <id>.vcf or name no stored resource are
        reported back as missing.
        """
        await self.address_book(user_id, address_book_id)

        ids_by_href = {href: resource_id_from_href(href) for href in hrefs}
        ids = [resource_id for resource_id in ids_by_href.values() if resource_id]

        contacts = await self.store.get_contacts(user_id, address_book_id, ids)
        groups = await self.store.get_groups(user_id, address_book_id, ids)

        found = {c.id for c in contacts} | {g.id for g in groups}
        missing = [href for href, resource_id in ids_by_href.items() if resource_id not in found]
        return MultigetResult(contacts=contacts, groups=groups, missing_hrefs=missing)

    async def query(
        self, user_id: str, address_book_id: str, query: AddressBookQuery
    ) -> tuple[list[Contact], list[ContactGroup]]:
        """Answer an addressbook-query.

        Filters are not evaluated; the whole collection is returned and
        clients filter locally.
        """
        if query.prop_filters:
            logger.debug(
                f"Ignoring {len(query.prop_filters)} prop-filters on address book {address_book_id}"
            )
        _, contacts, groups = await self.list_resources(user_id, address_book_id)
        return contacts, groups

    async def sync_changes(
        self, user_id: str, address_book_id: str, token: str | None
    ) -> SyncChanges:
        """Compute the changes since a sync token.

        An absent or undecodable token yields a full sync. The next token
        is taken before reading so that writes racing with the read are
        reported again on the following sync rather than lost.
        """
        await self.address_book(user_id, address_book_id)

        next_token = encode_sync_token(self.now())
        since = decode_sync_token(token)

        if since is None:
            contacts = await self.store.list_contacts(user_id, address_book_id)
            groups = await self.store.list_groups(user_id, address_book_id)
            logger.info(
                f"Full sync of address book {address_book_id}: "
                f"{len(contacts)} contacts, {len(groups)} groups"
            )
            return SyncChanges(sync_token=next_token, contacts=contacts, groups=groups, full=True)

        contacts = await self.store.list_contacts(user_id, address_book_id, since=since)
        groups = await self.store.list_groups(user_id, address_book_id, since=since)
        deleted_contacts = await self.store.list_tombstones(
            user_id, address_book_id, ResourceKind.CONTACT, since
        )
        deleted_groups = await self.store.list_tombstones(
            user_id, address_book_id, ResourceKind.GROUP, since
        )
        logger.info(
            f"Incremental sync of address book {address_book_id} since {since.isoformat()}: "
            f"{len(contacts)} contacts, {len(groups)} groups, "
            f"{len(deleted_contacts) + len(deleted_groups)} deletions"
        )
        return SyncChanges(
            sync_token=next_token,
            contacts=contacts,
            groups=groups,
            deleted_contact_ids=[t.id for t in deleted_contacts],
            deleted_group_ids=[t.id for t in deleted_groups],
            full=False,
        )

    # Write-side helpers for collaborators that edit contacts outside CardDAV

    async def save_contact(
        self, user_id: str, address_book_id: str, fields: VCardContact
    ) -> Contact:
        """Create or update a contact from structured fields.

        The vCard is generated by the server; a missing id gets a new UUID.
        """
        await self.address_book(user_id, address_book_id)
        contact_id = fields.id or str(uuid.uuid4())
        fields = replace(fields, id=contact_id)
        vcard_data = generate(fields, self.vcard_version, rev=self.now())
        existing = await self.store.get_contact(user_id, address_book_id, contact_id)
        return await self._store_contact(
            user_id, address_book_id, contact_id, vcard_data, fields, existing
        )

    async def save_group(
        self,
        user_id: str,
        address_book_id: str,
        display_name: str,
        member_ids: list[str],
        description: str | None = None,
        group_id: str | None = None,
    ) -> ContactGroup:
        """Create or update a group from structured fields."""
        await self.address_book(user_id, address_book_id)
        group_id = group_id or str(uuid.uuid4())
        vcard_data = generate_group(
            group_id, display_name, member_ids, description=description, rev=self.now()
        )
        parsed = VCardGroup(
            display_name=display_name,
            description=description,
            member_ids=list(member_ids),
            uid=group_id,
        )
        existing = await self.store.get_group(user_id, address_book_id, group_id)
        return await self._store_group(
            user_id, address_book_id, group_id, vcard_data, parsed, existing
        )


def _check_preconditions(
    existing: Contact | ContactGroup | None,
    if_match: ConditionalMatch,
    if_none_match: ConditionalMatch,
) -> None:
    if existing is None:
        return
    if if_none_match.is_wildcard():
        logger.info(f"If-None-Match: * failed for existing resource {existing.id}")
        raise HTTPError(412, Exception("resource already exists"))
    if if_match.is_set() and not if_match.match_etag(existing.etag):
        logger.info(f"If-Match {if_match} does not match {existing.etag} for {existing.id}")
        raise HTTPError(412, Exception("If-Match condition failed"))
