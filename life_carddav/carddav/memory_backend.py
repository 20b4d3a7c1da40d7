"""In-memory CardDAV store."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime

from ..internal import HTTPError
from .carddav import AddressBook, Contact, ContactGroup, ResourceKind, Tombstone, utcnow


class MemoryCardDAVStore:
    """CardDAV store that keeps everything in process memory.

    Records are copied on the way in and out so callers never share
    mutable state with the store. Multi-record writes (delete plus
    tombstone, group plus membership) happen under a single lock.
    Tombstones are append-only; deleting a reused identifier twice leaves
    two tombstones.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._addressbooks: dict[str, AddressBook] = {}
        self._contacts: dict[str, Contact] = {}
        self._groups: dict[str, ContactGroup] = {}
        self._members: dict[str, list[str]] = {}
        self._tombstones: list[Tombstone] = []

    # Address books

    async def list_addressbooks(self, user_id: str) -> list[AddressBook]:
        books = [replace(b) for b in self._addressbooks.values() if b.user_id == user_id]
        return sorted(books, key=lambda b: b.created_at)

    async def get_addressbook(self, user_id: str, address_book_id: str) -> AddressBook | None:
        book = self._addressbooks.get(address_book_id)
        if book is None or book.user_id != user_id:
            return None
        return replace(book)

    async def create_addressbook(
        self,
        user_id: str,
        name: str,
        color: str | None = None,
        description: str | None = None,
    ) -> AddressBook:
        now = utcnow()
        book = AddressBook(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=name,
            color=color,
            description=description,
            created_at=now,
            updated_at=now,
        )
        self._addressbooks[book.id] = book
        return replace(book)

    # Contacts

    def _owned(self, record: Contact | ContactGroup | None, user_id: str, address_book_id: str) -> bool:
        return (
            record is not None
            and record.user_id == user_id
            and record.address_book_id == address_book_id
        )

    async def get_contact(
        self, user_id: str, address_book_id: str, contact_id: str
    ) -> Contact | None:
        contact = self._contacts.get(contact_id)
        if not self._owned(contact, user_id, address_book_id):
            return None
        return replace(contact)

    async def get_contacts(
        self, user_id: str, address_book_id: str, contact_ids: list[str]
    ) -> list[Contact]:
        found = []
        for contact_id in dict.fromkeys(contact_ids):
            contact = await self.get_contact(user_id, address_book_id, contact_id)
            if contact is not None:
                found.append(contact)
        return found

    async def list_contacts(
        self, user_id: str, address_book_id: str, since: datetime | None = None
    ) -> list[Contact]:
        return [
            replace(c)
            for c in self._contacts.values()
            if self._owned(c, user_id, address_book_id)
            and (since is None or c.updated_at >= since)
        ]

    async def insert_contact(self, contact: Contact) -> Contact:
        async with self._lock:
            if contact.id in self._contacts:
                raise HTTPError(409, Exception(f"contact {contact.id} already exists"))
            self._contacts[contact.id] = replace(contact)
        return replace(contact)

    async def update_contact(self, contact: Contact) -> Contact:
        async with self._lock:
            if contact.id not in self._contacts:
                raise HTTPError(404, Exception(f"contact {contact.id} not found"))
            self._contacts[contact.id] = replace(contact)
        return replace(contact)

    async def delete_contact(self, contact: Contact, tombstone: Tombstone) -> None:
        async with self._lock:
            self._contacts.pop(contact.id, None)
            for members in self._members.values():
                if contact.id in members:
                    members.remove(contact.id)
            self._tombstones.append(replace(tombstone))

    # Groups

    async def get_group(
        self, user_id: str, address_book_id: str, group_id: str
    ) -> ContactGroup | None:
        group = self._groups.get(group_id)
        if not self._owned(group, user_id, address_book_id):
            return None
        return replace(group)

    async def get_groups(
        self, user_id: str, address_book_id: str, group_ids: list[str]
    ) -> list[ContactGroup]:
        found = []
        for group_id in dict.fromkeys(group_ids):
            group = await self.get_group(user_id, address_book_id, group_id)
            if group is not None:
                found.append(group)
        return found

    async def list_groups(
        self, user_id: str, address_book_id: str, since: datetime | None = None
    ) -> list[ContactGroup]:
        return [
            replace(g)
            for g in self._groups.values()
            if self._owned(g, user_id, address_book_id)
            and (since is None or g.updated_at >= since)
        ]

    async def insert_group(self, group: ContactGroup, member_ids: list[str]) -> ContactGroup:
        async with self._lock:
            if group.id in self._groups:
                raise HTTPError(409, Exception(f"group {group.id} already exists"))
            self._groups[group.id] = replace(group)
            self._members[group.id] = list(dict.fromkeys(member_ids))
        return replace(group)

    async def update_group(self, group: ContactGroup, member_ids: list[str]) -> ContactGroup:
        async with self._lock:
            if group.id not in self._groups:
                raise HTTPError(404, Exception(f"group {group.id} not found"))
            self._groups[group.id] = replace(group)
            self._members[group.id] = list(dict.fromkeys(member_ids))
        return replace(group)

    async def delete_group(self, group: ContactGroup, tombstone: Tombstone) -> None:
        async with self._lock:
            self._groups.pop(group.id, None)
            self._members.pop(group.id, None)
            self._tombstones.append(replace(tombstone))

    async def get_group_member_ids(self, group_id: str) -> list[str]:
        return list(self._members.get(group_id, []))

    # Tombstones

    async def list_tombstones(
        self, user_id: str, address_book_id: str, kind: ResourceKind, since: datetime
    ) -> list[Tombstone]:
        return [
            replace(t)
            for t in self._tombstones
            if t.user_id == user_id
            and t.address_book_id == address_book_id
            and t.resource_type == kind
            and t.deleted_at >= since
        ]
