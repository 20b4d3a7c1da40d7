"""CardDAV storage interface."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .carddav import AddressBook, Contact, ContactGroup, ResourceKind, Tombstone


class CardDAVStore(Protocol):
    """Persistence for address books, contacts, groups and tombstones.

    Every lookup is scoped by the owning user and, for resources, by the
    address book. Implementations raise HTTPError(409) when an insert
    collides with an existing identifier.
    """

    async def list_addressbooks(self, user_id: str) -> list[AddressBook]:
        """List a user's address books, oldest first."""
        ...

    async def get_addressbook(self, user_id: str, address_book_id: str) -> AddressBook | None:
        """Get an address book owned by the user."""
        ...

    async def create_addressbook(
        self,
        user_id: str,
        name: str,
        color: str | None = None,
        description: str | None = None,
    ) -> AddressBook:
        """Create an address book for the user."""
        ...

    async def get_contact(
        self, user_id: str, address_book_id: str, contact_id: str
    ) -> Contact | None:
        """Get a contact by identifier."""
        ...

    async def get_contacts(
        self, user_id: str, address_book_id: str, contact_ids: list[str]
    ) -> list[Contact]:
        """Get the contacts whose identifiers are listed; unknown ones are skipped."""
        ...

    async def list_contacts(
        self, user_id: str, address_book_id: str, since: datetime | None = None
    ) -> list[Contact]:
        """List contacts, optionally only those updated at or after since."""
        ...

    async def insert_contact(self, contact: Contact) -> Contact:
        """Insert a new contact.

        Raises:
            HTTPError: If the identifier is taken (409)
        """
        ...

    async def update_contact(self, contact: Contact) -> Contact:
        """Replace an existing contact."""
        ...

    async def delete_contact(self, contact: Contact, tombstone: Tombstone) -> None:
        """Remove a contact and record its tombstone in one atomic step."""
        ...

    async def get_group(
        self, user_id: str, address_book_id: str, group_id: str
    ) -> ContactGroup | None:
        """Get a group by identifier."""
        ...

    async def get_groups(
        self, user_id: str, address_book_id: str, group_ids: list[str]
    ) -> list[ContactGroup]:
        """Get the groups whose identifiers are listed; unknown ones are skipped."""
        ...

    async def list_groups(
        self, user_id: str, address_book_id: str, since: datetime | None = None
    ) -> list[ContactGroup]:
        """List groups, optionally only those updated at or after since."""
        ...

    async def insert_group(self, group: ContactGroup, member_ids: list[str]) -> ContactGroup:
        """Insert a new group with its members.

        Raises:
            HTTPError: If the identifier is taken (409)
        """
        ...

    async def update_group(self, group: ContactGroup, member_ids: list[str]) -> ContactGroup:
        """Replace a group and its whole membership in one atomic step."""
        ...

    async def delete_group(self, group: ContactGroup, tombstone: Tombstone) -> None:
        """Remove a group and record its tombstone in one atomic step."""
        ...

    async def get_group_member_ids(self, group_id: str) -> list[str]:
        """List the contact identifiers belonging to a group."""
        ...

    async def list_tombstones(
        self, user_id: str, address_book_id: str, kind: ResourceKind, since: datetime
    ) -> list[Tombstone]:
        """List tombstones of one kind deleted at or after since."""
        ...
