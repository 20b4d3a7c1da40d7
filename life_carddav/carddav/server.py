"""CardDAV multistatus response builders."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from email.utils import format_datetime

from lxml import etree

from ..internal import Depth, MultiStatus, not_found_response, ok_response
from ..internal.elements import (
    APPLE_ICAL_NAMESPACE,
    CALENDARSERVER_NAMESPACE,
    COLLECTION,
    CURRENT_USER_PRINCIPAL,
    CURRENT_USER_PRIVILEGE_SET,
    DISPLAY_NAME,
    GET_CONTENT_TYPE,
    GET_ETAG,
    GET_LAST_MODIFIED,
    PRINCIPAL,
    RESOURCE_TYPE,
    SYNC_TOKEN,
    Response,
    card,
    dav,
)
from ..webdav import quote_etag
from .carddav import (
    MAX_RESOURCE_SIZE,
    VCARD_CONTENT_TYPE,
    AddressBook,
    CardDAVPaths,
    Contact,
    ContactGroup,
    SyncChanges,
)
from .report import SYNC_TOKEN_PREFIX

SUPPORTED_REPORTS = ("addressbook-multiget", "addressbook-query", "sync-collection")
PRIVILEGES = ("read", "write", "write-properties", "write-content", "bind", "unbind")

VCARD_MEDIA_TYPE = "text/vcard"


def _text(tag: str, text: str) -> etree._Element:
    elem = etree.Element(tag)
    elem.text = text
    return elem


def _href_prop(tag: str, *paths: str) -> etree._Element:
    elem = etree.Element(tag)
    for path in paths:
        href = etree.SubElement(elem, dav("href"))
        href.text = path
    return elem


def _create_resource_type(*types: str) -> etree._Element:
    rt = etree.Element(RESOURCE_TYPE)
    for tag in types:
        etree.SubElement(rt, tag)
    return rt


def _create_supported_report_set(reports: Iterable[str]) -> etree._Element:
    elem = etree.Element(dav("supported-report-set"))
    for name in reports:
        supported = etree.SubElement(elem, dav("supported-report"))
        report = etree.SubElement(supported, dav("report"))
        tag = dav(name) if name in ("sync-collection", "expand-property") else card(name)
        etree.SubElement(report, tag)
    return elem


def _create_privilege_set() -> etree._Element:
    elem = etree.Element(CURRENT_USER_PRIVILEGE_SET)
    for name in PRIVILEGES:
        privilege = etree.SubElement(elem, dav("privilege"))
        etree.SubElement(privilege, dav(name))
    return elem


def _create_supported_address_data() -> etree._Element:
    elem = etree.Element(card("supported-address-data"))
    for version in ("3.0", "4.0"):
        address_type = etree.SubElement(elem, card("address-data-type"))
        address_type.set("content-type", VCARD_MEDIA_TYPE)
        address_type.set("version", version)
    return elem


def _create_last_modified(dt: datetime) -> etree._Element:
    return _text(GET_LAST_MODIFIED, format_datetime(dt.astimezone(UTC), usegmt=True))


def format_sync_token(token: str) -> str:
    """Wrap a sync token in the data:, URI form sent to clients."""
    return f"{SYNC_TOKEN_PREFIX}{token}"


def format_ctag(moment: datetime) -> str:
    """Quoted millisecond epoch, the form iOS and macOS expect for getctag."""
    return f'"{int(moment.timestamp() * 1000)}"'


def _addressbook_props(paths: CardDAVPaths, address_book: AddressBook) -> list[etree._Element]:
    props = [
        _create_resource_type(COLLECTION, card("addressbook")),
        _text(DISPLAY_NAME, address_book.name),
    ]
    if address_book.description:
        props.append(_text(card("addressbook-description"), address_book.description))
    if address_book.color:
        props.append(_text(f"{{{APPLE_ICAL_NAMESPACE}}}calendar-color", address_book.color))
    props.append(_href_prop(CURRENT_USER_PRINCIPAL, paths.principal))
    props.append(_create_privilege_set())
    return props


def principal_response(
    paths: CardDAVPaths, email: str, address_books: list[AddressBook]
) -> MultiStatus:
    """Describe the authenticated user's principal.

    Args:
        paths: URL layout
        email: Authenticated user's email
        address_books: The user's address books

    Returns:
        Multistatus with a single principal response
    """
    local_part = email.split("@", 1)[0]
    props = [
        _create_resource_type(COLLECTION, PRINCIPAL),
        _text(DISPLAY_NAME, f"{local_part}'s Contacts"),
        _href_prop(
            card("addressbook-home-set"),
            *[paths.addressbook(book.id) for book in address_books],
        ),
        _href_prop(CURRENT_USER_PRINCIPAL, paths.principal),
        _href_prop(dav("principal-URL"), paths.principal),
        _href_prop(dav("principal-collection-set"), paths.principal),
        _create_supported_report_set((*SUPPORTED_REPORTS, "expand-property")),
        _href_prop(f"{{{CALENDARSERVER_NAMESPACE}}}email-address-set", f"mailto:{email}"),
        etree.Element(card("directory-gateway")),
    ]
    return MultiStatus(responses=[ok_response(paths.principal, props)])


def addressbook_home_set_response(
    paths: CardDAVPaths, address_books: list[AddressBook], depth: Depth = Depth.ONE
) -> MultiStatus:
    """Describe the address-book home collection and, at depth 1, its books."""
    home_props = [
        _create_resource_type(COLLECTION),
        _text(DISPLAY_NAME, "Address Books"),
        _href_prop(CURRENT_USER_PRINCIPAL, paths.principal),
        _href_prop(card("addressbook-home-set"), paths.home_set),
    ]
    responses = [ok_response(paths.home_set, home_props)]

    if depth != Depth.ZERO:
        for book in address_books:
            responses.append(ok_response(paths.addressbook(book.id), _addressbook_props(paths, book)))

    return MultiStatus(responses=responses)


def resource_response(
    path: str, resource: Contact | ContactGroup, include_data: bool = False
) -> Response:
    """Describe one vCard resource."""
    props = [
        etree.Element(RESOURCE_TYPE),
        _text(GET_ETAG, quote_etag(resource.etag)),
        _text(GET_CONTENT_TYPE, VCARD_CONTENT_TYPE),
        _create_last_modified(resource.last_modified),
    ]
    if include_data:
        props.append(_text(card("address-data"), resource.vcard_data))
    return ok_response(path, props)


def _resource_responses(
    paths: CardDAVPaths,
    address_book_id: str,
    contacts: list[Contact],
    groups: list[ContactGroup],
    include_data: bool,
) -> list[Response]:
    resources: list[Contact | ContactGroup] = [*contacts, *groups]
    return [
        resource_response(paths.resource(address_book_id, resource.id), resource, include_data)
        for resource in resources
    ]


def addressbook_list_response(
    paths: CardDAVPaths,
    address_book: AddressBook,
    contacts: list[Contact],
    groups: list[ContactGroup],
    sync_token: str,
    ctag: str,
    depth: Depth = Depth.ONE,
    include_data: bool = False,
    max_resource_size: int = MAX_RESOURCE_SIZE,
) -> MultiStatus:
    """Describe an address book collection and, at depth 1, its resources.

    Args:
        paths: URL layout
        address_book: The collection
        contacts: Contacts in the collection
        groups: Groups in the collection
        sync_token: Current sync token (without the data:, prefix)
        ctag: Collection tag
        depth: Depth header value
        include_data: Embed address-data for every resource
        max_resource_size: Largest accepted vCard in bytes

    Returns:
        Multistatus response
    """
    props = _addressbook_props(paths, address_book)
    props.extend(
        [
            _text(f"{{{CALENDARSERVER_NAMESPACE}}}getctag", ctag),
            _text(SYNC_TOKEN, format_sync_token(sync_token)),
            _create_supported_address_data(),
            _text(card("max-resource-size"), str(max_resource_size)),
            _create_supported_report_set(SUPPORTED_REPORTS),
        ]
    )
    responses = [ok_response(paths.addressbook(address_book.id), props)]

    if depth != Depth.ZERO:
        responses.extend(
            _resource_responses(paths, address_book.id, contacts, groups, include_data)
        )

    return MultiStatus(responses=responses)


def multiget_response(
    paths: CardDAVPaths,
    address_book_id: str,
    contacts: list[Contact],
    groups: list[ContactGroup],
    missing_hrefs: list[str],
) -> MultiStatus:
    """Answer an addressbook-multiget REPORT.

    Found resources always carry address-data; every requested href that
    did not resolve gets a 404 response.
    """
    responses = _resource_responses(paths, address_book_id, contacts, groups, True)
    responses.extend(not_found_response(href) for href in missing_hrefs)
    return MultiStatus(responses=responses)


def query_response(
    paths: CardDAVPaths,
    address_book_id: str,
    contacts: list[Contact],
    groups: list[ContactGroup],
) -> MultiStatus:
    """Answer an addressbook-query REPORT."""
    return MultiStatus(
        responses=_resource_responses(paths, address_book_id, contacts, groups, True)
    )


def sync_response(
    paths: CardDAVPaths,
    address_book_id: str,
    changes: SyncChanges,
    include_data: bool = False,
) -> MultiStatus:
    """Answer a sync-collection REPORT.

    Changed resources come first, followed by a 404 response per
    tombstone and the next sync token.
    """
    responses = _resource_responses(
        paths, address_book_id, changes.contacts, changes.groups, include_data
    )
    for resource_id in [*changes.deleted_contact_ids, *changes.deleted_group_ids]:
        responses.append(not_found_response(paths.resource(address_book_id, resource_id)))

    return MultiStatus(responses=responses, sync_token=format_sync_token(changes.sync_token))
