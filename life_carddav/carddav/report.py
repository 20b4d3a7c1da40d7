"""CardDAV PROPFIND and REPORT request parsing.

Clients send bodies with every prefix convention imaginable (D:, d:,
default namespaces, undeclared prefixes), so elements are matched on
their local name only and malformed XML is parsed in recovery mode.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from lxml import etree

from .carddav import AddressBookQuery, PropFilter, TextMatch

ALLPROP = "allprop"

# Properties the server knows how to answer, in response order
PROP_VOCABULARY = (
    "resourcetype",
    "displayname",
    "getetag",
    "getcontenttype",
    "getlastmodified",
    "current-user-principal",
    "principal-URL",
    "addressbook-home-set",
    "address-data",
    "supported-address-data",
    "supported-report-set",
    "getctag",
    "sync-token",
    "max-resource-size",
    "me-card",
    "owner",
)

SYNC_TOKEN_PREFIX = "data:,"

_parser = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)


@dataclass
class AddressBookMultigetReport:
    """CardDAV addressbook-multiget REPORT request."""

    hrefs: list[str] = field(default_factory=list)
    props: list[str] = field(default_factory=lambda: [ALLPROP])


@dataclass
class SyncCollectionReport:
    """WebDAV sync-collection REPORT request (RFC 6578)."""

    sync_token: str | None = None
    props: list[str] = field(default_factory=lambda: [ALLPROP])

    @property
    def wants_address_data(self) -> bool:
        return ALLPROP in self.props or "address-data" in self.props


@dataclass
class AddressBookQueryReport:
    """CardDAV addressbook-query REPORT request."""

    query: AddressBookQuery = field(default_factory=AddressBookQuery)
    props: list[str] = field(default_factory=lambda: [ALLPROP])


Report = AddressBookMultigetReport | SyncCollectionReport | AddressBookQueryReport


def local_name(tag: str) -> str:
    """Local part of a tag, without namespace URI or prefix."""
    return tag.rsplit("}", 1)[-1].rsplit(":", 1)[-1]


def _parse_xml(body: bytes | str) -> etree._Element | None:
    if isinstance(body, str):
        body = body.encode("utf-8")
    if not body or not body.strip():
        return None
    try:
        return etree.fromstring(body, _parser)
    except etree.XMLSyntaxError:
        return None


def _elements(root: etree._Element) -> Iterator[etree._Element]:
    """Iterate over element nodes, skipping comments and processing instructions."""
    for elem in root.iter():
        if isinstance(elem.tag, str):
            yield elem


def _find(root: etree._Element, name: str) -> etree._Element | None:
    for elem in _elements(root):
        if local_name(elem.tag) == name:
            return elem
    return None


def _props_from_root(root: etree._Element | None) -> list[str]:
    if root is None:
        return [ALLPROP]
    if _find(root, "allprop") is not None:
        return [ALLPROP]

    prop = _find(root, "prop")
    if prop is None:
        return [ALLPROP]

    requested = {local_name(child.tag) for child in prop if isinstance(child.tag, str)}
    props = [name for name in PROP_VOCABULARY if name in requested]
    return props or [ALLPROP]


def parse_props_request(body: bytes | str) -> list[str]:
    """Extract the requested property names from a PROPFIND or REPORT body.

    Args:
        body: Request body

    Returns:
        Requested properties in PROP_VOCABULARY order, or ["allprop"] when
        the body is empty, asks for allprop, or names no known property
    """
    return _props_from_root(_parse_xml(body))


def parse_sync_token(value: str | None) -> str | None:
    """Strip the data:, prefix from a client supplied sync token."""
    if value is None:
        return None
    token = value.strip()
    if token.startswith(SYNC_TOKEN_PREFIX):
        token = token[len(SYNC_TOKEN_PREFIX) :]
    return token or None


def parse_report(body: bytes | str) -> Report:
    """Parse a REPORT request body.

    Args:
        body: Request body

    Returns:
        Parsed REPORT request

    Raises:
        ValueError: If the REPORT type is unknown or the body is not XML
    """
    root = _parse_xml(body)
    if root is None:
        raise ValueError("empty or malformed REPORT body")

    kind = local_name(root.tag)
    props = _props_from_root(root)

    if kind == "addressbook-multiget":
        return _parse_addressbook_multiget(root, props)
    elif kind == "sync-collection":
        return _parse_sync_collection(root, props)
    elif kind == "addressbook-query":
        return _parse_addressbook_query(root, props)
    else:
        raise ValueError(f"unknown REPORT type: {kind}")


def _parse_addressbook_multiget(
    root: etree._Element, props: list[str]
) -> AddressBookMultigetReport:
    hrefs = [
        elem.text.strip()
        for elem in _elements(root)
        if local_name(elem.tag) == "href" and elem.text and elem.text.strip()
    ]
    return AddressBookMultigetReport(hrefs=hrefs, props=props)


def _parse_sync_collection(root: etree._Element, props: list[str]) -> SyncCollectionReport:
    token_el = _find(root, "sync-token")
    token = parse_sync_token(token_el.text if token_el is not None else None)
    return SyncCollectionReport(sync_token=token, props=props)


def _parse_addressbook_query(root: etree._Element, props: list[str]) -> AddressBookQueryReport:
    query = AddressBookQuery()

    filter_el = _find(root, "filter")
    if filter_el is not None:
        query.test = (filter_el.get("test") or "anyof").lower()
        for elem in _elements(filter_el):
            if local_name(elem.tag) != "prop-filter":
                continue
            name = elem.get("name")
            if not name:
                continue
            prop_filter = PropFilter(name=name.upper())
            if _find(elem, "is-not-defined") is not None:
                prop_filter.is_not_defined = True
            match_el = _find(elem, "text-match")
            if match_el is not None:
                prop_filter.text_match = TextMatch(
                    text=(match_el.text or "").strip(),
                    negate_condition=match_el.get("negate-condition") == "yes",
                    match_type=match_el.get("match-type") or "contains",
                )
            query.prop_filters.append(prop_filter)

    limit_el = _find(root, "nresults")
    if limit_el is not None and limit_el.text and limit_el.text.strip().isdigit():
        query.limit = int(limit_el.text.strip())

    return AddressBookQueryReport(query=query, props=props)
