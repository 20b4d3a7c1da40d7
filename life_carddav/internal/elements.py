"""WebDAV XML elements."""

from __future__ import annotations

from dataclasses import dataclass, field
from http import HTTPStatus

from lxml import etree

# Namespaces
NAMESPACE = "DAV:"
CARDDAV_NAMESPACE = "urn:ietf:params:xml:ns:carddav"
CALENDARSERVER_NAMESPACE = "http://calendarserver.org/ns/"
APPLE_ICAL_NAMESPACE = "http://apple.com/ns/ical/"

NSMAP = {"D": NAMESPACE, "C": CARDDAV_NAMESPACE, "CS": CALENDARSERVER_NAMESPACE}

# Common XML names
RESOURCE_TYPE = "{DAV:}resourcetype"
DISPLAY_NAME = "{DAV:}displayname"
GET_CONTENT_TYPE = "{DAV:}getcontenttype"
GET_LAST_MODIFIED = "{DAV:}getlastmodified"
GET_ETAG = "{DAV:}getetag"
COLLECTION = "{DAV:}collection"
PRINCIPAL = "{DAV:}principal"
CURRENT_USER_PRINCIPAL = "{DAV:}current-user-principal"
CURRENT_USER_PRIVILEGE_SET = "{DAV:}current-user-privilege-set"
SYNC_TOKEN = "{DAV:}sync-token"


def dav(name: str) -> str:
    """Qualified name in the DAV: namespace."""
    return f"{{{NAMESPACE}}}{name}"


def card(name: str) -> str:
    """Qualified name in the CardDAV namespace."""
    return f"{{{CARDDAV_NAMESPACE}}}{name}"


@dataclass
class Status:
    """HTTP status for WebDAV responses."""

    code: int
    text: str = ""

    def to_string(self) -> str:
        """Marshal status to text."""
        text = self.text if self.text else HTTPStatus(self.code).phrase
        return f"HTTP/1.1 {self.code} {text}"

    @staticmethod
    def from_string(s: str) -> Status:
        """Unmarshal status from text."""
        if not s:
            return Status(code=0)

        parts = s.split(" ", 2)
        if len(parts) != 3:
            raise ValueError(f"webdav: invalid HTTP status {s!r}: expected 3 fields")

        try:
            code = int(parts[1])
        except ValueError as e:
            raise ValueError(
                f"webdav: invalid HTTP status {s!r}: failed to parse code: {e}"
            ) from e

        return Status(code=code, text=parts[2])


@dataclass
class Href:
    """WebDAV href element."""

    path: str

    def __str__(self) -> str:
        return self.path

    def to_xml(self) -> etree._Element:
        elem = etree.Element(dav("href"))
        elem.text = self.path
        return elem


@dataclass
class Prop:
    """WebDAV prop element."""

    raw: list[etree._Element] = field(default_factory=list)

    def to_xml(self) -> etree._Element:
        """Convert to XML element."""
        prop = etree.Element(dav("prop"))
        for elem in self.raw:
            prop.append(elem)
        return prop

    @staticmethod
    def from_xml(element: etree._Element) -> Prop:
        """Parse from XML element."""
        return Prop(raw=list(element))

    def get(self, tag: str) -> etree._Element | None:
        """Get a property by tag name."""
        for elem in self.raw:
            if elem.tag == tag:
                return elem
        return None


@dataclass
class PropStat:
    """WebDAV propstat element."""

    prop: Prop
    status: Status

    def to_xml(self) -> etree._Element:
        """Convert to XML element."""
        propstat = etree.Element(dav("propstat"))
        propstat.append(self.prop.to_xml())

        status_el = etree.SubElement(propstat, dav("status"))
        status_el.text = self.status.to_string()

        return propstat

    @staticmethod
    def from_xml(element: etree._Element) -> PropStat:
        """Parse from XML element."""
        prop_el = element.find(dav("prop"))
        prop = Prop.from_xml(prop_el) if prop_el is not None else Prop()

        status_el = element.find(dav("status"))
        status_text = status_el.text if status_el is not None else ""
        return PropStat(prop=prop, status=Status.from_string(status_text or ""))


@dataclass
class Response:
    """WebDAV response element.

    A response either carries propstats (the resource exists) or a bare
    status (e.g. 404 for a deleted or unknown resource).
    """

    href: Href
    propstats: list[PropStat] = field(default_factory=list)
    status: Status | None = None

    def to_xml(self) -> etree._Element:
        """Convert to XML element."""
        resp = etree.Element(dav("response"))
        resp.append(self.href.to_xml())

        for propstat in self.propstats:
            resp.append(propstat.to_xml())

        if self.status:
            status_el = etree.SubElement(resp, dav("status"))
            status_el.text = self.status.to_string()

        return resp

    @staticmethod
    def from_xml(element: etree._Element) -> Response:
        """Parse from XML element."""
        href_el = element.find(dav("href"))
        href = Href((href_el.text or "").strip() if href_el is not None else "")

        propstats = [PropStat.from_xml(ps) for ps in element.findall(dav("propstat"))]

        status_el = element.find(dav("status"))
        status = None
        if status_el is not None and status_el.text:
            status = Status.from_string(status_el.text)

        return Response(href=href, propstats=propstats, status=status)

    def prop(self, tag: str) -> etree._Element | None:
        """Find a property among the 200 propstats."""
        for propstat in self.propstats:
            if propstat.status.code == 200:
                elem = propstat.prop.get(tag)
                if elem is not None:
                    return elem
        return None


def ok_response(path: str, props: list[etree._Element]) -> Response:
    """Create a response carrying the given properties with a 200 propstat."""
    return Response(
        href=Href(path),
        propstats=[PropStat(prop=Prop(raw=props), status=Status(code=200))],
    )


def not_found_response(path: str) -> Response:
    """Create a bare 404 response for a missing or deleted resource."""
    return Response(href=Href(path), status=Status(code=404))


@dataclass
class MultiStatus:
    """WebDAV multistatus response."""

    responses: list[Response] = field(default_factory=list)
    sync_token: str = ""

    def to_xml(self) -> etree._Element:
        """Convert to XML element."""
        root = etree.Element(dav("multistatus"), nsmap=NSMAP)
        for resp in self.responses:
            root.append(resp.to_xml())
        if self.sync_token:
            token = etree.SubElement(root, SYNC_TOKEN)
            token.text = self.sync_token
        etree.cleanup_namespaces(root, top_nsmap=NSMAP)
        return root

    @staticmethod
    def from_xml(element: etree._Element) -> MultiStatus:
        """Parse from XML element."""
        responses = [Response.from_xml(el) for el in element.findall(dav("response"))]

        sync_token_el = element.find(SYNC_TOKEN)
        sync_token = sync_token_el.text if sync_token_el is not None else ""

        return MultiStatus(responses=responses, sync_token=sync_token or "")

    def find(self, path: str) -> Response | None:
        """Find the response for an href."""
        for resp in self.responses:
            if resp.href.path == path:
                return resp
        return None
