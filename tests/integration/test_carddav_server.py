"""End-to-end tests of the CardDAV HTTP surface."""

import asyncio
import logging

import pytest
from lxml import etree
from starlette.testclient import TestClient

from conftest import USER_EMAIL, USER_ID, basic_auth
from life_carddav.carddav import MemoryCardDAVStore
from life_carddav.config import CardDAVConfig
from life_carddav.internal import HTTPError, MultiStatus, UpstreamError
from life_carddav.internal.elements import CALENDARSERVER_NAMESPACE, GET_ETAG, card, dav
from life_carddav.server import ResourceType, create_app, resolve_path

pytestmark = pytest.mark.integration

ADA = (
    "BEGIN:VCARD\r\n"
    "VERSION:3.0\r\n"
    "FN:Ada Lovelace\r\n"
    "N:Lovelace;Ada;;;\r\n"
    "EMAIL;TYPE=INTERNET,WORK:ada@example.com\r\n"
    "UID:c-1\r\n"
    "END:VCARD\r\n"
)

PROPFIND_ADDRESSBOOK = b"""<?xml version="1.0" encoding="utf-8"?>
<D:propfind xmlns:D="DAV:" xmlns:CS="http://calendarserver.org/ns/">
  <D:prop>
    <D:resourcetype/>
    <D:displayname/>
    <D:getetag/>
    <CS:getctag/>
    <D:sync-token/>
  </D:prop>
</D:propfind>"""


def sync_body(token: str = "", with_data: bool = True) -> bytes:
    address_data = "<C:address-data/>" if with_data else ""
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<D:sync-collection xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:carddav">'
        f"<D:sync-token>{token}</D:sync-token>"
        "<D:sync-level>1</D:sync-level>"
        f"<D:prop><D:getetag/>{address_data}</D:prop>"
        "</D:sync-collection>"
    ).encode("utf-8")


def multiget_body(*hrefs: str) -> bytes:
    href_elements = "".join(f"<D:href>{href}</D:href>" for href in hrefs)
    return (
        '<C:addressbook-multiget xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:carddav">'
        f"<D:prop><D:getetag/><C:address-data/></D:prop>{href_elements}"
        "</C:addressbook-multiget>"
    ).encode("utf-8")


def group_vcard(name: str, members: list[str]) -> str:
    lines = ["BEGIN:VCARD", "VERSION:3.0", "X-ADDRESSBOOKSERVER-KIND:group", f"FN:{name}"]
    lines += [f"X-ADDRESSBOOKSERVER-MEMBER:urn:uuid:{m}" for m in members]
    lines.append("END:VCARD")
    return "\r\n".join(lines) + "\r\n"


def multistatus(response) -> MultiStatus:
    assert response.status_code == 207, response.text
    assert response.headers["content-type"].startswith("application/xml")
    return MultiStatus.from_xml(etree.fromstring(response.content))


def discover(client: TestClient, headers: dict[str, str]) -> str:
    """Walk from the principal to the first address book, returning its path."""
    ms = multistatus(client.request("PROPFIND", "/carddav/", headers={**headers, "Depth": "0"}))
    home_set = ms.responses[0].prop(card("addressbook-home-set"))
    return home_set[0].text


def sync(client: TestClient, headers: dict[str, str], book: str, token: str = "") -> MultiStatus:
    return multistatus(client.request("REPORT", book, headers=headers, content=sync_body(token)))


class TestDiscovery:
    def test_options_without_auth(self, client):
        """Test that OPTIONS advertises capabilities without credentials."""
        response = client.options("/carddav/")
        assert response.status_code == 200
        assert "addressbook" in response.headers["dav"]
        assert "REPORT" in response.headers["allow"]

    def test_well_known_redirect(self, client):
        """Test that the well-known URL points at the principal."""
        response = client.get("/.well-known/carddav", follow_redirects=False)
        assert response.status_code == 308
        assert response.headers["location"] == "/carddav/"

    def test_health(self, client):
        """Test the unauthenticated health check."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "carddav"}

    def test_principal(self, client, auth_headers):
        """Test that the principal names the user and the home set."""
        for path in ("/carddav/", "/carddav"):
            ms = multistatus(client.request("PROPFIND", path, headers=auth_headers))
            principal = ms.responses[0]
            assert principal.href.path == "/carddav/"
            assert principal.prop(dav("current-user-principal"))[0].text == "/carddav/"
            email_set = principal.prop(f"{{{CALENDARSERVER_NAMESPACE}}}email-address-set")
            assert email_set[0].text == "mailto:alice@example.com"

    def test_home_set(self, client, auth_headers):
        """Test that the home set lists the default address book."""
        book = discover(client, auth_headers)
        ms = multistatus(client.request("PROPFIND", "/carddav/addressbooks/", headers=auth_headers))

        assert [r.href.path for r in ms.responses] == ["/carddav/addressbooks/", book]
        resource_type = ms.find(book).prop(dav("resourcetype"))
        assert {child.tag for child in resource_type} == {dav("collection"), card("addressbook")}

    def test_addressbook_depth(self, client, auth_headers):
        """Test that Depth: 0 describes only the collection."""
        book = discover(client, auth_headers)
        client.put(f"{book}c-1.vcf", headers=auth_headers, content=ADA)

        ms = multistatus(
            client.request(
                "PROPFIND", book, headers={**auth_headers, "Depth": "1"}, content=PROPFIND_ADDRESSBOOK
            )
        )
        assert len(ms.responses) == 2
        collection = ms.find(book)
        assert collection.prop(f"{{{CALENDARSERVER_NAMESPACE}}}getctag").text
        assert collection.prop(dav("sync-token")).text.startswith("data:,")

        ms = multistatus(
            client.request(
                "PROPFIND", book, headers={**auth_headers, "Depth": "0"}, content=PROPFIND_ADDRESSBOOK
            )
        )
        assert len(ms.responses) == 1


class TestAuthentication:
    def test_missing_credentials(self, client):
        """Test that requests without credentials get the Basic challenge."""
        response = client.request("PROPFIND", "/carddav/")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == 'Basic realm="Life System CardDAV"'

    def test_wrong_password(self, client):
        """Test that wrong passwords are rejected."""
        response = client.request("PROPFIND", "/carddav/", headers=basic_auth(USER_EMAIL, "nope"))
        assert response.status_code == 401

    def test_other_user_is_isolated(self, client, auth_headers, other_auth_headers):
        """Test that another user cannot read or write someone else's address book."""
        book = discover(client, auth_headers)
        client.put(f"{book}c-1.vcf", headers=auth_headers, content=ADA)

        assert client.get(f"{book}c-1.vcf", headers=other_auth_headers).status_code == 404
        assert client.put(f"{book}c-2.vcf", headers=other_auth_headers, content=ADA).status_code == 404
        assert client.request("PROPFIND", book, headers=other_auth_headers).status_code == 404


class TestErrors:
    @pytest.mark.parametrize(
        "path",
        [
            "/carddav/calendars/",
            "/carddav/addressbooks/book-1/c-1.ics",
            "/carddav/addressbooks/book-1/a/b.vcf",
        ],
    )
    def test_unknown_paths(self, client, auth_headers, path):
        """Test that paths outside the CardDAV tree are a 404."""
        assert client.request("PROPFIND", path, headers=auth_headers).status_code == 404

    def test_unknown_resource(self, client, auth_headers):
        """Test that GET of a missing resource is a 404."""
        book = discover(client, auth_headers)
        assert client.get(f"{book}nope.vcf", headers=auth_headers).status_code == 404

    def test_method_not_allowed(self, client, auth_headers):
        """Test that a method the resource does not support is a 405 with Allow."""
        book = discover(client, auth_headers)
        response = client.get(book, headers=auth_headers)
        assert response.status_code == 405
        assert response.headers["allow"] == "OPTIONS, PROPFIND, REPORT"

    def test_unknown_report(self, client, auth_headers):
        """Test that unsupported REPORTs are a 400."""
        book = discover(client, auth_headers)
        body = b'<D:expand-property xmlns:D="DAV:"/>'
        assert client.request("REPORT", book, headers=auth_headers, content=body).status_code == 400

    def test_bad_depth(self, client, auth_headers):
        """Test that invalid Depth headers are a 400."""
        book = discover(client, auth_headers)
        response = client.request("PROPFIND", book, headers={**auth_headers, "Depth": "2"})
        assert response.status_code == 400

    def test_put_not_a_vcard(self, client, auth_headers):
        """Test that bodies without a vCard envelope are a 400."""
        book = discover(client, auth_headers)
        response = client.put(f"{book}c-1.vcf", headers=auth_headers, content="hello")
        assert response.status_code == 400

    def test_put_not_utf8(self, client, auth_headers):
        """Test that bodies that are not UTF-8 are a 400."""
        book = discover(client, auth_headers)
        response = client.put(f"{book}c-1.vcf", headers=auth_headers, content=b"\xff\xfe\x00")
        assert response.status_code == 400

    def test_put_control_character_keeps_book_syncable(self, client, auth_headers):
        """Test that a body XML cannot carry is refused and sync keeps working."""
        book = discover(client, auth_headers)
        client.put(f"{book}c-1.vcf", headers=auth_headers, content=ADA)

        bad = ADA.replace("FN:Ada Lovelace", "FN:Bad\x1b Name").replace("UID:c-1", "UID:bad")
        response = client.put(f"{book}bad.vcf", headers=auth_headers, content=bad)
        assert response.status_code == 400

        ms = sync(client, auth_headers, book)
        assert [r.href.path for r in ms.responses] == [f"{book}c-1.vcf"]
        assert ms.responses[0].prop(card("address-data")).text == ADA

    def test_put_too_large(self, store, users, clock, auth_headers):
        """Test that oversized vCards are a 413."""
        app = create_app(store, users, CardDAVConfig(max_resource_size=32), clock=clock)
        with TestClient(app) as client:
            book = discover(client, auth_headers)
            response = client.put(f"{book}c-1.vcf", headers=auth_headers, content=ADA)
        assert response.status_code == 413


class TestResources:
    def test_create_read_and_sync(self, client, auth_headers):
        """Test discovery, upload, download and a full sync."""
        book = discover(client, auth_headers)

        response = client.put(f"{book}c-1.vcf", headers=auth_headers, content=ADA)
        assert response.status_code == 201
        etag = response.headers["etag"]
        assert etag.startswith('"')

        response = client.get(f"{book}c-1.vcf", headers=auth_headers)
        assert response.status_code == 200
        assert response.text == ADA
        assert response.headers["etag"] == etag
        assert response.headers["content-type"] == "text/vcard; charset=utf-8"
        assert response.headers["last-modified"] == "Fri, 01 Mar 2024 09:00:00 GMT"

        ms = sync(client, auth_headers, book)
        entry = ms.find(f"{book}c-1.vcf")
        assert entry.prop(GET_ETAG).text == etag
        assert entry.prop(card("address-data")).text == ADA
        assert ms.sync_token.startswith("data:,")

    def test_head(self, client, auth_headers):
        """Test that HEAD reports the size without a body."""
        book = discover(client, auth_headers)
        client.put(f"{book}c-1.vcf", headers=auth_headers, content=ADA)

        response = client.head(f"{book}c-1.vcf", headers=auth_headers)
        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["content-length"] == str(len(ADA.encode("utf-8")))

    def test_conditional_update(self, client, auth_headers, clock):
        """Test that If-Match guards updates."""
        book = discover(client, auth_headers)
        etag = client.put(f"{book}c-1.vcf", headers=auth_headers, content=ADA).headers["etag"]
        changed = ADA.replace("Ada Lovelace", "Ada King")

        clock.advance(1)
        response = client.put(
            f"{book}c-1.vcf", headers={**auth_headers, "If-Match": etag}, content=changed
        )
        assert response.status_code == 204
        new_etag = response.headers["etag"]
        assert new_etag != etag

        response = client.put(
            f"{book}c-1.vcf", headers={**auth_headers, "If-Match": etag}, content=ADA
        )
        assert response.status_code == 412
        assert client.get(f"{book}c-1.vcf", headers=auth_headers).headers["etag"] == new_etag

    def test_if_none_match(self, client, auth_headers):
        """Test that If-None-Match: * refuses to overwrite."""
        book = discover(client, auth_headers)
        headers = {**auth_headers, "If-None-Match": "*"}
        assert client.put(f"{book}c-1.vcf", headers=headers, content=ADA).status_code == 201
        assert client.put(f"{book}c-1.vcf", headers=headers, content=ADA).status_code == 412

    def test_delete_and_sync(self, client, auth_headers, clock):
        """Test that deletions are reported once to incremental sync."""
        book = discover(client, auth_headers)
        client.put(f"{book}c-1.vcf", headers=auth_headers, content=ADA)
        token = sync(client, auth_headers, book).sync_token

        clock.advance(1)
        assert client.delete(f"{book}c-1.vcf", headers=auth_headers).status_code == 204
        assert client.get(f"{book}c-1.vcf", headers=auth_headers).status_code == 404
        assert client.delete(f"{book}c-1.vcf", headers=auth_headers).status_code == 404

        clock.advance(1)
        ms = sync(client, auth_headers, book, token)
        deleted = ms.find(f"{book}c-1.vcf")
        assert deleted.status.code == 404
        assert deleted.propstats == []

        ms = sync(client, auth_headers, book, ms.sync_token)
        assert ms.find(f"{book}c-1.vcf") is None

    def test_group_membership(self, client, store, auth_headers):
        """Test that group uploads store and then replace the member list."""
        book = discover(client, auth_headers)
        address_book_id = book.rstrip("/").rsplit("/", 1)[-1]

        body = group_vcard("Friends", ["c-1", "c-2", "c-3"])
        assert client.put(f"{book}g-1.vcf", headers=auth_headers, content=body).status_code == 201
        assert asyncio.run(store.get_group_member_ids("g-1")) == ["c-1", "c-2", "c-3"]

        body = group_vcard("Friends", ["c-2"])
        assert client.put(f"{book}g-1.vcf", headers=auth_headers, content=body).status_code == 204
        assert asyncio.run(store.get_group_member_ids("g-1")) == ["c-2"]

        group = asyncio.run(store.get_group(USER_ID, address_book_id, "g-1"))
        assert group.vcard_data == body
        assert client.get(f"{book}g-1.vcf", headers=auth_headers).text == body

    def test_multiget(self, client, auth_headers):
        """Test that multiget returns found resources and a 404 for the rest."""
        book = discover(client, auth_headers)
        client.put(f"{book}c-1.vcf", headers=auth_headers, content=ADA)

        response = client.request(
            "REPORT",
            book,
            headers=auth_headers,
            content=multiget_body(f"{book}c-1.vcf", f"{book}gone.vcf"),
        )
        ms = multistatus(response)
        assert ms.find(f"{book}c-1.vcf").prop(card("address-data")).text == ADA
        assert ms.find(f"{book}gone.vcf").status.code == 404

    def test_query_returns_everything(self, client, auth_headers):
        """Test that addressbook-query answers with the whole collection."""
        book = discover(client, auth_headers)
        client.put(f"{book}c-1.vcf", headers=auth_headers, content=ADA)
        body = (
            b'<C:addressbook-query xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:carddav">'
            b"<D:prop><D:getetag/></D:prop>"
            b'<C:filter><C:prop-filter name="FN"><C:text-match>Grace</C:text-match>'
            b"</C:prop-filter></C:filter></C:addressbook-query>"
        )
        ms = multistatus(client.request("REPORT", book, headers=auth_headers, content=body))
        assert ms.find(f"{book}c-1.vcf") is not None


def test_debug_logging_redacts_credentials(store, users, clock, auth_headers, caplog):
    """Test that debug dumps never contain the password."""
    app = create_app(store, users, CardDAVConfig(debug=True), clock=clock)
    with caplog.at_level(logging.INFO, logger="life_carddav.http"):
        with TestClient(app) as client:
            client.request("PROPFIND", "/carddav/", headers=auth_headers)

    assert ">>> INCOMING REQUEST: PROPFIND /carddav/" in caplog.text
    assert "<<< OUTGOING RESPONSE: 207" in caplog.text
    assert "Basic [REDACTED]" in caplog.text
    assert auth_headers["Authorization"].split()[1] not in caplog.text


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/carddav", (ResourceType.ROOT, None, None)),
        ("/carddav/", (ResourceType.ROOT, None, None)),
        ("/carddav/addressbooks", (ResourceType.ADDRESSBOOK_HOME_SET, None, None)),
        ("/carddav/addressbooks/b/", (ResourceType.ADDRESSBOOK, "b", None)),
        ("/carddav/addressbooks/b/c.vcf", (ResourceType.ADDRESS_OBJECT, "b", "c")),
    ],
)
def test_resolve_path(path, expected):
    """Test request path resolution."""
    assert resolve_path(path, "/carddav") == expected


@pytest.mark.parametrize("path", ["/other", "/carddavx", "/carddav/addressbooks/b/.vcf"])
def test_resolve_path_unknown(path):
    """Test that paths outside the tree are a 404."""
    with pytest.raises(HTTPError) as exc_info:
        resolve_path(path, "/carddav")
    assert exc_info.value.code == 404


class FailingStore(MemoryCardDAVStore):
    """Store whose address-book listing fails with a configurable error."""

    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    async def list_addressbooks(self, user_id):
        raise self.error


@pytest.mark.parametrize(
    "error, status",
    [(UpstreamError("connection refused"), 502), (RuntimeError("secret detail"), 500)],
)
def test_store_failures(users, clock, auth_headers, error, status):
    """Test that store failures become 502/500 without leaking internals."""
    app = create_app(FailingStore(error), users, clock=clock)
    with TestClient(app) as client:
        response = client.request("PROPFIND", "/carddav/", headers=auth_headers)

    assert response.status_code == status
    assert "secret detail" not in response.text
