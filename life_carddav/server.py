"""CardDAV HTTP server."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC
from email.utils import format_datetime
from enum import Enum
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse
from starlette.responses import Response as StarletteResponse
from starlette.routing import Route

from .auth import AuthUser, BasicAuthenticator, UserDirectory
from .carddav.backend import CardDAVStore
from .carddav.carddav import CAPABILITY_ADDRESSBOOK, VCARD_CONTENT_TYPE, CardDAVPaths
from .carddav.report import (
    AddressBookMultigetReport,
    SyncCollectionReport,
    parse_props_request,
    parse_report,
)
from .carddav.server import (
    addressbook_home_set_response,
    addressbook_list_response,
    format_ctag,
    multiget_response,
    principal_response,
    query_response,
    sync_response,
)
from .carddav.sync import CardDAVEngine, Clock, encode_sync_token
from .config import CardDAVConfig
from .internal import Depth, HTTPError, UpstreamError, parse_depth, serve_error, serve_multistatus
from .webdav import quote_etag

logger = logging.getLogger("life_carddav.server")

DAV_CAPABILITIES = f"1, 2, 3, {CAPABILITY_ADDRESSBOOK}, access-control"
METHODS = ["OPTIONS", "GET", "HEAD", "PUT", "DELETE", "PROPFIND", "REPORT"]


class ResourceType(Enum):
    """CardDAV resource types based on path depth."""

    ROOT = "root"
    ADDRESSBOOK_HOME_SET = "addressbook-home-set"
    ADDRESSBOOK = "addressbook"
    ADDRESS_OBJECT = "address-object"


ALLOWED_METHODS: dict[ResourceType, tuple[str, ...]] = {
    ResourceType.ROOT: ("OPTIONS", "PROPFIND"),
    ResourceType.ADDRESSBOOK_HOME_SET: ("OPTIONS", "PROPFIND"),
    ResourceType.ADDRESSBOOK: ("OPTIONS", "PROPFIND", "REPORT"),
    ResourceType.ADDRESS_OBJECT: ("OPTIONS", "GET", "HEAD", "PUT", "DELETE"),
}


class MethodNotAllowed(HTTPError):
    """405 carrying the methods the resource does support."""

    def __init__(self, allowed: Sequence[str]) -> None:
        super().__init__(405)
        self.allowed = list(allowed)

    @property
    def headers(self) -> dict[str, str]:
        return {"Allow": ", ".join(self.allowed)}


def resolve_path(path: str, prefix: str = "/carddav") -> tuple[ResourceType, str | None, str | None]:
    """Map a request path to a resource type and its identifiers.

    Trailing slashes are not significant.

    Args:
        path: Request path
        prefix: URL prefix of the CardDAV tree

    Returns:
        (resource type, address book id, resource id)

    Raises:
        HTTPError: If the path names nothing in the CardDAV tree (404)
    """
    # Starlette hands over the percent-decoded path
    if prefix:
        if path != prefix and not path.startswith(prefix + "/"):
            raise HTTPError(404, Exception(f"no such resource: {path}"))
        path = path[len(prefix) :]

    segments = [s for s in path.split("/") if s]

    if not segments:
        return ResourceType.ROOT, None, None
    if segments[0] != "addressbooks" or len(segments) > 3:
        raise HTTPError(404, Exception(f"no such resource: {path}"))
    if len(segments) == 1:
        return ResourceType.ADDRESSBOOK_HOME_SET, None, None
    if len(segments) == 2:
        return ResourceType.ADDRESSBOOK, segments[1], None

    name = segments[2]
    if not name.endswith(".vcf") or name == ".vcf":
        raise HTTPError(404, Exception(f"no such resource: {path}"))
    return ResourceType.ADDRESS_OBJECT, segments[1], name[: -len(".vcf")]


class Handler:
    """CardDAV request handler.

    Args:
        engine: CardDAV engine
        authenticator: Basic authentication
        prefix: URL prefix of the CardDAV tree
        debug: Log every request and response
    """

    def __init__(
        self,
        engine: CardDAVEngine,
        authenticator: BasicAuthenticator,
        prefix: str = "/carddav",
        debug: bool = False,
    ) -> None:
        self.engine = engine
        self.authenticator = authenticator
        self.prefix = prefix.rstrip("/")
        self.paths = CardDAVPaths(self.prefix)
        self.debug = debug

    async def handle(self, request: Request) -> StarletteResponse:
        """Handle a CardDAV HTTP request.

        Args:
            request: Starlette request

        Returns:
            Starlette response
        """
        body = await request.body()

        if self.debug:
            from .debug import log_request

            log_request(request.method, str(request.url.path), dict(request.headers.items()), body)

        try:
            response = await self._dispatch(request, body)
        except HTTPError as e:
            if e.code >= 500:
                logger.error(f"{request.method} {request.url.path}: {e}")
            else:
                logger.debug(f"{request.method} {request.url.path}: {e}")
            response = serve_error(e, getattr(e, "headers", None))
        except UpstreamError as e:
            logger.error(f"{request.method} {request.url.path}: store unavailable: {e}")
            response = serve_error(HTTPError(502, e))
        except Exception:
            logger.exception(f"Unhandled error in {request.method} {request.url.path}")
            response = serve_error(HTTPError(500))

        if self.debug:
            self._log_response(response)
        return response

    async def _dispatch(self, request: Request, body: bytes) -> StarletteResponse:
        if request.method == "OPTIONS":
            return self.options()

        user = await self.authenticator.authenticate(request.headers.get("authorization"))

        resource_type, address_book_id, resource_id = resolve_path(request.url.path, self.prefix)
        allowed = ALLOWED_METHODS[resource_type]
        if request.method not in allowed:
            raise MethodNotAllowed(allowed)

        if resource_type == ResourceType.ROOT:
            return await self.propfind_principal(user)
        if resource_type == ResourceType.ADDRESSBOOK_HOME_SET:
            return await self.propfind_home_set(request, user)
        if resource_type == ResourceType.ADDRESSBOOK:
            assert address_book_id is not None
            if request.method == "REPORT":
                return await self.report(user, address_book_id, body)
            return await self.propfind_addressbook(request, user, address_book_id, body)

        assert address_book_id is not None and resource_id is not None
        if request.method in ("GET", "HEAD"):
            return await self.head_get(request, user, address_book_id, resource_id)
        if request.method == "PUT":
            return await self.put(request, user, address_book_id, resource_id, body)
        return await self.delete(request, user, address_book_id, resource_id)

    def options(self) -> StarletteResponse:
        """Advertise DAV capabilities; no authentication required."""
        return StarletteResponse(
            status_code=200,
            headers={"DAV": DAV_CAPABILITIES, "Allow": ", ".join(METHODS)},
        )

    def _depth(self, request: Request) -> Depth:
        return parse_depth(request.headers.get("depth", "1"))

    async def propfind_principal(self, user: AuthUser) -> StarletteResponse:
        books = await self.engine.address_books(user.user_id)
        return serve_multistatus(principal_response(self.paths, user.email, books))

    async def propfind_home_set(self, request: Request, user: AuthUser) -> StarletteResponse:
        depth = self._depth(request)
        books = await self.engine.address_books(user.user_id)
        return serve_multistatus(addressbook_home_set_response(self.paths, books, depth))

    async def propfind_addressbook(
        self, request: Request, user: AuthUser, address_book_id: str, body: bytes
    ) -> StarletteResponse:
        depth = self._depth(request)
        props = parse_props_request(body)
        book, contacts, groups = await self.engine.list_resources(user.user_id, address_book_id)
        now = self.engine.now()
        ms = addressbook_list_response(
            self.paths,
            book,
            contacts,
            groups,
            sync_token=encode_sync_token(now),
            ctag=format_ctag(now),
            depth=depth,
            include_data="address-data" in props,
            max_resource_size=self.engine.max_resource_size,
        )
        return serve_multistatus(ms)

    async def report(self, user: AuthUser, address_book_id: str, body: bytes) -> StarletteResponse:
        try:
            report = parse_report(body)
        except ValueError as e:
            raise HTTPError(400, e) from e

        if isinstance(report, AddressBookMultigetReport):
            result = await self.engine.multiget(user.user_id, address_book_id, report.hrefs)
            ms = multiget_response(
                self.paths, address_book_id, result.contacts, result.groups, result.missing_hrefs
            )
        elif isinstance(report, SyncCollectionReport):
            changes = await self.engine.sync_changes(
                user.user_id, address_book_id, report.sync_token
            )
            ms = sync_response(
                self.paths, address_book_id, changes, include_data=report.wants_address_data
            )
        else:
            contacts, groups = await self.engine.query(user.user_id, address_book_id, report.query)
            ms = query_response(self.paths, address_book_id, contacts, groups)

        return serve_multistatus(ms)

    async def head_get(
        self, request: Request, user: AuthUser, address_book_id: str, resource_id: str
    ) -> StarletteResponse:
        resource = await self.engine.get_resource(user.user_id, address_book_id, resource_id)
        content = resource.vcard_data.encode("utf-8")
        headers = {
            "ETag": quote_etag(resource.etag),
            "Last-Modified": format_datetime(resource.last_modified.astimezone(UTC), usegmt=True),
        }
        if request.method == "HEAD":
            headers["Content-Length"] = str(len(content))
            return StarletteResponse(status_code=200, headers=headers, media_type=VCARD_CONTENT_TYPE)
        return StarletteResponse(
            content=content, status_code=200, headers=headers, media_type=VCARD_CONTENT_TYPE
        )

    async def put(
        self,
        request: Request,
        user: AuthUser,
        address_book_id: str,
        resource_id: str,
        body: bytes,
    ) -> StarletteResponse:
        try:
            vcard_data = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise HTTPError(400, Exception("vCard body is not valid UTF-8")) from e

        result = await self.engine.put_resource(
            user.user_id,
            address_book_id,
            resource_id,
            vcard_data,
            if_match=request.headers.get("if-match", ""),
            if_none_match=request.headers.get("if-none-match", ""),
        )
        return StarletteResponse(
            status_code=201 if result.created else 204,
            headers={"ETag": quote_etag(result.etag)},
        )

    async def delete(
        self, request: Request, user: AuthUser, address_book_id: str, resource_id: str
    ) -> StarletteResponse:
        await self.engine.delete_resource(
            user.user_id,
            address_book_id,
            resource_id,
            if_match=request.headers.get("if-match", ""),
        )
        return StarletteResponse(status_code=204)

    def _log_response(self, response: StarletteResponse) -> None:
        from .debug import log_response

        headers: dict[str, Any] = dict(response.headers.items())
        log_response(response.status_code, headers, getattr(response, "body", None))


def create_app(
    store: CardDAVStore,
    users: UserDirectory,
    config: CardDAVConfig | None = None,
    clock: Clock | None = None,
) -> Starlette:
    """Create a Starlette app serving CardDAV.

    Args:
        store: CardDAV store
        users: User directory for Basic authentication
        config: Server configuration (defaults to CardDAVConfig())
        clock: Time source for the engine

    Returns:
        Starlette application
    """
    config = config or CardDAVConfig()
    engine = CardDAVEngine(
        store,
        clock=clock,
        max_resource_size=config.max_resource_size,
        vcard_version=config.vcard_version,
    )
    handler = Handler(
        engine,
        BasicAuthenticator(users, realm=config.realm),
        prefix=config.prefix,
        debug=config.debug,
    )

    async def carddav_handler(request: Request) -> StarletteResponse:
        return await handler.handle(request)

    async def well_known(request: Request) -> StarletteResponse:
        return RedirectResponse(url=handler.paths.principal, status_code=308)

    async def health(request: Request) -> StarletteResponse:
        return JSONResponse({"status": "ok", "service": "carddav"})

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/.well-known/carddav", well_known, methods=["GET", "PROPFIND", "OPTIONS"]),
    ]
    if config.prefix:
        routes.append(Route(config.prefix, carddav_handler, methods=METHODS))
        routes.append(Route(f"{config.prefix}/{{path:path}}", carddav_handler, methods=METHODS))
    else:
        routes.append(Route("/{path:path}", carddav_handler, methods=METHODS))

    app = Starlette(routes=routes)
    app.state.engine = engine
    return app
