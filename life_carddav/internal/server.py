"""Internal server utilities for WebDAV."""

from __future__ import annotations

from lxml import etree
from starlette.responses import Response as StarletteResponse

from .elements import MultiStatus
from .internal import HTTPError

XML_CONTENT_TYPE = "application/xml; charset=utf-8"


def serve_error(err: HTTPError, headers: dict[str, str] | None = None) -> StarletteResponse:
    """Serve an error as a plain-text response."""
    return StarletteResponse(
        content=err.phrase if err.err is None else str(err.err),
        status_code=err.code,
        headers=headers,
        media_type="text/plain; charset=utf-8",
    )


def serve_multistatus(ms: MultiStatus) -> StarletteResponse:
    """Serve a multistatus response."""
    xml_elem = ms.to_xml()
    xml_bytes = etree.tostring(
        xml_elem, encoding="utf-8", xml_declaration=True, pretty_print=True
    )
    return StarletteResponse(
        content=xml_bytes,
        status_code=207,  # Multi-Status
        media_type=XML_CONTENT_TYPE,
    )
