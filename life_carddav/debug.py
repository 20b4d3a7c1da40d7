"""Debug logging utilities for the CardDAV server."""

from __future__ import annotations

import logging
from typing import Any

from lxml import etree

logger = logging.getLogger("life_carddav.http")
package_logger = logging.getLogger("life_carddav")

INTERESTING_REQUEST_HEADERS = [
    "Content-Type",
    "Content-Length",
    "Depth",
    "If-Match",
    "If-None-Match",
    "Authorization",
    "User-Agent",
]
INTERESTING_RESPONSE_HEADERS = ["Content-Type", "Content-Length", "ETag", "DAV", "Allow"]

PREVIEW_BYTES = 200


def format_xml(xml_bytes: bytes | str) -> str:
    """Format XML with proper indentation.

    Args:
        xml_bytes: XML content as bytes or string

    Returns:
        Pretty-formatted XML string, or the input decoded as-is when it is
        not well-formed
    """
    if isinstance(xml_bytes, str):
        xml_bytes = xml_bytes.encode("utf-8")
    try:
        parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False)
        root = etree.fromstring(xml_bytes, parser)
    except etree.XMLSyntaxError:
        return xml_bytes.decode("utf-8", errors="replace")
    return etree.tostring(root, pretty_print=True, encoding="unicode")


def is_xml_content(content_type: str | None) -> bool:
    """Check if content type is XML."""
    if not content_type:
        return False
    return any(t in content_type.lower() for t in ("application/xml", "text/xml"))


def is_vcard_content(content_type: str | None) -> bool:
    """Check if content type is a vCard."""
    if not content_type:
        return False
    return any(t in content_type.lower() for t in ("text/vcard", "text/x-vcard"))


def redact_header(name: str, value: str) -> str:
    """Hide credentials, keeping the authentication scheme visible."""
    if name.lower() == "authorization":
        scheme, _, _ = value.partition(" ")
        return f"{scheme} [REDACTED]"
    return value


def _log_headers(headers: dict[str, Any], names: list[str]) -> None:
    logger.info("Headers:")
    for header in names:
        value = headers.get(header.lower(), headers.get(header))
        if value:
            logger.info(f"  {header}: {redact_header(header, str(value))}")


def _log_body(title: str, content_type: str, body: bytes) -> None:
    logger.info("-" * 80)
    logger.info(title)

    if is_xml_content(content_type) or body.lstrip().startswith(b"<"):
        lines = format_xml(body).split("\n")
    elif is_vcard_content(content_type):
        lines = body.decode("utf-8", errors="replace").splitlines()
    else:
        preview = body[:PREVIEW_BYTES].decode("utf-8", errors="replace")
        logger.info(f"  [{len(body)} bytes] {preview}")
        if len(body) > PREVIEW_BYTES:
            logger.info(f"  ... ({len(body) - PREVIEW_BYTES} more bytes)")
        return

    for line in lines:
        if line.strip():
            logger.info(f"  {line}")


def log_request(method: str, path: str, headers: dict[str, str], body: bytes | None) -> None:
    """Log an incoming HTTP request.

    Args:
        method: HTTP method
        path: Request path
        headers: Request headers
        body: Request body (if any)
    """
    logger.info("=" * 80)
    logger.info(f">>> INCOMING REQUEST: {method} {path}")
    logger.info("-" * 80)

    _log_headers(headers, INTERESTING_REQUEST_HEADERS)

    if body:
        _log_body("Request Body:", headers.get("content-type", ""), body)

    logger.info("=" * 80)


def log_response(status_code: int, headers: dict[str, Any], body: bytes | None) -> None:
    """Log an outgoing HTTP response.

    Args:
        status_code: HTTP status code
        headers: Response headers
        body: Response body (if any)
    """
    logger.info("=" * 80)
    logger.info(f"<<< OUTGOING RESPONSE: {status_code}")
    logger.info("-" * 80)

    _log_headers(headers, INTERESTING_RESPONSE_HEADERS)

    if body:
        _log_body("Response Body:", headers.get("content-type", ""), body)

    logger.info("=" * 80)
    logger.info("")  # Empty line for readability


def setup_logging(debug: bool = False) -> None:
    """Configure console logging for the server.

    In debug mode every request and response is dumped as well.
    """
    package_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG if debug else logging.INFO)
    handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))

    package_logger.addHandler(handler)

    # Prevent propagation to avoid duplicate logs
    package_logger.propagate = False
