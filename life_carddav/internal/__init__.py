"""Internal WebDAV primitives."""

from .elements import (
    CARDDAV_NAMESPACE,
    NAMESPACE,
    Href,
    MultiStatus,
    Prop,
    PropStat,
    Response,
    Status,
    not_found_response,
    ok_response,
)
from .internal import Depth, HTTPError, UpstreamError, parse_depth
from .server import XML_CONTENT_TYPE, serve_error, serve_multistatus

__all__ = [
    "CARDDAV_NAMESPACE",
    "NAMESPACE",
    "Href",
    "MultiStatus",
    "Prop",
    "PropStat",
    "Response",
    "Status",
    "not_found_response",
    "ok_response",
    "Depth",
    "HTTPError",
    "UpstreamError",
    "parse_depth",
    "XML_CONTENT_TYPE",
    "serve_error",
    "serve_multistatus",
]
