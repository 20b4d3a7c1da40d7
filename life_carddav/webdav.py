"""Conditional request headers."""

from __future__ import annotations


class ConditionalMatch(str):
    """Conditional match value from If-Match or If-None-Match headers.

    According to RFC 7232 sections 3.1 and 3.2.
    The value can either be a wildcard (*) or an ETag. ETags are compared
    with their surrounding double quotes stripped.
    """

    def is_set(self) -> bool:
        """Check if the conditional match is set."""
        return bool(self.strip())

    def is_wildcard(self) -> bool:
        """Check if the conditional match is a wildcard."""
        return self.strip() == "*"

    def get_etag(self) -> str:
        """Get the ETag value without quotes."""
        if not self.is_set() or self.is_wildcard():
            return ""
        return normalize_etag(self)

    def match_etag(self, etag: str) -> bool:
        """Check if the conditional match matches an ETag.

        Args:
            etag: Stored ETag, quoted or not

        Returns:
            True if matches, False otherwise
        """
        if not etag:
            return False
        if self.is_wildcard():
            return True

        return self.get_etag() == normalize_etag(etag)


def normalize_etag(etag: str) -> str:
    """Strip whitespace and every double quote from an ETag."""
    return etag.strip().replace('"', "")


def quote_etag(etag: str) -> str:
    """Return an ETag wrapped in double quotes, as sent on the wire."""
    etag = etag.strip()
    if etag.startswith('"') or etag.startswith('W/"'):
        return etag
    return f'"{etag}"'
