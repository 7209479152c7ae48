"""URL validation helpers."""

from urllib.parse import urlparse


def is_http_url(value: str | None) -> bool:
    """Return True for absolute ``http``/``https`` URLs with a host.

    Hosts without a TLD (``localhost``, bare names) are accepted.
    """
    if not value or not isinstance(value, str):
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def normalize_url(value: str) -> str:
    return value.strip().rstrip("/")
