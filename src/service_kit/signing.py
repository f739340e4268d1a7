"""
Request signing for the HTTP client.

Every request carries an ``X-HTTP-GoKit-RequestId`` header of the form
``<unix_seconds>-<7 digit nonce>-<sha1 hex>``. The hash covers the literal
"xhttp", the timestamp, the nonce, the method, the URL path, the raw query
and the client key, concatenated without separators. A server holding the
same key can recompute it to authenticate the caller.
"""

import hashlib
import hmac
import secrets
import time
from typing import Mapping, Optional

import httpx

from .exceptions import InvalidArgumentError

REQUEST_ID_HEADER = "X-HTTP-GoKit-RequestId"
MAX_CLOCK_SKEW = 300


def request_id(
    timestamp: str,
    nonce: str,
    method: str,
    path: str,
    raw_query: str,
    key: str,
) -> str:
    """Compute the hex SHA-1 request ID."""
    data = "xhttp" + str(timestamp) + str(nonce) + method + path + raw_query + key
    return hashlib.sha1(data.encode("utf-8")).hexdigest()


def new_nonce() -> str:
    """Random 7-digit decimal nonce."""
    return str(1000000 + secrets.randbelow(9000000))


def split_target(url: httpx.URL) -> tuple[str, str]:
    """
    Return the (path, raw query) pair that is signed for url.

    Both come from the request target as sent on the wire, with an empty
    path normalized to "/".
    """
    target = url.raw_path.decode("ascii")
    path, _, query = target.partition("?")
    return path or "/", query


def build_request_id_header(
    method: str,
    url: httpx.URL,
    key: str,
    timestamp: Optional[str] = None,
    nonce: Optional[str] = None,
) -> tuple[str, str, str, str]:
    """
    Build the signing header value.

    Returns:
        Tuple of (header value, timestamp, nonce, request id)
    """
    timestamp = timestamp if timestamp is not None else str(int(time.time()))
    nonce = nonce if nonce is not None else new_nonce()
    path, query = split_target(url)
    rid = request_id(timestamp, nonce, method.upper(), path, query, key)
    return f"{timestamp}-{nonce}-{rid}", timestamp, nonce, rid


def parse_request_id_header(value: str) -> tuple[str, str, str]:
    """
    Split a header value into (timestamp, nonce, request id).

    Raises:
        InvalidArgumentError: If the value is malformed
    """
    parts = value.strip().split("-")
    if len(parts) != 3 or not parts[0].isdigit() or not parts[1].isdigit() or not parts[2]:
        raise InvalidArgumentError(
            code="invalid_request_id",
            message=f"malformed request id header: {value!r}",
        )
    return parts[0], parts[1], parts[2].lower()


def verify_request_id(
    header: str,
    method: str,
    path: str,
    raw_query: str,
    key: str,
    now: Optional[float] = None,
    max_skew: int = MAX_CLOCK_SKEW,
) -> bool:
    """
    Check a request ID header against the request it arrived with.

    Args:
        header: Value of the X-HTTP-GoKit-RequestId header
        method: Request method
        path: Request path ("/" when empty)
        raw_query: Raw query string without the leading "?"
        key: Client key shared with the caller
        now: Server clock in unix seconds (defaults to time.time())
        max_skew: Largest accepted distance from the server clock, in seconds

    Returns:
        True if the hash matches and the timestamp is fresh
    """
    try:
        timestamp, nonce, rid = parse_request_id_header(header)
    except InvalidArgumentError:
        return False

    now = time.time() if now is None else now
    if abs(now - int(timestamp)) > max_skew:
        return False

    expected = request_id(timestamp, nonce, method.upper(), path or "/", raw_query, key)
    return hmac.compare_digest(expected, rid)


def verify_request(
    method: str,
    url: str,
    headers: Mapping[str, str],
    key: str,
    now: Optional[float] = None,
) -> bool:
    """Verify a request given its method, full URL and headers."""
    header = httpx.Headers(headers).get(REQUEST_ID_HEADER)
    if not header:
        return False
    try:
        path, query = split_target(httpx.URL(url))
    except httpx.InvalidURL:
        return False
    return verify_request_id(header, method, path, query, key, now=now)
