"""
Data models for the HTTP client.

This module defines the per-request trace record, the cookie override and
the set of per-call request overrides.
"""

import threading
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Mapping, Optional, Sequence, Union

import httpx

BodyType = Union[str, bytes, bytearray, memoryview, Any]


@dataclass
class Tracing:
    """Per-request trace record."""

    client_id: str
    request_id: str = ""
    timestamp: str = ""  # unix seconds
    nonce: str = ""  # 7 decimal digits
    attempts: int = 0  # every attempt counts, including the first
    send_time: int = 0  # milliseconds until response headers arrived
    recv_time: int = 0  # milliseconds spent reading the body

    @property
    def retries(self) -> int:
        """Additional attempts after the first one (0 means it succeeded at once)."""
        return max(self.attempts - 1, 0)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["retries"] = self.retries
        return data


@dataclass
class Cookie:
    """A cookie sent with a single request."""

    name: str
    value: str
    domain: str = ""
    path: str = "/"

    def header_value(self) -> str:
        return f"{self.name}={self.value}"


@dataclass
class RequestOptions:
    """
    Per-call overrides for a request.

    Every field is optional; unset fields leave the client defaults alone.

    - host: value of the Host header
    - headers: merged into the request headers (replacing same names)
    - raw_headers: (name, value) pairs; repeated names keep every value
    - client: httpx.Client used instead of the client's own
    - cookies: appended to the Cookie header
    - form: form fields; request body for POST/PUT/PATCH, query otherwise
    - query: query string fields
    - values: name -> value(s), same routing as form
    - json: serialized as the JSON request body
    - body: raw request body (str, bytes or a buffer with getvalue()/read())
    - files: field name -> file path; switches to multipart/form-data
    - cancel: event that aborts pending retries and the current attempt

    The body comes from at most one of json, body or (for POST, PUT and
    PATCH) form/values/files; combining them raises "conflicting_body".
    """

    host: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    raw_headers: Sequence[tuple[str, str]] = field(default_factory=list)
    client: Optional[httpx.Client] = None
    cookies: Sequence[Cookie] = field(default_factory=list)
    form: Mapping[str, Any] = field(default_factory=dict)
    query: Mapping[str, Any] = field(default_factory=dict)
    values: Mapping[str, Any] = field(default_factory=dict)
    json: Any = None
    body: Optional[BodyType] = None
    files: Mapping[str, str] = field(default_factory=dict)
    cancel: Optional[threading.Event] = None

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))

    @classmethod
    def build(cls, options: Optional["RequestOptions"] = None, **kwargs: Any) -> tuple["RequestOptions", list[str]]:
        """
        Combine an options object with keyword overrides.

        Keyword arguments win over fields of ``options``. Names that are
        not override fields are ignored.

        Returns:
            The combined options and the list of ignored names
        """
        base = options if options is not None else cls()
        known = cls.field_names()
        ignored = sorted(name for name in kwargs if name not in known)
        updates = {name: value for name, value in kwargs.items() if name in known}
        if not updates:
            return base, ignored

        merged = {f.name: getattr(base, f.name) for f in fields(cls)}
        merged.update(updates)
        return cls(**merged), ignored
