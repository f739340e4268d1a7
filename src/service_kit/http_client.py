"""
HTTP client for the service kit.

This module provides a configurable request builder on top of httpx with:
- per-call overrides (headers, form, query, JSON, raw body, multipart files)
- request signing through the X-HTTP-GoKit-RequestId header
- retries of transport failures with a fixed or growing pause
- a TTL response cache per HTTP method
- optional wire dumps of the request and response
- a trace record per request (IDs, attempts, send and receive times)
"""

import hashlib
import json
import os
import posixpath
import threading
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Iterator, Mapping, Optional, Union
from urllib.parse import urlencode, urlsplit

import httpx

from . import __version__
from .config import DumpConfig, HTTPConfig, RetryConfig, TimeoutConfig
from .enums import HTTPMethod
from .exceptions import InvalidArgumentError, PreconditionFailedError, TransportError
from .models import RequestOptions, Tracing
from .multipart import MultipartEncoder
from .retry_manager import RetryManager
from .signing import REQUEST_ID_HEADER, build_request_id_header
from .ttl_cache import ABSENT, TTLCache

if TYPE_CHECKING:
    from .rotating_logger import Logger

DEFAULT_USER_AGENT = f"GoKit XHTTP Client/{__version__}"
SUPPORTED_METHODS = tuple(method.value for method in HTTPMethod)

_shared_cache: Optional[TTLCache] = None
_shared_cache_lock = threading.Lock()


def shared_response_cache() -> TTLCache:
    """
    Process-wide response cache used by clients built without one.

    Clients that need isolation pass their own TTLCache instead.
    """
    global _shared_cache
    with _shared_cache_lock:
        if _shared_cache is None:
            _shared_cache = TTLCache()
        return _shared_cache


def _elapsed_ms(start_time: float) -> int:
    """Calculate elapsed time in milliseconds."""
    return int((time.perf_counter() - start_time) * 1000)


def _remove_partial(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _pairs(params: Mapping[str, Any]) -> list[tuple[str, str]]:
    pairs = []
    for name, value in params.items():
        if isinstance(value, (list, tuple)):
            pairs.extend((name, _stringify(item)) for item in value)
        else:
            pairs.append((name, _stringify(value)))
    return pairs


def _replace_header(headers: list[tuple[str, str]], name: str, value: str) -> list[tuple[str, str]]:
    lowered = name.lower()
    kept = [(n, v) for n, v in headers if n.lower() != lowered]
    kept.append((name, value))
    return kept


def _has_header(headers: list[tuple[str, str]], name: str) -> bool:
    lowered = name.lower()
    return any(n.lower() == lowered for n, _ in headers)


def _body_bytes(body: Any) -> bytes:
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    if hasattr(body, "getvalue"):
        return _body_bytes(body.getvalue())
    if hasattr(body, "read"):
        return _body_bytes(body.read())
    raise InvalidArgumentError(
        code="unsupported_body",
        message=f"unsupported request body type: {type(body).__name__}",
    )


@dataclass
class _PreparedRequest:
    """A request after overrides were applied, replayable per attempt."""

    url: httpx.URL
    headers: list[tuple[str, str]]
    content: Optional[bytes] = None
    multipart: Optional[MultipartEncoder] = None

    def stream(self) -> Union[bytes, Iterator[bytes], None]:
        if self.multipart is not None:
            return iter(self.multipart)
        return self.content

    @property
    def body_image(self) -> bytes:
        if self.multipart is not None:
            return self.multipart.describe()
        return self.content or b""


class HTTPResponse:
    """
    Response of HTTPClient.do.

    The body is read lazily. ``read`` drains and closes the stream and keeps
    the bytes, so repeated reads (including reads of a response served from
    the cache) return the same content.
    """

    def __init__(
        self,
        method: str,
        url: str,
        response: httpx.Response,
        tracing: Tracing,
        dumps: Optional[list[bytes]] = None,
        cache_key: str = "",
    ) -> None:
        self.method = method
        self.url = url
        self.response = response
        self.tracing = tracing
        self.dumps = dumps if dumps is not None else []
        self.cache_key = cache_key
        self._content: Optional[bytes] = None
        self._closed = False
        self._lock = threading.Lock()

    def __enter__(self) -> "HTTPResponse":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<HTTPResponse {self.method} {self.url} [{self.status_code}]>"

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.response.headers

    @property
    def content_length(self) -> int:
        """Body size from Content-Length, the buffered body, or -1 if unknown."""
        value = self.response.headers.get("Content-Length")
        if value is not None and value.isdigit():
            return int(value)
        if self._content is not None:
            return len(self._content)
        return -1

    @property
    def closed(self) -> bool:
        return self._closed

    def get_header(self, name: str) -> str:
        return self.response.headers.get(name, "")

    def read(self) -> bytes:
        """
        Return the whole body.

        Raises:
            PreconditionFailedError: If the response was closed unread
            TransportError: If the connection fails while reading
        """
        with self._lock:
            if self._content is not None:
                return self._content
            if self._closed:
                raise PreconditionFailedError(
                    code="closed",
                    message="response body is already closed",
                )

            start_time = time.perf_counter()
            try:
                self._content = self.response.read()
            except httpx.HTTPError as e:
                raise TransportError(
                    code="transport_failed",
                    message=f"read response body failed: {e}",
                    details={"url": self.url},
                    trace=self.tracing,
                ) from e
            finally:
                self.response.close()
                self._closed = True
                self.tracing.recv_time = _elapsed_ms(start_time)
            return self._content

    def text(self) -> str:
        content = self.read()
        return content.decode(self.response.encoding or "utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.read())

    def file(self, path: Optional[str] = None) -> int:
        """
        Save the body to a file.

        Without a path the name is taken from the URL, falling back to
        index.html. Missing parent directories are created.

        Args:
            path: Target file path, or a directory ending with a separator

        Returns:
            Number of bytes written

        Raises:
            PreconditionFailedError: If the file exists ("exists") or the
                status is not 200 ("bad_status")
            TransportError: If the connection fails while reading; the
                partial file is removed
        """
        name = (path or "").strip()
        if not name:
            name = posixpath.basename(urlsplit(self.url).path) or "index.html"
        else:
            directory, base = os.path.split(name)
            if not base:
                name = os.path.join(directory, "index.html")
            if directory and not os.path.exists(directory):
                os.makedirs(directory, exist_ok=True)

        if os.path.exists(name):
            raise PreconditionFailedError(
                code="exists",
                message=f"file {name} is exists",
                details={"path": name},
            )

        if self.status_code != 200:
            self.close()
            raise PreconditionFailedError(
                code="bad_status",
                message=f"bad status code: {self.status_code}",
                details={"status_code": self.status_code},
            )

        with self._lock:
            if self._content is None and self._closed:
                raise PreconditionFailedError(
                    code="closed",
                    message="response body is already closed",
                )

            if self._content is not None:
                with open(name, "xb") as f:
                    f.write(self._content)
                return len(self._content)

            start_time = time.perf_counter()
            size = 0
            try:
                with open(name, "xb") as f:
                    for chunk in self.response.iter_bytes():
                        f.write(chunk)
                        size += len(chunk)
            except httpx.HTTPError as e:
                # Never leave a truncated file behind.
                _remove_partial(name)
                raise TransportError(
                    code="transport_failed",
                    message=f"read response body failed: {e}",
                    details={"url": self.url},
                    trace=self.tracing,
                ) from e
            finally:
                self.response.close()
                self._closed = True
                self.tracing.recv_time = _elapsed_ms(start_time)
            return size

    def close(self) -> None:
        """Close the underlying stream. Buffered bodies stay readable."""
        with self._lock:
            if not self._closed:
                self.response.close()
                self._closed = True


class HTTPClient:
    """
    Configurable HTTP request builder.

    Setters return the client so calls can be chained. Settings are meant
    to be applied before the client is shared between threads; requests
    themselves are thread-safe.
    """

    def __init__(
        self,
        *,
        sign_key: str = "",
        transport: Optional[httpx.BaseTransport] = None,
        cache: Optional[TTLCache] = None,
        logger: Optional["Logger"] = None,
        client_id: Optional[str] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            sign_key: Client key mixed into every request ID
            transport: Optional httpx transport (e.g. httpx.MockTransport)
            cache: Response cache; the process-wide cache is used when omitted
            logger: Optional logger for retries and request traces
            client_id: Stable client identifier; generated when omitted
        """
        self.client_id = client_id or hashlib.sha1(
            f"xhttp-{time.time_ns()}".encode("utf-8")
        ).hexdigest()
        self._sign_key = sign_key
        self._headers: list[tuple[str, str]] = [("User-Agent", DEFAULT_USER_AGENT)]
        self._host: Optional[str] = None
        self._timeouts = TimeoutConfig()
        self._retries = RetryConfig()
        self._dump = DumpConfig()
        self._cache_ttl: dict[str, int] = {}
        self._verify_tls = True
        self._gzip = True
        self._follow_redirects = True
        self._enable_cookie = False
        self._proxy: Optional[str] = None

        self._transport = transport
        self._cache = cache
        self._logger = logger
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: HTTPConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        cache: Optional[TTLCache] = None,
        logger: Optional["Logger"] = None,
    ) -> "HTTPClient":
        """Create a client from an HTTPConfig."""
        client = cls(sign_key=config.sign_key, transport=transport, cache=cache, logger=logger)
        if config.user_agent:
            client.set_ua(config.user_agent)
        client.set_timeout(config.timeouts)
        client.set_retry_config(config.retry)
        client.set_dump(config.dump.enabled, config.dump.with_body)
        for method, ttl in config.cache_ttl.items():
            client.set_cache(ttl, method)
        client.set_verify_tls(config.verify_tls)
        client.set_follow_redirect(config.follow_redirects)
        client.set_gzip(config.gzip)
        client.set_enable_cookie(config.enable_cookie)
        if config.proxy:
            client.set_proxy(config.proxy)
        return client

    def __enter__(self) -> "HTTPClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying httpx client and its connections."""
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def _invalidate(self) -> None:
        self.close()

    def _get_client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = self._build_client()
            return self._client

    def _build_client(self) -> httpx.Client:
        def seconds(value: float) -> Optional[float]:
            return value if value > 0 else None

        timeouts = self._timeouts
        # TLS setup is part of connect; httpx has no handshake or 100-continue limit.
        timeout = httpx.Timeout(
            seconds(timeouts.client),
            connect=seconds(timeouts.connect),
            read=seconds(timeouts.response_header),
            write=seconds(timeouts.client),
            pool=seconds(timeouts.client),
        )
        if timeouts.keep_alive > 0:
            limits = httpx.Limits(keepalive_expiry=timeouts.keep_alive)
        else:
            limits = httpx.Limits(max_keepalive_connections=0)

        kwargs: dict[str, Any] = {
            "timeout": timeout,
            "limits": limits,
            "verify": self._verify_tls,
            "follow_redirects": self._follow_redirects,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        if self._proxy:
            kwargs["proxy"] = self._proxy
        return httpx.Client(**kwargs)

    # Builder setters

    def set_sign_key(self, key: str) -> "HTTPClient":
        self._sign_key = key
        return self

    def set_host(self, host: str) -> "HTTPClient":
        self._host = host or None
        return self

    def set_header(self, name: str, value: str) -> "HTTPClient":
        self._headers = _replace_header(self._headers, name, value)
        return self

    def get_header(self, name: str) -> str:
        lowered = name.lower()
        for header, value in self._headers:
            if header.lower() == lowered:
                return value
        return ""

    def set_ua(self, user_agent: str) -> "HTTPClient":
        return self.set_header("User-Agent", user_agent)

    def set_referer(self, referer: str) -> "HTTPClient":
        return self.set_header("Referer", referer)

    def set_gzip(self, enabled: bool) -> "HTTPClient":
        """Ask for compressed responses (the default) or for identity encoding."""
        self._gzip = enabled
        return self

    def set_verify_tls(self, verify: bool) -> "HTTPClient":
        self._verify_tls = verify
        self._invalidate()
        return self

    def set_keep_alive(self, seconds: float) -> "HTTPClient":
        """Keep idle connections for this long; 0 or below disables keep-alive."""
        return self.set_timeout(replace(self._timeouts, keep_alive=seconds))

    def set_timeout(self, timeouts: TimeoutConfig) -> "HTTPClient":
        self._timeouts = replace(timeouts)
        self._invalidate()
        return self

    def get_timeout(self) -> TimeoutConfig:
        return replace(self._timeouts)

    def set_proxy(self, proxy: str) -> "HTTPClient":
        """Route requests through a proxy; a bare host:port is taken as http://."""
        proxy = proxy.strip()
        if not proxy.startswith(("http://", "https://", "socks5://")):
            proxy = "http://" + proxy
        self._proxy = proxy
        self._invalidate()
        return self

    def set_follow_redirect(self, follow: bool) -> "HTTPClient":
        self._follow_redirects = follow
        return self

    def set_enable_cookie(self, enabled: bool) -> "HTTPClient":
        """Keep cookies set by responses for later requests."""
        self._enable_cookie = enabled
        if not enabled and self._client is not None:
            self._client.cookies.clear()
        return self

    def set_retries(self, times: int, sleep: float = 0.0) -> "HTTPClient":
        """
        Retry transport failures.

        Args:
            times: Additional attempts; -1 retries forever
            sleep: Seconds to wait between attempts
        """
        self._retries = replace(self._retries, times=times, sleep_seconds=sleep)
        return self

    def set_retry_config(self, config: RetryConfig) -> "HTTPClient":
        self._retries = replace(config)
        return self

    def set_dump(self, enabled: bool, with_body: bool = False) -> "HTTPClient":
        self._dump = DumpConfig(enabled=enabled, with_body=with_body)
        return self

    def set_cache(self, ttl: int, *methods: str) -> "HTTPClient":
        """
        Cache responses of the given methods (GET by default) for ttl seconds.

        A ttl of 0 or below turns caching off for those methods.
        """
        for method in methods or ("GET",):
            method = self._normalize_method(method)
            if ttl > 0:
                self._cache_ttl[method] = ttl
            else:
                self._cache_ttl.pop(method, None)
        return self

    @property
    def sign_key(self) -> str:
        return self._sign_key

    @property
    def retries(self) -> RetryConfig:
        return replace(self._retries)

    # Verbs

    def get(self, url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
        return self.do("GET", url, options, **kwargs)

    def head(self, url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
        return self.do("HEAD", url, options, **kwargs)

    def post(self, url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
        return self.do("POST", url, options, **kwargs)

    def put(self, url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
        return self.do("PUT", url, options, **kwargs)

    def patch(self, url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
        return self.do("PATCH", url, options, **kwargs)

    def delete(self, url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
        return self.do("DELETE", url, options, **kwargs)

    def options(self, url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
        return self.do("OPTIONS", url, options, **kwargs)

    @staticmethod
    def _normalize_method(method: str) -> str:
        normalized = (method or "").strip().upper()
        if normalized not in SUPPORTED_METHODS:
            raise InvalidArgumentError(
                code="unsupported_method",
                message=f"not supported method: {method}",
                details={"method": method},
            )
        return normalized

    def do(
        self,
        method: str,
        url: str,
        options: Optional[RequestOptions] = None,
        **kwargs: Any,
    ) -> HTTPResponse:
        """
        Send a request.

        Overrides come from ``options`` and/or keyword arguments named like
        the RequestOptions fields; unknown keyword names are ignored.

        Args:
            method: One of GET, HEAD, POST, PUT, PATCH, DELETE, OPTIONS
            url: Absolute http(s) URL
            options: Per-call overrides

        Returns:
            The response; non-2xx statuses are returned, not raised

        Raises:
            InvalidArgumentError: Bad method, URL, JSON params or form file, or
                more than one body source (json, body, form/files)
            TransportError: The request failed after all retries or was cancelled
        """
        method = self._normalize_method(method)
        url = (url or "").strip()
        if not url:
            raise InvalidArgumentError(code="empty_url", message="no request url specify")

        opts, ignored = RequestOptions.build(options, **kwargs)
        if ignored and self._logger is not None:
            self._logger.debug("ignoring unknown request options: %s", ", ".join(ignored))

        prepared = self._prepare(method, url, opts)

        tracing = Tracing(client_id=self.client_id)
        header, tracing.timestamp, tracing.nonce, tracing.request_id = build_request_id_header(
            method, prepared.url, self._sign_key
        )
        prepared.headers.append((REQUEST_ID_HEADER, header))

        ttl = self._cache_ttl.get(method, 0)
        cache_key = ""
        cache: Optional[TTLCache] = None
        if ttl > 0:
            cache_key = self._cache_key(method, prepared)
            cache = self._cache if self._cache is not None else shared_response_cache()
            cached = cache.get(cache_key)
            if cached is not ABSENT:
                if self._logger is not None:
                    self._logger.debug("http cache hit %s %s", method, prepared.url)
                return cached

        dumps: list[bytes] = []
        if self._dump.enabled:
            dumps.append(self._dump_request(method, prepared, self._dump.with_body))

        client = opts.client if opts.client is not None else self._get_client()
        response = self._send_with_retry(client, method, prepared, tracing, opts.cancel)
        result = HTTPResponse(method, str(response.url), response, tracing, dumps, cache_key)

        if self._dump.enabled:
            dumps.append(self._dump_response(result, self._dump.with_body))
        if cache is not None:
            result.read()
            cache.set(cache_key, result, ttl)
        if not self._enable_cookie and opts.client is None:
            client.cookies.clear()

        if self._logger is not None:
            self._logger.debug("http trace %s", json.dumps(tracing.to_dict(), sort_keys=True))
        return result

    def _prepare(self, method: str, url: str, opts: RequestOptions) -> _PreparedRequest:
        headers = list(self._headers)
        host = opts.host or self._host
        if host:
            headers = _replace_header(headers, "Host", host)
        for name, value in opts.headers.items():
            headers = _replace_header(headers, name, str(value))
        if opts.raw_headers:
            names = {name.lower() for name, _ in opts.raw_headers}
            headers = [(n, v) for n, v in headers if n.lower() not in names]
            headers.extend((name, str(value)) for name, value in opts.raw_headers)
        if opts.cookies:
            headers.append(("Cookie", "; ".join(cookie.header_value() for cookie in opts.cookies)))
        if not self._gzip:
            headers = _replace_header(headers, "Accept-Encoding", "identity")

        has_body = HTTPMethod(method).has_body
        form = _pairs(opts.form)
        query = _pairs(opts.query)
        if has_body:
            form.extend(_pairs(opts.values))
        else:
            query.extend(form)
            query.extend(_pairs(opts.values))
            form = []

        sources = [
            name for name, present in (
                ("json", opts.json is not None),
                ("body", opts.body is not None),
                ("form", bool(form) or (has_body and bool(opts.files))),
            ) if present
        ]
        if len(sources) > 1:
            raise InvalidArgumentError(
                code="conflicting_body",
                message=f"request body given more than once: {', '.join(sources)}",
                details={"sources": sources},
            )

        content: Optional[bytes] = None
        multipart: Optional[MultipartEncoder] = None
        if opts.json is not None:
            try:
                content = json.dumps(opts.json, ensure_ascii=False).encode("utf-8")
            except (TypeError, ValueError) as e:
                raise InvalidArgumentError(
                    code="json_encode_failed",
                    message=f"encode json params failed: {e}",
                ) from e
            headers = _replace_header(headers, "Content-Type", "application/json; charset=UTF-8")
        elif opts.body is not None:
            content = _body_bytes(opts.body)

        if has_body:
            if opts.files:
                multipart = MultipartEncoder(fields=form, files=opts.files)
                content = None
                headers = _replace_header(headers, "Content-Type", multipart.content_type)
            elif form or content is not None:
                if content is None:
                    content = urlencode(form).encode("ascii")
                if not _has_header(headers, "Content-Type"):
                    headers.append(("Content-Type", "application/x-www-form-urlencoded; charset=UTF-8"))

        if query:
            url += ("&" if "?" in url else "?") + urlencode(query)

        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError, ValueError) as e:
            raise InvalidArgumentError(
                code="invalid_url",
                message=f"parse url failed: {e}",
                details={"url": url},
            ) from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise InvalidArgumentError(
                code="invalid_url",
                message=f"url must be absolute http or https: {url}",
                details={"url": url},
            )

        return _PreparedRequest(url=parsed, headers=headers, content=content, multipart=multipart)

    @staticmethod
    def _cache_key(method: str, prepared: _PreparedRequest) -> str:
        # Headers (including the per-request signature) are not part of the key.
        digest = hashlib.sha1()
        digest.update(method.encode("ascii"))
        digest.update(b"\n")
        digest.update(str(prepared.url).encode("utf-8"))
        digest.update(b"\n")
        digest.update(prepared.body_image)
        return digest.hexdigest()

    def _send_with_retry(
        self,
        client: httpx.Client,
        method: str,
        prepared: _PreparedRequest,
        tracing: Tracing,
        cancel: Optional[threading.Event],
    ) -> httpx.Response:
        def attempt() -> httpx.Response:
            tracing.attempts += 1
            request = client.build_request(
                method,
                prepared.url,
                headers=prepared.headers,
                content=prepared.stream(),
            )
            response = client.send(request, stream=True, follow_redirects=self._follow_redirects)
            if cancel is not None and cancel.is_set():
                response.close()
                raise TransportError(
                    code="cancelled",
                    message="request cancelled",
                    details={"url": str(prepared.url)},
                )
            return response

        def on_retry(attempts: int, error: Exception, delay: float) -> None:
            if self._logger is not None:
                self._logger.warn(
                    "http %s %s failed on attempt %d: %s; retrying in %.3fs",
                    method, prepared.url, attempts, error, delay,
                )

        start_time = time.perf_counter()
        result = RetryManager(self._retries).execute_with_retry(
            attempt,
            is_retryable=lambda e: isinstance(e, httpx.TransportError),
            cancel=cancel,
            on_retry=on_retry,
        )
        tracing.send_time = _elapsed_ms(start_time)

        if result.success:
            return result.result

        details = {"url": str(prepared.url), "method": method, "attempts": tracing.attempts}
        if result.cancelled:
            raise TransportError(
                code="cancelled",
                message="request cancelled",
                details=details,
                trace=tracing,
            )

        error = result.last_error
        if isinstance(error, TransportError):
            error.details.update(details)
            error.trace = tracing
            raise error
        if isinstance(error, httpx.TransportError):
            raise TransportError(
                code="transport_failed",
                message=f"request failed after {tracing.attempts} attempt(s): {error}",
                details=details,
                trace=tracing,
            ) from error
        raise error

    @staticmethod
    def _dump_request(method: str, prepared: _PreparedRequest, with_body: bool) -> bytes:
        target = prepared.url.raw_path.decode("ascii")
        host = prepared.url.netloc.decode("ascii")
        lines = [f"{method} {target} HTTP/1.1"]
        for name, value in prepared.headers:
            if name.lower() == "host":
                host = value
            else:
                lines.append(f"{name}: {value}")
        lines.insert(1, f"Host: {host}")
        image = ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")
        if with_body:
            image += prepared.body_image
        return image

    @staticmethod
    def _dump_response(result: HTTPResponse, with_body: bool) -> bytes:
        response = result.response
        lines = [f"{response.http_version} {response.status_code} {response.reason_phrase}"]
        lines.extend(f"{name}: {value}" for name, value in response.headers.multi_items())
        image = ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")
        if with_body:
            image += result.read()
        return image


_default_client: Optional[HTTPClient] = None
_default_client_lock = threading.Lock()


def default_client() -> HTTPClient:
    """The client used by the module-level verb functions."""
    global _default_client
    with _default_client_lock:
        if _default_client is None:
            _default_client = HTTPClient()
        return _default_client


def do(method: str, url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
    return default_client().do(method, url, options, **kwargs)


def get(url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
    return default_client().do("GET", url, options, **kwargs)


def head(url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
    return default_client().do("HEAD", url, options, **kwargs)


def post(url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
    return default_client().do("POST", url, options, **kwargs)


def put(url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
    return default_client().do("PUT", url, options, **kwargs)


def patch(url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
    return default_client().do("PATCH", url, options, **kwargs)


def delete(url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
    return default_client().do("DELETE", url, options, **kwargs)


def options(url: str, options: Optional[RequestOptions] = None, **kwargs: Any) -> HTTPResponse:
    return default_client().do("OPTIONS", url, options, **kwargs)


def download(
    url: str,
    save_name: str = "",
    verify_tls: bool = True,
    transport: Optional[httpx.BaseTransport] = None,
) -> tuple[int, int]:
    """
    Download url to a file with a dedicated client.

    Args:
        url: Source URL
        save_name: Target path; the URL's file name when empty
        verify_tls: Verify the server certificate
        transport: Optional httpx transport

    Returns:
        Tuple of (bytes written, elapsed milliseconds)

    Raises:
        InvalidArgumentError: If no file name can be derived or the URL is bad
        PreconditionFailedError: If the file exists or the status is not 200
        TransportError: If the transfer fails
    """
    save_name = save_name.strip()
    if not save_name:
        save_name = posixpath.basename(urlsplit(url).path)
        if not save_name:
            raise InvalidArgumentError(
                code="invalid_save_name",
                message="file name for saving is invalid",
                details={"url": url},
            )
    else:
        directory, name = os.path.split(save_name)
        if not name:
            raise InvalidArgumentError(
                code="invalid_save_name",
                message="file name for saving is invalid",
                details={"save_name": save_name},
            )
        if directory:
            os.makedirs(directory, exist_ok=True)

    if os.path.exists(save_name):
        raise PreconditionFailedError(
            code="exists",
            message=f"file name {save_name} is exists",
            details={"path": save_name},
        )

    timeout = httpx.Timeout(60.0, connect=10.0, read=5.0)
    start_time = time.perf_counter()
    size = 0
    with httpx.Client(verify=verify_tls, timeout=timeout, transport=transport, follow_redirects=True) as client:
        try:
            with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise PreconditionFailedError(
                        code="bad_status",
                        message=f"bad status code: {response.status_code}",
                        details={"status_code": response.status_code},
                    )
                try:
                    with open(save_name, "xb") as f:
                        for chunk in response.iter_bytes():
                            f.write(chunk)
                            size += len(chunk)
                except httpx.HTTPError:
                    _remove_partial(save_name)
                    raise
        except httpx.InvalidURL as e:
            raise InvalidArgumentError(
                code="invalid_url",
                message=f"parse url failed: {e}",
                details={"url": url},
            ) from e
        except httpx.TransportError as e:
            raise TransportError(
                code="transport_failed",
                message=f"download failed: {e}",
                details={"url": url},
            ) from e
    return size, _elapsed_ms(start_time)
