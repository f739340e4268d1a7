"""
Property-based tests for the HTTP client module.

All requests go through httpx.MockTransport, so the tests exercise header
merging, parameter routing, signing, retries, response caching, dumps and
file saving without network access.
"""

import io
import json
import threading
from pathlib import Path
from typing import Callable, Iterator

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from service_kit import http_client
from service_kit.config import DumpConfig, HTTPConfig, RetryConfig, TimeoutConfig
from service_kit.enums import LogLevel
from service_kit.exceptions import InvalidArgumentError, PreconditionFailedError, TransportError
from service_kit.http_client import DEFAULT_USER_AGENT, HTTPClient, download
from service_kit.models import Cookie, RequestOptions
from service_kit.rotating_logger import Logger
from service_kit.signing import REQUEST_ID_HEADER, verify_request
from service_kit.ttl_cache import TTLCache


BASE = "https://api.example.com"


class Recorder:
    """MockTransport handler that records requests and answers with a fixed body."""

    def __init__(self, status: int = 200, body: bytes = b"ok", headers: dict = None) -> None:
        self.status = status
        self.body = body
        self.headers = headers or {}
        self.requests: list[httpx.Request] = []
        self.lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self.lock:
            self.requests.append(request)
        return httpx.Response(self.status, content=self.body, headers=self.headers)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


class BrokenStream(httpx.SyncByteStream):
    """Yields part of a body, then fails like a dropped connection."""

    def __iter__(self) -> Iterator[bytes]:
        yield b"partial"
        raise httpx.ReadError("connection reset by peer")


class DropsFirstBody:
    """Handler whose first response breaks mid-body; later ones are complete."""

    def __init__(self, body: bytes = b"complete") -> None:
        self.body = body
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.calls == 1:
            return httpx.Response(200, stream=BrokenStream())
        return httpx.Response(200, content=self.body)


def make_client(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> HTTPClient:
    return HTTPClient(transport=httpx.MockTransport(handler), cache=TTLCache(), **kwargs)


class TestRequestBuildingProperty:
    """Property-based tests for headers, parameters and bodies."""

    @given(query=st.dictionaries(
        st.text(alphabet="abcdefghij", min_size=1, max_size=5),
        st.text(alphabet="abcdefghij0123456789", max_size=8),
        max_size=4,
    ))
    @settings(max_examples=50, deadline=None)
    def test_query_params_reach_server(self, query: dict) -> None:
        """
        Property: Every query parameter arrives in the request URL.
        """
        recorder = Recorder()
        with make_client(recorder) as client:
            client.get(f"{BASE}/items", query=query)
        params = recorder.last.url.params
        for name, value in query.items():
            assert params.get(name) == value

    def test_form_goes_to_query_for_get(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.get(f"{BASE}/search?x=1", form={"q": "cats"}, values={"page": [1, 2]})
        request = recorder.last
        assert request.url.params.get("x") == "1"
        assert request.url.params.get("q") == "cats"
        assert request.url.params.get_list("page") == ["1", "2"]
        assert request.content == b""

    def test_form_goes_to_body_for_post(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.post(f"{BASE}/submit", form={"q": "cats", "flag": True})
        request = recorder.last
        assert request.content == b"q=cats&flag=true"
        assert request.headers["Content-Type"].startswith("application/x-www-form-urlencoded")
        assert "q" not in request.url.params

    def test_json_body(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.put(f"{BASE}/doc", json={"name": "x", "n": [1, 2]})
        request = recorder.last
        assert json.loads(request.content) == {"name": "x", "n": [1, 2]}
        assert request.headers["Content-Type"].startswith("application/json")

    def test_unencodable_json_fails(self) -> None:
        with make_client(Recorder()) as client:
            with pytest.raises(InvalidArgumentError) as exc_info:
                client.post(f"{BASE}/doc", json={"bad": object()})
        assert exc_info.value.code == "json_encode_failed"

    @pytest.mark.parametrize("overrides", [
        {"json": {"a": 1}, "form": {"f": "v"}},
        {"json": {"a": 1}, "values": {"f": ["v"]}},
        {"body": "raw", "form": {"f": "v"}},
        {"json": {"a": 1}, "body": "raw"},
    ])
    def test_conflicting_body_sources_fail(self, overrides: dict) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            with pytest.raises(InvalidArgumentError) as exc_info:
                client.post(f"{BASE}/p", **overrides)
        assert exc_info.value.code == "conflicting_body"
        assert recorder.requests == []

    def test_conflicting_body_with_files(self, tmp_path: Path) -> None:
        upload = tmp_path / "a.txt"
        upload.write_text("a")
        with make_client(Recorder()) as client:
            with pytest.raises(InvalidArgumentError) as exc_info:
                client.put(f"{BASE}/p", json={"a": 1}, files={"f": str(upload)})
        assert exc_info.value.code == "conflicting_body"

    def test_form_with_json_on_get_goes_to_query(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.get(f"{BASE}/g", json={"a": 1}, form={"f": "v"})
        assert len(recorder.requests) == 1
        assert recorder.last.url.params.get("f") == "v"

    def test_raw_body_variants(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.post(f"{BASE}/raw", body="text body", headers={"Content-Type": "text/plain"})
            assert recorder.last.content == b"text body"
            assert recorder.last.headers["Content-Type"] == "text/plain"

            client.post(f"{BASE}/raw", body=io.BytesIO(b"buffered"))
            assert recorder.last.content == b"buffered"

    def test_headers_and_raw_headers(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.set_header("X-Default", "base").set_referer("https://ref.example.com/")
            client.get(
                f"{BASE}/h",
                headers={"X-Default": "override"},
                raw_headers=[("X-Tag", "a"), ("X-Tag", "b")],
            )
        request = recorder.last
        assert request.headers["X-Default"] == "override"
        assert request.headers.get_list("X-Tag") == ["a", "b"]
        assert request.headers["Referer"] == "https://ref.example.com/"
        assert request.headers["User-Agent"] == DEFAULT_USER_AGENT

    def test_host_cookies_and_identity_encoding(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.set_host("virtual.example").set_gzip(False)
            client.get(f"{BASE}/c", cookies=[Cookie("sid", "1"), Cookie("lang", "de")])
        request = recorder.last
        assert request.headers["Host"] == "virtual.example"
        assert request.headers["Cookie"] == "sid=1; lang=de"
        assert request.headers["Accept-Encoding"] == "identity"

    def test_options_object_and_kwargs_merge(self) -> None:
        recorder = Recorder()
        options = RequestOptions(query={"a": "1"}, headers={"X-A": "1"})
        with make_client(recorder) as client:
            client.get(f"{BASE}/m", options, query={"b": "2"}, unknown_option=True)
        request = recorder.last
        assert request.url.params.get("b") == "2"
        assert "a" not in request.url.params
        assert request.headers["X-A"] == "1"

    def test_multipart_upload(self, tmp_path: Path) -> None:
        upload = tmp_path / "data.txt"
        upload.write_bytes(b"file-content-123")
        recorder = Recorder()
        with make_client(recorder) as client:
            client.post(f"{BASE}/upload", form={"name": "report"}, files={"upload": str(upload)})
        request = recorder.last
        body = request.content
        assert request.headers["Content-Type"].startswith("multipart/form-data; boundary=")
        assert b'name="upload"; filename="data.txt"' in body
        assert b"file-content-123" in body
        assert b'name="name"' in body
        assert body.index(b"file-content-123") < body.index(b'name="name"')

    def test_missing_upload_file_fails(self, tmp_path: Path) -> None:
        with make_client(Recorder()) as client:
            with pytest.raises(InvalidArgumentError) as exc_info:
                client.post(f"{BASE}/upload", files={"f": str(tmp_path / "nope.bin")})
        assert exc_info.value.code == "file_not_found"


class TestValidationProperty:
    """Tests for rejected requests."""

    @pytest.mark.parametrize("method", ["TRACE", "CONNECT", "", "FETCH"])
    def test_unsupported_method(self, method: str) -> None:
        with make_client(Recorder()) as client:
            with pytest.raises(InvalidArgumentError) as exc_info:
                client.do(method, f"{BASE}/")
        assert exc_info.value.code == "unsupported_method"

    def test_lower_case_method_is_accepted(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.do("patch", f"{BASE}/p")
        assert recorder.last.method == "PATCH"

    def test_empty_url(self) -> None:
        with make_client(Recorder()) as client:
            with pytest.raises(InvalidArgumentError) as exc_info:
                client.get("   ")
        assert exc_info.value.code == "empty_url"

    @pytest.mark.parametrize("url", ["ftp://files.example.com/a", "/relative/path", "http://"])
    def test_invalid_url(self, url: str) -> None:
        with make_client(Recorder()) as client:
            with pytest.raises(InvalidArgumentError) as exc_info:
                client.get(url)
        assert exc_info.value.code == "invalid_url"


class TestSigningAndTracingProperty:
    """Tests for the request ID header and trace record."""

    @given(key=st.text(max_size=16), path=st.sampled_from(["/", "/a", "/a/b"]))
    @settings(max_examples=30, deadline=None)
    def test_requests_are_verifiable(self, key: str, path: str) -> None:
        """
        Property: Every sent request carries a header the server can verify.
        """
        recorder = Recorder()
        with make_client(recorder, sign_key=key) as client:
            response = client.get(f"{BASE}{path}", query={"q": "1"})
        request = recorder.last
        assert verify_request("GET", str(request.url), request.headers, key)
        header = request.headers[REQUEST_ID_HEADER]
        assert header.endswith(response.tracing.request_id)
        assert response.tracing.attempts == 1
        assert response.tracing.retries == 0

    def test_trace_is_logged(self) -> None:
        stream = io.StringIO()
        logger = Logger(stream, LogLevel.DEBUG)
        with make_client(Recorder(), logger=logger, client_id="client-1") as client:
            response = client.get(f"{BASE}/t")
        logger.close()
        assert response.tracing.client_id == "client-1"
        assert "http trace" in stream.getvalue()
        assert response.tracing.request_id in stream.getvalue()


class TestRetryProperty:
    """Property-based tests for retries of transport failures."""

    @given(retries=st.integers(min_value=0, max_value=4))
    @settings(max_examples=10, deadline=None)
    def test_failing_transport_is_attempted_retries_plus_one(self, retries: int) -> None:
        """
        Property: With retries set to k, a failing transport sees k + 1 attempts.
        """
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(handler) as client:
            client.set_retries(retries)
            with pytest.raises(TransportError) as exc_info:
                client.get(f"{BASE}/down")

        assert len(calls) == retries + 1
        assert exc_info.value.code == "transport_failed"
        assert exc_info.value.trace.attempts == retries + 1
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_recovers_after_failures_and_logs_retries(self, tmp_path: Path) -> None:
        upload = tmp_path / "payload.bin"
        upload.write_bytes(b"x" * 1000)
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            if len(bodies) < 3:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, content=b"done")

        stream = io.StringIO()
        logger = Logger(stream, LogLevel.DEBUG)
        with make_client(handler, logger=logger) as client:
            client.set_retries(3, 0.01)
            response = client.post(f"{BASE}/up", files={"f": str(upload)})
        logger.close()

        assert response.read() == b"done"
        assert response.tracing.attempts == 3
        assert response.tracing.retries == 2
        assert bodies[0] == bodies[2]
        assert b"x" * 1000 in bodies[2]
        assert stream.getvalue().count("[WARN]") == 2

    def test_http_error_statuses_are_not_retried(self) -> None:
        recorder = Recorder(status=503, body=b"unavailable")
        with make_client(recorder) as client:
            client.set_retries(3)
            response = client.get(f"{BASE}/busy")
        assert response.status_code == 503
        assert len(recorder.requests) == 1

    def test_cancelled_request(self) -> None:
        cancel = threading.Event()
        cancel.set()
        recorder = Recorder()
        with make_client(recorder) as client:
            with pytest.raises(TransportError) as exc_info:
                client.get(f"{BASE}/x", cancel=cancel)
        assert exc_info.value.code == "cancelled"
        assert recorder.requests == []


class TestResponseCacheProperty:
    """Tests for the per-method response cache."""

    def test_cache_hit_ignores_header_order(self) -> None:
        recorder = Recorder(body=b"cached body")
        with make_client(recorder) as client:
            client.set_cache(60)
            first = client.get(f"{BASE}/c", raw_headers=[("A", "1"), ("B", "2")])
            second = client.get(f"{BASE}/c", raw_headers=[("B", "2"), ("A", "1")])

        assert len(recorder.requests) == 1
        assert second is first
        assert second.read() == first.read() == b"cached body"
        assert second.tracing.request_id == first.tracing.request_id
        assert first.cache_key

    def test_different_urls_are_cached_separately(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.set_cache(60)
            client.get(f"{BASE}/a")
            client.get(f"{BASE}/b")
            client.get(f"{BASE}/a")
        assert len(recorder.requests) == 2

    def test_uncached_methods_always_send(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.set_cache(60, "GET")
            client.post(f"{BASE}/p", body="same")
            client.post(f"{BASE}/p", body="same")
        assert len(recorder.requests) == 2

    def test_post_cache_key_includes_body(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.set_cache(60, "post")
            client.post(f"{BASE}/p", body="one")
            client.post(f"{BASE}/p", body="two")
            client.post(f"{BASE}/p", body="one")
        assert len(recorder.requests) == 2

    def test_zero_ttl_disables_cache(self) -> None:
        recorder = Recorder()
        with make_client(recorder) as client:
            client.set_cache(60).set_cache(0)
            client.get(f"{BASE}/a")
            client.get(f"{BASE}/a")
        assert len(recorder.requests) == 2


class TestDumpProperty:
    """Tests for wire dumps."""

    def test_dump_with_body(self) -> None:
        recorder = Recorder(body=b"response-body", headers={"X-Server": "mock"})
        with make_client(recorder) as client:
            client.set_dump(True, with_body=True)
            response = client.post(f"{BASE}/d?x=1", body="request-body")

        request_image, response_image = response.dumps
        assert request_image.startswith(b"POST /d?x=1 HTTP/1.1\r\nHost: api.example.com\r\n")
        assert REQUEST_ID_HEADER.encode() in request_image
        assert request_image.endswith(b"\r\n\r\nrequest-body")
        assert response_image.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"x-server: mock" in response_image.lower()
        assert response_image.endswith(b"response-body")

    def test_dump_without_body(self) -> None:
        recorder = Recorder(body=b"response-body")
        with make_client(recorder) as client:
            client.set_dump(True)
            response = client.post(f"{BASE}/d", body="request-body")
        request_image, response_image = response.dumps
        assert request_image.endswith(b"\r\n\r\n")
        assert b"response-body" not in response_image
        assert response.read() == b"response-body"

    def test_no_dump_by_default(self) -> None:
        with make_client(Recorder()) as client:
            assert client.get(f"{BASE}/").dumps == []


class TestResponseProperty:
    """Tests for reading and saving responses."""

    def test_text_json_and_headers(self) -> None:
        recorder = Recorder(body=b'{"a": 1}', headers={"Content-Type": "application/json"})
        with make_client(recorder) as client:
            response = client.get(f"{BASE}/j")
        assert response.json() == {"a": 1}
        assert response.text() == '{"a": 1}'
        assert response.get_header("content-type") == "application/json"
        assert response.get_header("missing") == ""
        assert response.content_length == 8

    def test_read_after_close_fails(self) -> None:
        with make_client(Recorder()) as client:
            response = client.get(f"{BASE}/")
        response.close()
        with pytest.raises(PreconditionFailedError) as exc_info:
            response.read()
        assert exc_info.value.code == "closed"

    def test_file_saves_body(self, tmp_path: Path) -> None:
        recorder = Recorder(body=b"payload" * 100)
        with make_client(recorder) as client:
            response = client.get(f"{BASE}/files/report.csv")
        target = tmp_path / "nested" / "dir" / "report.csv"
        assert response.file(str(target)) == 700
        assert target.read_bytes() == b"payload" * 100

    def test_file_name_from_url(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        with make_client(Recorder(body=b"abc")) as client:
            assert client.get(f"{BASE}/dl/archive.zip").file() == 3
            assert client.get(f"{BASE}/").file() == 3
        assert (tmp_path / "archive.zip").read_bytes() == b"abc"
        assert (tmp_path / "index.html").read_bytes() == b"abc"

    def test_file_exists(self, tmp_path: Path) -> None:
        target = tmp_path / "exists.txt"
        target.write_text("old")
        with make_client(Recorder()) as client:
            response = client.get(f"{BASE}/exists.txt")
        with pytest.raises(PreconditionFailedError) as exc_info:
            response.file(str(target))
        assert exc_info.value.code == "exists"
        assert target.read_text() == "old"

    def test_file_bad_status(self, tmp_path: Path) -> None:
        with make_client(Recorder(status=404, body=b"missing")) as client:
            response = client.get(f"{BASE}/gone.txt")
        with pytest.raises(PreconditionFailedError) as exc_info:
            response.file(str(tmp_path / "gone.txt"))
        assert exc_info.value.code == "bad_status"
        assert not (tmp_path / "gone.txt").exists()

    def test_interrupted_transfer_removes_partial_file(self, tmp_path: Path) -> None:
        target = tmp_path / "report.csv"
        handler = DropsFirstBody()
        with make_client(handler) as client:
            response = client.get(f"{BASE}/report.csv")
            with pytest.raises(TransportError) as exc_info:
                response.file(str(target))
            assert exc_info.value.code == "transport_failed"
            assert not target.exists()

            assert client.get(f"{BASE}/report.csv").file(str(target)) == len(b"complete")
        assert target.read_bytes() == b"complete"

    def test_cached_response_can_be_saved(self, tmp_path: Path) -> None:
        with make_client(Recorder(body=b"cached")) as client:
            client.set_cache(60)
            response = client.get(f"{BASE}/c.txt")
        assert response.file(str(tmp_path / "c.txt")) == 6


class TestClientSettingsProperty:
    """Tests for builder setters and configuration."""

    def test_from_config(self) -> None:
        config = HTTPConfig(
            user_agent="agent/1.0",
            sign_key="k",
            timeouts=TimeoutConfig(connect=1.0, response_header=2.0),
            retry=RetryConfig(times=2, sleep_seconds=0.0, backoff=2.0),
            dump=DumpConfig(enabled=True),
            cache_ttl={"GET": 30},
        )
        recorder = Recorder()
        client = HTTPClient.from_config(config, transport=httpx.MockTransport(recorder), cache=TTLCache())
        with client:
            response = client.get(f"{BASE}/cfg")
            client.get(f"{BASE}/cfg")

        assert client.get_header("User-Agent") == "agent/1.0"
        assert client.sign_key == "k"
        assert client.get_timeout().connect == 1.0
        assert client.retries.backoff == 2.0
        assert len(response.dumps) == 2
        assert len(recorder.requests) == 1

    def test_proxy_scheme_defaults_to_http(self) -> None:
        client = HTTPClient()
        client.set_proxy("127.0.0.1:3128")
        assert client._proxy == "http://127.0.0.1:3128"
        client.set_proxy("socks5://127.0.0.1:1080")
        assert client._proxy == "socks5://127.0.0.1:1080"

    def test_keep_alive_updates_timeouts(self) -> None:
        client = HTTPClient().set_keep_alive(0)
        assert client.get_timeout().keep_alive == 0

    def test_timeouts_map_onto_httpx(self) -> None:
        timeouts = TimeoutConfig(
            connect=3.0,
            tls_handshake=2.0,
            response_header=7.0,
            expect_continue=1.0,
            keep_alive=0,
            client=11.0,
        )
        client = HTTPClient().set_timeout(timeouts)
        assert client.get_timeout() == timeouts

        built = client._get_client().timeout
        assert built.connect == 3.0
        assert built.read == 7.0
        assert built.write == 11.0
        assert built.pool == 11.0
        client.close()

    def test_cookies_are_dropped_unless_enabled(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("Cookie", ""))
            return httpx.Response(200, headers={"Set-Cookie": "sid=abc; Path=/"})

        with make_client(handler) as client:
            client.get(f"{BASE}/login")
            client.get(f"{BASE}/me")
        assert seen == ["", ""]

        seen.clear()
        with make_client(handler) as client:
            client.set_enable_cookie(True)
            client.get(f"{BASE}/login")
            client.get(f"{BASE}/me")
        assert seen == ["", "sid=abc"]

    def test_module_level_verbs_use_default_client(self, monkeypatch: pytest.MonkeyPatch) -> None:
        recorder = Recorder(body=b"default")
        monkeypatch.setattr(http_client, "_default_client", make_client(recorder))
        assert http_client.get(f"{BASE}/g").read() == b"default"
        http_client.delete(f"{BASE}/d")
        assert [r.method for r in recorder.requests] == ["GET", "DELETE"]


class TestDownloadProperty:
    """Tests for download()."""

    def test_download_saves_file(self, tmp_path: Path) -> None:
        transport = httpx.MockTransport(Recorder(body=b"z" * 4096))
        target = tmp_path / "sub" / "blob.bin"
        size, cost_ms = download(f"{BASE}/blob.bin", str(target), transport=transport)
        assert size == 4096
        assert cost_ms >= 0
        assert target.read_bytes() == b"z" * 4096

    def test_download_existing_file(self, tmp_path: Path) -> None:
        target = tmp_path / "blob.bin"
        target.write_bytes(b"old")
        transport = httpx.MockTransport(Recorder())
        with pytest.raises(PreconditionFailedError) as exc_info:
            download(f"{BASE}/blob.bin", str(target), transport=transport)
        assert exc_info.value.code == "exists"

    def test_download_bad_status(self, tmp_path: Path) -> None:
        transport = httpx.MockTransport(Recorder(status=500))
        target = tmp_path / "blob.bin"
        with pytest.raises(PreconditionFailedError) as exc_info:
            download(f"{BASE}/blob.bin", str(target), transport=transport)
        assert exc_info.value.code == "bad_status"
        assert not target.exists()

    def test_interrupted_download_removes_partial_file(self, tmp_path: Path) -> None:
        transport = httpx.MockTransport(DropsFirstBody(b"z" * 64))
        target = tmp_path / "blob.bin"
        with pytest.raises(TransportError) as exc_info:
            download(f"{BASE}/blob.bin", str(target), transport=transport)
        assert exc_info.value.code == "transport_failed"
        assert not target.exists()

        size, _ = download(f"{BASE}/blob.bin", str(target), transport=transport)
        assert size == 64
        assert target.read_bytes() == b"z" * 64

    def test_download_without_file_name(self) -> None:
        with pytest.raises(InvalidArgumentError) as exc_info:
            download(f"{BASE}/", transport=httpx.MockTransport(Recorder()))
        assert exc_info.value.code == "invalid_save_name"
