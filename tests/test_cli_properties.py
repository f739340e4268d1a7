"""
Tests for the command-line interface.

The fetch command is exercised against httpx.MockTransport by replacing
the client factory, so no network access is needed.
"""

from pathlib import Path

import httpx
import pytest

from service_kit import cli
from service_kit.config import ToolkitConfig, save_config_to_file
from service_kit.http_client import HTTPClient
from service_kit.signing import REQUEST_ID_HEADER, build_request_id_header, verify_request
from service_kit.ttl_cache import TTLCache


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "service_kit.json"
    save_config_to_file(ToolkitConfig(), path)
    return path


@pytest.fixture
def mock_server(monkeypatch: pytest.MonkeyPatch) -> list:
    """Route the fetch command to a MockTransport and record its requests."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/missing":
            return httpx.Response(404, content=b"not here")
        return httpx.Response(200, content=b"hello from mock")

    def build(config, logger=None):
        return HTTPClient.from_config(
            config.http,
            transport=httpx.MockTransport(handler),
            cache=TTLCache(),
            logger=logger,
        )

    monkeypatch.setattr(cli, "build_http_client", build)
    return requests


class TestCronCommand:
    """Tests for the 'cron' command."""

    def test_prints_next_fire_times(self, capsys: pytest.CaptureFixture) -> None:
        assert cli.main(["cron", "@every 20 second", "--next", "3"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "Rule: @every 20 second"
        assert lines[1].split() == ["second", "0,20,40"]
        assert lines[2].split() == ["minute", "*"]
        assert lines[7] == "Next:"
        fire_times = lines[8:]
        assert len(fire_times) == 3
        for line in fire_times:
            assert line.strip()[-2:] in ("00", "20", "40")

    def test_prints_month_set(self, capsys: pytest.CaptureFixture) -> None:
        assert cli.main(["cron", "* * * * jan-mar *", "-n", "0"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[5].split() == ["month", "1,2,3"]
        assert lines[-1] == "Next:"

    @pytest.mark.parametrize("rule", ["61 * * * * *", "@every 0 second", "* * *", "@yearly-ish"])
    def test_invalid_rule(self, rule: str, capsys: pytest.CaptureFixture) -> None:
        assert cli.main(["cron", rule]) == 1
        assert "Error:" in capsys.readouterr().err


class TestFetchCommand:
    """Tests for the 'fetch' command."""

    def test_prints_body(self, mock_server: list, config_file: Path, capsys: pytest.CaptureFixture) -> None:
        code = cli.main([
            "fetch", "https://api.example.com/hello",
            "-H", "X-Trace: abc",
            "-q", "a=1", "-q", "a=2",
            "--sign-key", "secret",
            "-c", str(config_file),
        ])
        assert code == 0
        assert capsys.readouterr().out == "hello from mock"

        request = mock_server[0]
        assert request.headers["X-Trace"] == "abc"
        assert request.url.params.get_list("a") == ["1", "2"]
        assert verify_request("GET", str(request.url), request.headers, "secret")

    def test_post_form_and_dump(self, mock_server: list, config_file: Path, capsys: pytest.CaptureFixture) -> None:
        code = cli.main([
            "fetch", "https://api.example.com/submit",
            "-X", "post", "-f", "name=kit", "--dump", "-v",
            "-c", str(config_file),
        ])
        assert code == 0
        assert mock_server[0].content == b"name=kit"
        err = capsys.readouterr().err
        assert "POST /submit HTTP/1.1" in err
        assert "HTTP/1.1 200 OK" in err
        assert "Attempts: 1" in err

    def test_non_2xx_status_fails(self, mock_server: list, config_file: Path) -> None:
        assert cli.main(["fetch", "https://api.example.com/missing", "-c", str(config_file)]) == 1

    def test_output_file(
        self, mock_server: list, config_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture
    ) -> None:
        target = tmp_path / "out" / "body.txt"
        assert cli.main(["fetch", "https://api.example.com/f", "-o", str(target), "-c", str(config_file)]) == 0
        assert target.read_bytes() == b"hello from mock"
        assert f"Saved 15 bytes to: {target}" in capsys.readouterr().out

    def test_bad_header_argument(self, mock_server: list, config_file: Path) -> None:
        assert cli.main(["fetch", "https://api.example.com/", "-H", "no-colon", "-c", str(config_file)]) == 2
        assert mock_server == []

    def test_invalid_method(self, mock_server: list, config_file: Path, capsys: pytest.CaptureFixture) -> None:
        assert cli.main(["fetch", "https://api.example.com/", "-X", "TRACE", "-c", str(config_file)]) == 1
        assert "not supported method" in capsys.readouterr().err

    def test_missing_config(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        code = cli.main(["fetch", "https://api.example.com/", "-c", str(tmp_path / "none.json")])
        assert code == 1
        assert "Could not load config" in capsys.readouterr().err


class TestVerifyCommand:
    """Tests for the 'verify' command."""

    URL = "https://api.example.com/orders?id=42"

    def test_valid_header(self, capsys: pytest.CaptureFixture) -> None:
        header, *_ = build_request_id_header("PUT", httpx.URL(self.URL), "k")
        assert cli.main(["verify", header, "-X", "PUT", "-u", self.URL, "-k", "k"]) == 0
        assert capsys.readouterr().out.strip() == "valid"

    def test_wrong_key(self, capsys: pytest.CaptureFixture) -> None:
        header, *_ = build_request_id_header("GET", httpx.URL(self.URL), "k")
        assert cli.main(["verify", header, "-u", self.URL, "-k", "other"]) == 1
        assert capsys.readouterr().out.strip() == "invalid"

    def test_malformed_header(self) -> None:
        assert cli.main(["verify", "garbage", "-u", self.URL]) == 1

    def test_header_name(self) -> None:
        assert REQUEST_ID_HEADER == "X-HTTP-GoKit-RequestId"


class TestParser:
    """Tests for top-level parsing."""

    def test_version(self, capsys: pytest.CaptureFixture) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--version"])
        assert exc_info.value.code == 0
        assert "service-kit" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture) -> None:
        assert cli.main([]) == 0
        assert "usage:" in capsys.readouterr().out
