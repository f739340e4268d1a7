"""
Configuration dataclasses for the service kit.

This module defines the configuration structures for every component:
the TTL cache sweeper, the rotating logger, and the HTTP client with its
timeouts, retry policy, dump policy and response cache policy. It also
provides loaders for JSON files and for environment variables (with
optional .env support).
"""

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass
class CacheConfig:
    """TTL cache sweeper configuration."""

    gc_interval_seconds: float = 60.0
    gc_max_once: int = 100


@dataclass
class LoggerConfig:
    """Rotating logger configuration."""

    level: str = "info"
    file_path: Optional[Path] = None
    flags: int = 3  # LogFlag.STD
    output_format: str = "text"  # 'text' or 'json'
    rotate_type: Optional[str] = None  # 'date', 'size' or None
    rotate_num: int = 0
    rotate_size: int = 0
    queue_size: int = 10000
    once_ttl_seconds: int = 3600


@dataclass
class TimeoutConfig:
    """
    HTTP transport timeouts, in seconds. 0 or below disables a limit.

    httpx has no separate TLS handshake or Expect: 100-continue timeout.
    The handshake counts against connect, and tls_handshake and
    expect_continue are accepted for configuration compatibility only.
    client bounds each write and each wait for a pooled connection; it is
    not an overall deadline for the request.
    """

    connect: float = 10.0
    tls_handshake: float = 5.0
    response_header: float = 30.0
    expect_continue: float = 5.0
    keep_alive: float = 60.0
    client: float = 60.0


@dataclass
class RetryConfig:
    """Retry behavior configuration."""

    times: int = 0  # additional attempts, -1 retries forever
    sleep_seconds: float = 0.0
    backoff: float = 1.0  # multiplier applied to the sleep after each attempt
    max_sleep_seconds: float = 60.0


@dataclass
class DumpConfig:
    """Wire dump configuration."""

    enabled: bool = False
    with_body: bool = False


@dataclass
class HTTPConfig:
    """HTTP client configuration."""

    user_agent: Optional[str] = None
    sign_key: str = ""
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    dump: DumpConfig = field(default_factory=DumpConfig)
    cache_ttl: dict[str, int] = field(default_factory=dict)  # method -> seconds
    verify_tls: bool = True
    follow_redirects: bool = True
    gzip: bool = True
    enable_cookie: bool = False
    proxy: Optional[str] = None


@dataclass
class ToolkitConfig:
    """Main configuration combining all sub-configurations."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    logger: LoggerConfig = field(default_factory=LoggerConfig)
    http: HTTPConfig = field(default_factory=HTTPConfig)


def config_from_dict(data: dict) -> ToolkitConfig:
    """
    Build a ToolkitConfig from a plain dictionary.

    Unknown keys are ignored and missing keys keep their defaults.

    Raises:
        KeyError, TypeError, ValueError: If a value has the wrong shape
    """
    cache_data = data.get("cache", {})
    cache = CacheConfig(
        gc_interval_seconds=float(cache_data.get("gc_interval_seconds", 60.0)),
        gc_max_once=int(cache_data.get("gc_max_once", 100)),
    )

    logger_data = data.get("logger", {})
    file_path = logger_data.get("file_path")
    logger = LoggerConfig(
        level=logger_data.get("level", "info"),
        file_path=Path(file_path) if file_path else None,
        flags=int(logger_data.get("flags", 3)),
        output_format=logger_data.get("output_format", "text"),
        rotate_type=logger_data.get("rotate_type"),
        rotate_num=int(logger_data.get("rotate_num", 0)),
        rotate_size=int(logger_data.get("rotate_size", 0)),
        queue_size=int(logger_data.get("queue_size", 10000)),
        once_ttl_seconds=int(logger_data.get("once_ttl_seconds", 3600)),
    )

    http_data = data.get("http", {})
    timeout_data = http_data.get("timeouts", {})
    retry_data = http_data.get("retry", {})
    dump_data = http_data.get("dump", {})
    http = HTTPConfig(
        user_agent=http_data.get("user_agent"),
        sign_key=http_data.get("sign_key", ""),
        timeouts=TimeoutConfig(
            connect=float(timeout_data.get("connect", 10.0)),
            tls_handshake=float(timeout_data.get("tls_handshake", 5.0)),
            response_header=float(timeout_data.get("response_header", 30.0)),
            expect_continue=float(timeout_data.get("expect_continue", 5.0)),
            keep_alive=float(timeout_data.get("keep_alive", 60.0)),
            client=float(timeout_data.get("client", 60.0)),
        ),
        retry=RetryConfig(
            times=int(retry_data.get("times", 0)),
            sleep_seconds=float(retry_data.get("sleep_seconds", 0.0)),
            backoff=float(retry_data.get("backoff", 1.0)),
            max_sleep_seconds=float(retry_data.get("max_sleep_seconds", 60.0)),
        ),
        dump=DumpConfig(
            enabled=bool(dump_data.get("enabled", False)),
            with_body=bool(dump_data.get("with_body", False)),
        ),
        cache_ttl={
            str(method).upper(): int(ttl)
            for method, ttl in http_data.get("cache_ttl", {}).items()
        },
        verify_tls=bool(http_data.get("verify_tls", True)),
        follow_redirects=bool(http_data.get("follow_redirects", True)),
        gzip=bool(http_data.get("gzip", True)),
        enable_cookie=bool(http_data.get("enable_cookie", False)),
        proxy=http_data.get("proxy"),
    )

    return ToolkitConfig(cache=cache, logger=logger, http=http)


def config_to_dict(config: ToolkitConfig) -> dict:
    """Convert a ToolkitConfig to a JSON-serializable dictionary."""
    return {
        "cache": {
            "gc_interval_seconds": config.cache.gc_interval_seconds,
            "gc_max_once": config.cache.gc_max_once,
        },
        "logger": {
            "level": config.logger.level,
            "file_path": str(config.logger.file_path) if config.logger.file_path else None,
            "flags": config.logger.flags,
            "output_format": config.logger.output_format,
            "rotate_type": config.logger.rotate_type,
            "rotate_num": config.logger.rotate_num,
            "rotate_size": config.logger.rotate_size,
            "queue_size": config.logger.queue_size,
            "once_ttl_seconds": config.logger.once_ttl_seconds,
        },
        "http": {
            "user_agent": config.http.user_agent,
            "sign_key": config.http.sign_key,
            "timeouts": {
                "connect": config.http.timeouts.connect,
                "tls_handshake": config.http.timeouts.tls_handshake,
                "response_header": config.http.timeouts.response_header,
                "expect_continue": config.http.timeouts.expect_continue,
                "keep_alive": config.http.timeouts.keep_alive,
                "client": config.http.timeouts.client,
            },
            "retry": {
                "times": config.http.retry.times,
                "sleep_seconds": config.http.retry.sleep_seconds,
                "backoff": config.http.retry.backoff,
                "max_sleep_seconds": config.http.retry.max_sleep_seconds,
            },
            "dump": {
                "enabled": config.http.dump.enabled,
                "with_body": config.http.dump.with_body,
            },
            "cache_ttl": dict(config.http.cache_ttl),
            "verify_tls": config.http.verify_tls,
            "follow_redirects": config.http.follow_redirects,
            "gzip": config.http.gzip,
            "enable_cookie": config.http.enable_cookie,
            "proxy": config.http.proxy,
        },
    }


def load_config_from_file(config_path: Path) -> Optional[ToolkitConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        ToolkitConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return config_from_dict(data)
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None


def save_config_to_file(config: ToolkitConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: ToolkitConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
        return True
    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config_from_env(
    prefix: str = "SERVICE_KIT_",
    dotenv_path: Optional[Path] = None,
) -> ToolkitConfig:
    """
    Build a configuration from environment variables.

    A .env file is loaded first (without overriding variables that are
    already set). Recognized variables, shown with the default prefix:

    - SERVICE_KIT_LOG_LEVEL, SERVICE_KIT_LOG_FILE, SERVICE_KIT_LOG_FORMAT
    - SERVICE_KIT_CACHE_GC_INTERVAL, SERVICE_KIT_CACHE_GC_MAX_ONCE
    - SERVICE_KIT_HTTP_RETRIES, SERVICE_KIT_HTTP_RETRY_SLEEP
    - SERVICE_KIT_HTTP_SIGN_KEY, SERVICE_KIT_HTTP_PROXY
    - SERVICE_KIT_HTTP_VERIFY_TLS, SERVICE_KIT_HTTP_DUMP

    Malformed numbers keep the default value.

    Args:
        prefix: Prefix shared by all variables
        dotenv_path: Optional explicit .env location

    Returns:
        ToolkitConfig populated from the environment
    """
    load_dotenv(dotenv_path=dotenv_path, override=False)
    config = ToolkitConfig()

    def env(name: str) -> Optional[str]:
        value = os.getenv(prefix + name)
        return value if value not in (None, "") else None

    def env_number(name: str, cast, default):
        value = env(name)
        if value is None:
            return default
        try:
            return cast(value)
        except ValueError:
            return default

    if env("LOG_LEVEL"):
        config.logger.level = env("LOG_LEVEL").lower()
    if env("LOG_FILE"):
        config.logger.file_path = Path(env("LOG_FILE"))
    if env("LOG_FORMAT"):
        config.logger.output_format = env("LOG_FORMAT").lower()

    config.cache.gc_interval_seconds = env_number(
        "CACHE_GC_INTERVAL", float, config.cache.gc_interval_seconds
    )
    config.cache.gc_max_once = env_number("CACHE_GC_MAX_ONCE", int, config.cache.gc_max_once)

    config.http.retry.times = env_number("HTTP_RETRIES", int, config.http.retry.times)
    config.http.retry.sleep_seconds = env_number(
        "HTTP_RETRY_SLEEP", float, config.http.retry.sleep_seconds
    )
    if env("HTTP_SIGN_KEY"):
        config.http.sign_key = env("HTTP_SIGN_KEY")
    if env("HTTP_PROXY"):
        config.http.proxy = env("HTTP_PROXY")
    if env("HTTP_VERIFY_TLS"):
        config.http.verify_tls = _env_bool(env("HTTP_VERIFY_TLS"))
    if env("HTTP_DUMP"):
        config.http.dump.enabled = _env_bool(env("HTTP_DUMP"))

    return config
