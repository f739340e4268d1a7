"""
Service Kit - Building blocks for long-running backend services.

This package provides an in-memory TTL cache, an asynchronous rotating
logger, a fan-out/fan-in work queue, a second-resolution cron scheduler and
a configurable HTTP client with retries, response caching, request signing
and wire dumps.
"""

__version__ = "0.1.0"
__author__ = "Service Kit Team"

from service_kit.exceptions import (
    ServiceKitError,
    InvalidArgumentError,
    DataTypeNotSupportedError,
    ValueLessThanZeroError,
    NotFoundError,
    KeyNotExistsError,
    PreconditionFailedError,
    TransientError,
    TransportError,
)
from service_kit.enums import (
    LogLevel,
    LogFlag,
    LogFormat,
    LoggerState,
    RotateType,
    HTTPMethod,
)
from service_kit.locks import (
    ReadWriteLock,
    WaitGroup,
)
from service_kit.config import (
    CacheConfig,
    LoggerConfig,
    TimeoutConfig,
    RetryConfig,
    DumpConfig,
    HTTPConfig,
    ToolkitConfig,
    config_from_dict,
    config_to_dict,
    load_config_from_file,
    save_config_to_file,
    load_config_from_env,
)
from service_kit.ttl_cache import (
    ABSENT,
    Unsigned,
    CacheEntry,
    TTLCache,
)
from service_kit.rotating_logger import (
    Logger,
    LogRecord,
)
from service_kit.work_queue import (
    WorkQueue,
)
from service_kit.scheduler import (
    Scheduler,
    CronRule,
    CronField,
    CronParser,
    CronParseError,
    CronJob,
    parse_rule,
    is_due,
)
from service_kit.retry_manager import (
    RETRY_FOREVER,
    RetryManager,
    RetryResult,
)
from service_kit.models import (
    Tracing,
    Cookie,
    RequestOptions,
)
from service_kit.signing import (
    REQUEST_ID_HEADER,
    build_request_id_header,
    parse_request_id_header,
    verify_request_id,
    verify_request,
)
from service_kit.multipart import (
    MultipartEncoder,
)
from service_kit.http_client import (
    HTTPClient,
    HTTPResponse,
    download,
    shared_response_cache,
)
from service_kit.cli import (
    main as cli_main,
    create_parser,
)

__all__ = [
    # Exceptions
    "ServiceKitError",
    "InvalidArgumentError",
    "DataTypeNotSupportedError",
    "ValueLessThanZeroError",
    "NotFoundError",
    "KeyNotExistsError",
    "PreconditionFailedError",
    "TransientError",
    "TransportError",
    # Enums
    "LogLevel",
    "LogFlag",
    "LogFormat",
    "LoggerState",
    "RotateType",
    "HTTPMethod",
    # Locks
    "ReadWriteLock",
    "WaitGroup",
    # Configuration
    "CacheConfig",
    "LoggerConfig",
    "TimeoutConfig",
    "RetryConfig",
    "DumpConfig",
    "HTTPConfig",
    "ToolkitConfig",
    "config_from_dict",
    "config_to_dict",
    "load_config_from_file",
    "save_config_to_file",
    "load_config_from_env",
    # TTL Cache
    "ABSENT",
    "Unsigned",
    "CacheEntry",
    "TTLCache",
    # Logger
    "Logger",
    "LogRecord",
    # Work Queue
    "WorkQueue",
    # Scheduler
    "Scheduler",
    "CronRule",
    "CronField",
    "CronParser",
    "CronParseError",
    "CronJob",
    "parse_rule",
    "is_due",
    # Retry Manager
    "RETRY_FOREVER",
    "RetryManager",
    "RetryResult",
    # Models
    "Tracing",
    "Cookie",
    "RequestOptions",
    # Signing
    "REQUEST_ID_HEADER",
    "build_request_id_header",
    "parse_request_id_header",
    "verify_request_id",
    "verify_request",
    # Multipart
    "MultipartEncoder",
    # HTTP Client
    "HTTPClient",
    "HTTPResponse",
    "download",
    "shared_response_cache",
    # CLI
    "cli_main",
    "create_parser",
]
