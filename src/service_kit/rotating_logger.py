"""
Rotating logger for the service kit.

Provides an asynchronous, level-filtered log sink. Producers format records
and hand them to a bounded queue; a single writer thread owns the output
stream, writes records in FIFO order and rotates the file by calendar day
or by size. Text and JSON line formats are supported, and ``*_once``
variants suppress repeats of the same record for an hour.
"""

import hashlib
import io
import json
import os
import queue
import re
import sys
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import IO, Any, NoReturn, Optional, Union

from .config import LoggerConfig
from .enums import LogFlag, LogFormat, LoggerState, LogLevel, RotateType
from .exceptions import InvalidArgumentError, PreconditionFailedError
from .locks import ReadWriteLock
from .ttl_cache import TTLCache

DEFAULT_QUEUE_SIZE = 10000
ONCE_TTL_SECONDS = 3600
ROTATE_CHECK_INTERVAL = 1.0

_STOP = object()


@dataclass(frozen=True)
class LogRecord:
    """A single formatted record as handed to the writer thread."""

    level: LogLevel
    message: str
    timestamp: float
    caller: Optional[str] = None


def _open_append(path: str) -> IO[bytes]:
    fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_APPEND, 0o644)
    return os.fdopen(fd, "ab")


def _is_binary(stream: Any) -> bool:
    if isinstance(stream, io.TextIOBase):
        return False
    if isinstance(stream, (io.RawIOBase, io.BufferedIOBase)):
        return True
    return "b" in getattr(stream, "mode", "")


class Logger:
    """
    Leveled logger with a dedicated writer thread.

    Records below the active level are dropped by the producer. Calls made
    after ``close()`` are silently ignored, except ``fatal`` which always
    terminates the process.
    """

    def __init__(
        self,
        stream: Optional[IO] = None,
        level: LogLevel = LogLevel.INFO,
        *,
        flags: int = LogFlag.STD,
        output_format: LogFormat = LogFormat.TEXT,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        once_cache: Optional[TTLCache] = None,
        once_ttl: float = ONCE_TTL_SECONDS,
    ) -> None:
        """
        Initialize the logger around an existing stream.

        Args:
            stream: Text or binary stream to write to (defaults to sys.stderr)
            level: Minimum level that is emitted
            flags: LogFlag bits controlling the line prefix
            output_format: Text lines or JSON lines
            queue_size: Capacity of the record queue
            once_cache: Dedup table for the ``*_once`` calls; one is created
                on first use when omitted
            once_ttl: Seconds a ``*_once`` record stays suppressed
        """
        self._stream: IO = stream if stream is not None else sys.stderr
        self._binary = _is_binary(self._stream)
        self._path: Optional[str] = None
        self._owns_stream = False

        self._level = LogLevel(level)
        self._flags = LogFlag(flags)
        self._format = LogFormat(output_format)
        self._state = LoggerState.OPEN
        self._state_lock = ReadWriteLock()

        self._file_lock = threading.Lock()
        self._rotate_type: Optional[RotateType] = None
        self._rotate_num = 0
        self._rotate_size = 0
        self._rotate_now_date = ""
        self._rotate_now_size = 0
        self._rotate_next_num = 1

        self._once_cache = once_cache
        self._owns_once_cache = once_cache is None
        self._once_ttl = once_ttl
        self._once_lock = threading.Lock()

        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._writer = threading.Thread(target=self._run, name="logger-writer", daemon=True)
        self._writer.start()

    @classmethod
    def open(cls, path: Union[str, os.PathLike], level: LogLevel = LogLevel.INFO, **kwargs) -> "Logger":
        """
        Open (or create) a log file in append mode and log to it.

        Only loggers created this way support rotation.

        Raises:
            OSError: If the file cannot be opened
        """
        path = os.fspath(path)
        logger = cls(_open_append(path), level, **kwargs)
        logger._path = path
        logger._owns_stream = True
        return logger

    @classmethod
    def from_config(cls, config: LoggerConfig) -> "Logger":
        """Create a logger from a LoggerConfig."""
        options = {
            "flags": config.flags,
            "output_format": LogFormat(config.output_format),
            "queue_size": config.queue_size,
            "once_ttl": config.once_ttl_seconds,
        }
        level = LogLevel.from_string(config.level)
        if config.file_path:
            logger = cls.open(config.file_path, level, **options)
        else:
            logger = cls(sys.stderr, level, **options)

        if config.rotate_type:
            logger.set_rotate(config.rotate_type, config.rotate_num, config.rotate_size)
        return logger

    def __enter__(self) -> "Logger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def level(self) -> LogLevel:
        return self._level

    @property
    def flags(self) -> LogFlag:
        return self._flags

    @property
    def state(self) -> LoggerState:
        return self._state

    @property
    def path(self) -> Optional[str]:
        return self._path

    def set_level(self, level: LogLevel) -> None:
        with self._state_lock.write():
            self._level = LogLevel(level)

    def set_level_string(self, name: str) -> None:
        """
        Set the level by name ("debug", "info", "warn", "error", "fatal").

        Raises:
            InvalidArgumentError: If the name is not a known level
        """
        self.set_level(LogLevel.from_string(name))

    def set_flags(self, flags: int) -> None:
        with self._state_lock.write():
            self._flags = LogFlag(flags)

    def set_format(self, output_format: LogFormat) -> None:
        with self._state_lock.write():
            self._format = LogFormat(output_format)

    def set_daily_rotate(self, rotate_num: int) -> None:
        """Rotate when the local date changes, keeping up to rotate_num files."""
        self.set_rotate(RotateType.DAILY, rotate_num, 0)

    def set_size_rotate(self, rotate_num: int, rotate_size: int) -> None:
        """Rotate once the file reaches rotate_size bytes, keeping up to rotate_num files."""
        self.set_rotate(RotateType.SIZE, rotate_num, rotate_size)

    def set_rotate(
        self,
        rotate_type: Union[RotateType, str],
        rotate_num: int,
        rotate_size: int = 0,
    ) -> None:
        """
        Configure log rotation.

        Rotated files are named ``<path>.<k>`` with k cycling through
        1..rotate_num-1, so at most rotate_num files exist. A rotate_num
        below 2 disables rotation.

        Raises:
            PreconditionFailedError: If the logger does not write to a file
            InvalidArgumentError: If rotate_type is unknown
            OSError: If the existing generations cannot be inspected
        """
        if self._path is None:
            raise PreconditionFailedError(
                code="rotate_unsupported",
                message="only file log support rotate",
            )

        try:
            rotate_type = RotateType(rotate_type)
        except ValueError:
            raise InvalidArgumentError(
                code="invalid_rotate_type",
                message=f"not support rotate type: {rotate_type}",
                details={"rotate_type": str(rotate_type)},
            ) from None

        with self._file_lock:
            self._rotate_type = rotate_type
            self._rotate_num = rotate_num
            self._rotate_size = rotate_size
            self._rotate_now_date = date.today().isoformat()
            try:
                self._rotate_now_size = os.path.getsize(self._path)
            except OSError:
                self._rotate_now_size = 0

            if rotate_num < 2:
                return
            self._rotate_next_num = self._next_generation()

    def _next_generation(self) -> int:
        """
        Pick the generation index the next rotation writes to.

        The lowest free index wins while fewer than rotate_num-1 generations
        exist; after that the oldest generation by modification time is
        overwritten.
        """
        directory = os.path.dirname(self._path) or "."
        pattern = re.compile(re.escape(os.path.basename(self._path)) + r"\.(\d+)$")

        generations: dict[int, float] = {}
        for name in os.listdir(directory):
            match = pattern.match(name)
            if not match:
                continue
            index = int(match.group(1))
            if 1 <= index < self._rotate_num:
                generations[index] = os.path.getmtime(os.path.join(directory, name))

        for index in range(1, self._rotate_num):
            if index not in generations:
                return index
        return min(generations, key=lambda i: (generations[i], i))

    def log(self, level: LogLevel, msg: str, *args: Any) -> None:
        """Log msg % args at the given level."""
        self._emit(LogLevel(level), msg, args)

    def debug(self, msg: str, *args: Any) -> None:
        self._emit(LogLevel.DEBUG, msg, args)

    def info(self, msg: str, *args: Any) -> None:
        self._emit(LogLevel.INFO, msg, args)

    def warn(self, msg: str, *args: Any) -> None:
        self._emit(LogLevel.WARN, msg, args)

    def error(self, msg: str, *args: Any) -> None:
        self._emit(LogLevel.ERROR, msg, args)

    def fatal(self, msg: str, *args: Any) -> NoReturn:
        """
        Log at FATAL, drain and close the logger, then exit with status 1.

        On the main thread this raises SystemExit. From any other thread
        SystemExit would only end that thread, so the process is terminated
        directly after the standard streams are flushed.
        """
        self._emit(LogLevel.FATAL, msg, args, force=True)
        self.close()
        _exit_process(1)

    def debug_once(self, msg: str, *args: Any) -> None:
        self._emit_once(LogLevel.DEBUG, msg, args)

    def info_once(self, msg: str, *args: Any) -> None:
        self._emit_once(LogLevel.INFO, msg, args)

    def warn_once(self, msg: str, *args: Any) -> None:
        self._emit_once(LogLevel.WARN, msg, args)

    def error_once(self, msg: str, *args: Any) -> None:
        self._emit_once(LogLevel.ERROR, msg, args)

    def fatal_once(self, msg: str, *args: Any) -> NoReturn:
        """Like fatal, but the record itself is subject to once-per-window dedup."""
        self._emit_once(LogLevel.FATAL, msg, args, force=True)
        self.close()
        _exit_process(1)

    def close(self) -> None:
        """
        Stop accepting records and wait until the queue is drained.

        Files opened by the logger are closed; wrapped streams are flushed
        but left open. Calling close more than once is harmless.
        """
        with self._state_lock.write():
            if self._state is not LoggerState.OPEN:
                stopping = False
            else:
                self._state = LoggerState.CLOSING
                self._queue.put(_STOP)
                stopping = True

        if threading.current_thread() is not self._writer:
            self._writer.join()
        if stopping:
            self._state = LoggerState.CLOSED
            if self._once_cache is not None and self._owns_once_cache:
                self._once_cache.close()

    def _emit(self, level: LogLevel, msg: str, args: tuple, force: bool = False) -> None:
        with self._state_lock.read():
            if self._state is not LoggerState.OPEN:
                return
            if level < self._level and not force:
                return
            flags = self._flags
            output_format = self._format

            caller = None
            if output_format is LogFormat.JSON or flags & (LogFlag.LONG_FILE | LogFlag.SHORT_FILE):
                caller = _find_caller(short=bool(flags & LogFlag.SHORT_FILE))

            record = LogRecord(
                level=level,
                message=_format_message(msg, args),
                timestamp=time.time(),
                caller=caller,
            )
            self._queue.put(self._render(record, flags, output_format))

    def _emit_once(self, level: LogLevel, msg: str, args: tuple, force: bool = False) -> None:
        message = _format_message(msg, args)
        key = hashlib.md5(f"{level.name}-{message}".encode("utf-8")).hexdigest()

        with self._once_lock:
            if self._once_cache is None:
                self._once_cache = TTLCache()
            if self._once_cache.has(key):
                return
            self._once_cache.set(key, 1, self._once_ttl)

        self._emit(level, message, (), force=force)

    def _render(self, record: LogRecord, flags: LogFlag, output_format: LogFormat) -> str:
        if flags & LogFlag.UTC:
            moment = datetime.fromtimestamp(record.timestamp, tz=timezone.utc)
        else:
            moment = datetime.fromtimestamp(record.timestamp)

        if output_format is LogFormat.JSON:
            return json.dumps({
                "timestamp": moment.isoformat(),
                "level": record.level.name,
                "caller": record.caller,
                "message": record.message,
            }, ensure_ascii=False) + "\n"

        parts = []
        if flags & LogFlag.DATE:
            parts.append(moment.strftime("%Y-%m-%d"))
        if flags & (LogFlag.TIME | LogFlag.MICROSECONDS):
            clock = moment.strftime("%H:%M:%S")
            if flags & LogFlag.MICROSECONDS:
                clock += f".{moment.microsecond:06d}"
            parts.append(clock)
        if record.caller:
            parts.append(f"[{record.caller}]")
        parts.append(f"[{record.level.name}]")
        parts.append(record.message)
        return " ".join(parts) + "\n"

    def _run(self) -> None:
        next_check = time.monotonic() + ROTATE_CHECK_INTERVAL
        while True:
            timeout = max(0.0, next_check - time.monotonic())
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                item = None

            if item is _STOP:
                break
            if item is not None:
                self._write(item)

            if time.monotonic() >= next_check:
                self._check_rotate()
                next_check = time.monotonic() + ROTATE_CHECK_INTERVAL

        with self._file_lock:
            self._release_stream()

    def _write(self, line: str) -> None:
        encoded = line.encode("utf-8")
        with self._file_lock:
            try:
                self._stream.write(encoded if self._binary else line)
                self._stream.flush()
            except (OSError, ValueError):
                return
            self._rotate_now_size += len(encoded)

            if self._size_rotate_due():
                self._rotate()

    def _size_rotate_due(self) -> bool:
        return (
            self._rotate_type is not None
            and self._rotate_num >= 2
            and self._rotate_size > 0
            and self._rotate_now_size >= self._rotate_size
        )

    def _check_rotate(self) -> None:
        with self._file_lock:
            if self._rotate_type is None or self._rotate_num < 2:
                return
            today = date.today().isoformat()
            if self._rotate_type is RotateType.DAILY and today != self._rotate_now_date:
                self._rotate()
            elif self._size_rotate_due():
                self._rotate()

    def _rotate(self) -> None:
        """Move the active file to the next generation and reopen it. Caller holds _file_lock."""
        self._rotate_now_date = date.today().isoformat()
        self._rotate_now_size = 0
        try:
            self._stream.close()
        except OSError:
            pass

        try:
            os.replace(self._path, f"{self._path}.{self._rotate_next_num}")
        except OSError:
            pass
        else:
            self._rotate_next_num += 1
            if self._rotate_next_num >= self._rotate_num:
                self._rotate_next_num = 1

        try:
            self._stream = _open_append(self._path)
        except OSError:
            # Keep a closed stream; later writes fail quietly until the next rotation.
            return
        try:
            self._rotate_now_size = os.path.getsize(self._path)
        except OSError:
            self._rotate_now_size = 0

    def _release_stream(self) -> None:
        try:
            if self._owns_stream:
                self._stream.close()
            else:
                self._stream.flush()
        except (OSError, ValueError):
            pass


def _exit_process(code: int) -> NoReturn:
    if threading.current_thread() is threading.main_thread():
        sys.exit(code)
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (AttributeError, OSError, ValueError):
            pass
    os._exit(code)


def _format_message(msg: str, args: tuple) -> str:
    if not args:
        return str(msg)
    try:
        return str(msg) % args
    except (TypeError, ValueError, KeyError):
        return f"{msg} {args!r}"


def _find_caller(short: bool) -> Optional[str]:
    """Return 'file:line' of the first frame outside this module."""
    frame = sys._getframe(1)
    while frame is not None and frame.f_code.co_filename == __file__:
        frame = frame.f_back
    if frame is None:
        return None
    filename = frame.f_code.co_filename
    if short:
        filename = os.path.basename(filename)
    return f"{filename}:{frame.f_lineno}"
