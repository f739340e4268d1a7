"""
Streamed multipart/form-data bodies.

The body is produced by a generator, so file contents are read chunk by
chunk while the transport sends them instead of being loaded up front.
Files are written first, followed by the plain form fields.
"""

import mimetypes
import os
import secrets
from typing import Iterable, Iterator, Mapping, Optional, Union

from .exceptions import InvalidArgumentError

CHUNK_SIZE = 64 * 1024

PathType = Union[str, os.PathLike]


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\r", "%0D").replace("\n", "%0A")


class MultipartEncoder:
    """
    Encoder for one multipart/form-data body.

    Iterating the encoder yields the body. Each iteration starts from the
    beginning, so the same encoder can be replayed for a retried request.
    """

    def __init__(
        self,
        fields: Iterable[tuple[str, str]] = (),
        files: Optional[Mapping[str, PathType]] = None,
        boundary: Optional[str] = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        """
        Initialize the encoder.

        Args:
            fields: (name, value) form fields, written after the files
            files: Field name -> path of the file to upload
            boundary: Part boundary; random when omitted
            chunk_size: Bytes read from a file per chunk

        Raises:
            InvalidArgumentError: If a file does not exist
        """
        self.fields = [(str(name), str(value)) for name, value in fields]
        self.files = {str(name): os.fspath(path) for name, path in (files or {}).items()}
        self.boundary = boundary or secrets.token_hex(16)
        self.chunk_size = chunk_size

        for name, path in self.files.items():
            if not os.path.isfile(path):
                raise InvalidArgumentError(
                    code="file_not_found",
                    message=f"form file {path} does not exist",
                    details={"field": name, "path": path},
                )

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def describe(self) -> bytes:
        """
        Stable summary of the body without the file contents.

        Used for cache keys and dumps, where reading every file would
        defeat streaming.
        """
        lines = []
        for name, path in sorted(self.files.items()):
            stat = os.stat(path)
            lines.append(f"file {name}={path} size={stat.st_size} mtime={int(stat.st_mtime)}")
        for name, value in self.fields:
            lines.append(f"field {name}={value}")
        return "\n".join(lines).encode("utf-8")

    def __iter__(self) -> Iterator[bytes]:
        dash_boundary = f"--{self.boundary}\r\n".encode("ascii")

        for name, path in self.files.items():
            filename = os.path.basename(path)
            mime = mimetypes.guess_type(filename)[0] or "application/octet-stream"
            yield dash_boundary
            yield (
                f'Content-Disposition: form-data; name="{_quote(name)}"; '
                f'filename="{_quote(filename)}"\r\n'
                f"Content-Type: {mime}\r\n\r\n"
            ).encode("utf-8")
            with open(path, "rb") as f:
                while True:
                    chunk = f.read(self.chunk_size)
                    if not chunk:
                        break
                    yield chunk
            yield b"\r\n"

        for name, value in self.fields:
            yield dash_boundary
            yield f'Content-Disposition: form-data; name="{_quote(name)}"\r\n\r\n'.encode("utf-8")
            yield value.encode("utf-8")
            yield b"\r\n"

        yield f"--{self.boundary}--\r\n".encode("ascii")
