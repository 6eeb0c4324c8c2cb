import base64
import binascii
import mimetypes
import os
from dataclasses import dataclass
from typing import Any, BinaryIO, NamedTuple, Union

from .errors import ConfigurationError, SchemaError

DEFAULT_FILENAME = "file"
DEFAULT_MIMETYPE = "application/octet-stream"


# Upload variants are compared and hashed by identity so the same object used
# at several variable paths becomes a single multipart part.


@dataclass(eq=False)
class StreamUpload:
    stream: BinaryIO
    filename: str | None = None
    mimetype: str | None = None


@dataclass(eq=False)
class BufferUpload:
    data: bytes
    filename: str | None = None
    mimetype: str | None = None


@dataclass(eq=False)
class Base64Upload:
    data: str
    filename: str
    mimetype: str
    bufferize: bool = False

    def __post_init__(self):
        if not self.filename or not self.mimetype:
            raise ConfigurationError("base64 uploads require a filename and a mimetype")

    def as_dict(self) -> dict[str, Any]:
        return {"data": self.data, "filename": self.filename, "mimetype": self.mimetype}

    def to_buffer(self) -> BufferUpload:
        try:
            raw = base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SchemaError(f"Invalid File schema detected: bad base64 data ({e})") from e
        return BufferUpload(raw, filename=self.filename, mimetype=self.mimetype)


Upload = Union[StreamUpload, BufferUpload, Base64Upload]


class ResolvedFile(NamedTuple):
    source: Any  # bytes or a readable binary stream
    filename: str
    mimetype: str


def _guess_mimetype(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or DEFAULT_MIMETYPE


def resolve_upload(upload: Upload) -> ResolvedFile:
    """Reduce any upload variant to a (source, filename, mimetype) triple."""
    if isinstance(upload, StreamUpload):
        filename = upload.filename
        if not filename:
            name = getattr(upload.stream, "name", None)
            filename = os.path.basename(name) if isinstance(name, str) and name else DEFAULT_FILENAME
        return ResolvedFile(upload.stream, filename, upload.mimetype or _guess_mimetype(filename))
    if isinstance(upload, BufferUpload):
        filename = upload.filename or DEFAULT_FILENAME
        return ResolvedFile(
            bytes(upload.data), filename, upload.mimetype or _guess_mimetype(filename)
        )
    if isinstance(upload, Base64Upload):
        return resolve_upload(upload.to_buffer())
    raise TypeError(f"not an upload: {type(upload).__name__}")


def prepare_graphql_file(
    path_or_stream_or_buffer,
    filename: Union[str, None] = None,
    mimetype: Union[str, None] = None,
) -> Upload:
    """Build an upload for use as a GraphQL variable value.

    Accepts a filesystem path (opened for reading in binary mode), raw bytes,
    an open binary stream, or a ``{data, filename, mimetype}`` base64 mapping.
    """
    value = path_or_stream_or_buffer
    if isinstance(value, (str, os.PathLike)):
        path = os.fspath(value)
        if not os.path.isfile(path):
            raise ConfigurationError(f"no such file: {path}")
        return StreamUpload(open(path, "rb"), filename or os.path.basename(path), mimetype)  # noqa: SIM115
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BufferUpload(bytes(value), filename, mimetype)
    if isinstance(value, dict) and "data" in value:
        return Base64Upload(
            value["data"],
            filename or value.get("filename"),
            mimetype or value.get("mimetype"),
            bool(value.get("bufferize", False)),
        )
    if callable(getattr(value, "read", None)):
        return StreamUpload(value, filename, mimetype)
    raise ConfigurationError(
        "expected a file path, bytes, a readable stream or a base64 mapping, "
        f"got {type(value).__name__}"
    )
