"""GraphQL multipart request encoding.

Implements the community GraphQL multipart request convention: an
``operations`` part, a ``map`` part, then indexed file parts.
The multipart body itself is rendered by the transport library (requests or
httpx) from the ``data`` and ``files`` fields of an EncodedRequest, which
keeps the field order operations, map, 1..n.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Union

from .errors import UploadStreamError
from .extract import ExtractedFiles
from .uploads import resolve_upload


def to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


class _GuardedStream:
    """Read-only view of an upload stream.

    A failing read raises UploadStreamError out of the transport's body
    writer, which aborts the in-flight request instead of sending a truncated
    part. Seekable streams can be rewound for a retried attempt.
    """

    def __init__(self, stream):
        self._stream = stream
        self._start = None
        self._consumed = False
        seekable = getattr(stream, "seekable", None)
        try:
            if callable(seekable) and seekable():
                self._start = stream.tell()
        except (OSError, ValueError):
            self._start = None

    def read(self, size: int = -1) -> bytes:
        try:
            chunk = self._stream.read(size)
        except (OSError, ValueError) as e:
            raise UploadStreamError(f"upload stream failed: {e}") from e
        self._consumed = True
        if isinstance(chunk, str):
            raise UploadStreamError("upload streams must be opened in binary mode")
        return chunk

    def rewind(self) -> None:
        if not self._consumed:
            return
        if self._start is None:
            raise UploadStreamError("cannot resend a non-seekable upload stream")
        try:
            self._stream.seek(self._start)
        except (OSError, ValueError) as e:
            raise UploadStreamError(f"cannot rewind upload stream: {e}") from e
        self._consumed = False


@dataclass
class EncodedRequest:
    headers: dict[str, str] = field(default_factory=dict)
    content: Union[str, None] = None
    data: Union[dict[str, str], None] = None
    files: Union[dict[str, tuple], None] = None
    streams: list = field(default_factory=list, repr=False)

    @property
    def is_multipart(self) -> bool:
        return self.files is not None

    def rewind(self) -> None:
        """Prepare upload streams to be sent again."""
        for stream in self.streams:
            stream.rewind()


def build_file_map(files: ExtractedFiles) -> dict[str, list[str]]:
    return {str(idx): paths for idx, (_upload, paths) in enumerate(files, start=1)}


def encode_graphql(query: str, variables: Any, files: ExtractedFiles) -> EncodedRequest:
    """Encode a GraphQL operation whose variables were scrubbed by extract_files."""
    operations = {"query": query, "variables": variables}
    if not files:
        return EncodedRequest(
            headers={"Content-Type": "application/json"}, content=to_json(operations)
        )

    parts: dict[str, tuple] = {}
    streams: list[_GuardedStream] = []
    for idx, (upload, _paths) in enumerate(files, start=1):
        source, filename, mimetype = resolve_upload(upload)
        if not isinstance(source, bytes):
            source = _GuardedStream(source)
            streams.append(source)
        parts[str(idx)] = (filename, source, mimetype)

    # Content-Type (with boundary) is set by the transport library
    return EncodedRequest(
        data={"operations": to_json(operations), "map": to_json(build_file_map(files))},
        files=parts,
        streams=streams,
    )
