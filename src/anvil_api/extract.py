from collections.abc import Iterator, Mapping
from typing import Any, Union

from .errors import SchemaError
from .uploads import Base64Upload, BufferUpload, StreamUpload, Upload

BASE64_KEYS = frozenset({"data", "filename", "mimetype"})
BASE64_OPTIONAL_KEYS = frozenset({"bufferize"})
# Variables named like this must hold an upload (or nothing)
FILE_KEY = "file"


# ---------- predicates ----------


def is_stream(value: Any) -> bool:
    return not isinstance(value, (str, bytes, bytearray)) and callable(
        getattr(value, "read", None)
    )


def is_base64_descriptor(value: Any) -> bool:
    if not isinstance(value, Mapping):
        return False
    keys = set(value.keys())
    if not BASE64_KEYS <= keys or keys - BASE64_KEYS - BASE64_OPTIONAL_KEYS:
        return False
    return (
        isinstance(value["data"], str)
        and isinstance(value["filename"], str)
        and bool(value["filename"])
        and isinstance(value["mimetype"], str)
        and bool(value["mimetype"])
        and isinstance(value.get("bufferize", False), bool)
    )


def is_upload(value: Any) -> bool:
    return (
        isinstance(value, (StreamUpload, BufferUpload, Base64Upload))
        or isinstance(value, (bytes, bytearray, memoryview))
        or is_stream(value)
        or is_base64_descriptor(value)
    )


def _looks_file_shaped(value: Any) -> bool:
    if not isinstance(value, Mapping):
        return False
    if "data" in value:
        return "filename" in value or "mimetype" in value
    # descriptor metadata without its payload
    return "filename" in value and "mimetype" in value


def _join(path: str, key) -> str:
    return f"{path}.{key}" if path else str(key)


# ---------- validation ----------


def validate_file_shapes(tree: Any, path: str = "") -> None:
    """Fail fast on values that look like files but are not usable uploads.

    Raises:
        SchemaError: for a mapping carrying some of the base64 descriptor keys
            without being a complete descriptor, or for a ``file`` variable that
            is neither an upload nor None.
    """
    if is_upload(tree):
        return
    if _looks_file_shaped(tree):
        missing = sorted(BASE64_KEYS - set(tree.keys()))
        detail = f"missing {', '.join(missing)}" if missing else "unexpected keys or value types"
        raise SchemaError(f"Invalid File schema detected at '{path or '<root>'}': {detail}")
    if isinstance(tree, Mapping):
        for key, value in tree.items():
            sub = _join(path, key)
            validate_file_shapes(value, sub)
            if key == FILE_KEY and value is not None and not is_upload(value):
                raise SchemaError(
                    f"Invalid File schema detected at '{sub}': "
                    f"{type(value).__name__} is not a stream, buffer or base64 upload"
                )
    elif isinstance(tree, (list, tuple)):
        for idx, value in enumerate(tree):
            validate_file_shapes(value, _join(path, idx))


# ---------- extraction ----------


class ExtractedFiles:
    """Insertion-ordered identity map from an upload to the paths referencing it."""

    def __init__(self):
        # id(original value) -> [original value, upload, paths]
        self._entries: dict[int, list] = {}

    def add(self, original: Any, upload: Upload, path: str) -> None:
        entry = self._entries.get(id(original))
        if entry is None:
            self._entries[id(original)] = [original, upload, [path]]
        else:
            entry[2].append(path)

    def paths_for(self, original: Any) -> list[str]:
        entry = self._entries.get(id(original))
        return list(entry[2]) if entry else []

    def originals(self) -> Iterator[tuple[Any, list[str]]]:
        for original, _upload, paths in self._entries.values():
            yield original, list(paths)

    def __iter__(self) -> Iterator[tuple[Upload, list[str]]]:
        for _original, upload, paths in self._entries.values():
            yield upload, list(paths)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)


def _leaf_upload(value: Any) -> Union[Upload, None]:
    """Return the upload a leaf stands for, or None when it stays inline as JSON."""
    if isinstance(value, (StreamUpload, BufferUpload)):
        return value
    if isinstance(value, Base64Upload):
        return value.to_buffer() if value.bufferize else None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BufferUpload(bytes(value))
    if is_base64_descriptor(value):
        if not value.get("bufferize", False):
            return None
        return Base64Upload(value["data"], value["filename"], value["mimetype"], True).to_buffer()
    return StreamUpload(value)


def _walk(value: Any, path: str, files: ExtractedFiles) -> Any:
    if is_upload(value):
        upload = _leaf_upload(value)
        if upload is None:
            # base64 payload sent inline in the JSON variables
            return value.as_dict() if isinstance(value, Base64Upload) else dict(value)
        files.add(value, upload, path)
        return None
    if isinstance(value, Mapping):
        return {key: _walk(sub, _join(path, key), files) for key, sub in value.items()}
    if isinstance(value, (list, tuple)):
        return [_walk(sub, _join(path, idx), files) for idx, sub in enumerate(value)]
    return value


def extract_files(tree: Any, path_prefix: str = "") -> tuple[Any, ExtractedFiles]:
    """Split upload leaves out of a variables tree.

    Returns a clone of ``tree`` with every extracted upload replaced by None,
    and the ExtractedFiles map of upload -> dotted paths (array indices used
    for sequence elements, ``path_prefix`` prepended when given). The input
    is not modified.
    """
    validate_file_shapes(tree, path_prefix)
    files = ExtractedFiles()
    scrubbed = _walk(tree, path_prefix, files)
    return scrubbed, files


def set_path(tree: Any, path: str, value: Any) -> None:
    """Assign ``value`` at a dotted path inside nested dicts/lists, in place."""
    parts = path.split(".")
    node = tree
    for part in parts[:-1]:
        node = node[int(part)] if isinstance(node, list) else node[part]
    last = parts[-1]
    if isinstance(node, list):
        node[int(last)] = value
    else:
        node[last] = value
