import base64
import copy
import io

import pytest

from anvil_api import (
    Base64Upload,
    BufferUpload,
    ConfigurationError,
    SchemaError,
    StreamUpload,
    extract_files,
    validate_file_shapes,
)
from anvil_api.extract import set_path


def test_extracts_buffer_and_stream_and_reconstructs():
    buf = b"%PDF-1.4 buffer"
    stream = io.BytesIO(b"%PDF-1.4 stream")
    tree = {"a": {"b": {"file": buf}, "keep": 1}, "c": [{"file": stream, "id": "x"}], "d": "text"}
    original = {"a": {"b": {"file": buf}, "keep": 1}, "c": [{"file": stream, "id": "x"}], "d": "text"}

    scrubbed, files = extract_files(tree)

    assert scrubbed == {"a": {"b": {"file": None}, "keep": 1}, "c": [{"file": None, "id": "x"}], "d": "text"}
    assert [paths for _upload, paths in files] == [["a.b.file"], ["c.0.file"]]
    # input untouched
    assert tree == original

    rebuilt = copy.deepcopy(scrubbed)
    for value, paths in files.originals():
        for path in paths:
            set_path(rebuilt, path, value)
    assert rebuilt == original


def test_upload_variants_resolve_to_files():
    up = StreamUpload(io.BytesIO(b"x"), filename="a.pdf")
    scrubbed, files = extract_files({"file": up})
    assert scrubbed == {"file": None}
    (upload, paths), = list(files)
    assert upload is up
    assert paths == ["file"]


def test_shared_upload_is_deduplicated():
    shared = BufferUpload(b"same", filename="same.pdf")
    _scrubbed, files = extract_files({"x": {"file": shared}, "y": [shared]}, path_prefix="variables")
    assert len(files) == 1
    (_upload, paths), = list(files)
    assert paths == ["variables.x.file", "variables.y.0"]


def test_tuples_become_lists():
    scrubbed, files = extract_files({"ids": (1, 2, 3)})
    assert scrubbed == {"ids": [1, 2, 3]}
    assert not files


def test_base64_stays_inline_unless_bufferized():
    data = base64.b64encode(b"Base64 Data").decode()
    inline = {"data": data, "filename": "omgwow.pdf", "mimetype": "application/pdf"}
    scrubbed, files = extract_files({"aNested": {"file": inline}})
    assert scrubbed == {"aNested": {"file": inline}}
    assert len(files) == 0

    bufferized = dict(inline, bufferize=True)
    scrubbed, files = extract_files({"aNested": {"file": bufferized}})
    assert scrubbed == {"aNested": {"file": None}}
    (upload, _paths), = list(files)
    assert isinstance(upload, BufferUpload)
    assert upload.data == b"Base64 Data"
    assert upload.mimetype == "application/pdf"


def test_base64_upload_requires_metadata():
    with pytest.raises(ConfigurationError):
        Base64Upload("ZGF0YQ==", filename="", mimetype="application/pdf")


def test_bad_base64_is_a_schema_error():
    with pytest.raises(SchemaError):
        extract_files({"file": {"data": "!!!", "filename": "a", "mimetype": "b", "bufferize": True}})


def test_partial_descriptor_rejected():
    with pytest.raises(SchemaError, match="Invalid File schema detected.*mimetype"):
        validate_file_shapes({"file": {"data": "...", "filename": "x"}})


def test_descriptor_without_data_rejected():
    with pytest.raises(SchemaError, match="'doc': missing data"):
        extract_files({"doc": {"filename": "a.pdf", "mimetype": "application/pdf"}})


def test_partial_descriptor_nested_in_list_rejected():
    with pytest.raises(SchemaError, match="files.1.upload"):
        extract_files({"files": [{"id": 1}, {"upload": {"data": "...", "mimetype": "x"}}]})


def test_file_key_must_hold_an_upload():
    with pytest.raises(SchemaError, match="Invalid File schema detected"):
        extract_files({"file": "i am not a file"})
    # None is allowed
    scrubbed, files = extract_files({"file": None})
    assert scrubbed == {"file": None}
    assert not files
