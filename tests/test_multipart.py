import io
import json

import pytest
import requests

from anvil_api import BufferUpload, UploadStreamError, encode_graphql, extract_files

QUERY = "mutation Upload($file: Upload!) { upload(file: $file) }"


class BrokenStream(io.RawIOBase):
    def readable(self):
        return True

    def read(self, size=-1):
        raise OSError("disk went away")


class OneShotStream:
    def __init__(self, data):
        self._data = data

    def read(self, size=-1):
        data, self._data = self._data, b""
        return data


def test_no_files_is_plain_json():
    scrubbed, files = extract_files({"eid": "abc"}, path_prefix="variables")
    enc = encode_graphql(QUERY, scrubbed, files)
    assert not enc.is_multipart
    assert enc.headers == {"Content-Type": "application/json"}
    assert json.loads(enc.content) == {"query": QUERY, "variables": {"eid": "abc"}}


def test_operations_map_and_indexed_files():
    stream = io.BytesIO(b"stream data")
    variables = {"a": {"b": {"file": b"buffer data"}}, "c": [{"file": stream}]}
    scrubbed, files = extract_files(variables, path_prefix="variables")
    enc = encode_graphql(QUERY, scrubbed, files)

    assert enc.is_multipart
    assert "Content-Type" not in enc.headers
    assert list(enc.data) == ["operations", "map"]
    ops = json.loads(enc.data["operations"])
    assert ops["variables"] == {"a": {"b": {"file": None}}, "c": [{"file": None}]}
    assert json.loads(enc.data["map"]) == {"1": ["variables.a.b.file"], "2": ["variables.c.0.file"]}
    assert list(enc.files) == ["1", "2"]
    assert enc.files["1"] == ("file", b"buffer data", "application/octet-stream")
    assert enc.files["2"][1].read() == b"stream data"


def test_shared_file_listed_under_one_index():
    shared = BufferUpload(b"same", filename="same.pdf")
    scrubbed, files = extract_files({"x": shared, "y": {"file": shared}}, path_prefix="variables")
    enc = encode_graphql(QUERY, scrubbed, files)
    assert enc.data["map"] == '{"1":["variables.x","variables.y.file"]}'
    assert enc.files["1"] == ("same.pdf", b"same", "application/pdf")


def test_requests_renders_parts_in_order():
    scrubbed, files = extract_files({"file": BufferUpload(b"PDFDATA", "a.pdf")}, "variables")
    enc = encode_graphql(QUERY, scrubbed, files)
    prepared = requests.Request("POST", "https://x.test/graphql", data=enc.data, files=enc.files).prepare()
    body = prepared.body
    assert prepared.headers["Content-Type"].startswith("multipart/form-data; boundary=")
    ops = body.index(b'name="operations"')
    mapping = body.index(b'name="map"')
    part = body.index(b'name="1"; filename="a.pdf"')
    assert ops < mapping < part
    assert b"PDFDATA" in body


def test_stream_error_aborts_encoding():
    scrubbed, files = extract_files({"file": BrokenStream()}, "variables")
    enc = encode_graphql(QUERY, scrubbed, files)
    with pytest.raises(UploadStreamError, match="disk went away"):
        requests.Request("POST", "https://x.test/graphql", data=enc.data, files=enc.files).prepare()


def test_rewind_seekable_stream():
    scrubbed, files = extract_files({"file": io.BytesIO(b"abc")}, "variables")
    enc = encode_graphql(QUERY, scrubbed, files)
    guarded = enc.files["1"][1]
    assert guarded.read() == b"abc"
    enc.rewind()
    assert guarded.read() == b"abc"


def test_rewind_consumed_non_seekable_stream_fails():
    scrubbed, files = extract_files({"file": OneShotStream(b"abc")}, "variables")
    enc = encode_graphql(QUERY, scrubbed, files)
    enc.rewind()  # nothing read yet
    enc.files["1"][1].read()
    with pytest.raises(UploadStreamError):
        enc.rewind()
