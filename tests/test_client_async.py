import asyncio
import io
import json

import httpx
import pytest

from anvil_api import AsyncAnvil, ConfigurationError, RequestAborted, SchemaError, UploadStreamError


def _client(handler):
    transport = httpx.MockTransport(handler)
    return AsyncAnvil(api_key="abc123", client=httpx.AsyncClient(transport=transport))


@pytest.mark.asyncio
async def test_fill_pdf():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=b"PDF bytes")

    anvil = _client(handler)
    payload = {"title": "Test", "data": {"helloId": "hello!"}}
    result = await anvil.fill_pdf("cast123", payload)

    assert result.status_code == 200  # noqa: PLR2004
    assert result.data == b"PDF bytes"
    assert len(calls) == 1
    request = calls[0]
    assert request.method == "POST"
    assert request.url.path == "/api/v1/fill/cast123.pdf"
    assert json.loads(request.content) == payload
    assert request.headers["authorization"] == anvil.config.auth_header
    assert request.headers["user-agent"] == anvil.config.user_agent


@pytest.mark.asyncio
async def test_download_documents_stream():
    anvil = _client(lambda request: httpx.Response(200, content=b"zip bytes"))
    result = await anvil.download_documents("docGroupEid123", data_type="stream")
    chunks = [chunk async for chunk in result.data]
    assert b"".join(chunks) == b"zip bytes"


@pytest.mark.asyncio
async def test_rest_rejects_json_data_type():
    calls = []
    anvil = _client(lambda request: calls.append(request))
    with pytest.raises(ConfigurationError):
        await anvil.download_documents("docGroupEid123", data_type="json")
    assert calls == []


@pytest.mark.asyncio
async def test_429_then_200(monkeypatch):
    responses = [
        httpx.Response(429, headers={"retry-after": "0.2"}),
        httpx.Response(200, json={"data": {"etchPacket": {"eid": "e"}}}),
    ]
    calls = []

    def handler(request):
        calls.append(request)
        return responses[len(calls) - 1]

    anvil = _client(handler)
    sleeps = []

    async def fake_sleep(seconds, abort):
        sleeps.append(seconds)

    monkeypatch.setattr(anvil.executor, "_sleep", fake_sleep)
    result = await anvil.get_etch_packet({"eid": "e"})
    assert len(calls) == 2  # noqa: PLR2004
    assert sleeps == [pytest.approx(0.25)]
    assert result.data == {"data": {"etchPacket": {"eid": "e"}}}


@pytest.mark.asyncio
async def test_graphql_multipart_body():
    seen = {}

    def handler(request):
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = request.content
        return httpx.Response(200, json={"data": {"createEtchPacket": {"eid": "p"}}})

    anvil = _client(handler)
    variables = {"files": [{"id": "doc", "file": io.BytesIO(b"%PDF-stream")}], "isTest": True}
    result = await anvil.create_etch_packet(variables)

    assert result.data["data"]["createEtchPacket"]["eid"] == "p"
    assert seen["content_type"].startswith("multipart/form-data; boundary=")
    body = seen["body"]
    assert body.index(b'name="operations"') < body.index(b'name="map"') < body.index(b'name="1"')
    assert b'{"1":["variables.files.0.file"]}' in body
    assert b"%PDF-stream" in body


@pytest.mark.asyncio
async def test_graphql_without_files_is_json():
    seen = {}

    def handler(request):
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"generateEtchSignURL": "http://x"}})

    anvil = _client(handler)
    result = await anvil.generate_etch_sign_url({"clientUserId": "foo", "signerEid": "bar"})
    assert seen["content_type"] == "application/json"
    assert seen["body"]["variables"] == {"clientUserId": "foo", "signerEid": "bar"}
    assert result.status_code == 200  # noqa: PLR2004
    assert result.url == "http://x"
    assert result.errors is None


@pytest.mark.asyncio
async def test_sign_url_missing():
    anvil = _client(lambda request: httpx.Response(200, json={"data": {}}))
    result = await anvil.generate_etch_sign_url({"clientUserId": "foo", "signerEid": "bar"})
    assert result.url is None
    assert result.errors is None


@pytest.mark.asyncio
async def test_schema_error_never_reaches_network():
    calls = []
    anvil = _client(lambda request: calls.append(request))
    with pytest.raises(SchemaError):
        await anvil.request_graphql("mutation { x }", {"file": {"data": "...", "filename": "x"}})
    assert calls == []


@pytest.mark.asyncio
async def test_stream_error_aborts_request():
    class Broken(io.RawIOBase):
        def readable(self):
            return True

        def read(self, size=-1):
            raise OSError("stream broke")

    calls = []
    anvil = _client(lambda request: calls.append(request) or httpx.Response(200, json={}))
    with pytest.raises(UploadStreamError):
        await anvil.request_graphql("mutation { x }", {"file": Broken()})
    assert calls == []


@pytest.mark.asyncio
async def test_abort_signal_cancels_request():
    async def handler(request):
        await asyncio.sleep(30)
        return httpx.Response(200)

    anvil = _client(handler)
    abort = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, abort.set)
    with pytest.raises(RequestAborted):
        await anvil.fill_pdf("cast123", {}, abort=abort)


@pytest.mark.asyncio
async def test_concurrent_calls_share_limiter():
    anvil = _client(lambda request: httpx.Response(200, content=b"ok"))
    results = await asyncio.gather(*(anvil.generate_pdf({"n": i}) for i in range(10)))
    assert [r.data for r in results] == [b"ok"] * 10
    assert len(anvil.limiter.state.recent_grants) == 10  # noqa: PLR2004
    await anvil.aclose()
