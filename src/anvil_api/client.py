import asyncio
import contextlib
import logging
import threading
from collections.abc import Mapping
from typing import Any, Union

import httpx
import requests

from .env import load_config_from_env
from .errors import ConfigurationError
from .executor import AsyncRequestExecutor, RequestExecutor
from .extract import extract_files
from .graphql import (
    create_etch_packet_mutation,
    generate_etch_sign_url_mutation,
    get_etch_packet_query,
)
from .limiter import AsyncRateLimiter, RateLimiter
from .multipart import EncodedRequest, encode_graphql, to_json
from .types import (
    DEFAULT_BASE_URL,
    DEFAULT_USER_AGENT,
    ApiResult,
    ClientConfig,
    DataType,
    RateLimitConfig,
    RequestDescriptor,
    SignUrlResult,
)

GRAPHQL_PATH = "/graphql"
FILL_PDF_PATH = "/api/v1/fill/{template_id}.pdf"
GENERATE_PDF_PATH = "/api/v1/generate-pdf"
DOWNLOAD_DOCUMENTS_PATH = "/api/document-group/{eid}.zip"

REST_DATA_TYPES = (DataType.STREAM, DataType.BUFFER)
# seconds; PDF generation can be slow
DEFAULT_TIMEOUT = 60.0


def _coerce_rest_data_type(value: Any) -> DataType:
    try:
        dtype = value if isinstance(value, DataType) else DataType(value)
    except ValueError:
        dtype = None
    if dtype not in REST_DATA_TYPES:
        raise ConfigurationError("dataType must be one of: stream|buffer")
    return dtype


def _merge_headers(base: dict[str, str], extra: Union[Mapping, None]) -> dict[str, str]:
    """Add caller headers that are new and not None; existing ones always win."""
    merged = dict(base)
    present = {k.lower() for k in merged}
    for k, v in (extra or {}).items():
        if v is None or k.lower() in present:
            continue
        merged[k] = v
        present.add(k.lower())
    return merged


# ---------- Base client (request building; transport handled by subclasses) ----------


class _AnvilBase:
    def __init__(
        self,
        api_key: Union[str, None] = None,
        access_token: Union[str, None] = None,
        base_url: str = DEFAULT_BASE_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        config: Union[ClientConfig, None] = None,
        rate_limit: Union[RateLimitConfig, None] = None,
        timeout: float = DEFAULT_TIMEOUT,
        log_level: Union[int, None] = None,
    ):
        """Initialize a client.

        Args:
            api_key (str | None): Anvil API key, sent as Basic auth
            access_token (str | None): OAuth access token, sent as Bearer auth;
                wins over api_key
            base_url (str): service root, defaults to https://app.useanvil.com
            user_agent (str): User-Agent header value
            config (ClientConfig | None): prebuilt config; overrides the above
            rate_limit (RateLimitConfig | None): outbound request quota
            timeout (float): per-request transport timeout in seconds
            log_level (int | None): level for the "anvil_api" logger

        Raises:
            ConfigurationError: if neither api_key nor access_token is given
        """
        self.config = config or ClientConfig(
            api_key=api_key,
            access_token=access_token,
            base_url=base_url,
            user_agent=user_agent,
        )
        self.rate_limit = rate_limit or RateLimitConfig()
        self.timeout = timeout
        self._log_level = log_level
        self._logger = logging.getLogger("anvil_api")
        if log_level is not None:
            self._logger.setLevel(log_level)

    def _headers(self, own: Union[Mapping, None] = None, extra: Union[Mapping, None] = None):
        return _merge_headers({**self.config.default_headers, **(own or {})}, extra)

    # ---------- REST descriptors ----------
    def _rest_request(
        self,
        path: str,
        method: str,
        payload: Any = None,
        data_type: Any = DataType.BUFFER,
        headers: Union[Mapping, None] = None,
    ) -> RequestDescriptor:
        dtype = _coerce_rest_data_type(data_type)
        own = {"Content-Type": "application/json"} if payload is not None else {}
        return RequestDescriptor(
            url=self.config.url(path),
            method=method,
            headers=self._headers(own, headers),
            data_type=dtype,
            content=to_json(payload) if payload is not None else None,
        )

    def _fill_pdf_request(self, template_id, payload, data_type, headers) -> RequestDescriptor:
        if not template_id:
            raise ConfigurationError("template_id is required")
        path = FILL_PDF_PATH.format(template_id=template_id)
        return self._rest_request(path, "POST", payload or {}, data_type, headers)

    def _generate_pdf_request(self, payload, data_type, headers) -> RequestDescriptor:
        return self._rest_request(GENERATE_PDF_PATH, "POST", payload or {}, data_type, headers)

    def _download_documents_request(self, eid, data_type, headers) -> RequestDescriptor:
        if not eid:
            raise ConfigurationError("document_group_eid is required")
        path = DOWNLOAD_DOCUMENTS_PATH.format(eid=eid)
        return self._rest_request(path, "GET", None, data_type, headers)

    # ---------- GraphQL descriptors ----------
    def _graphql_request(
        self,
        query: str,
        variables: Union[Mapping, None],
        data_type: Any,
        headers: Union[Mapping, None],
    ) -> tuple[RequestDescriptor, EncodedRequest]:
        if not query:
            raise ConfigurationError("query is required")
        if variables is not None and not isinstance(variables, Mapping):
            raise ConfigurationError("variables must be a mapping")
        scrubbed, files = extract_files(variables or {}, path_prefix="variables")
        encoded = encode_graphql(query, scrubbed, files)
        if files:
            self._logger.debug(f"graphql multipart request files={len(files)}")
        descriptor = RequestDescriptor(
            url=self.config.url(GRAPHQL_PATH),
            method="POST",
            headers=self._headers(encoded.headers, headers),
            data_type=data_type,
            content=encoded.content,
            data=encoded.data,
            files=encoded.files,
        )
        return descriptor, encoded

    @staticmethod
    def _graphql_result(result: ApiResult) -> ApiResult:
        if result.errors is None and isinstance(result.data, Mapping) and result.data.get("errors"):
            result.errors = list(result.data["errors"])
        return result

    @staticmethod
    def _sign_url_result(result: ApiResult) -> SignUrlResult:
        url = None
        if isinstance(result.data, Mapping):
            payload = result.data.get("data")
            if isinstance(payload, Mapping):
                url = payload.get("generateEtchSignURL")
        return SignUrlResult(
            result.status_code,
            data=result.data,
            errors=result.errors,
            response=result.response,
            url=url,
        )


# ---------- Sync client (requests) ----------


class Anvil(_AnvilBase):
    """Blocking client; safe to share between threads."""

    def __init__(self, *args, session: Union[requests.Session, None] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.limiter = RateLimiter(self.rate_limit, self._log_level)
        self.executor = RequestExecutor(self.limiter, self._log_level)
        self._own_session = session is None
        self.session = session if session is not None else requests.Session()

    @classmethod
    def from_env(cls, prefix: str = "ANVIL_", env_path: Union[str, None] = None, **kwargs):
        """Create a client from ANVIL_API_KEY / ANVIL_ACCESS_TOKEN / ANVIL_BASE_URL."""
        config = load_config_from_env(prefix=prefix, env_path=env_path)
        return cls(config=config, **kwargs)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if self._own_session:
            with contextlib.suppress(Exception):
                self.session.close()

    def _send(self, descriptor: RequestDescriptor, encoded: Union[EncodedRequest, None] = None):
        if encoded is not None:
            encoded.rewind()
        return self.session.request(
            descriptor.method,
            descriptor.url,
            headers=dict(descriptor.headers),
            data=descriptor.content if descriptor.content is not None else descriptor.data,
            files=descriptor.files,
            stream=True,
            timeout=self.timeout,
        )

    def _perform(self, descriptor, abort=None, encoded=None) -> ApiResult:
        return self.executor.execute(
            lambda: self._send(descriptor, encoded),
            descriptor.data_type,
            abort=abort,
            label=f"{descriptor.method} {descriptor.url}",
        )

    # public API
    def request_rest(
        self,
        path: str,
        method: str = "GET",
        payload: Any = None,
        data_type: Any = DataType.BUFFER,
        headers: Union[Mapping, None] = None,
        abort: Union[threading.Event, None] = None,
    ) -> ApiResult:
        return self._perform(self._rest_request(path, method, payload, data_type, headers), abort)

    def fill_pdf(self, template_id: str, payload: Mapping, data_type=DataType.BUFFER, headers=None, abort=None):
        return self._perform(self._fill_pdf_request(template_id, payload, data_type, headers), abort)

    def generate_pdf(self, payload: Mapping, data_type=DataType.BUFFER, headers=None, abort=None):
        return self._perform(self._generate_pdf_request(payload, data_type, headers), abort)

    def download_documents(self, document_group_eid: str, data_type=DataType.BUFFER, headers=None, abort=None):
        descriptor = self._download_documents_request(document_group_eid, data_type, headers)
        return self._perform(descriptor, abort)

    def request_graphql(
        self,
        query: str,
        variables: Union[Mapping, None] = None,
        data_type: Any = DataType.JSON,
        headers: Union[Mapping, None] = None,
        abort: Union[threading.Event, None] = None,
    ) -> ApiResult:
        descriptor, encoded = self._graphql_request(query, variables, data_type, headers)
        return self._graphql_result(self._perform(descriptor, abort, encoded))

    def create_etch_packet(self, variables: Mapping, response_query=None, mutation=None, headers=None, abort=None):
        query = mutation or create_etch_packet_mutation(response_query)
        return self.request_graphql(query, variables, DataType.JSON, headers, abort)

    def get_etch_packet(self, variables: Mapping, response_query=None, headers=None, abort=None):
        query = get_etch_packet_query(response_query)
        return self.request_graphql(query, variables, DataType.JSON, headers, abort)

    def generate_etch_sign_url(self, variables: Mapping, headers=None, abort=None) -> SignUrlResult:
        result = self.request_graphql(
            generate_etch_sign_url_mutation(), variables, DataType.JSON, headers, abort
        )
        return self._sign_url_result(result)


# ---------- Async client (httpx) ----------


class AsyncAnvil(_AnvilBase):
    """Client for one asyncio event loop; concurrent calls share one FIFO limiter."""

    def __init__(self, *args, client: Union[httpx.AsyncClient, None] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.limiter = AsyncRateLimiter(self.rate_limit, self._log_level)
        self.executor = AsyncRequestExecutor(self.limiter, self._log_level)
        self._own_client = client is None
        self.client = client if client is not None else httpx.AsyncClient(timeout=self.timeout)

    @classmethod
    def from_env(cls, prefix: str = "ANVIL_", env_path: Union[str, None] = None, **kwargs):
        config = load_config_from_env(prefix=prefix, env_path=env_path)
        return cls(config=config, **kwargs)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    async def aclose(self):
        if self._own_client:
            await self.client.aclose()

    async def _send(self, descriptor: RequestDescriptor, encoded: Union[EncodedRequest, None] = None):
        if encoded is not None:
            encoded.rewind()
        request = self.client.build_request(
            descriptor.method,
            descriptor.url,
            headers=dict(descriptor.headers),
            content=descriptor.content,
            data=descriptor.data,
            files=descriptor.files,
        )
        return await self.client.send(request, stream=True)

    async def _perform(self, descriptor, abort=None, encoded=None) -> ApiResult:
        return await self.executor.execute(
            lambda: self._send(descriptor, encoded),
            descriptor.data_type,
            abort=abort,
            label=f"{descriptor.method} {descriptor.url}",
        )

    # public API
    async def request_rest(
        self,
        path: str,
        method: str = "GET",
        payload: Any = None,
        data_type: Any = DataType.BUFFER,
        headers: Union[Mapping, None] = None,
        abort: Union[asyncio.Event, None] = None,
    ) -> ApiResult:
        descriptor = self._rest_request(path, method, payload, data_type, headers)
        return await self._perform(descriptor, abort)

    async def fill_pdf(self, template_id: str, payload: Mapping, data_type=DataType.BUFFER, headers=None, abort=None):
        descriptor = self._fill_pdf_request(template_id, payload, data_type, headers)
        return await self._perform(descriptor, abort)

    async def generate_pdf(self, payload: Mapping, data_type=DataType.BUFFER, headers=None, abort=None):
        return await self._perform(self._generate_pdf_request(payload, data_type, headers), abort)

    async def download_documents(self, document_group_eid: str, data_type=DataType.BUFFER, headers=None, abort=None):
        descriptor = self._download_documents_request(document_group_eid, data_type, headers)
        return await self._perform(descriptor, abort)

    async def request_graphql(
        self,
        query: str,
        variables: Union[Mapping, None] = None,
        data_type: Any = DataType.JSON,
        headers: Union[Mapping, None] = None,
        abort: Union[asyncio.Event, None] = None,
    ) -> ApiResult:
        descriptor, encoded = self._graphql_request(query, variables, data_type, headers)
        return self._graphql_result(await self._perform(descriptor, abort, encoded))

    async def create_etch_packet(self, variables: Mapping, response_query=None, mutation=None, headers=None, abort=None):
        query = mutation or create_etch_packet_mutation(response_query)
        return await self.request_graphql(query, variables, DataType.JSON, headers, abort)

    async def get_etch_packet(self, variables: Mapping, response_query=None, headers=None, abort=None):
        query = get_etch_packet_query(response_query)
        return await self.request_graphql(query, variables, DataType.JSON, headers, abort)

    async def generate_etch_sign_url(self, variables: Mapping, headers=None, abort=None) -> SignUrlResult:
        result = await self.request_graphql(
            generate_etch_sign_url_mutation(), variables, DataType.JSON, headers, abort
        )
        return self._sign_url_result(result)
