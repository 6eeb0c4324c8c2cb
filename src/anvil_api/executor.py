import asyncio
import contextlib
import logging
import math
import threading
import time
from collections.abc import Awaitable, Mapping
from typing import Any, Callable, Union

import httpx
import requests

from .errors import RequestAborted
from .limiter import AsyncRateLimiter, RateLimiter
from .types import ApiResult, DataType, RetryDirective

# Added to every server-directed retry delay
FAIL_BUFFER_MS = 50
STREAM_CHUNK_SIZE = 64 * 1024

# ---------- Common helpers ----------


def _header(headers: Mapping, name: str) -> Union[str, None]:
    for k, v in headers.items():
        if k.lower() == name:
            return v
    return None


def retry_delay_ms(retry_after: Union[str, None], now: Union[float, None] = None) -> int:
    """Milliseconds to wait before resubmitting a throttled request.

    ``retry_after`` is the raw Retry-After header: seconds (possibly
    fractional) or an HTTP-date. Absent or unparseable values count as 0s.
    """
    seconds = 0.0
    if retry_after is not None:
        try:
            seconds = abs(float(retry_after))
        except ValueError:
            # Try HTTP-date per RFC7231
            import email.utils as eut  # noqa: PLC0415

            try:
                ts = eut.parsedate_to_datetime(retry_after)
            except (TypeError, ValueError):
                ts = None
            if ts is not None:
                seconds = max(0.0, ts.timestamp() - (time.time() if now is None else now))
    if not math.isfinite(seconds):
        seconds = 0.0
    # round half up
    return int(math.floor(seconds * 1000 + 0.5)) + FAIL_BUFFER_MS


def _text_errors(text: Union[str, None], reason: Union[str, None]) -> list[dict[str, str]]:
    return [{"message": (text or "").strip() or reason or "request failed"}]


# ---------- Base executor (shared logic; transport handled by subclasses) ----------


class _ExecutorBase:
    """Runs one logical request through the rate limiter, retrying on 429.

    Attempts loop through Attempting -> Throttled(delay) -> Attempting until the
    response is not a 429. There is no cap on 429 retries: a server that keeps
    throttling stalls the caller until it relents or the caller aborts. Other
    statuses, 5xx included, are never retried because fill/generate calls are
    not idempotent.
    """

    def __init__(self, limiter, log_level: Union[int, None] = None):
        self.limiter = limiter
        self._logger = logging.getLogger("anvil_api")
        if log_level is not None:
            self._logger.setLevel(log_level)

    def evaluate(self, status_code: int, headers: Mapping) -> Union[RetryDirective, None]:
        if status_code == 429:  # noqa: PLR2004, http status code can be constant
            return RetryDirective(delay_ms=retry_delay_ms(_header(headers, "retry-after")))
        return None

    def resolve_data_type(self, data_type: Any) -> DataType:
        if isinstance(data_type, DataType):
            return data_type
        try:
            return DataType(data_type)
        except ValueError:
            self._logger.warning(f"unknown data_type={data_type!r}; decoding response as json")
            return DataType.JSON

    def error_result(self, status_code: int, body: Any, response: Any = None) -> ApiResult:
        if isinstance(body, Mapping):
            errors = body.get("errors")
            if errors is not None:
                errors = list(errors) if isinstance(errors, (list, tuple)) else [errors]
                return ApiResult(status_code, errors=errors, response=response)
            if body.get("message"):
                return ApiResult(status_code, errors=[dict(body)], response=response)
        return ApiResult(status_code, data=body, response=response)


# ---------- Sync executor (requests) ----------


class RequestExecutor(_ExecutorBase):
    def __init__(self, limiter: Union[RateLimiter, None] = None, log_level: Union[int, None] = None):
        super().__init__(limiter or RateLimiter(log_level=log_level), log_level)

    def _sleep(self, seconds: float, abort: Union[threading.Event, None]):
        if abort is None:
            time.sleep(seconds)
        elif abort.wait(seconds):
            raise RequestAborted("request aborted while throttled")

    def execute(
        self,
        request_factory: Callable[[], requests.Response],
        data_type: Any = DataType.JSON,
        abort: Union[threading.Event, None] = None,
        label: str = "",
    ) -> ApiResult:
        """Perform ``request_factory()`` until it is not throttled and decode the result.

        ``request_factory`` is called once per physical attempt and should send
        the request with ``stream=True``. An ``abort`` event is honoured before
        each attempt, during throttle waits and once the response arrives; a
        blocking requests call that is already in flight runs to completion
        before its response is discarded.
        """
        dtype = self.resolve_data_type(data_type)
        attempt = 0
        while True:
            if abort is not None and abort.is_set():
                raise RequestAborted("request aborted")
            self.limiter.acquire_token()
            attempt += 1
            self._logger.debug(f"req start {label} attempt={attempt}")
            try:
                response = request_factory()
            except requests.RequestException as e:
                self._logger.warning(f"request error {label} attempt={attempt}: {e}")
                raise
            self._logger.debug(f"req done {label} status={response.status_code}")
            if abort is not None and abort.is_set():
                with contextlib.suppress(Exception):
                    response.close()
                raise RequestAborted("request aborted")
            directive = self.evaluate(response.status_code, response.headers)
            if directive is not None:
                self._logger.info(f"429 on {label}; retrying in {directive.delay_ms}ms")
                with contextlib.suppress(Exception):
                    response.close()
                self._sleep(directive.delay_ms / 1000.0, abort)
                continue
            if response.status_code >= 300:  # noqa: PLR2004
                return self._decode_error(response)
            return self._decode_success(response, dtype)

    def _decode_error(self, response: requests.Response) -> ApiResult:
        try:
            body = response.json()
        except ValueError:
            return ApiResult(
                response.status_code,
                errors=_text_errors(response.text, response.reason),
                response=response,
            )
        return self.error_result(response.status_code, body, response)

    def _decode_success(self, response: requests.Response, dtype: DataType) -> ApiResult:
        if dtype is DataType.STREAM:
            raw = response.raw
            raw.decode_content = True
            return ApiResult(response.status_code, data=raw, response=response)
        if dtype is DataType.BUFFER:
            return ApiResult(response.status_code, data=response.content, response=response)
        data = response.json() if response.content else None
        return ApiResult(response.status_code, data=data, response=response)


# ---------- Async executor (httpx) ----------


class AsyncRequestExecutor(_ExecutorBase):
    def __init__(
        self, limiter: Union[AsyncRateLimiter, None] = None, log_level: Union[int, None] = None
    ):
        super().__init__(limiter or AsyncRateLimiter(log_level=log_level), log_level)

    async def _sleep(self, seconds: float, abort: Union[asyncio.Event, None]):
        if abort is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(abort.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise RequestAborted("request aborted while throttled")

    async def _call(
        self,
        request_factory: Callable[[], Awaitable[httpx.Response]],
        abort: Union[asyncio.Event, None],
    ) -> httpx.Response:
        if abort is None:
            return await request_factory()
        call = asyncio.ensure_future(request_factory())
        aborted = asyncio.ensure_future(abort.wait())
        try:
            await asyncio.wait({call, aborted}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            aborted.cancel()
        if call.done():
            return call.result()
        # cancelling the task closes the in-flight connection
        call.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await call
        raise RequestAborted("request aborted")

    async def execute(
        self,
        request_factory: Callable[[], Awaitable[httpx.Response]],
        data_type: Any = DataType.JSON,
        abort: Union[asyncio.Event, None] = None,
        label: str = "",
    ) -> ApiResult:
        """Async counterpart of RequestExecutor.execute.

        ``request_factory`` should send with ``stream=True``. Setting ``abort``
        cancels the in-flight call, or ends a throttle wait early, and raises
        RequestAborted.
        """
        dtype = self.resolve_data_type(data_type)
        attempt = 0
        while True:
            if abort is not None and abort.is_set():
                raise RequestAborted("request aborted")
            await self.limiter.acquire_token()
            attempt += 1
            self._logger.debug(f"req start {label} attempt={attempt}")
            try:
                response = await self._call(request_factory, abort)
            except httpx.TransportError as e:
                self._logger.warning(f"request error {label} attempt={attempt}: {e}")
                raise
            self._logger.debug(f"req done {label} status={response.status_code}")
            directive = self.evaluate(response.status_code, response.headers)
            if directive is not None:
                self._logger.info(f"429 on {label}; retrying in {directive.delay_ms}ms")
                await response.aclose()
                await self._sleep(directive.delay_ms / 1000.0, abort)
                continue
            if response.status_code >= 300:  # noqa: PLR2004
                return await self._decode_error(response)
            return await self._decode_success(response, dtype)

    async def _decode_error(self, response: httpx.Response) -> ApiResult:
        await response.aread()
        try:
            body = response.json()
        except ValueError:
            return ApiResult(
                response.status_code,
                errors=_text_errors(response.text, response.reason_phrase),
                response=response,
            )
        return self.error_result(response.status_code, body, response)

    async def _decode_success(self, response: httpx.Response, dtype: DataType) -> ApiResult:
        if dtype is DataType.STREAM:
            return ApiResult(
                response.status_code,
                data=response.aiter_bytes(STREAM_CHUNK_SIZE),
                response=response,
            )
        content = await response.aread()
        if dtype is DataType.BUFFER:
            return ApiResult(response.status_code, data=content, response=response)
        data = response.json() if content else None
        return ApiResult(response.status_code, data=data, response=response)
