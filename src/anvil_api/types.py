import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ConfigurationError

VERSION = "0.1.0"
DEFAULT_BASE_URL = "https://app.useanvil.com"
DEFAULT_USER_AGENT = f"anvil-api-python/{VERSION}"


class DataType(str, Enum):
    STREAM = "stream"
    BUFFER = "buffer"
    JSON = "json"


@dataclass(frozen=True)
class ClientConfig:
    api_key: str | None = None
    access_token: str | None = None
    base_url: str = DEFAULT_BASE_URL
    user_agent: str = DEFAULT_USER_AGENT
    # Derived once; an access token wins over an api key.
    auth_header: str = field(init=False, repr=False)

    def __post_init__(self):
        if not self.api_key and not self.access_token:
            raise ConfigurationError("api_key or access_token required")
        if self.access_token:
            encoded = base64.b64encode(self.access_token.encode("ascii")).decode("ascii")
            header = f"Bearer {encoded}"
        else:
            encoded = base64.b64encode(f"{self.api_key}:".encode("ascii")).decode("ascii")
            header = f"Basic {encoded}"
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        object.__setattr__(self, "auth_header", header)

    @property
    def default_headers(self) -> dict[str, str]:
        return {"Authorization": self.auth_header, "User-Agent": self.user_agent}

    def url(self, path: str) -> str:
        if path.startswith(self.base_url):
            return path
        return self.base_url + path


@dataclass(frozen=True)
class RateLimitConfig:
    # Production api key quota: 200 requests per 5 seconds
    capacity: int = 200
    window_ms: int = 5000
    safety_margin_ms: int = 50

    def __post_init__(self):
        if self.capacity < 1:
            raise ConfigurationError("capacity must be at least 1")
        if self.window_ms <= 0:
            raise ConfigurationError("window_ms must be positive")


@dataclass(frozen=True)
class RetryDirective:
    delay_ms: int


@dataclass(frozen=True)
class RequestDescriptor:
    url: str
    method: str
    headers: dict[str, str]
    data_type: DataType
    content: str | bytes | None = None
    data: dict[str, str] | None = None
    files: dict[str, tuple] | None = None


@dataclass
class ApiResult:
    status_code: int
    data: Any = None
    errors: list | None = None
    response: Any = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.status_code < 300 and not self.errors  # noqa: PLR2004


@dataclass
class SignUrlResult(ApiResult):
    url: str | None = None
