from .client import Anvil, AsyncAnvil
from .env import load_config_from_env
from .errors import (
    AnvilError,
    ConfigurationError,
    RequestAborted,
    SchemaError,
    TransportFailure,
    UploadStreamError,
)
from .executor import AsyncRequestExecutor, RequestExecutor, retry_delay_ms
from .extract import ExtractedFiles, extract_files, validate_file_shapes
from .limiter import AsyncRateLimiter, RateLimiter
from .multipart import EncodedRequest, encode_graphql
from .types import (
    VERSION,
    ApiResult,
    ClientConfig,
    DataType,
    RateLimitConfig,
    RetryDirective,
    SignUrlResult,
)
from .uploads import Base64Upload, BufferUpload, StreamUpload, prepare_graphql_file

__version__ = VERSION

__all__ = [
    "Anvil",
    "AsyncAnvil",
    "ClientConfig",
    "RateLimitConfig",
    "DataType",
    "ApiResult",
    "SignUrlResult",
    "RetryDirective",
    "RateLimiter",
    "AsyncRateLimiter",
    "RequestExecutor",
    "AsyncRequestExecutor",
    "retry_delay_ms",
    "StreamUpload",
    "BufferUpload",
    "Base64Upload",
    "prepare_graphql_file",
    "ExtractedFiles",
    "extract_files",
    "validate_file_shapes",
    "EncodedRequest",
    "encode_graphql",
    "load_config_from_env",
    "AnvilError",
    "ConfigurationError",
    "SchemaError",
    "TransportFailure",
    "RequestAborted",
    "UploadStreamError",
]
