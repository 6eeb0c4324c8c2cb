class AnvilError(Exception):
    """Base class for errors raised by anvil_api."""


class ConfigurationError(AnvilError, ValueError):
    """Missing credentials, unsupported options or an unusable upload descriptor.

    Raised before any network I/O and never retried.
    """


class SchemaError(AnvilError, ValueError):
    """A file-like value in GraphQL variables is malformed."""


class TransportFailure(AnvilError):
    """The request did not complete at the transport level."""


class RequestAborted(TransportFailure):
    pass


class UploadStreamError(TransportFailure):
    """An upload stream failed while the multipart body was being sent."""
