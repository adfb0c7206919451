from typing import Any


class WireDecoderError(Exception):
    """Base class for errors raised by the wire decoder."""


class ArtifactError(WireDecoderError):
    """A contract artifact or its bytecode could not be parsed."""


class TransportError(WireDecoderError):
    """An RPC call failed or returned a malformed response."""

    def __init__(self, message: str, method: str = "") -> None:
        super().__init__(message)
        self.method = method


class UnsupportedRequestError(WireDecoderError):
    """
    The codec engine asked for data the driver does not know how to fetch.

    This signals a protocol mismatch between driver and engine, so it is never
    retried or ignored.
    """

    def __init__(self, request: Any) -> None:
        kind = getattr(request, "kind", type(request).__name__)
        super().__init__(f"Unsupported decode request of kind '{kind}': {request!r}.")
        self.request = request
