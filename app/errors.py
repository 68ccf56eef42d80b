"""Error types raised by the relay and turned into JSON responses by the app."""

from typing import Any


class RelayError(Exception):
    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None, extra: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, **self.extra}


class BadRequest(RelayError):
    status_code = 400


class PayloadTooLarge(RelayError):
    status_code = 413


class UpstreamError(RelayError):
    status_code = 502


class InternalError(RelayError):
    status_code = 500

    def __init__(self, message: str = "Server failed to generate image.") -> None:
        super().__init__(message)
