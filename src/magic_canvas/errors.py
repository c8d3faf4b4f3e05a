from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    MALFORMED_INPUT = "malformed_input"
    EMPTY_MASK = "empty_mask"
    REMOTE_INVALID_ARGUMENT = "remote_invalid_argument"
    REMOTE_NO_IMAGE = "remote_no_image"
    REMOTE_SERVICE = "remote_service"


GENERIC_REMOTE_MESSAGE = "Could not complete the edit. Please try again."


class MagicCanvasError(Exception):
    """Base class for every failure the edit pipeline surfaces to its caller.

    `user_message` is safe to show to an end user; `http_status` is the status a
    handler layer should answer with.
    """

    kind: ErrorKind
    http_status: int = 500
    user_message: str = GENERIC_REMOTE_MESSAGE

    def __init__(self, detail: str = "", *, user_message: str | None = None):
        super().__init__(detail or self.user_message)
        self.detail = detail
        if user_message is not None:
            self.user_message = user_message

    def to_payload(self) -> dict:
        return {"error": self.user_message, "kind": str(self.kind)}


class MalformedInputError(MagicCanvasError):
    kind = ErrorKind.MALFORMED_INPUT
    http_status = 400
    user_message = "The image could not be read. Please upload a JPG or PNG."


class EmptyMaskError(MagicCanvasError):
    kind = ErrorKind.EMPTY_MASK
    http_status = 400
    user_message = "Nothing is painted on the mask. Paint the region you want to edit."


class RemoteEditError(MagicCanvasError):
    """Failure reported by (or about) the remote image model."""


class RemoteInvalidArgumentError(RemoteEditError):
    kind = ErrorKind.REMOTE_INVALID_ARGUMENT
    http_status = 400


class RemoteNoImageError(RemoteEditError):
    kind = ErrorKind.REMOTE_NO_IMAGE
    http_status = 500


class RemoteServiceError(RemoteEditError):
    kind = ErrorKind.REMOTE_SERVICE
    http_status = 502


class CompositingError(RuntimeError):
    """Broken geometric invariant inside the compositor. Always a bug."""


def should_retry(kind: ErrorKind) -> bool:
    return kind is ErrorKind.REMOTE_INVALID_ARGUMENT
