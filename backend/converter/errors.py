"""Error taxonomy shared by the conversion endpoint and the batch client."""
from typing import Optional


class ConverterError(Exception):
    """Base class for all converter errors."""


class ClientValidationError(ConverterError):
    """Bad file type, size or count, detected before any request is sent."""

    def __init__(self, message: str, rejections: Optional[list] = None):
        super().__init__(message)
        self.rejections = rejections or []


class RequestTransportError(ConverterError):
    """The conversion endpoint could not be reached."""


class ServerValidationError(ConverterError):
    """The endpoint rejected the request (4xx/5xx)."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(ConverterError):
    """Input bytes are not a recognizable image."""


class ProcessingError(ConverterError):
    """The image library failed while transcoding."""


class PackagingError(ConverterError):
    """Archive creation failed or there was nothing to package."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
