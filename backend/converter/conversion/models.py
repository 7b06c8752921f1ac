"""Conversion request/response models."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class TargetFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @classmethod
    def parse(cls, value: Optional[str]) -> "TargetFormat":
        """Case-insensitive lookup; "jpg" is an alias of jpeg. Raises ValueError."""
        name = (value or "").strip().lower()
        if name == "jpg":
            name = "jpeg"
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unsupported format: {value!r}. Supported: JPEG, PNG, WebP") from None

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"

    @property
    def pil_format(self) -> str:
        return self.value.upper()


class HandlerStage(str, Enum):
    """Per-request progress of the conversion handler."""

    RECEIVED = "received"
    CONTENT_TYPE_CHECKED = "content_type_checked"
    FORM_PARSED = "form_parsed"
    FILE_VALIDATED = "file_validated"
    FORMAT_VALIDATED = "format_validated"
    DECODED = "decoded"
    TRANSCODED = "transcoded"
    RESPONDED = "responded"
    REJECTED = "rejected"
    FAILED = "failed"


class IngestSource(str, Enum):
    DIRECT = "direct"
    DRAG_DROP = "drag_drop"
    FOLDER = "folder"


class RunStatus(str, Enum):
    IDLE = "idle"
    CONVERTING = "converting"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DownloadMode(str, Enum):
    INDIVIDUAL = "individual"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class UploadItem:
    name: str
    data: bytes
    size_bytes: int
    mime_type: str

    @classmethod
    def from_bytes(cls, name: str, data: bytes, mime_type: str) -> "UploadItem":
        return cls(name=name, data=data, size_bytes=len(data), mime_type=mime_type)


@dataclass(frozen=True)
class Rejection:
    name: str
    reason: str


@dataclass
class IngestReport:
    source: IngestSource
    accepted: list[UploadItem]
    rejected: list[Rejection]


@dataclass(frozen=True)
class ConversionSuccess:
    original_name: str
    converted_bytes: bytes
    converted_mime_type: str
    handle: Optional[str] = None  # blob: URL owned by the controller

    ok = True


@dataclass(frozen=True)
class ConversionFailure:
    original_name: str
    reason: str

    ok = False


ConversionOutcome = Union[ConversionSuccess, ConversionFailure]


@dataclass
class ConversionResult:
    """Output of one successful server-side conversion."""

    data: bytes
    target: TargetFormat
    width: int
    height: int
    source_format: str

    @property
    def content_type(self) -> str:
        return self.target.mime_type

    @property
    def filename(self) -> str:
        return f"converted.{self.target.value}"
