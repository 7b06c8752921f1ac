"""Stateless single-image conversion: format validation, decode, transcode."""
import logging
from typing import Callable, Optional

from converter.config import MAX_IMAGE_SIZE_BYTES, OUTPUT_FORMATS
from converter.conversion.codec import EncodeOptions, ImageCodec, PillowCodec
from converter.conversion.models import ConversionResult, HandlerStage, TargetFormat
from converter.errors import DecodeError, ProcessingError, ServerValidationError

logger = logging.getLogger("converter.service")


class ConversionService:
    """Validates one conversion request and delegates pixels to the codec.

    Holds no per-request state, so concurrent requests never interact.
    """

    def __init__(
        self,
        codec: Optional[ImageCodec] = None,
        options: Optional[EncodeOptions] = None,
        max_upload_bytes: int = MAX_IMAGE_SIZE_BYTES,
    ):
        self.codec = codec or PillowCodec()
        self.options = options or EncodeOptions()
        self.max_upload_bytes = max_upload_bytes
        logger.info(
            "ConversionService initialized with codec=%s max_upload_bytes=%s",
            type(self.codec).__name__, max_upload_bytes,
        )

    @staticmethod
    def parse_format(value: Optional[str]) -> TargetFormat:
        try:
            return TargetFormat.parse(value)
        except ValueError:
            raise ServerValidationError(
                f"Unsupported format. Supported: {', '.join(f.upper() for f in OUTPUT_FORMATS)}"
            ) from None

    def check_size(self, filename: str, size: int) -> None:
        if size > self.max_upload_bytes:
            max_mb = round(self.max_upload_bytes / (1024 * 1024), 2)
            raise ServerValidationError(f"File too large: {filename} (max {max_mb:g} MB)", status_code=413)

    def convert(
        self,
        data: bytes,
        target: TargetFormat,
        filename: str = "image",
        on_stage: Optional[Callable[[HandlerStage], None]] = None,
    ) -> ConversionResult:
        """Decode and re-encode. Raises DecodeError (bad input) or ProcessingError (library failure).

        ``on_stage`` is called with DECODED and then TRANSCODED as each step succeeds.
        """
        decoded = self.codec.decode(data)
        logger.debug("Decoded %s: %s %sx%s mode=%s", filename, decoded.format, decoded.width, decoded.height, decoded.mode)
        try:
            if on_stage:
                on_stage(HandlerStage.DECODED)
            out = self.codec.transcode(decoded, target, self.options)
        except (DecodeError, ProcessingError):
            raise
        except Exception as e:
            raise ProcessingError(str(e)) from e
        finally:
            decoded.close()
        if not out:
            raise ProcessingError("Codec produced no output")
        if on_stage:
            on_stage(HandlerStage.TRANSCODED)
        logger.info("Converted %s (%s, %s bytes) -> %s (%s bytes)", filename, decoded.format, len(data), target.value, len(out))
        return ConversionResult(
            data=out,
            target=target,
            width=decoded.width,
            height=decoded.height,
            source_format=decoded.format,
        )


# Singleton
_conversion_service: Optional[ConversionService] = None


def get_conversion_service() -> ConversionService:
    global _conversion_service
    if _conversion_service is None:
        _conversion_service = ConversionService()
    return _conversion_service
