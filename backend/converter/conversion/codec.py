"""Image codec seam: decode untrusted bytes, transcode to a target format.

The conversion service only talks to the ``ImageCodec`` protocol, so request
validation and error mapping can be exercised without a real image library.
``PillowCodec`` is the production implementation.
"""
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Optional, Protocol

from PIL import Image, UnidentifiedImageError

from converter.config import (
    JPEG_QUALITY,
    MAX_IMAGE_DIMENSION,
    MAX_IMAGE_PIXELS,
    WEBP_METHOD,
    WEBP_QUALITY,
)
from converter.conversion.models import TargetFormat
from converter.conversion.resize import downscale_to_limit, prepare_mode
from converter.errors import DecodeError, ProcessingError

logger = logging.getLogger("converter.codec")

Image.MAX_IMAGE_PIXELS = MAX_IMAGE_PIXELS


@dataclass
class EncodeOptions:
    jpeg_quality: int = JPEG_QUALITY
    webp_quality: int = WEBP_QUALITY
    webp_method: int = WEBP_METHOD
    max_dimension: int = MAX_IMAGE_DIMENSION


@dataclass
class DecodedImage:
    """Metadata of a decoded image plus the codec's own handle to it."""

    format: str
    width: int
    height: int
    mode: str
    handle: Optional[Any] = None

    def close(self) -> None:
        if self.handle is not None and hasattr(self.handle, "close"):
            self.handle.close()
        self.handle = None


class ImageCodec(Protocol):
    def decode(self, data: bytes) -> DecodedImage:
        ...

    def transcode(self, decoded: DecodedImage, target: TargetFormat, options: EncodeOptions) -> bytes:
        ...


class PillowCodec:
    """Pillow-backed codec. Lossy formats use quality settings, PNG is optimized lossless."""

    def decode(self, data: bytes) -> DecodedImage:
        if not data:
            raise DecodeError("Empty image file")
        try:
            img = Image.open(BytesIO(data))
            # Pillow only warns between MAX_IMAGE_PIXELS and twice that; refuse before load()
            limit = Image.MAX_IMAGE_PIXELS
            if limit and img.width * img.height > limit:
                img.close()
                raise DecodeError("Image dimensions exceed the allowed limit")
            img.load()
        except UnidentifiedImageError as e:
            raise DecodeError("Unrecognized image format") from e
        except Image.DecompressionBombError as e:
            raise DecodeError("Image dimensions exceed the allowed limit") from e
        except (OSError, SyntaxError, ValueError) as e:
            raise DecodeError(f"Corrupt image data: {e}") from e
        if not img.format or img.width <= 0 or img.height <= 0:
            img.close()
            raise DecodeError("Image has no usable metadata")
        return DecodedImage(format=img.format, width=img.width, height=img.height, mode=img.mode, handle=img)

    def transcode(self, decoded: DecodedImage, target: TargetFormat, options: EncodeOptions) -> bytes:
        img = decoded.handle
        if img is None:
            raise ProcessingError("Image handle already released")
        try:
            work, downscaled = downscale_to_limit(img, options.max_dimension)
            work = prepare_mode(work, target.pil_format)
            save_kw: dict = {"format": target.pil_format}
            if target is TargetFormat.JPEG:
                save_kw.update(quality=options.jpeg_quality, optimize=True)
            elif target is TargetFormat.WEBP:
                save_kw.update(quality=options.webp_quality, method=options.webp_method)
            else:
                save_kw.update(optimize=True)
            out = BytesIO()
            work.save(out, **save_kw)
        except (OSError, ValueError, KeyError) as e:
            raise ProcessingError(str(e)) from e
        data = out.getvalue()
        logger.debug(
            "Encoded %s %sx%s -> %s (%s bytes%s)",
            decoded.format, decoded.width, decoded.height, target.value, len(data),
            ", downscaled" if downscaled else "",
        )
        return data
