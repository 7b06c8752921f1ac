from .codec import DecodedImage, EncodeOptions, ImageCodec, PillowCodec
from .models import ConversionFailure, ConversionResult, ConversionSuccess, TargetFormat, UploadItem
from .service import ConversionService, get_conversion_service

__all__ = [
    "ConversionService",
    "get_conversion_service",
    "ConversionResult",
    "ConversionSuccess",
    "ConversionFailure",
    "DecodedImage",
    "EncodeOptions",
    "ImageCodec",
    "PillowCodec",
    "TargetFormat",
    "UploadItem",
]
