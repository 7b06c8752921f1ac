"""API routes for single-image conversion."""
import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import UploadFile

from converter.config import (
    ARCHIVE_THRESHOLD,
    CONVERT_GROUP_SIZE,
    DEFAULT_OUTPUT_FORMAT,
    INPUT_MIME_TYPES,
    MAX_FILES_PER_BATCH,
    MAX_IMAGE_DIMENSION,
    MAX_IMAGE_SIZE_BYTES,
    OUTPUT_FORMATS,
)
from converter.conversion.models import HandlerStage
from converter.conversion.service import ConversionService, get_conversion_service
from converter.errors import DecodeError, ServerValidationError

logger = logging.getLogger("converter.api")
router = APIRouter(tags=["converter"])

METHOD_NOT_ALLOWED = "Method not allowed. Use POST."
CONVERSION_FAILED = "Image conversion failed"
UPLOAD_CHUNK_BYTES = 1024 * 1024


def _reject(stage: HandlerStage, status_code: int, message: str) -> JSONResponse:
    logger.warning("Conversion %s after %s (%s): %s", HandlerStage.REJECTED.value, stage.value, status_code, message)
    return JSONResponse({"error": message}, status_code=status_code)


async def read_upload(image: UploadFile, filename: str, svc: ConversionService) -> bytes:
    """Read an upload in 1 MB chunks, raising 413 as soon as the size cap is passed."""
    if image.size is not None:
        svc.check_size(filename, image.size)
    buf = bytearray()
    while chunk := await image.read(UPLOAD_CHUNK_BYTES):
        buf.extend(chunk)
        svc.check_size(filename, len(buf))
    return bytes(buf)


@router.post("/convert")
async def convert_image(request: Request, svc: ConversionService = Depends(get_conversion_service)):
    """Convert one uploaded image (multipart `image` + `format`) and return the encoded bytes."""
    stage = HandlerStage.RECEIVED
    content_type = request.headers.get("content-type", "")
    if not content_type.lower().startswith("multipart/form-data"):
        return _reject(stage, 400, "Content-Type must be multipart/form-data")
    stage = HandlerStage.CONTENT_TYPE_CHECKED

    try:
        async with request.form() as form:
            stage = HandlerStage.FORM_PARSED
            image = form.get("image")
            if not isinstance(image, UploadFile):
                return _reject(stage, 400, "No image file provided")
            filename = image.filename or "image"
            raw_format = form.get("format") or DEFAULT_OUTPUT_FORMAT
            data = await read_upload(image, filename, svc)
            stage = HandlerStage.FILE_VALIDATED
    except ServerValidationError as e:
        return _reject(stage, e.status_code, str(e))
    except Exception as e:
        logger.warning("Could not parse multipart body: %s", e)
        return _reject(stage, 400, "Malformed multipart form data")

    try:
        if not isinstance(raw_format, str):
            raise ServerValidationError("Format must be a text field")
        target = svc.parse_format(raw_format)
        stage = HandlerStage.FORMAT_VALIDATED
    except ServerValidationError as e:
        return _reject(stage, e.status_code, str(e))

    # the service reports DECODED and TRANSCODED from its worker thread
    reached = [stage]
    try:
        result = await asyncio.to_thread(svc.convert, data, target, filename, reached.append)
    except DecodeError as e:
        return _reject(reached[-1], 400, f"Invalid image file: {e}")
    except Exception as e:
        # ProcessingError or anything unexpected from the codec; never echo internals
        logger.exception(
            "Conversion %s after %s for %s -> %s: %s",
            HandlerStage.FAILED.value, reached[-1].value, filename, target.value, e,
        )
        return JSONResponse({"error": CONVERSION_FAILED}, status_code=500)

    stage = HandlerStage.RESPONDED
    logger.debug("Conversion of %s: %s -> %s", filename, reached[-1].value, stage.value)
    return Response(
        content=result.data,
        media_type=result.content_type,
        headers={
            "Content-Length": str(len(result.data)),
            "Content-Disposition": f'inline; filename="{result.filename}"',
        },
    )


@router.api_route("/convert", methods=["GET", "PUT", "DELETE", "PATCH"], include_in_schema=False)
async def convert_method_not_allowed():
    return JSONResponse({"error": METHOD_NOT_ALLOWED}, status_code=405, headers={"Allow": "POST"})


@router.get("/api/health")
def health():
    return {"status": "ok"}


@router.get("/api/limits")
def get_limits():
    """Return upload and batching limits for the client."""
    return {
        "max_image_size_mb": MAX_IMAGE_SIZE_BYTES // (1024 * 1024),
        "max_image_size_bytes": MAX_IMAGE_SIZE_BYTES,
        "max_files_per_batch": MAX_FILES_PER_BATCH,
        "max_image_dimension": MAX_IMAGE_DIMENSION,
        "group_size": CONVERT_GROUP_SIZE,
        "archive_threshold": ARCHIVE_THRESHOLD,
    }


@router.get("/api/formats")
def get_formats():
    return {
        "input": sorted(INPUT_MIME_TYPES),
        "output": OUTPUT_FORMATS,
        "default": DEFAULT_OUTPUT_FORMAT,
    }
