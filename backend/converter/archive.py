"""Output naming and zip packaging of converted images."""
import logging
import zipfile
from io import BytesIO
from typing import Iterable

from converter.config import ARCHIVE_FOLDER
from converter.conversion.models import TargetFormat
from converter.errors import PackagingError

logger = logging.getLogger("converter.archive")


def strip_extension(name: str) -> str:
    """Drop the last extension: "a.b.png" -> "a.b". Names without one are kept as-is."""
    base = name.replace("\\", "/").rsplit("/", 1)[-1]
    stem, dot, _ = base.rpartition(".")
    if not dot or not stem:
        return base
    return stem


def converted_name(original_name: str, target: TargetFormat) -> str:
    return f"{strip_extension(original_name)}_converted.{target.value}"


def archive_name(target: TargetFormat) -> str:
    return f"{ARCHIVE_FOLDER}_{target.value}.zip"


def converted_names(original_names: Iterable[str], target: TargetFormat) -> list[str]:
    """Output names for a whole set. "a.png" and "a.jpg" both strip to "a", so repeats get a counter."""
    seen: set[str] = set()
    out: list[str] = []
    for original in original_names:
        stem = strip_extension(original)
        candidate = stem
        n = 2
        while candidate in seen:
            candidate = f"{stem}_{n}"
            n += 1
        seen.add(candidate)
        out.append(f"{candidate}_converted.{target.value}")
    return out


def create_archive(entries: list[tuple[str, bytes]], folder: str = ARCHIVE_FOLDER) -> bytes:
    """Zip (name, bytes) entries under a single folder. Raises PackagingError."""
    if not entries:
        raise PackagingError("No converted images to package")
    buf = BytesIO()
    try:
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            for name, data in entries:
                arcname = f"{folder}/{name}" if folder else name
                zf.writestr(arcname, data)
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        logger.exception("Archive creation failed: %s", e)
        raise PackagingError(f"Failed to create archive: {e}", cause=e) from e
    logger.info("Created archive with %s entries (%s bytes)", len(entries), buf.tell())
    return buf.getvalue()
