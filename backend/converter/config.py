"""Converter settings: per-file and per-batch limits, encoder options, client and server endpoints.

Values come from the environment; ``.env`` files fill in anything unset.
"""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# First file wins for each variable: cwd, backend/.env, repository root .env
for env_file in (None, BASE_DIR / ".env", BASE_DIR.parent / ".env"):
    load_dotenv(env_file)

# Supported formats
INPUT_MIME_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/bmp",
    "image/tiff",
}
OUTPUT_FORMATS = ["jpeg", "png", "webp"]
DEFAULT_OUTPUT_FORMAT = "webp"

# Encoder options (env overrides)
JPEG_QUALITY = int(os.getenv("JPEG_QUALITY", "85"))
WEBP_QUALITY = int(os.getenv("WEBP_QUALITY", "85"))
WEBP_METHOD = int(os.getenv("WEBP_METHOD", "4"))

# Untrusted input: longest side before downscaling, and Pillow's bomb ceiling
MAX_IMAGE_DIMENSION = int(os.getenv("MAX_IMAGE_DIMENSION", "8192"))
MAX_IMAGE_PIXELS = int(os.getenv("MAX_IMAGE_PIXELS", "100000000"))

# Limits (env)
MAX_IMAGE_SIZE_MB = int(os.getenv("MAX_IMAGE_SIZE_MB", "10"))
MAX_IMAGE_SIZE_BYTES = MAX_IMAGE_SIZE_MB * 1024 * 1024
MAX_FILES_PER_BATCH = int(os.getenv("MAX_FILES_PER_BATCH", "50"))

# Client batching: requests in flight per group, and when to prefer the zip download
CONVERT_GROUP_SIZE = int(os.getenv("CONVERT_GROUP_SIZE", "3"))
ARCHIVE_THRESHOLD = int(os.getenv("ARCHIVE_THRESHOLD", "5"))
ARCHIVE_FOLDER = "converted_images"

# Client target
CONVERTER_URL = os.getenv("CONVERTER_URL", "http://localhost:8000/convert")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "60"))

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]

# Logging: one line per record, "converter.*" loggers underneath
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format=LOG_FORMAT,
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("converter")
