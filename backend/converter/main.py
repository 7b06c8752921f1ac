"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from converter.api.routes import router
from converter.config import (
    CORS_ORIGINS,
    MAX_IMAGE_DIMENSION,
    MAX_IMAGE_SIZE_MB,
    OUTPUT_FORMATS,
    logger as config_logger,
)

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config_logger.info(
        "Converter API started: outputs=%s max_upload=%s MB max_dimension=%s px cors=%s",
        ",".join(OUTPUT_FORMATS), MAX_IMAGE_SIZE_MB, MAX_IMAGE_DIMENSION, CORS_ORIGINS or "*",
    )
    yield
    config_logger.info("Converter API shutting down")


app = FastAPI(
    title="Image Converter API",
    description="Convert a single image to JPEG, PNG or WebP.",
    version="1.0.0",
    lifespan=lifespan,
)
# Browser clients only need the conversion POST and the GET info routes; no cookies are used
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS or ["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Content-Length"],
)
app.include_router(router)


def run() -> None:
    import uvicorn
    from converter.config import HOST, LOG_LEVEL, PORT
    uvicorn.run("converter.main:app", host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
