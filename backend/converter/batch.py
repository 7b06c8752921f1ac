"""Client-side batch conversion: ingest, grouped requests, progress and downloads."""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

import httpx

from converter.archive import archive_name, converted_names, create_archive
from converter.blobs import BlobStore
from converter.config import (
    ARCHIVE_THRESHOLD,
    CONVERT_GROUP_SIZE,
    CONVERTER_URL,
    INPUT_MIME_TYPES,
    MAX_FILES_PER_BATCH,
    MAX_IMAGE_SIZE_BYTES,
    REQUEST_TIMEOUT,
)
from converter.conversion.models import (
    ConversionFailure,
    ConversionOutcome,
    ConversionSuccess,
    DownloadMode,
    IngestReport,
    IngestSource,
    Rejection,
    RunStatus,
    TargetFormat,
    UploadItem,
)
from converter.errors import (
    ClientValidationError,
    PackagingError,
    RequestTransportError,
    ServerValidationError,
)

logger = logging.getLogger("converter.batch")

FileInput = Union[UploadItem, Path, str]

# Extension -> content-type for files picked from disk
_EXT_TO_MIME = {
    ".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".jpe": "image/jpeg",
    ".png": "image/png", ".webp": "image/webp", ".gif": "image/gif",
    ".bmp": "image/bmp", ".tiff": "image/tiff", ".tif": "image/tiff",
    ".avif": "image/avif", ".heic": "image/heic", ".svg": "image/svg+xml",
}


def guess_mime_type(name: str) -> str:
    return _EXT_TO_MIME.get(Path(name).suffix.lower(), "application/octet-stream")


def _entry_name(entry: FileInput) -> str:
    if isinstance(entry, UploadItem):
        return entry.name
    return Path(entry).name


def _walk_folders(entries: Iterable[FileInput]) -> list[FileInput]:
    """Expand directories recursively (hidden files skipped); other entries pass through."""
    out: list[FileInput] = []
    for entry in entries:
        if isinstance(entry, UploadItem) or not Path(entry).is_dir():
            out.append(entry)
            continue
        root = Path(entry)
        for path in sorted(root.rglob("*")):
            rel = path.relative_to(root)
            if path.is_file() and not any(part.startswith(".") for part in rel.parts):
                out.append(path)
    return out


@dataclass
class DownloadFile:
    filename: str
    media_type: str
    content: bytes

    def write(self, dest_dir: Union[Path, str]) -> Path:
        dest = Path(dest_dir)
        dest.mkdir(parents=True, exist_ok=True)
        path = dest / self.filename
        path.write_bytes(self.content)
        return path


@dataclass
class BatchState:
    """Everything a presentation layer renders. Mutated only by BatchController."""

    pending: tuple[UploadItem, ...] = ()
    target: TargetFormat = TargetFormat.WEBP
    status: RunStatus = RunStatus.IDLE
    progress: float = 0.0  # 0..1
    completed: int = 0
    outcomes: list[ConversionOutcome] = field(default_factory=list)
    converted_format: Optional[TargetFormat] = None  # format of the run that produced outcomes
    rejected: list[Rejection] = field(default_factory=list)
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def successes(self) -> list[ConversionSuccess]:
        return [o for o in self.outcomes if isinstance(o, ConversionSuccess)]

    @property
    def failures(self) -> list[ConversionFailure]:
        return [o for o in self.outcomes if isinstance(o, ConversionFailure)]

    @property
    def is_converting(self) -> bool:
        return self.status is RunStatus.CONVERTING


class BatchController:
    """Drives a batch of single-image requests against the conversion endpoint.

    Files are sent in groups of ``group_size``: every request of a group runs
    concurrently and the next group starts only once all of them settled.
    A failing request becomes a ConversionFailure for that file and never
    affects its siblings. ``reset()`` cancels whatever is still in flight.

    Usage:
        async with BatchController(url) as controller:
            controller.ingest([Path("a.png"), Path("b.jpg")])
            controller.select_format("webp")
            state = await controller.convert()
    """

    def __init__(
        self,
        url: str = CONVERTER_URL,
        client: Optional[httpx.AsyncClient] = None,
        *,
        group_size: int = CONVERT_GROUP_SIZE,
        archive_threshold: int = ARCHIVE_THRESHOLD,
        max_files: int = MAX_FILES_PER_BATCH,
        max_file_bytes: int = MAX_IMAGE_SIZE_BYTES,
        timeout: float = REQUEST_TIMEOUT,
        on_progress: Optional[Callable[[BatchState], None]] = None,
    ):
        if group_size < 1:
            raise ValueError("group_size must be at least 1")
        self.url = url
        self.group_size = group_size
        self.archive_threshold = archive_threshold
        self.max_files = max_files
        self.max_file_bytes = max_file_bytes
        self.timeout = timeout
        self.on_progress = on_progress
        self.blobs = BlobStore()
        self._client = client
        self._owns_client = client is None
        self._state = BatchState()
        self._run_token: Optional[str] = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def __aenter__(self) -> "BatchController":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        self.reset()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    # ------------------------------------------------------------------ ingest

    def _load(self, entry: FileInput) -> UploadItem:
        """Build a validated UploadItem. Type and size are checked before reading from disk."""
        if isinstance(entry, UploadItem):
            self._check(entry.mime_type, entry.size_bytes)
            return entry
        path = Path(entry)
        if not path.is_file():
            raise ClientValidationError("Not a file")
        mime_type = guess_mime_type(path.name)
        try:
            self._check(mime_type, path.stat().st_size)
            data = path.read_bytes()
        except OSError as e:
            raise ClientValidationError(f"Could not read file: {e.strerror or e}") from e
        return UploadItem(name=path.name, data=data, size_bytes=len(data), mime_type=mime_type)

    def _check(self, mime_type: str, size: int) -> None:
        if mime_type not in INPUT_MIME_TYPES:
            raise ClientValidationError("Unsupported file type (use JPG, PNG, WebP, GIF, BMP or TIFF)")
        if size > self.max_file_bytes:
            raise ClientValidationError(f"File too large ({size} bytes, max {self.max_file_bytes})")

    def ingest(self, files: Iterable[FileInput], source: Union[IngestSource, str] = IngestSource.DIRECT) -> IngestReport:
        """Replace the pending batch with the valid subset of ``files``.

        Invalid files are reported, not fatal. Raises ClientValidationError and
        leaves the current batch untouched if nothing valid remains.
        """
        if self._state.is_converting:
            raise ClientValidationError("A conversion is already running")
        try:
            source = IngestSource(source)
        except ValueError:
            sources = ", ".join(s.value for s in IngestSource)
            raise ClientValidationError(f"Unknown ingest source: {source!r} (use {sources})") from None
        candidates = _walk_folders(files) if source is IngestSource.FOLDER else list(files)
        if not candidates:
            raise ClientValidationError("No files selected")

        accepted: list[UploadItem] = []
        rejected: list[Rejection] = []
        for entry in candidates:
            try:
                item = self._load(entry)
            except ClientValidationError as e:
                rejected.append(Rejection(_entry_name(entry), str(e)))
                continue
            if len(accepted) >= self.max_files:
                rejected.append(Rejection(item.name, f"Batch limit reached (max {self.max_files} files)"))
                continue
            accepted.append(item)

        for r in rejected:
            logger.warning("Rejected %s: %s", r.name, r.reason)
        if not accepted:
            raise ClientValidationError("All selected files are invalid", rejections=rejected)

        self._clear_results()
        state = self._state
        state.pending = tuple(accepted)
        state.rejected = rejected
        state.status = RunStatus.IDLE
        logger.info("Ingested %s files via %s (%s rejected)", len(accepted), source.value, len(rejected))
        return IngestReport(source=source, accepted=accepted, rejected=rejected)

    def select_format(self, fmt: Union[TargetFormat, str]) -> TargetFormat:
        if self._state.is_converting:
            raise ClientValidationError("Cannot change format while converting")
        try:
            target = fmt if isinstance(fmt, TargetFormat) else TargetFormat.parse(fmt)
        except ValueError as e:
            raise ClientValidationError(str(e)) from None
        self._state.target = target
        return target

    # ----------------------------------------------------------------- convert

    def _set_progress(self, value: float) -> None:
        value = min(1.0, max(0.0, value))
        if value > self._state.progress:
            self._state.progress = value
        if self.on_progress:
            self.on_progress(self._state)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return f"HTTP {response.status_code}"

    async def _convert_one(self, client: httpx.AsyncClient, item: UploadItem, target: TargetFormat) -> ConversionOutcome:
        try:
            response = await client.post(
                self.url,
                files={"image": (item.name, item.data, item.mime_type)},
                data={"format": target.value},
            )
        except httpx.HTTPError as e:
            err = RequestTransportError(f"Network error: {str(e) or type(e).__name__}")
            logger.warning("Request for %s failed: %s", item.name, err)
            return ConversionFailure(item.name, str(err))

        if not response.is_success:
            err = ServerValidationError(self._error_message(response), response.status_code)
            logger.warning("Server rejected %s (%s): %s", item.name, err.status_code, err)
            return ConversionFailure(item.name, str(err))

        media_type = response.headers.get("content-type", target.mime_type).split(";")[0].strip()
        data = response.content
        handle = self.blobs.create(data, media_type)
        return ConversionSuccess(item.name, data, media_type, handle)

    async def convert(self) -> BatchState:
        """Convert the pending batch group by group. Returns the (shared) state."""
        state = self._state
        if not state.pending:
            raise ClientValidationError("Please select images first")
        if state.is_converting:
            raise ClientValidationError("A conversion is already running")

        self._clear_results()
        token = uuid.uuid4().hex
        self._run_token = token
        items = state.pending
        target = state.target
        total = len(items)
        state.status = RunStatus.CONVERTING
        logger.info("Run %s: converting %s files to %s in groups of %s", token[:8], total, target.value, self.group_size)

        client = self._get_client()
        outcomes: list[ConversionOutcome] = []
        try:
            for start in range(0, total, self.group_size):
                group = items[start:start + self.group_size]
                tasks = [asyncio.create_task(self._convert_one(client, item, target)) for item in group]
                self._inflight.update(tasks)
                try:
                    results = await asyncio.gather(*tasks, return_exceptions=True)
                finally:
                    self._inflight.difference_update(tasks)

                if self._run_token != token:
                    # reset() ran while this group was in flight; nothing here belongs to a live batch
                    for r in results:
                        if isinstance(r, ConversionSuccess) and r.handle:
                            self.blobs.revoke(r.handle)
                    logger.info("Run %s cancelled after %s/%s files", token[:8], len(outcomes), total)
                    return state

                # results come back in task order, so zip() pairs each with its own item
                for item, result in zip(group, results):
                    if isinstance(result, BaseException):
                        logger.error("Unexpected error converting %s: %r", item.name, result)
                        result = ConversionFailure(item.name, f"Unexpected error: {str(result) or type(result).__name__}")
                    outcomes.append(result)
                state.completed = len(outcomes)
                self._set_progress(len(outcomes) / total)
            self._run_token = None
            self._finish(outcomes, target)
        except asyncio.CancelledError:
            if self._run_token == token:
                self.reset()
            raise
        finally:
            if self._run_token == token:
                # something raised mid-run (e.g. the progress callback); keep the partial outcomes
                self._run_token = None
                state.outcomes = outcomes
                state.converted_format = target
                state.status = RunStatus.FAILED
                state.error = f"Conversion aborted after {len(outcomes)}/{total} files"
                logger.error("Run %s aborted after %s/%s files", token[:8], len(outcomes), total)
        return state

    def _finish(self, outcomes: list[ConversionOutcome], target: TargetFormat) -> None:
        state = self._state
        state.outcomes = outcomes
        state.converted_format = target
        ok, failed = state.successes, state.failures
        if ok and not failed:
            state.status = RunStatus.SUCCEEDED
        elif ok:
            state.status = RunStatus.PARTIAL
        else:
            state.status = RunStatus.FAILED
            state.error = "Conversion failed for all files: " + ", ".join(f.original_name for f in failed)
        state.message = f"{len(ok)} converted, {len(failed)} failed."
        self._set_progress(1.0)
        logger.info("Batch finished: %s", state.message)

    # --------------------------------------------------------------- downloads

    @property
    def download_mode(self) -> Optional[DownloadMode]:
        """Individual downloads for few results, the archive for many. None when nothing converted."""
        count = len(self._state.successes)
        if count == 0:
            return None
        return DownloadMode.INDIVIDUAL if count < self.archive_threshold else DownloadMode.ARCHIVE

    def output_names(self) -> list[str]:
        """File names for the current successes, in outcome order."""
        state = self._state
        if state.converted_format is None:
            return []
        return converted_names((o.original_name for o in state.successes), state.converted_format)

    def download_single(self, outcome: ConversionSuccess) -> DownloadFile:
        successes = self._state.successes
        index = next((i for i, o in enumerate(successes) if o is outcome), None)
        if index is None:
            raise ClientValidationError("Outcome does not belong to the current batch")
        try:
            media_type, data = self.blobs.get(outcome.handle)
        except KeyError:
            raise ClientValidationError("Converted image was released; convert again") from None
        return DownloadFile(self.output_names()[index], media_type, data)

    async def download_archive(self) -> DownloadFile:
        """Zip every success under one folder. Raises PackagingError; outcomes stay intact."""
        state = self._state
        successes = state.successes
        if not successes or state.converted_format is None:
            raise PackagingError("No converted images to package")
        entries = list(zip(self.output_names(), (o.converted_bytes for o in successes)))
        try:
            data = await asyncio.to_thread(create_archive, entries)
        except PackagingError as e:
            state.error = str(e)
            raise
        except Exception as e:
            logger.exception("Archive creation failed: %s", e)
            state.error = "Failed to create archive"
            raise PackagingError("Failed to create archive", cause=e) from e
        return DownloadFile(archive_name(state.converted_format), "application/zip", data)

    # ------------------------------------------------------------------- reset

    def _clear_results(self) -> None:
        state = self._state
        released = self.blobs.clear()
        state.outcomes = []
        state.converted_format = None
        state.progress = 0.0
        state.completed = 0
        state.message = None
        state.error = None
        if released:
            logger.debug("Released %s handles from previous results", released)

    def reset(self) -> None:
        """Drop the batch and all results, release handles and cancel in-flight requests."""
        state = self._state
        was_running = state.is_converting
        self._run_token = None
        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            logger.info("Cancelled %s in-flight requests", len(self._inflight))
        self._inflight.clear()
        self._clear_results()
        state.pending = ()
        state.rejected = []
        state.status = RunStatus.CANCELLED if was_running else RunStatus.IDLE
