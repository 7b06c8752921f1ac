"""Batch-convert local images through the conversion endpoint.

Usage:
  image-convert photo1.jpg photo2.png --format webp --out converted/
  image-convert --folder ./shots --format jpg --archive
"""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence

from converter.batch import BatchController, BatchState
from converter.config import CONVERT_GROUP_SIZE, CONVERTER_URL, DEFAULT_OUTPUT_FORMAT
from converter.conversion.models import DownloadMode, IngestSource, RunStatus
from converter.errors import ClientValidationError, PackagingError


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="image-convert",
        description="Convert images to JPEG, PNG or WebP via the converter API.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("files", nargs="*", type=Path, help="Image files to convert.")
    p.add_argument("--folder", type=Path, action="append", default=[], help="Folder to scan recursively (can repeat).")
    p.add_argument("--format", default=DEFAULT_OUTPUT_FORMAT, help="Target format: jpeg, jpg, png or webp.")
    p.add_argument("--out", type=Path, default=Path("converted"), help="Directory for downloaded results.")
    p.add_argument("--url", default=CONVERTER_URL, help="Conversion endpoint.")
    p.add_argument("--group-size", type=int, default=CONVERT_GROUP_SIZE, help="Requests in flight at once.")
    p.add_argument("--archive", action="store_true", help="Always write a zip, even for a few files.")
    return p


def render_progress(state: BatchState) -> None:
    total = len(state.pending) or 1
    filled = int(state.progress * 40)
    bar = "#" * filled + "-" * (40 - filled)
    print(f"\r[{bar}] {state.progress * 100:3.0f}% ({state.completed}/{total} files)", end="", flush=True)


def write_individual(controller: BatchController, out_dir: Path) -> None:
    for outcome in controller.state.successes:
        path = controller.download_single(outcome).write(out_dir)
        print(f"  saved {path}")


async def run(args: argparse.Namespace) -> int:
    async with BatchController(args.url, group_size=args.group_size, on_progress=render_progress) as controller:
        try:
            if args.folder:
                report = controller.ingest([*args.files, *args.folder], IngestSource.FOLDER)
            else:
                report = controller.ingest(args.files)
            controller.select_format(args.format)
        except ClientValidationError as e:
            print(f"Error: {e}", file=sys.stderr)
            for r in e.rejections:
                print(f"  skipped {r.name}: {r.reason}", file=sys.stderr)
            return 2
        for r in report.rejected:
            print(f"  skipped {r.name}: {r.reason}", file=sys.stderr)

        print(f"Converting {len(report.accepted)} files to {controller.state.target.value}")
        state = await controller.convert()
        print()
        for f in state.failures:
            print(f"  failed {f.original_name}: {f.reason}", file=sys.stderr)
        if state.status is RunStatus.FAILED:
            print(f"Error: {state.error}", file=sys.stderr)
            return 1

        if args.archive or controller.download_mode is DownloadMode.ARCHIVE:
            try:
                download = await controller.download_archive()
                print(f"  saved {download.write(args.out)}")
            except PackagingError as e:
                print(f"Archive failed ({e}); saving files individually", file=sys.stderr)
                write_individual(controller, args.out)
        else:
            write_individual(controller, args.out)

        print(state.message)
        return 0 if state.status is RunStatus.SUCCEEDED else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.files and not args.folder:
        parser.error("no files selected")
    if args.group_size < 1:
        parser.error("--group-size must be at least 1")
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
