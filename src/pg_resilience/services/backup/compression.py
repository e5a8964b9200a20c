"""Streaming gzip compression, decompression and integrity checks.

All file work runs in a worker thread and copies in fixed-size chunks, so a
dump is never held in memory whole.
"""

import asyncio
import gzip
import shutil
import zlib
from pathlib import Path

from beartype import beartype

from ...core.logging_utils import get_logger

CHUNK_SIZE = 1024 * 1024

logger = get_logger(__name__)


def _compress(source: Path, destination: Path) -> None:
    with source.open("rb") as src, gzip.open(destination, "wb") as dst:
        shutil.copyfileobj(src, dst, CHUNK_SIZE)


def _decompress(source: Path, destination: Path) -> None:
    with gzip.open(source, "rb") as src, destination.open("wb") as dst:
        shutil.copyfileobj(src, dst, CHUNK_SIZE)


def _gzip_is_valid(path: Path) -> bool:
    try:
        with gzip.open(path, "rb") as stream:
            while stream.read(CHUNK_SIZE):
                pass
    except (OSError, EOFError, zlib.error) as e:
        logger.error(
            "Compression integrity check failed",
            extra={"artifact": str(path), "error": str(e)},
        )
        return False
    return True


def _read_head(path: Path, max_lines: int, max_chars: int) -> str:
    if path.name.endswith(".gz"):
        lines: list[str] = []
        with gzip.open(path, "rt", encoding="utf-8", errors="replace") as stream:
            for line in stream:
                lines.append(line)
                if len(lines) >= max_lines:
                    break
        return "".join(lines)

    with path.open("r", encoding="utf-8", errors="replace") as stream:
        return stream.read(max_chars)


@beartype
async def compress_file(source: Path) -> Path:
    """Write ``source`` + ``.gz``; a partial output is removed on failure."""
    destination = source.with_name(f"{source.name}.gz")
    try:
        await asyncio.to_thread(_compress, source, destination)
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    logger.info("Backup compressed", extra={"artifact": str(destination)})
    return destination


@beartype
async def decompress_file(source: Path, destination: Path) -> Path:
    """Inflate a gzip artifact into ``destination``."""
    try:
        await asyncio.to_thread(_decompress, source, destination)
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    logger.info("Backup decompressed", extra={"artifact": str(destination)})
    return destination


@beartype
async def verify_gzip(path: Path) -> bool:
    """Read the whole container to prove every member decompresses and checksums."""
    return await asyncio.to_thread(_gzip_is_valid, path)


@beartype
async def read_head(path: Path, *, max_lines: int = 100, max_chars: int = 10_000) -> str:
    """Sample the start of a dump.

    Compressed dumps yield their first ``max_lines`` lines, plain dumps their
    first ``max_chars`` characters.
    """
    return await asyncio.to_thread(_read_head, path, max_lines, max_chars)
