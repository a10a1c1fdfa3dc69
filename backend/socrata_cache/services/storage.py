import gzip
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from ..core.logger import get_logger

logger = get_logger(__name__)

# zlib level 6: the usual speed/size tradeoff
COMPRESSION_LEVEL = 6
COPY_BUFFER_SIZE = 1024 * 1024


@dataclass(frozen=True)
class ArtifactPaths:
    """
    File names of a dataset inside the downloads directory.

    current:  {resource_id}.{type}               and {resource_id}.{type}.gz
    staging:  {resource_id}-{dataset_id}.{type}  and {resource_id}-{dataset_id}.{type}.gz
    """

    current: Path
    current_compressed: Path
    staging: Path
    staging_compressed: Path

    @classmethod
    def build(cls, root: Path, resource_id: str, dataset_id: str, dataset_type: str) -> "ArtifactPaths":
        root = Path(root)
        current = root / f"{resource_id}.{dataset_type}"
        staging = root / f"{resource_id}-{dataset_id}.{dataset_type}"
        return cls(
            current=current,
            current_compressed=current.with_name(current.name + ".gz"),
            staging=staging,
            staging_compressed=staging.with_name(staging.name + ".gz"),
        )


def ensure_directory(root: Path) -> Path:
    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)
    return root


def write_stream(chunks: Iterable[bytes], dest: Path) -> int:
    """Write byte chunks to dest, fsync it, and return the byte count."""
    written = 0
    with open(dest, "wb") as f:
        for chunk in chunks:
            if chunk:
                f.write(chunk)
                written += len(chunk)
        f.flush()
        os.fsync(f.fileno())
    return written


def promote(staging: Path, current: Path) -> None:
    """
    Replace current with staging in a single rename.

    os.replace overwrites atomically on POSIX and Windows, so the directory
    holds either the old or the new current file at every point.
    """
    os.replace(staging, current)


def compress(source: Path, dest: Path, level: int = COMPRESSION_LEVEL) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb", compresslevel=level) as gz:
        shutil.copyfileobj(src, gz, COPY_BUFFER_SIZE)


def delete_if_exists(path: Path) -> Optional[int]:
    """
    Delete a file and return the bytes freed; None if it was already gone.
    OSError from the actual unlink is left to the caller.
    """
    path = Path(path)
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return None

    try:
        path.unlink()
    except FileNotFoundError:
        return None

    logger.info(f"Deleted file {path.name}", extra={"file": str(path), "bytes": size})
    return size


def directory_size(root: Path) -> int:
    """Total size of the regular files directly inside root."""
    root = Path(root)
    if not root.is_dir():
        return 0
    return sum(entry.stat().st_size for entry in root.iterdir() if entry.is_file())
