"""Filesystem layout of completed checkpoints and pointer resolution."""
from __future__ import annotations

import contextlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional
from urllib.parse import unquote, urlparse

import structlog

CHECKPOINT_DIR_PREFIX = "chk-"
METADATA_FILE_NAME = "_metadata"

LOGGER = structlog.get_logger(__name__)


def checkpoint_directory_name(checkpoint_id: int) -> str:
    return f"{CHECKPOINT_DIR_PREFIX}{checkpoint_id}"


def parse_checkpoint_id(name: str) -> Optional[int]:
    """Return the numeric id of a ``chk-<n>`` directory name, if it has one."""
    if not name.startswith(CHECKPOINT_DIR_PREFIX):
        return None
    suffix = name[len(CHECKPOINT_DIR_PREFIX):]
    if not suffix.isdigit():
        return None
    return int(suffix)


@dataclass(frozen=True, slots=True)
class FileStateHandle:
    """Handle to a state blob stored as a single file."""

    path: Path

    def open_input_stream(self) -> BinaryIO:
        return self.path.open("rb")


@dataclass(frozen=True, slots=True)
class CompletedCheckpointLocation:
    """Where a completed checkpoint lives and how to read its metadata."""

    checkpoint_dir: Path
    metadata_handle: FileStateHandle


def _pointer_to_path(pointer: str) -> Path:
    parsed = urlparse(pointer)
    if parsed.scheme == "file":
        return Path(unquote(parsed.netloc + parsed.path))
    # Single letters are Windows drive names, not URI schemes.
    if parsed.scheme and len(parsed.scheme) > 1:
        raise ValueError(f"Unsupported file system scheme {parsed.scheme!r} in checkpoint pointer {pointer!r}")
    return Path(pointer)


def resolve_checkpoint_pointer(pointer: str) -> CompletedCheckpointLocation:
    """Resolve a checkpoint directory or metadata file pointer.

    The pointer may be a plain path or a ``file://`` URI. A directory pointer
    resolves to the metadata file inside it; a file pointer is taken to be
    the metadata file itself.
    """
    if not pointer or not pointer.strip():
        raise ValueError("Checkpoint pointer must not be empty")
    path = _pointer_to_path(pointer.strip())
    if not path.exists():
        raise FileNotFoundError(f"Cannot find checkpoint or savepoint file/directory '{pointer}'")

    if path.is_dir():
        metadata_path = path / METADATA_FILE_NAME
        if not metadata_path.is_file():
            raise FileNotFoundError(
                f"Cannot find meta data file '{METADATA_FILE_NAME}' in directory '{path}'. "
                "Please try to load the checkpoint directly from the metadata file instead of the directory."
            )
        checkpoint_dir = path
    else:
        metadata_path = path
        checkpoint_dir = path.parent

    return CompletedCheckpointLocation(
        checkpoint_dir=checkpoint_dir,
        metadata_handle=FileStateHandle(metadata_path),
    )


class FsCheckpointStorage:
    """Writes metadata blobs into ``chk-<n>`` directories under a root."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def checkpoint_directory(self, checkpoint_id: int) -> Path:
        return self._root / checkpoint_directory_name(checkpoint_id)

    @contextlib.contextmanager
    def create_metadata_output_stream(self, checkpoint_id: int) -> Iterator[BinaryIO]:
        """Yield a stream whose contents become the checkpoint's metadata file.

        Data goes to an in-progress file that is renamed to ``_metadata``
        only when the block exits cleanly.
        """
        directory = self.checkpoint_directory(checkpoint_id)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / METADATA_FILE_NAME
        in_progress = directory / f".{METADATA_FILE_NAME}.inprogress"
        try:
            with in_progress.open("wb") as handle:
                yield handle
        except BaseException:
            in_progress.unlink(missing_ok=True)
            raise
        in_progress.replace(target)
        LOGGER.debug("checkpoint_metadata_written", checkpoint_id=checkpoint_id, path=str(target))
