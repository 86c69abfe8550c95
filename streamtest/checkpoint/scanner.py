"""Discovery of the most recent completed checkpoint under a root directory."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import structlog

from streamtest.checkpoint.storage import CHECKPOINT_DIR_PREFIX, METADATA_FILE_NAME, parse_checkpoint_id

LOGGER = structlog.get_logger(__name__)

# root -> job directory -> checkpoint directory
DEFAULT_MAX_DEPTH = 2


class NoCompletedCheckpointError(RuntimeError):
    """Raised when a caller requires a completed checkpoint and none exists."""


@dataclass(frozen=True, slots=True)
class CheckpointDirectory:
    """A ``chk-<n>`` directory found during a scan."""

    path: Path
    checkpoint_id: Optional[int]

    @classmethod
    def from_path(cls, path: Path) -> "CheckpointDirectory":
        return cls(path=path, checkpoint_id=parse_checkpoint_id(path.name))

    @property
    def metadata_path(self) -> Path:
        return self.path / METADATA_FILE_NAME

    def is_complete(self) -> bool:
        """Check for the metadata file now; the answer is never cached."""
        return has_metadata(self.path)

    def recency_key(self) -> Tuple[int, str]:
        # Unparseable ids sort below every numeric id.
        return (self.checkpoint_id if self.checkpoint_id is not None else -1, str(self.path))


def has_metadata(directory: Path) -> bool:
    """Return True when the metadata file is a direct child of ``directory``.

    A directory that disappears while being listed was subsumed by a newer
    checkpoint and counts as incomplete.
    """
    try:
        return any(child.name == METADATA_FILE_NAME for child in directory.iterdir())
    except FileNotFoundError:
        LOGGER.debug("checkpoint_subsumed_during_scan", path=str(directory))
        return False


def _walk_directories(root: Path, max_depth: int) -> Iterator[Path]:
    yield root
    frontier = [root]
    for _ in range(max_depth):
        next_frontier: List[Path] = []
        for directory in frontier:
            try:
                children = sorted(child for child in directory.iterdir() if child.is_dir())
            except FileNotFoundError:
                if directory == root:
                    raise
                LOGGER.debug("checkpoint_scan_directory_vanished", path=str(directory))
                continue
            yield from children
            next_frontier.extend(children)
        frontier = next_frontier


def _candidates(root: Path, max_depth: int) -> Iterator[CheckpointDirectory]:
    for path in _walk_directories(root, max_depth):
        if path.name.startswith(CHECKPOINT_DIR_PREFIX):
            yield CheckpointDirectory.from_path(path)


def find_completed_checkpoints(root: Path, *, max_depth: int = DEFAULT_MAX_DEPTH) -> List[CheckpointDirectory]:
    """Return every complete checkpoint under ``root``, oldest first."""
    completed = [candidate for candidate in _candidates(root, max_depth) if candidate.is_complete()]
    completed.sort(key=CheckpointDirectory.recency_key)
    LOGGER.debug("checkpoint_scan", root=str(root), completed=len(completed))
    return completed


def find_most_recent_completed(root: Path, *, max_depth: int = DEFAULT_MAX_DEPTH) -> Optional[CheckpointDirectory]:
    """Return the newest complete checkpoint under ``root`` or None."""
    completed = find_completed_checkpoints(root, max_depth=max_depth)
    return completed[-1] if completed else None


def require_most_recent_completed(root: Path, *, max_depth: int = DEFAULT_MAX_DEPTH) -> CheckpointDirectory:
    """Like :func:`find_most_recent_completed` but a missing checkpoint is an error."""
    checkpoint = find_most_recent_completed(root, max_depth=max_depth)
    if checkpoint is None:
        raise NoCompletedCheckpointError(f"No completed checkpoint found under {root}")
    return checkpoint
