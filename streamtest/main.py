"""Command-line entrypoints for inspecting checkpoint directories."""
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from streamtest.checkpoint.metadata import CheckpointMetadata, load_checkpoint_metadata
from streamtest.checkpoint.scanner import (
    CheckpointDirectory,
    NoCompletedCheckpointError,
    find_completed_checkpoints,
    find_most_recent_completed,
    require_most_recent_completed,
)
from streamtest.config import Settings, load_settings, settings_path
from streamtest.observability.log import configure_logging


def _describe_checkpoint(checkpoint: CheckpointDirectory) -> Dict[str, object]:
    return {"path": str(checkpoint.path), "checkpoint_id": checkpoint.checkpoint_id}


def _summarise_metadata(pointer: str, metadata: CheckpointMetadata) -> Dict[str, object]:
    return {
        "pointer": pointer,
        "checkpoint_id": metadata.checkpoint_id,
        "state_size": metadata.state_size,
        "operators": [
            {
                "operator_id": operator.operator_id,
                "parallelism": operator.parallelism,
                "max_parallelism": operator.max_parallelism,
                "subtasks": len(operator.subtask_states),
                "state_size": operator.state_size,
            }
            for operator in metadata.operator_states
        ],
        "master_states": [{"name": state.name, "version": state.version} for state in metadata.master_states],
    }


def build_arg_parser(settings: Settings) -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="streamtest", description="Checkpoint inspection tools")
    sub = parser.add_subparsers(dest="command", required=True)
    default_root = str(settings.checkpoints.root)

    latest = sub.add_parser("latest-checkpoint", help="Print the most recent completed checkpoint")
    latest.add_argument("--root", default=default_root, help="Checkpoint root directory")
    latest.add_argument("--require", action="store_true", help="Exit with status 1 when none exists")

    listing = sub.add_parser("list-checkpoints", help="List completed checkpoints, oldest first")
    listing.add_argument("--root", default=default_root, help="Checkpoint root directory")

    inspect = sub.add_parser("inspect-metadata", help="Decode and summarise a checkpoint's metadata")
    inspect.add_argument("pointer", help="Checkpoint directory or metadata file")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    settings = load_settings(settings_path())
    configure_logging(Path("config/logging.yaml"))
    args = build_arg_parser(settings).parse_args(argv)

    if args.command == "latest-checkpoint":
        root = Path(args.root)
        if args.require:
            try:
                checkpoint = require_most_recent_completed(root)
            except NoCompletedCheckpointError as exc:
                raise SystemExit(str(exc))
        else:
            checkpoint = find_most_recent_completed(root)
        print(json.dumps(_describe_checkpoint(checkpoint) if checkpoint else None, indent=2))
        return

    if args.command == "list-checkpoints":
        checkpoints = find_completed_checkpoints(Path(args.root))
        print(json.dumps([_describe_checkpoint(item) for item in checkpoints], indent=2))
        return

    if args.command == "inspect-metadata":
        try:
            metadata = load_checkpoint_metadata(args.pointer)
        except (OSError, ValueError) as exc:
            raise SystemExit(f"Failed to inspect metadata: {exc}")
        print(json.dumps(_summarise_metadata(args.pointer, metadata), indent=2))


if __name__ == "__main__":
    main()
