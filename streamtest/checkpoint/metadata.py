"""Checkpoint metadata records and their binary encoding."""
from __future__ import annotations

import base64
import struct
from typing import BinaryIO, List, Optional

import orjson
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_serializer, field_validator, model_validator

from streamtest.checkpoint.storage import resolve_checkpoint_pointer
from streamtest.classloader import ClassLoader, load_class, type_name

METADATA_MAGIC = 0x4960672D
METADATA_VERSION = 1

_HEADER = struct.Struct(">II")

LOGGER = structlog.get_logger(__name__)


class CheckpointMetadataError(OSError):
    """Raised when a metadata blob cannot be decoded."""

    def __init__(self, pointer: str, reason: str) -> None:
        super().__init__(f"Failed to load checkpoint metadata from '{pointer}': {reason}")
        self.pointer = pointer
        self.reason = reason


class StateHandle(BaseModel):
    """Reference to one piece of persisted state."""

    model_config = ConfigDict(frozen=True)

    file_path: str
    state_size: int = Field(ge=0)
    serializer: Optional[type] = None

    @field_validator("serializer", mode="before")
    @classmethod
    def _load_serializer(cls, value: object, info: ValidationInfo) -> object:
        if value is None or isinstance(value, type):
            return value
        class_loader = (info.context or {}).get("class_loader", load_class)
        return class_loader(str(value))

    @field_serializer("serializer")
    def _dump_serializer(self, value: Optional[type]) -> Optional[str]:
        return type_name(value) if value is not None else None


class OperatorSubtaskState(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtask_index: int = Field(ge=0)
    keyed_state: List[StateHandle] = Field(default_factory=list)
    operator_state: List[StateHandle] = Field(default_factory=list)


class OperatorState(BaseModel):
    """State of all parallel subtasks of one operator."""

    model_config = ConfigDict(frozen=True)

    operator_id: str = Field(min_length=1)
    parallelism: int = Field(gt=0)
    max_parallelism: int = Field(gt=0)
    subtask_states: List[OperatorSubtaskState] = Field(default_factory=list)
    coordinator_state: Optional[StateHandle] = None

    @model_validator(mode="after")
    def _check_parallelism(self) -> "OperatorState":
        if self.parallelism > self.max_parallelism:
            raise ValueError(
                f"operator {self.operator_id} has parallelism {self.parallelism} "
                f"above its max parallelism {self.max_parallelism}"
            )
        indexes = [subtask.subtask_index for subtask in self.subtask_states]
        if len(indexes) != len(set(indexes)):
            raise ValueError(f"operator {self.operator_id} has duplicate subtask indexes")
        if any(index >= self.parallelism for index in indexes):
            raise ValueError(f"operator {self.operator_id} has a subtask index outside its parallelism")
        return self

    @property
    def state_size(self) -> int:
        size = sum(
            handle.state_size
            for subtask in self.subtask_states
            for handle in (*subtask.keyed_state, *subtask.operator_state)
        )
        if self.coordinator_state is not None:
            size += self.coordinator_state.state_size
        return size


class MasterState(BaseModel):
    """Opaque state written by a checkpoint coordinator hook."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: int = Field(ge=0)
    data: bytes = b""

    @field_validator("data", mode="before")
    @classmethod
    def _decode_data(cls, value: object) -> object:
        if isinstance(value, str):
            return base64.b64decode(value, validate=True)
        return value

    @field_serializer("data", when_used="json")
    def _encode_data(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")


class CheckpointMetadata(BaseModel):
    """Decoded contents of a checkpoint's ``_metadata`` file."""

    model_config = ConfigDict(frozen=True)

    checkpoint_id: int = Field(ge=0)
    operator_states: List[OperatorState] = Field(default_factory=list)
    master_states: List[MasterState] = Field(default_factory=list)

    @property
    def state_size(self) -> int:
        return sum(operator.state_size for operator in self.operator_states)


def store_checkpoint_metadata(metadata: CheckpointMetadata, stream: BinaryIO) -> None:
    """Write the header and JSON body for ``metadata`` to ``stream``."""
    stream.write(_HEADER.pack(METADATA_MAGIC, METADATA_VERSION))
    stream.write(orjson.dumps(metadata.model_dump(mode="json")))


def read_checkpoint_metadata(
    stream: BinaryIO,
    class_loader: ClassLoader,
    external_pointer: str,
) -> CheckpointMetadata:
    """Decode a metadata record from ``stream``.

    ``class_loader`` resolves the serializer types named by state handles.
    ``external_pointer`` is only used to describe failures.
    """
    header = stream.read(_HEADER.size)
    if len(header) < _HEADER.size:
        raise CheckpointMetadataError(external_pointer, "metadata file is truncated")
    magic, version = _HEADER.unpack(header)
    if magic != METADATA_MAGIC:
        raise CheckpointMetadataError(
            external_pointer,
            f"unexpected magic number {magic:#010x}, the file is not checkpoint metadata",
        )
    if version != METADATA_VERSION:
        raise CheckpointMetadataError(external_pointer, f"unsupported metadata version {version}")
    try:
        payload = orjson.loads(stream.read())
        return CheckpointMetadata.model_validate(payload, context={"class_loader": class_loader})
    except (ValueError, ImportError) as exc:
        raise CheckpointMetadataError(external_pointer, str(exc)) from exc


def load_checkpoint_metadata(pointer: str, class_loader: ClassLoader = load_class) -> CheckpointMetadata:
    """Resolve ``pointer`` and decode the metadata file it leads to."""
    location = resolve_checkpoint_pointer(pointer)
    with location.metadata_handle.open_input_stream() as stream:
        metadata = read_checkpoint_metadata(stream, class_loader, pointer)
    LOGGER.debug(
        "checkpoint_metadata_loaded",
        checkpoint_dir=str(location.checkpoint_dir),
        checkpoint_id=metadata.checkpoint_id,
    )
    return metadata
