"""Job graphs, job results and the client protocols the harness talks to."""
from __future__ import annotations

import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar

import orjson

from streamtest.classloader import ClassLoader, load_class, type_name
from streamtest.execution.errors import JobCancellationError, JobExecutionError

T = TypeVar("T")
R = TypeVar("R")

Program = Callable[["JobContext"], None]


class JobStatus(str, Enum):
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


@dataclass(frozen=True, slots=True)
class SerializedValue:
    """An accumulator value together with the name of its type."""

    type_name: str
    payload: bytes

    @classmethod
    def of(cls, value: Any) -> "SerializedValue":
        data = value.model_dump(mode="json") if hasattr(value, "model_dump") else value
        return cls(type_name=type_name(type(value)), payload=orjson.dumps(data))

    def deserialize(self, class_loader: ClassLoader = load_class) -> Any:
        target = class_loader(self.type_name)
        data = orjson.loads(self.payload)
        if hasattr(target, "model_validate"):
            return target.model_validate(data)
        return target(data)


class JobContext:
    """Runtime view handed to a job's program."""

    def __init__(self, *, job_id: str, job_name: str) -> None:
        self.job_id = job_id
        self.job_name = job_name
        self.cancelled = threading.Event()
        self._accumulators: Dict[str, SerializedValue] = {}

    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()

    def add_accumulator(self, name: str, value: Any) -> None:
        self._accumulators[name] = SerializedValue.of(value)

    def accumulators(self) -> Dict[str, SerializedValue]:
        return dict(self._accumulators)


@dataclass
class JobGraph:
    """Executable form of a program, as submitted to a cluster."""

    name: str
    program: Program
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class StreamGraph:
    """A program plus the name its job will run under."""

    program: Program
    job_name: str = "Streaming Job"

    def to_job_graph(self) -> JobGraph:
        return JobGraph(name=self.job_name, program=self.program)


@dataclass
class JobExecutionResult:
    job_id: str
    net_runtime_ms: int
    accumulators: Dict[str, Any] = field(default_factory=dict)

    def get_accumulator_result(self, name: str) -> Any:
        return self.accumulators.get(name)


@dataclass
class JobResult:
    """Terminal state of a job as reported by the cluster."""

    job_id: str
    status: JobStatus
    net_runtime_ms: int
    accumulators: Dict[str, SerializedValue] = field(default_factory=dict)
    failure_cause: Optional[BaseException] = None

    def to_job_execution_result(self, class_loader: ClassLoader = load_class) -> JobExecutionResult:
        """Rebuild accumulator values, raising if the job did not finish."""
        if self.status is JobStatus.CANCELED:
            raise JobCancellationError(self.job_id, "Job was cancelled.") from self.failure_cause
        if self.status is not JobStatus.FINISHED:
            raise JobExecutionError(self.job_id, "Job execution failed.") from self.failure_cause
        return JobExecutionResult(
            job_id=self.job_id,
            net_runtime_ms=self.net_runtime_ms,
            accumulators={name: value.deserialize(class_loader) for name, value in self.accumulators.items()},
        )


class JobClient(Protocol):
    """Handle on a submitted job."""

    @property
    def job_id(self) -> str: ...

    def get_job_execution_result(self) -> "Future[JobExecutionResult]": ...

    def cancel(self) -> "Future[None]": ...


class ExecutionEnvironment(Protocol):
    def get_stream_graph(self) -> StreamGraph: ...

    def execute_async(self, stream_graph: StreamGraph) -> JobClient: ...


class ClusterClient(Protocol):
    def submit_job(self, job_graph: JobGraph) -> "Future[str]": ...

    def request_job_result(self, job_id: str) -> "Future[JobResult]": ...

    def cancel_job(self, job_id: str) -> "Future[None]": ...


def then_apply(source: "Future[T]", fn: Callable[[T], R]) -> "Future[R]":
    """Return a future completed with ``fn`` applied to the result of ``source``."""
    target: "Future[R]" = Future()

    def _complete(done: "Future[T]") -> None:
        try:
            target.set_result(fn(done.result()))
        except Exception as exc:
            target.set_exception(exc)

    source.add_done_callback(_complete)
    return target


def failed_future(error: BaseException) -> "Future[Any]":
    future: "Future[Any]" = Future()
    future.set_exception(error)
    return future


def then_compose(source: "Future[T]", fn: Callable[[T], "Future[R]"]) -> "Future[R]":
    """Return a future completed by the future ``fn`` builds from ``source``'s result."""
    target: "Future[R]" = Future()

    def _relay(inner: "Future[R]") -> None:
        try:
            target.set_result(inner.result())
        except Exception as exc:
            target.set_exception(exc)

    def _complete(done: "Future[T]") -> None:
        try:
            inner = fn(done.result())
        except Exception as exc:
            target.set_exception(exc)
            return
        inner.add_done_callback(_relay)

    source.add_done_callback(_complete)
    return target
