"""In-process execution fabric backed by a thread pool."""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Optional

import structlog

from streamtest.classloader import ClassLoader, load_class
from streamtest.config import ClusterSettings
from streamtest.execution.errors import JobNotFoundError, JobStateError, JobSubmissionError
from streamtest.execution.jobs import (
    JobContext,
    JobExecutionResult,
    JobGraph,
    JobResult,
    JobStatus,
    Program,
    StreamGraph,
    failed_future,
    then_apply,
)

LOGGER = structlog.get_logger(__name__)


@dataclass
class _RunningJob:
    graph: JobGraph
    context: JobContext
    future: "Future[JobResult]"


class MiniCluster:
    """Runs submitted job graphs on worker threads.

    Programs are cancelled cooperatively: ``cancel_job`` sets the job
    context's ``cancelled`` event and the acknowledgment completes once the
    program returns.
    """

    def __init__(self, *, max_workers: int = 4) -> None:
        self._max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="minicluster")
        self._jobs: Dict[str, _RunningJob] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @classmethod
    def from_settings(cls, settings: ClusterSettings) -> "MiniCluster":
        return cls(max_workers=settings.max_workers)

    def __enter__(self) -> "MiniCluster":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def submit_job(self, job_graph: JobGraph) -> "Future[str]":
        with self._lock:
            if self._closed:
                return failed_future(JobSubmissionError(job_graph.job_id, "Cluster has been shut down"))
            if job_graph.job_id in self._jobs:
                return failed_future(JobSubmissionError(job_graph.job_id, f"Job {job_graph.job_id} was already submitted"))
            context = JobContext(job_id=job_graph.job_id, job_name=job_graph.name)
            future = self._executor.submit(self._run, job_graph, context)
            self._jobs[job_graph.job_id] = _RunningJob(graph=job_graph, context=context, future=future)
        LOGGER.info("job_submitted", job_id=job_graph.job_id, job_name=job_graph.name)
        done: "Future[str]" = Future()
        done.set_result(job_graph.job_id)
        return done

    def request_job_result(self, job_id: str) -> "Future[JobResult]":
        running = self._lookup(job_id)
        if running is None:
            return failed_future(JobNotFoundError(job_id))
        return running.future

    def cancel_job(self, job_id: str) -> "Future[None]":
        running = self._lookup(job_id)
        if running is None:
            return failed_future(JobNotFoundError(job_id))
        if running.future.done():
            return failed_future(JobStateError(job_id, f"Job {job_id} has already reached a terminal state"))
        running.context.cancelled.set()
        LOGGER.info("job_cancel_requested", job_id=job_id)
        return then_apply(running.future, lambda _result: None)

    def job_status(self, job_id: str) -> JobStatus:
        running = self._lookup(job_id)
        if running is None:
            raise JobNotFoundError(job_id)
        if not running.future.done():
            return JobStatus.RUNNING
        return running.future.result().status

    def close(self) -> None:
        with self._lock:
            self._closed = True
            running = list(self._jobs.values())
        for job in running:
            job.context.cancelled.set()
        self._executor.shutdown(wait=True)

    def _lookup(self, job_id: str) -> Optional[_RunningJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def _run(self, job_graph: JobGraph, context: JobContext) -> JobResult:
        started = time.monotonic()
        failure: Optional[BaseException] = None
        try:
            job_graph.program(context)
        except Exception as exc:
            failure = exc
        runtime_ms = int((time.monotonic() - started) * 1000)
        if context.is_cancelled():
            status = JobStatus.CANCELED
        elif failure is not None:
            status = JobStatus.FAILED
        else:
            status = JobStatus.FINISHED
        LOGGER.info("job_terminated", job_id=job_graph.job_id, status=status.value, runtime_ms=runtime_ms)
        return JobResult(
            job_id=job_graph.job_id,
            status=status,
            net_runtime_ms=runtime_ms,
            accumulators=context.accumulators(),
            failure_cause=failure,
        )


class LocalJobClient:
    """Job handle returned by :class:`LocalExecutionEnvironment`."""

    def __init__(self, cluster: MiniCluster, job_id: str, class_loader: ClassLoader) -> None:
        self._cluster = cluster
        self._job_id = job_id
        self._class_loader = class_loader

    @property
    def job_id(self) -> str:
        return self._job_id

    def get_job_execution_result(self) -> "Future[JobExecutionResult]":
        return then_apply(
            self._cluster.request_job_result(self._job_id),
            lambda result: result.to_job_execution_result(self._class_loader),
        )

    def cancel(self) -> "Future[None]":
        return self._cluster.cancel_job(self._job_id)


class LocalExecutionEnvironment:
    """Builds stream graphs from a program and runs them on a mini cluster."""

    def __init__(self, cluster: MiniCluster, *, class_loader: ClassLoader = load_class) -> None:
        self._cluster = cluster
        self._class_loader = class_loader
        self._program: Optional[Program] = None

    def set_program(self, program: Program) -> "LocalExecutionEnvironment":
        self._program = program
        return self

    def get_stream_graph(self) -> StreamGraph:
        if self._program is None:
            raise RuntimeError("No operators defined in streaming topology. Cannot execute.")
        return StreamGraph(program=self._program)

    def execute_async(self, stream_graph: StreamGraph) -> LocalJobClient:
        job_id = self._cluster.submit_job(stream_graph.to_job_graph()).result()
        return LocalJobClient(self._cluster, job_id, self._class_loader)

    def execute(self, job_name: Optional[str] = None) -> JobExecutionResult:
        stream_graph = self.get_stream_graph()
        if job_name is not None:
            stream_graph.job_name = job_name
        return self.execute_async(stream_graph).get_job_execution_result().result()
