"""Synchronous job execution for tests.

Tests that only need a job to run until some condition holds stop it by
raising :class:`SuccessException` from inside the job. The fabric reports
that as a failed job, so the harness looks for the sentinel in the failure's
cause chain before deciding whether the run failed.
"""
from __future__ import annotations

import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from streamtest.classloader import ClassLoader, load_class
from streamtest.config import HarnessSettings, load_settings, settings_path
from streamtest.execution.errors import JobRunFailure, SuccessException, describe_chain, find_cause
from streamtest.execution.jobs import (
    ClusterClient,
    ExecutionEnvironment,
    JobClient,
    JobExecutionResult,
    JobGraph,
    then_apply,
    then_compose,
)

LOGGER = structlog.get_logger(__name__)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    CANCELLED_AFTER_FAILURE = "cancelled_after_failure"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """Result of one harness invocation.

    ``SUCCESS`` covers clean completion and failures carrying the success
    sentinel. ``CANCELLED_AFTER_FAILURE`` is a genuine failure of a job that
    had been submitted, so cancellation was requested. ``FAILED`` is a
    genuine failure before any job handle existed.
    """

    kind: OutcomeKind
    cause: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


def _cancel_quietly(job_client: JobClient, timeout: Optional[float]) -> None:
    # Cancellation is cleanup only; the job may already have terminated.
    try:
        job_client.cancel().result(timeout=timeout)
    except Exception as exc:
        LOGGER.debug("job_cancel_ignored", job_id=job_client.job_id, error=str(exc))


def execute_job(
    env: ExecutionEnvironment,
    job_name: str,
    *,
    cancel_timeout: Optional[float] = None,
    result_timeout: Optional[float] = None,
) -> JobOutcome:
    """Run the environment's program as ``job_name`` and classify the outcome."""
    job_client: Optional[JobClient] = None
    try:
        stream_graph = env.get_stream_graph()
        stream_graph.job_name = job_name
        job_client = env.execute_async(stream_graph)
        job_client.get_job_execution_result().result(timeout=result_timeout)
    except Exception as root:
        if job_client is not None:
            _cancel_quietly(job_client, cancel_timeout)
        if find_cause(root, SuccessException) is not None:
            LOGGER.info("job_stopped_by_success_sentinel", job_name=job_name)
            return JobOutcome(OutcomeKind.SUCCESS, root)
        if job_client is not None:
            return JobOutcome(OutcomeKind.CANCELLED_AFTER_FAILURE, root)
        return JobOutcome(OutcomeKind.FAILED, root)
    return JobOutcome(OutcomeKind.SUCCESS)


def run_to_completion(
    env: ExecutionEnvironment,
    job_name: str,
    *,
    settings: Optional[HarnessSettings] = None,
) -> None:
    """Execute the job and wait for it synchronously.

    Raises :class:`JobRunFailure` when the job fails without the success
    sentinel anywhere in its cause chain. Without ``settings`` the timeouts
    come from the ``[harness]`` section of the settings file.
    """
    if settings is None:
        settings = load_settings(settings_path()).harness
    outcome = execute_job(
        env,
        job_name,
        cancel_timeout=settings.cancel_timeout_seconds,
        result_timeout=settings.result_timeout_seconds,
    )
    if outcome.succeeded:
        return
    root = outcome.cause
    traceback.print_exception(root)
    LOGGER.error("job_failed", job_name=job_name, outcome=outcome.kind.value, error=str(root))
    raise JobRunFailure(f"Test failed: {describe_chain(root)}") from root


def submit_job_and_wait_for_result(
    client: ClusterClient,
    job_graph: JobGraph,
    class_loader: ClassLoader = load_class,
) -> JobExecutionResult:
    """Submit ``job_graph`` and block until its result is available."""
    job_result = then_compose(client.submit_job(job_graph), client.request_job_result)
    return then_apply(job_result, lambda result: result.to_job_execution_result(class_loader)).result()
