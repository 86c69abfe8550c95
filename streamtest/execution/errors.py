"""Exceptions raised by the execution fabric and the run harness."""
from __future__ import annotations

from typing import Iterator, Optional, Type, TypeVar

E = TypeVar("E", bound=BaseException)


class SuccessException(Exception):
    """Raised from inside a job to stop it once the test has what it needs."""


class JobRunFailure(AssertionError):
    """A job run ended in a genuine failure."""


class JobExecutionError(Exception):
    """A job did not finish successfully."""

    def __init__(self, job_id: str, message: str) -> None:
        super().__init__(message)
        self.job_id = job_id


class JobCancellationError(JobExecutionError):
    """The job was cancelled before it finished."""


class JobSubmissionError(JobExecutionError):
    """The cluster refused the job."""


class JobStateError(JobExecutionError):
    """The request is not valid in the job's current state."""


class JobNotFoundError(JobExecutionError):
    def __init__(self, job_id: str) -> None:
        super().__init__(job_id, f"Job {job_id} is not known to the cluster")


def iter_causes(error: BaseException) -> Iterator[BaseException]:
    """Yield ``error`` and every exception reachable from it.

    Follows explicit causes, implicit contexts unless suppressed, and the
    members of exception groups. Each exception is yielded once.
    """
    seen = set()
    pending = [error]
    while pending:
        current = pending.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if isinstance(current, BaseExceptionGroup):
            pending.extend(current.exceptions)
        if current.__cause__ is not None:
            pending.append(current.__cause__)
        elif current.__context__ is not None and not current.__suppress_context__:
            pending.append(current.__context__)


def find_cause(error: BaseException, kind: Type[E]) -> Optional[E]:
    """Return the first exception of type ``kind`` in the cause chain of ``error``."""
    for candidate in iter_causes(error):
        if isinstance(candidate, kind):
            return candidate
    return None


def describe_chain(error: BaseException) -> str:
    """Join the messages along the cause chain, outermost first."""
    parts = []
    for candidate in iter_causes(error):
        text = str(candidate) or type(candidate).__name__
        if text not in parts:
            parts.append(text)
    return " <- ".join(parts)
