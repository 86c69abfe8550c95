import threading
from collections import Counter

import pytest

from streamtest.execution.errors import (
    JobCancellationError,
    JobExecutionError,
    JobNotFoundError,
    JobStateError,
    JobSubmissionError,
)
from streamtest.config import ClusterSettings
from streamtest.execution.harness import submit_job_and_wait_for_result
from streamtest.execution.jobs import JobGraph, JobStatus
from streamtest.execution.local import LocalExecutionEnvironment, MiniCluster


def _word_count(ctx):
    counts = Counter("to be or not to be".split())
    ctx.add_accumulator("words", counts)
    ctx.add_accumulator("records", sum(counts.values()))


def test_submit_job_and_wait_for_result_rebuilds_accumulators():
    with MiniCluster(max_workers=2) as cluster:
        result = submit_job_and_wait_for_result(cluster, JobGraph(name="word count", program=_word_count))
        assert cluster.job_status(result.job_id) is JobStatus.FINISHED
    assert result.get_accumulator_result("records") == 6
    words = result.get_accumulator_result("words")
    assert isinstance(words, Counter)
    assert words["to"] == 2


def test_submit_job_and_wait_for_result_raises_for_failed_job():
    def failing(ctx):
        raise ValueError("checkpoint declined")

    with MiniCluster(max_workers=1) as cluster:
        with pytest.raises(JobExecutionError) as excinfo:
            submit_job_and_wait_for_result(cluster, JobGraph(name="failing", program=failing))
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_execute_returns_result(cluster):
    env = LocalExecutionEnvironment(cluster).set_program(_word_count)
    assert env.execute("wc").get_accumulator_result("records") == 6


def test_cancel_running_job():
    running = threading.Event()

    def source(ctx):
        running.set()
        ctx.cancelled.wait()

    with MiniCluster(max_workers=1) as cluster:
        env = LocalExecutionEnvironment(cluster).set_program(source)
        client = env.execute_async(env.get_stream_graph())
        running.wait(timeout=5)
        assert cluster.job_status(client.job_id) is JobStatus.RUNNING
        client.cancel().result(timeout=5)
        assert cluster.job_status(client.job_id) is JobStatus.CANCELED
        with pytest.raises(JobCancellationError):
            client.get_job_execution_result().result(timeout=5)
        with pytest.raises(JobStateError):
            client.cancel().result(timeout=5)


def test_unknown_and_duplicate_jobs():
    with MiniCluster(max_workers=1) as cluster:
        with pytest.raises(JobNotFoundError):
            cluster.request_job_result("missing").result()
        with pytest.raises(JobNotFoundError):
            cluster.cancel_job("missing").result()
        graph = JobGraph(name="once", program=lambda ctx: None)
        cluster.submit_job(graph).result()
        with pytest.raises(JobSubmissionError):
            cluster.submit_job(graph).result()
    with pytest.raises(JobSubmissionError):
        cluster.submit_job(JobGraph(name="late", program=lambda ctx: None)).result()


def test_submission_failure_reaches_caller():
    cluster = MiniCluster(max_workers=1)
    cluster.close()
    with pytest.raises(JobSubmissionError, match="shut down"):
        submit_job_and_wait_for_result(cluster, JobGraph(name="late", program=_word_count))


def test_cluster_from_settings():
    with MiniCluster.from_settings(ClusterSettings(max_workers=3)) as cluster:
        assert cluster.max_workers == 3
        result = submit_job_and_wait_for_result(cluster, JobGraph(name="word count", program=_word_count))
    assert result.get_accumulator_result("records") == 6
