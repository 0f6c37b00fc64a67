"""Tests for the concurrency-governed priority job queue."""

import asyncio
from collections import defaultdict

import pytest

from gencore.errors import CancelledError, ConfigurationError, JobFailedError
from gencore.jobs.models import JobSpec, JobStatus
from gencore.jobs.priority_queue import PriorityJobQueue
from gencore.storage.job_history import JobHistory


async def settle(rounds: int = 10):
    """Let pending tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class GatedHandler:
    """Handler whose jobs block until their gate is opened."""

    def __init__(self):
        self.started = []
        self.statuses = []
        self.gates = defaultdict(asyncio.Event)

    async def __call__(self, job):
        self.started.append(job.id)
        self.statuses.append(job.status)
        await self.gates[job.id].wait()
        return f"done:{job.id}"

    def release(self, *job_ids):
        for job_id in job_ids:
            self.gates[job_id].set()


class TestScheduling:
    """Test priority ordering and the concurrency ceiling."""

    @pytest.mark.asyncio
    async def test_high_priority_among_first_started(self):
        """Priority-5 job is among the first two started out of [1,5,1,1,1]."""
        handler = GatedHandler()
        queue = PriorityJobQueue(get_max_concurrency=lambda: 2)
        queue.set_handler("image", handler)

        ids = [f"j{i}" for i in range(5)]
        futures = [
            queue.enqueue(JobSpec(id=job_id, category="image", priority=priority))
            for job_id, priority in zip(ids, [1, 5, 1, 1, 1])
        ]
        await settle()

        assert len(handler.started) == 2
        assert "j1" in handler.started
        stats = queue.get_stats()
        assert stats.running == 2
        assert stats.queued == 3
        assert stats.max_concurrency == 2

        handler.release(*ids)
        results = await asyncio.gather(*futures)
        assert results == [f"done:{job_id}" for job_id in ids]
        assert queue.is_idle()

    @pytest.mark.asyncio
    async def test_higher_priority_waiting_job_starts_first(self):
        """When a slot frees, the highest-priority queued job takes it."""
        handler = GatedHandler()
        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        queue.set_handler("image", handler)
        handler.release("low", "high", "low2")

        blocker = queue.enqueue(JobSpec(id="blocker", category="image"))
        others = [
            queue.enqueue(JobSpec(id="low", category="image", priority=1)),
            queue.enqueue(JobSpec(id="high", category="image", priority=9)),
            queue.enqueue(JobSpec(id="low2", category="image", priority=1)),
        ]
        await settle()
        assert handler.started == ["blocker"]

        handler.release("blocker")
        await asyncio.gather(blocker, *others)
        assert handler.started == ["blocker", "high", "low", "low2"]

    @pytest.mark.asyncio
    async def test_running_never_exceeds_ceiling(self):
        """Active handler count stays within the ceiling."""
        active = 0
        peak = 0

        async def handler(job):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.005)
            active -= 1
            return job.id

        queue = PriorityJobQueue(get_max_concurrency=lambda: 3)
        queue.set_handler("video", handler)
        futures = [
            queue.enqueue(JobSpec(category="video", priority=i % 4))
            for i in range(12)
        ]
        await asyncio.gather(*futures)

        assert peak == 3
        assert queue.is_idle()

    @pytest.mark.asyncio
    async def test_ceiling_is_read_live(self):
        """Raising the ceiling lets more queued jobs start."""
        limit = [1]
        handler = GatedHandler()
        queue = PriorityJobQueue(get_max_concurrency=lambda: limit[0])
        queue.set_handler("image", handler)

        futures = [queue.enqueue(JobSpec(id=f"j{i}", category="image")) for i in range(4)]
        await settle()
        assert handler.started == ["j0"]

        limit[0] = 3
        queue.reschedule()
        await settle()
        assert handler.started == ["j0", "j1", "j2"]
        assert queue.get_stats().max_concurrency == 3

        handler.release("j0", "j1", "j2", "j3")
        await asyncio.gather(*futures)

    @pytest.mark.asyncio
    async def test_lowered_ceiling_holds_back_new_starts(self):
        """After lowering the ceiling, finishing jobs do not pull in more work."""
        limit = [2]
        handler = GatedHandler()
        queue = PriorityJobQueue(get_max_concurrency=lambda: limit[0])
        queue.set_handler("image", handler)

        futures = [queue.enqueue(JobSpec(id=f"j{i}", category="image")) for i in range(4)]
        await settle()
        assert handler.started == ["j0", "j1"]

        limit[0] = 1
        handler.release("j0")
        await settle()
        # j1 still running, so the new ceiling of 1 is already met
        assert handler.started == ["j0", "j1"]

        handler.release("j1")
        await settle()
        assert handler.started == ["j0", "j1", "j2"]

        handler.release("j2", "j3")
        await asyncio.gather(*futures)

    @pytest.mark.asyncio
    async def test_missing_handler_fails_without_retry(self):
        """A category with no handler fails immediately with ConfigurationError."""
        queue = PriorityJobQueue(get_max_concurrency=lambda: 2)
        future = queue.enqueue(JobSpec(category="audio", max_retries=3))

        with pytest.raises(ConfigurationError, match="audio"):
            await future
        assert queue.is_idle()


class TestRetry:
    """Test the retry budget and failure annotation."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        """Each failure with budget left re-runs the job once."""
        calls = []

        async def flaky(job):
            calls.append((job.retry_count, job.status))
            if len(calls) < 3:
                raise ConnectionError("provider hiccup")
            return "ok"

        history = JobHistory()
        queue = PriorityJobQueue(get_max_concurrency=lambda: 1, history=history)
        queue.set_handler("image", flaky)

        spec = JobSpec(category="image", max_retries=2)
        assert await queue.enqueue(spec) == "ok"

        assert calls == [
            (0, JobStatus.RUNNING),
            (1, JobStatus.RUNNING),
            (2, JobStatus.RUNNING),
        ]
        snapshot = history.get(spec.id)
        assert snapshot["status"] == "completed"
        assert snapshot["retry_count"] == 2
        assert snapshot["error"] is None

    @pytest.mark.asyncio
    async def test_exhausted_budget_rejects_with_attempt_count(self):
        """The final rejection carries the last error and the attempts made."""
        async def broken(job):
            raise ValueError(f"bad payload on attempt {job.attempts}")

        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        queue.set_handler("image", broken)

        with pytest.raises(JobFailedError) as exc_info:
            await queue.enqueue(JobSpec(id="j", category="image", max_retries=1))

        err = exc_info.value
        assert err.job_id == "j"
        assert err.attempts == 2
        assert isinstance(err.last_error, ValueError)
        assert err.__cause__ is err.last_error
        assert "attempt 2" in str(err.last_error)

    @pytest.mark.asyncio
    async def test_retry_goes_to_tail_of_priority_band(self):
        """A requeued job lines up behind equal-priority work already waiting."""
        started = []
        failed_once = set()

        async def handler(job):
            started.append(job.id)
            if job.id == "flaky" and job.id not in failed_once:
                failed_once.add(job.id)
                raise RuntimeError("transient")
            return job.id

        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        queue.set_handler("image", handler)
        futures = [
            queue.enqueue(JobSpec(id="flaky", category="image", priority=1, max_retries=1)),
            queue.enqueue(JobSpec(id="other", category="image", priority=1)),
        ]
        await asyncio.gather(*futures)

        assert started == ["flaky", "other", "flaky"]

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_stop_scheduling(self):
        """A failing job never blocks later jobs from running."""
        async def handler(job):
            if job.payload == "boom":
                raise RuntimeError("boom")
            return job.payload

        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        queue.set_handler("image", handler)
        bad = queue.enqueue(JobSpec(category="image", payload="boom"))
        good = queue.enqueue(JobSpec(category="image", payload="fine"))

        results = await asyncio.gather(bad, good, return_exceptions=True)
        assert isinstance(results[0], JobFailedError)
        assert results[1] == "fine"

    @pytest.mark.asyncio
    async def test_handler_raising_cancelled_fails_job_and_frees_slot(self):
        """A handler that raises asyncio.CancelledError fails its job, unretried."""
        attempts = []

        async def handler(job):
            attempts.append(job.id)
            if job.id == "a":
                raise asyncio.CancelledError()
            return job.id

        history = JobHistory()
        queue = PriorityJobQueue(get_max_concurrency=lambda: 1, history=history)
        queue.set_handler("image", handler)
        first = queue.enqueue(JobSpec(id="a", category="image", max_retries=2))
        second = queue.enqueue(JobSpec(id="b", category="image"))

        with pytest.raises(CancelledError) as exc_info:
            await asyncio.wait_for(first, timeout=2)
        assert isinstance(exc_info.value.__cause__, asyncio.CancelledError)
        assert await asyncio.wait_for(second, timeout=2) == "b"

        assert attempts == ["a", "b"]
        assert history.get("a")["status"] == "failed"
        assert history.get("a")["retry_count"] == 0
        assert queue.is_idle()
        assert queue.get_stats().running == 0



class TestCancellation:
    """Test cancel_all / resume / stop semantics."""

    @pytest.mark.asyncio
    async def test_cancel_all_rejects_queued_and_spares_running(self):
        handler = GatedHandler()
        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        queue.set_handler("image", handler)

        running = queue.enqueue(JobSpec(id="running", category="image"))
        queued = [queue.enqueue(JobSpec(id=f"q{i}", category="image")) for i in range(2)]
        await settle()

        assert queue.cancel_all() == 2
        for future in queued:
            with pytest.raises(CancelledError):
                await future
        assert queue.get_stats().queued == 0
        assert queue.get_stats().running == 1

        handler.release("running")
        assert await running == "done:running"
        assert handler.started == ["running"]

    @pytest.mark.asyncio
    async def test_enqueue_rejected_until_resume(self):
        async def handler(job):
            return job.payload

        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        queue.set_handler("image", handler)
        queue.cancel_all()
        assert queue.cancelled

        with pytest.raises(CancelledError):
            await queue.enqueue(JobSpec(category="image", payload=1))

        queue.resume()
        assert not queue.cancelled
        assert await queue.enqueue(JobSpec(category="image", payload=2)) == 2

    @pytest.mark.asyncio
    async def test_running_failure_not_retried_after_cancel(self):
        """A running job that fails while the queue is cancelled is not requeued."""
        gate = asyncio.Event()

        async def handler(job):
            await gate.wait()
            raise ConnectionError("lost")

        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        queue.set_handler("image", handler)
        future = queue.enqueue(JobSpec(category="image", max_retries=3))
        await settle()

        queue.cancel_all()
        gate.set()
        with pytest.raises(CancelledError) as exc_info:
            await future
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert queue.is_idle()

    @pytest.mark.asyncio
    async def test_stop_cancels_jobs_still_running_at_timeout(self):
        handler = GatedHandler()
        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        queue.set_handler("image", handler)

        running = queue.enqueue(JobSpec(id="stuck", category="image", max_retries=2))
        queued = queue.enqueue(JobSpec(id="waiting", category="image"))
        await settle()

        await asyncio.wait_for(queue.stop(timeout=0.05), timeout=2)

        with pytest.raises(CancelledError):
            await queued
        with pytest.raises(CancelledError) as exc_info:
            await running
        assert isinstance(exc_info.value.__cause__, asyncio.CancelledError)
        assert handler.started == ["stuck"]
        assert queue.is_idle()

    @pytest.mark.asyncio
    async def test_stop_lets_running_job_finish_within_timeout(self):
        handler = GatedHandler()
        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        queue.set_handler("image", handler)

        running = queue.enqueue(JobSpec(id="quick", category="image"))
        await settle()
        asyncio.get_running_loop().call_later(0.02, handler.release, "quick")

        await asyncio.wait_for(queue.stop(timeout=1.0), timeout=2)

        assert running.done()
        assert await running == "done:quick"
        assert queue.is_idle()
        assert queue.cancelled

    @pytest.mark.asyncio
    async def test_stop_on_idle_queue_returns_immediately(self):
        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        await asyncio.wait_for(queue.stop(timeout=5), timeout=0.5)
        assert queue.cancelled



class TestIntrospection:
    """Test job lookup, progress, history and join."""

    @pytest.mark.asyncio
    async def test_get_job_and_history(self):
        handler = GatedHandler()
        history = JobHistory()
        queue = PriorityJobQueue(get_max_concurrency=lambda: 1, history=history)
        queue.set_handler("image", handler)

        first = queue.enqueue(JobSpec(id="a", category="image"))
        second = queue.enqueue(JobSpec(id="b", category="image"))
        await settle()

        assert queue.get_job("a").status == JobStatus.RUNNING
        assert queue.get_job("b").status == JobStatus.QUEUED
        assert queue.get_job("missing") is None

        handler.release("a", "b")
        await asyncio.gather(first, second)
        assert queue.get_job("a") is None
        assert history.get("a")["status"] == "completed"
        assert history.get("b")["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_progress_forwarded_to_enqueuer(self):
        seen = []

        async def handler(job):
            job.report_progress(40, "running")
            job.report_progress(100, "succeeded")
            return "ref"

        queue = PriorityJobQueue(get_max_concurrency=lambda: 1)
        queue.set_handler("video", handler)
        spec = JobSpec(
            category="video",
            on_progress=lambda progress, status: seen.append((progress, status)),
        )
        assert await queue.enqueue(spec) == "ref"
        assert seen == [(40, "running"), (100, "succeeded")]

    @pytest.mark.asyncio
    async def test_join_waits_for_all_work(self):
        done = []

        async def handler(job):
            await asyncio.sleep(0.01)
            done.append(job.id)

        queue = PriorityJobQueue(get_max_concurrency=lambda: 2)
        queue.set_handler("image", handler)
        for i in range(5):
            queue.enqueue(JobSpec(id=f"j{i}", category="image"))

        assert not queue.is_idle()
        await asyncio.wait_for(queue.join(), timeout=2)
        assert sorted(done) == [f"j{i}" for i in range(5)]
        assert queue.is_idle()
