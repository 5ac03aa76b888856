import itertools
import queue
import threading
from typing import Any

from loguru import logger

from nodeflow.application.engine import ExecutionEngine, UUIDGenerator
from nodeflow.application.port import ExecutionStore, JobQueue
from nodeflow.domain.entity import Job, WorkflowGraph, utcnow
from nodeflow.domain.error import JobNotFoundError
from nodeflow.domain.value_object import QUEUE_NAMES, ExecutionMode, ExecutionStatus, JobStatus, Priority

HEALTHY = "Queue health is good. All systems operational."


def health_score(total: dict[str, int]) -> int:
    """
    Advisory 0-100 score from backlog size and failed job count.

    :param total: Summed ``pending``, ``processing`` and ``failed`` counts
    :type total: dict[str, int]
    :rtype: int
    """
    score = 100
    pending = total["pending"]
    failed = total["failed"]
    if pending > 100:
        score -= 30
    elif pending > 50:
        score -= 15
    elif pending > 10:
        score -= 5
    if failed > 10:
        score -= 40
    elif failed > 5:
        score -= 20
    elif failed > 0:
        score -= 10
    return max(0, min(100, score))


def health_recommendations(total: dict[str, int]) -> list[str]:
    recommendations = []
    if total["pending"] > 100:
        recommendations.append("High queue backlog detected. Consider scaling up workers.")
    if total["failed"] > 10:
        recommendations.append("High failure rate detected. Check error logs and retry failed jobs.")
    if total["pending"] == 0 and total["processing"] == 0:
        recommendations.append("Queue is idle. Consider scaling down workers to save resources.")
    if not recommendations:
        recommendations.append(HEALTHY)
    return recommendations


class InMemoryQueueDispatcher(JobQueue):
    """
    Runs dispatched executions out of band on a pool of worker threads.

    Jobs are served high priority first, then normal, then low; FIFO within a
    priority. Each job's record is created ``waiting`` at dispatch time and
    driven to a terminal status by ``ExecutionEngine.run`` on a worker.

    Finished jobs are kept for ``retention`` seconds for tracking, then
    dropped by ``cleanup``, which every dispatch also runs.
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        store: ExecutionStore,
        workers: int | None = None,
        poll_interval: float | None = None,
        autostart: bool = True,
        retention: float | None = None,
    ):
        self.engine = engine
        self.store = store
        self.workers = workers if workers is not None else engine.settings.queue_workers
        self.poll_interval = poll_interval if poll_interval is not None else engine.settings.queue_poll_interval
        self.retention = retention if retention is not None else engine.settings.job_retention
        self.ids = UUIDGenerator()
        self._queue: queue.PriorityQueue[tuple[int, int, str]] = queue.PriorityQueue()
        self._sequence = itertools.count()
        self._jobs: dict[str, Job] = {}
        self._cancel_events: dict[str, threading.Event] = {}
        self._changed = threading.Condition()
        self._stopping = threading.Event()
        self._threads: list[threading.Thread] = []
        if autostart:
            self.start()

    def dispatch(
        self,
        graph: WorkflowGraph,
        payload: dict[str, Any] | None = None,
        priority: Priority = Priority.NORMAL,
        workflow_ref: str | None = None,
    ) -> str:
        priority = Priority(priority)
        self.cleanup()
        record = self.engine.new_record(graph, payload, workflow_ref, ExecutionMode.QUEUE, priority=priority)
        job = Job(
            id=self.ids.generate(),
            execution_id=record.id,
            workflow_ref=record.workflow_ref,
            priority=priority,
            queue=priority.queue_name,
            graph=graph,
            payload=dict(payload or {}),
        )
        with self._changed:
            self._jobs[job.id] = job
            self._changed.notify_all()
        self._queue.put((priority.rank, next(self._sequence), job.id))
        logger.bind(job_id=job.id, execution_id=record.id).info(f"Job queued on '{job.queue}'")
        return job.id

    def start(self) -> None:
        """Starts the worker threads. Calling it again while running does nothing."""
        if any(thread.is_alive() for thread in self._threads):
            return
        self._stopping.clear()
        self._threads = [
            threading.Thread(target=self._work, name=f"nodeflow-worker-{n}", daemon=True) for n in range(self.workers)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Queue dispatcher started with {self.workers} workers")

    def stop(self, wait: bool = True) -> None:
        """
        Stops the workers after their current job. Queued jobs stay queued.

        :param wait: Block until every worker has exited
        :type wait: bool
        """
        self._stopping.set()
        if wait:
            for thread in self._threads:
                thread.join()
        logger.info("Queue dispatcher stopped")

    def join(self, timeout: float | None = None) -> bool:
        """
        Blocks until no job is queued or processing.

        :param timeout: Seconds to wait at most; None waits forever
        :type timeout: float | None
        :returns: False if the timeout expired first
        :rtype: bool
        """
        with self._changed:
            return self._changed.wait_for(self._idle, timeout=timeout)

    def _idle(self) -> bool:
        return not any(job.status in (JobStatus.QUEUED, JobStatus.PROCESSING) for job in self._jobs.values())

    def _work(self) -> None:
        while not self._stopping.is_set():
            try:
                _, _, job_id = self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            try:
                self._process(job_id)
            finally:
                self._queue.task_done()

    def _process(self, job_id: str) -> None:
        with self._changed:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.QUEUED:
                return
            job.status = JobStatus.PROCESSING
            job.started_at = utcnow()
            event = threading.Event()
            self._cancel_events[job_id] = event
            self._changed.notify_all()

        log = logger.bind(job_id=job_id, execution_id=job.execution_id)
        log.info("Processing job")
        status, error = JobStatus.COMPLETED, None
        try:
            record = self.store.get(job.execution_id)
            result = self.engine.run(record, job.graph, job.payload, cancel_event=event)
        except Exception as e:
            log.exception("Job crashed")
            status, error = JobStatus.FAILED, str(e)
        else:
            if result.status is ExecutionStatus.ERROR:
                status, error = JobStatus.FAILED, result.error_message
            elif result.status is ExecutionStatus.CANCELED:
                status = JobStatus.CANCELED

        with self._changed:
            job.status = status
            job.error = error
            self._finish(job)
            self._cancel_events.pop(job_id, None)
            self._changed.notify_all()
        log.info(f"Job finished: {status.value}")

    def cancel(self, job_id: str) -> bool:
        """
        Cancels a job.

        A queued job never runs and its record ends ``canceled``; a processing
        job is cancelled cooperatively between rounds.

        :param job_id: The job to cancel
        :type job_id: str
        :returns: False if the job had already finished
        :rtype: bool
        :raises JobNotFoundError: If the job id is unknown
        """
        with self._changed:
            job = self._job(job_id)
            if job.status is JobStatus.PROCESSING:
                self._cancel_events[job_id].set()
                logger.bind(job_id=job_id).info("Cancellation requested for running job")
                return True
            if job.status is not JobStatus.QUEUED:
                return False
            job.status = JobStatus.CANCELED
            self._finish(job)
            self._changed.notify_all()

        record = self.store.get(job.execution_id)
        record.finish(ExecutionStatus.CANCELED)
        self.store.save(record)
        logger.bind(job_id=job_id, execution_id=job.execution_id).info("Queued job canceled")
        return True

    @staticmethod
    def _finish(job: Job) -> None:
        # Caller holds the lock.
        job.finished_at = utcnow()
        job.graph = None
        job.payload = {}

    def _job(self, job_id: str) -> Job:
        # Caller holds the lock.
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFoundError(f"Job '{job_id}' not found") from None

    def get_job_info(self, job_id: str) -> dict[str, Any]:
        """
        Tracking information for a job.

        :raises JobNotFoundError: If the job id is unknown
        """
        with self._changed:
            return self._job(job_id).info()

    def get_queue_status(self) -> dict[str, dict[str, int]]:
        counts = {name: {"pending": 0, "processing": 0, "failed": 0} for name in QUEUE_NAMES}
        key_for = {JobStatus.QUEUED: "pending", JobStatus.PROCESSING: "processing", JobStatus.FAILED: "failed"}
        with self._changed:
            for job in self._jobs.values():
                key = key_for.get(job.status)
                if key:
                    counts[job.queue][key] += 1
        counts["total"] = {
            key: sum(counts[name][key] for name in QUEUE_NAMES) for key in ("pending", "processing", "failed")
        }
        return counts

    def get_health_status(self) -> dict[str, Any]:
        status = self.get_queue_status()
        return {
            "score": health_score(status["total"]),
            "queues": status,
            "recommendations": health_recommendations(status["total"]),
            "last_checked": utcnow(),
        }

    def clear_failed(self) -> int:
        """
        Forgets failed jobs.

        :returns: How many jobs were removed
        :rtype: int
        """
        with self._changed:
            failed = [job_id for job_id, job in self._jobs.items() if job.status is JobStatus.FAILED]
            for job_id in failed:
                del self._jobs[job_id]
        logger.info(f"Cleared {len(failed)} failed jobs")
        return len(failed)

    def cleanup(self, max_age: float | None = None) -> int:
        """
        Forgets finished jobs older than the retention period.

        :param max_age: Seconds a finished job is kept; defaults to ``retention``
        :type max_age: float | None
        :returns: How many jobs were removed
        :rtype: int
        """
        max_age = self.retention if max_age is None else max_age
        now = utcnow()
        with self._changed:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.finished_at is not None and (now - job.finished_at).total_seconds() >= max_age
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.debug(f"Cleaned up {len(expired)} finished jobs")
        return len(expired)
