# src/infrastructure/tasks/dispatch.py
"""
Job Dispatch
Typed submit/wait seam between the analysis service and whatever runs jobs.

Two transports:
- InProcessDispatcher: asyncio tasks in the current loop, bounded by a semaphore
- CeleryDispatcher: the `tasks.analysis.run_comment_analysis` worker task
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from celery.exceptions import TimeoutError as CeleryTimeoutError

from src.app.models import JobStatus

logger = logging.getLogger(__name__)


# ============================================================================
# Messages
# ============================================================================


@dataclass(frozen=True)
class JobRequest:
    """Everything a worker needs to run one analysis job"""

    job_id: str
    post_id: str
    user_id: str
    comment_ids: Optional[List[str]] = None

    def to_kwargs(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "post_id": self.post_id,
            "user_id": self.user_id,
            "comment_ids": list(self.comment_ids) if self.comment_ids else None,
        }


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    task_id: str


@dataclass
class JobOutcome:
    job_id: str
    status: JobStatus
    result_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobOutcome":
        return cls(
            job_id=data["job_id"],
            status=JobStatus(data["status"]),
            result_id=data.get("result_id"),
            error=data.get("error"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "result_id": self.result_id,
            "error": self.error,
        }


JobRunner = Callable[[JobRequest], Awaitable[Optional[str]]]


def outcome_from_run(request: JobRequest, result_id: Optional[str]) -> JobOutcome:
    """A runner that returned no result ID stopped because of cancellation"""
    if result_id is None:
        return JobOutcome(job_id=request.job_id, status=JobStatus.CANCELLED)
    return JobOutcome(job_id=request.job_id, status=JobStatus.COMPLETED, result_id=result_id)


class JobDispatcher(Protocol):
    async def submit(self, request: JobRequest) -> JobHandle:
        ...

    async def wait(self, handle: JobHandle, timeout: Optional[float] = None) -> JobOutcome:
        ...


# ============================================================================
# In-Process Transport
# ============================================================================


class InProcessDispatcher:
    """
    Run jobs as asyncio tasks in the current event loop

    At most `max_concurrent` runners execute at once; the rest wait on
    the semaphore. Runner exceptions become FAILED outcomes.

    Finished tasks leave the live map through a done-callback; their
    outcomes stay readable by `wait` until `max_finished` newer jobs
    have finished after them.

    Usage:
        dispatcher = InProcessDispatcher(run_analysis_job, max_concurrent=3)
        handle = await dispatcher.submit(JobRequest(job_id, post_id, user_id))
        outcome = await dispatcher.wait(handle)
    """

    def __init__(self, runner: JobRunner, max_concurrent: int = 3, max_finished: int = 256):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.runner = runner
        self.max_concurrent = max_concurrent
        self.max_finished = max_finished
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: Dict[str, "asyncio.Task[JobOutcome]"] = {}
        self._finished: "OrderedDict[str, JobOutcome]" = OrderedDict()
        self._active = 0

    @property
    def active_count(self) -> int:
        """Runners currently holding a slot"""
        return self._active

    @property
    def pending_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def submit(self, request: JobRequest) -> JobHandle:
        task_id = str(uuid.uuid4())
        task = asyncio.create_task(self._execute(request), name=f"analysis-{request.job_id}")
        self._tasks[task_id] = task
        task.add_done_callback(lambda done, tid=task_id: self._on_done(tid, done))
        logger.info(f"📤 Job {request.job_id} submitted in-process (task {task_id})")
        return JobHandle(job_id=request.job_id, task_id=task_id)

    async def wait(self, handle: JobHandle, timeout: Optional[float] = None) -> JobOutcome:
        if handle.task_id in self._finished:
            return self._finished[handle.task_id]

        task = self._tasks.get(handle.task_id)
        if task is None:
            raise KeyError(f"Unknown task: {handle.task_id}")

        return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)

    async def shutdown(self) -> None:
        """Wait for every submitted job to finish"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def _on_done(self, task_id: str, task: "asyncio.Task[JobOutcome]") -> None:
        self._tasks.pop(task_id, None)
        if task.cancelled():
            return

        self._finished[task_id] = task.result()
        while len(self._finished) > self.max_finished:
            self._finished.popitem(last=False)

    async def _execute(self, request: JobRequest) -> JobOutcome:
        async with self._semaphore:
            self._active += 1
            try:
                result_id = await self.runner(request)
                return outcome_from_run(request, result_id)
            except Exception as e:
                logger.error(f"❌ In-process job {request.job_id} failed: {e}")
                return JobOutcome(
                    job_id=request.job_id,
                    status=JobStatus.FAILED,
                    error=str(e) or e.__class__.__name__,
                )
            finally:
                self._active -= 1


# ============================================================================
# Celery Transport
# ============================================================================


@dataclass
class CeleryDispatcher:
    """
    Send jobs to Celery workers on the analysis queue

    `task` is the registered Celery task; it is injected so tests can
    pass a stand-in with the same `apply_async`/`AsyncResult` surface.
    """

    task: Any
    queue: str = "analysis"
    options: Dict[str, Any] = field(default_factory=dict)

    async def submit(self, request: JobRequest) -> JobHandle:
        async_result = self.task.apply_async(
            kwargs=request.to_kwargs(),
            queue=self.queue,
            **self.options,
        )
        logger.info(f"📤 Job {request.job_id} sent to Celery (task {async_result.id})")
        return JobHandle(job_id=request.job_id, task_id=async_result.id)

    async def wait(self, handle: JobHandle, timeout: Optional[float] = None) -> JobOutcome:
        async_result = self.task.AsyncResult(handle.task_id)
        try:
            payload = await asyncio.to_thread(async_result.get, timeout=timeout)
        except CeleryTimeoutError:
            raise
        except Exception as e:
            logger.error(f"❌ Celery job {handle.job_id} failed: {e}")
            return JobOutcome(
                job_id=handle.job_id,
                status=JobStatus.FAILED,
                error=str(e) or e.__class__.__name__,
            )
        return JobOutcome.from_dict(payload)


__all__ = [
    "JobRequest",
    "JobHandle",
    "JobOutcome",
    "JobRunner",
    "JobDispatcher",
    "InProcessDispatcher",
    "CeleryDispatcher",
    "outcome_from_run",
]
