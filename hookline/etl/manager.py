"""
Job lifecycle management for ETL jobs.

The JobManager owns every job for the lifetime of the process and drives the
extract -> transform -> load sequence. All bookkeeping (the active-job set,
status and progress updates) happens on the event loop thread without an
``await`` between check and update, so the at-most-one-run-per-job rule
holds without a separate lock. Blocking storage reads run in worker threads.
"""

from __future__ import annotations

import asyncio
import time
from functools import partial
from logging import Logger
from typing import Any, Dict, List, Mapping, Optional, Protocol, Set, Union

from pydantic import ValidationError as PydanticValidationError

from hookline.exceptions import (
    AlreadyRunningError,
    ExecutionError,
    LoadError,
    UnsupportedOperationError,
    ValidationError,
)
from hookline.logger import get_logger
from hookline.models import (
    CapturedRequest,
    Job,
    JobKind,
    JobPhase,
    JobStatus,
    JobSubmission,
    Progress,
    WebhookConfig,
    WebhookId,
    utcnow,
)
from hookline.settings import GlobalSettings

from .filters import filter_requests
from .loaders import DestinationLoader
from .repository import JobRepository
from .transforms import TransformationPipeline

DEFAULT_EXTRACT_LIMIT = 1000

PHASE_PERCENTAGE: Dict[JobPhase, float] = {
    JobPhase.extract: 30.0,
    JobPhase.transform: 60.0,
    JobPhase.load: 100.0,
}


class RequestSource(Protocol):
    def get_requests(self, webhook_id: WebhookId, limit: int) -> List[CapturedRequest]: ...

    def get_all_webhook_configs(self) -> List[WebhookConfig]: ...


class _JobCancelled(Exception):
    pass


class JobManager:
    def __init__(
        self,
        storage: RequestSource,
        repository: Optional[JobRepository] = None,
        pipeline: Optional[TransformationPipeline] = None,
        loader: Optional[DestinationLoader] = None,
        extract_limit: int = DEFAULT_EXTRACT_LIMIT,
        logger: Optional[Logger] = None,
    ) -> None:
        self.logger = logger or get_logger()
        self.storage = storage
        self.repository = repository or JobRepository()
        self.pipeline = pipeline or TransformationPipeline(logger=self.logger)
        self.loader = loader or DestinationLoader(logger=self.logger)
        self.extract_limit = extract_limit
        self._active: Set[str] = set()
        # runs whose coroutine has not exited yet, including cancelled ones still unwinding
        self._inflight: Set[str] = set()
        self._tasks: Dict[str, asyncio.Task[Job]] = {}

    # -- submission and queries -------------------------------------------------

    def submit(self, submission: Union[JobSubmission, Mapping[str, Any]]) -> Job:
        try:
            if not isinstance(submission, JobSubmission):
                submission = JobSubmission.model_validate(submission)
            job = Job.from_submission(submission)
        except PydanticValidationError as e:
            errors = [{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in e.errors()]
            raise ValidationError(f"Invalid ETL job submission: {e.error_count()} validation errors", errors) from e

        self.repository.add(job)
        self.logger.info(f"[ETL:{job.job_id}] Job '{job.name}' submitted ({job.type.value})")
        return self._snapshot(job)

    def get_job(self, job_id: str) -> Job:
        return self._snapshot(self.repository.get(job_id))

    def get_all_jobs(self, status: Optional[JobStatus] = None, type: Optional[JobKind] = None) -> List[Job]:
        return [self._snapshot(job) for job in self.repository.list(status=status, kind=type)]

    def is_job_running(self, job_id: str) -> bool:
        return str(job_id) in self._active

    @property
    def running_count(self) -> int:
        return len(self._active)

    # -- lifecycle --------------------------------------------------------------

    def start(self, job_id: str) -> "asyncio.Task[Job]":
        """
        Start a job in the background and return the task running it.

        The job is marked running before this returns, so a second call for
        the same job raises AlreadyRunningError straight away. Failures are
        always logged by a done-callback; awaiting the task re-raises them.
        """
        loop = asyncio.get_running_loop()
        job = self._claim(job_id)
        key = str(job.job_id)
        task = loop.create_task(self._run(job), name=f"etl-job-{key}")
        self._tasks[key] = task
        task.add_done_callback(partial(self._on_task_done, key))
        return task

    async def execute(self, job_id: str) -> Job:
        """Run a job to its terminal state in the caller's task."""
        job = self._claim(job_id)
        return await self._run(job)

    def cancel(self, job_id: str) -> bool:
        job = self.repository.get(job_id)
        key = str(job.job_id)
        if key not in self._active:
            return False
        job.status = JobStatus.cancelled
        job.completed_at = utcnow()
        self._active.discard(key)
        self.logger.info(f"[ETL:{key}] Job cancelled during {job.progress.current_phase.value} phase")
        return True

    async def shutdown(self) -> None:
        pending = [task for task in self._tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # -- internals --------------------------------------------------------------

    def _snapshot(self, job: Job) -> Job:
        return job.model_copy(deep=True)

    def _claim(self, job_id: str) -> Job:
        job = self.repository.get(job_id)
        key = str(job.job_id)
        if key in self._active or key in self._inflight:
            raise AlreadyRunningError(job_id=key)
        self._active.add(key)
        self._inflight.add(key)
        job.status = JobStatus.running
        job.started_at = utcnow()
        job.completed_at = None
        job.error = None
        job.progress = Progress(current_phase=JobPhase.extract)
        return job

    def _on_task_done(self, job_id: str, task: "asyncio.Task[Job]") -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            self.logger.warning(f"[ETL:{job_id}] Job task was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error(f"[ETL:{job_id}] Job execution failed: {exc}")

    def _ensure_not_cancelled(self, job: Job) -> None:
        if job.status == JobStatus.cancelled:
            raise _JobCancelled()

    def _finish_phase(self, job: Job, phase: JobPhase, started: float) -> None:
        percentage = max(job.progress.percentage, PHASE_PERCENTAGE[phase])
        job.progress.percentage = percentage
        elapsed = time.monotonic() - started
        job.progress.estimated_time_remaining = elapsed * (100.0 - percentage) / percentage

    async def _extract(self, job: Job) -> List[CapturedRequest]:
        job_id = str(job.job_id)
        self.logger.info(f"[ETL:{job_id}] Starting extract phase")
        records: List[CapturedRequest] = []
        if job.webhook_id is not None:
            records = await asyncio.to_thread(self.storage.get_requests, job.webhook_id, self.extract_limit)
        else:
            configs = await asyncio.to_thread(self.storage.get_all_webhook_configs)
            for config in configs:
                records.extend(
                    await asyncio.to_thread(self.storage.get_requests, config.webhook_id, self.extract_limit)
                )
        filtered = filter_requests(records, job.filters)
        self.logger.info(f"[ETL:{job_id}] Extracted {len(filtered)} records")
        return filtered

    async def _run(self, job: Job) -> Job:
        job_id = str(job.job_id)
        started = time.monotonic()
        phase = JobPhase.extract
        try:
            extracted = await self._extract(job)
            self._ensure_not_cancelled(job)
            job.progress.total_records = len(extracted)
            self._finish_phase(job, phase, started)

            phase = JobPhase.transform
            job.progress.current_phase = phase
            self.logger.info(f"[ETL:{job_id}] Starting transform phase with {len(extracted)} records")
            transformed = self.pipeline.apply(
                [record.to_record() for record in extracted], job.transformations, job_id=job_id
            )
            self._ensure_not_cancelled(job)
            job.progress.processed_records = len(transformed)
            self._finish_phase(job, phase, started)

            phase = JobPhase.load
            job.progress.current_phase = phase
            self.logger.info(f"[ETL:{job_id}] Starting load phase with {len(transformed)} records")
            await self.loader.load(transformed, job.destination, job_id=job_id)
            self._ensure_not_cancelled(job)
            job.progress.successful_records = len(transformed)
            self._finish_phase(job, phase, started)

            job.progress.estimated_time_remaining = 0.0
            job.progress.current_phase = JobPhase.completed
            job.status = JobStatus.completed
            job.completed_at = utcnow()
            self.logger.info(f"[ETL:{job_id}] Job completed successfully")
        except _JobCancelled:
            self.logger.info(f"[ETL:{job_id}] Stopping cancelled job after {phase.value} phase")
        except asyncio.CancelledError:
            if job.status == JobStatus.running:
                job.status = JobStatus.cancelled
                job.completed_at = utcnow()
            raise
        except Exception as e:
            error: Exception = e
            if not isinstance(e, (ExecutionError, UnsupportedOperationError)):
                error = ExecutionError(f"{phase.value.capitalize()} phase failed: {e}", phase=phase.value, cause=e)
            self._fail(job, phase, error)
            if error is e:
                raise
            raise error from e
        finally:
            self._active.discard(job_id)
            self._inflight.discard(job_id)
        return self._snapshot(job)

    def _fail(self, job: Job, phase: JobPhase, error: Exception) -> None:
        job_id = str(job.job_id)
        if job.status == JobStatus.cancelled:
            self.logger.warning(f"[ETL:{job_id}] Cancelled job raised during {phase.value} phase: {error}")
            return
        if phase == JobPhase.load:
            delivered = error.delivered if isinstance(error, LoadError) else 0
            job.progress.successful_records = delivered
            job.progress.failed_records = max(job.progress.processed_records - delivered, 0)
        job.status = JobStatus.failed
        job.error = str(error)
        job.completed_at = utcnow()
        self.logger.error(f"[ETL:{job_id}] Job failed in {phase.value} phase: {error}")


def gen_job_manager(settings: GlobalSettings, storage: RequestSource) -> JobManager:
    etl_settings = settings.etl_settings
    logger = get_logger(level=settings.logger_settings.level)
    loader = DestinationLoader(
        logger=logger, timeout=etl_settings.request_timeout, file_output_dir=etl_settings.file_output_dir
    )
    return JobManager(storage=storage, loader=loader, extract_limit=etl_settings.extract_limit, logger=logger)
