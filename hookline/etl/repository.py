from typing import Dict, List, Optional

from hookline.exceptions import NotFoundError
from hookline.models import Job, JobKind, JobStatus


class JobRepository:
    """
    In-memory store of ETL jobs for one process.

    Constructed once at start-up and handed to the JobManager. Jobs are never
    evicted; they stay queryable after reaching a terminal state.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}

    def add(self, job: Job) -> Job:
        self._jobs[str(job.job_id)] = job
        return job

    def get(self, job_id: str) -> Job:
        job = self._jobs.get(str(job_id))
        if job is None:
            raise NotFoundError(job_id=str(job_id))
        return job

    def list(self, status: Optional[JobStatus] = None, kind: Optional[JobKind] = None) -> List[Job]:
        jobs = [
            job
            for job in self._jobs.values()
            if (status is None or job.status == status) and (kind is None or job.type == kind)
        ]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)
