from typing import Any, Dict, Literal, Union

from fastapi import APIRouter, Body, HTTPException, Query, Request

from ..etl.manager import JobManager
from ..exceptions import AlreadyRunningError, NotFoundError, ValidationError
from ..models import BaseModel, Job, JobId, JobKind, JobListResponse, JobStatus
from .hooks import get_client_ip


class JobActionRequest(BaseModel):
    action: Literal["start", "cancel"]


class JobActionResponse(BaseModel):
    action: str
    job_id: JobId
    status: JobStatus


def gen_router(manager: JobManager) -> APIRouter:
    router = APIRouter()

    def get_job_or_404(job_id: str) -> Job:
        try:
            return manager.get_job(job_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail="ETL job not found")

    @router.post("/jobs", response_model=Job)
    async def submit_job(request: Request, payload: Dict[str, Any] = Body(...)) -> Job:
        metadata = payload.get("metadata")
        if metadata is None:
            metadata = {}
        # anything other than an object is left for submission validation to reject
        if isinstance(metadata, dict):
            metadata = {
                "createdBy": "admin",
                "userAgent": request.headers.get("user-agent"),
                "ip": get_client_ip(request) or "unknown",
                **metadata,
            }
        try:
            job = manager.submit({**payload, "metadata": metadata})
        except ValidationError as e:
            raise HTTPException(status_code=422, detail={"message": str(e), "errors": e.errors})

        if job.runs_immediately:
            manager.start(job.job_id)
        return get_job_or_404(job.job_id)

    @router.get("/jobs", response_model=JobListResponse)
    async def list_jobs(
        status: Union[JobStatus, None] = Query(default=None),
        type: Union[JobKind, None] = Query(default=None),
    ) -> JobListResponse:
        jobs = manager.get_all_jobs(status=status, type=type)
        return JobListResponse(data=jobs, total=len(jobs))

    @router.get("/jobs/{job_id}", response_model=Job)
    async def get_job(job_id: str) -> Job:
        return get_job_or_404(job_id)

    @router.patch("/jobs/{job_id}", response_model=JobActionResponse)
    async def control_job(job_id: str, action_request: JobActionRequest) -> JobActionResponse:
        job = get_job_or_404(job_id)
        if action_request.action == "start":
            try:
                manager.start(job.job_id)
            except AlreadyRunningError as e:
                raise HTTPException(status_code=409, detail=str(e))
            action = "started"
        else:
            if not manager.cancel(job.job_id):
                raise HTTPException(status_code=400, detail="Job could not be cancelled")
            action = "cancelled"
        return JobActionResponse(action=action, job_id=job.job_id, status=manager.get_job(job.job_id).status)

    return router
