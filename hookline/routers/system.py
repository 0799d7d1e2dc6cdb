import asyncio

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from ..etl.manager import JobManager
from ..models import BaseModel, Message
from ..storage import Storage


class HealthStatus(BaseModel):
    status: str
    storage: bool
    running_jobs: int


def gen_router(storage: Storage, manager: JobManager) -> APIRouter:
    router = APIRouter()

    @router.get("/ping", response_model=Message)
    async def ping() -> Message:
        return Message(message="pong")

    @router.get("/health", response_model=HealthStatus)
    async def health() -> HealthStatus:
        try:
            storage_ok = await asyncio.to_thread(storage.ping)
        except SQLAlchemyError:
            storage_ok = False
        return HealthStatus(
            status="healthy" if storage_ok else "degraded",
            storage=storage_ok,
            running_jobs=manager.running_count,
        )

    return router
