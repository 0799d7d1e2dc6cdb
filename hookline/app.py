from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .etl.config_loader import load_job_definitions
from .etl.manager import JobManager, gen_job_manager
from .logger import get_logger
from .routers.etl import gen_router as gen_etl_router
from .routers.hooks import gen_router as gen_hooks_router
from .routers.system import gen_router as gen_system_router
from .settings import GlobalSettings
from .storage import gen_storage


def register_job_definitions(manager: JobManager, settings: GlobalSettings) -> int:
    definitions_path = settings.etl_settings.job_definitions_path
    if definitions_path is None:
        return 0
    submissions = load_job_definitions(definitions_path)
    for submission in submissions:
        manager.submit(submission)
    return len(submissions)


def gen_app(settings: GlobalSettings) -> FastAPI:
    logger = get_logger(level=settings.logger_settings.level)
    storage = gen_storage(settings=settings)
    manager = gen_job_manager(settings=settings, storage=storage)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        registered = register_job_definitions(manager, settings)
        if registered:
            logger.info(f"Registered {registered} ETL jobs from {settings.etl_settings.job_definitions_path}")
        yield
        await manager.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.add_middleware(CORSMiddleware, **settings.cors_settings.model_dump())
    app.include_router(gen_system_router(storage=storage, manager=manager), prefix="/api/v1/system")
    app.include_router(gen_hooks_router(storage=storage), prefix="/api/v1/hooks")
    app.include_router(gen_etl_router(manager=manager), prefix="/api/v1/etl")
    return app
