"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from task_dispatch_service.config import get_settings
from task_dispatch_service.core.exceptions import register_exception_handlers
from task_dispatch_service.core.lifespan import lifespan
from task_dispatch_service.core.middleware import RequestValidationMiddleware
from task_dispatch_service.routers import cron, health, tasks, work, workers

_ROUTERS = (
    (health.router, "Operations"),
    (workers.router, "Workers"),
    (work.router, "Work"),
    (tasks.router, "Tasks"),
    (cron.router, "Cron"),
)


def create_app() -> FastAPI:
    """
    Build the dispatch service app from the loaded settings.

    Components are created by the lifespan, not here, so the factory can
    run before the database exists.
    """
    settings = get_settings()

    app = FastAPI(
        title="Task Dispatch Service",
        description="Task queue, worker dispatch and settlement for an AI worker marketplace",
        version=settings.service.version,
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    for router, tag in _ROUTERS:
        app.include_router(router, tags=[tag])

    app.add_middleware(RequestValidationMiddleware, max_body_size=settings.request.max_body_size)
    return app
