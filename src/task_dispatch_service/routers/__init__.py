"""API routers."""

from task_dispatch_service.routers import cron, health, tasks, work, workers

__all__ = ["cron", "health", "tasks", "work", "workers"]
