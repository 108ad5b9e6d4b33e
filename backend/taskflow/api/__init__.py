"""API router package."""

from fastapi import APIRouter

from taskflow.api.v1 import (
    health,
    notifications,
    projects,
    reports,
    schedule,
    tasks,
    users,
)

router = APIRouter()

router.include_router(health.router, tags=["Health"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(schedule.router, prefix="/schedule", tags=["Schedule"])
router.include_router(reports.router, prefix="/reports", tags=["Reports"])
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(projects.router, prefix="/projects", tags=["Projects"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
