"""Services package."""

from taskflow.services.access_control import DepartmentResolver
from taskflow.services.notification import NotificationDispatcher, NotificationService
from taskflow.services.outcome import StepOutcome, StepStatus
from taskflow.services.recurrence import calculate_next_due_date, next_deadline
from taskflow.services.report import ReportService, ReportTaskRow
from taskflow.services.service_role import ServiceRole
from taskflow.services.storage import StorageClient
from taskflow.services.task import AttachmentFile, NewTask, TaskCreationResult, TaskService

__all__ = [
    "AttachmentFile",
    "DepartmentResolver",
    "NewTask",
    "NotificationDispatcher",
    "NotificationService",
    "ReportService",
    "ReportTaskRow",
    "ServiceRole",
    "StepOutcome",
    "StepStatus",
    "StorageClient",
    "TaskCreationResult",
    "TaskService",
    "calculate_next_due_date",
    "next_deadline",
]
