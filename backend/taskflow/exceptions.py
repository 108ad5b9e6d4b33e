"""Domain exceptions.

Services raise these; the API layer maps them onto HTTP status codes and
returns the message verbatim as the response detail.
"""


class TaskflowError(Exception):
    """Base exception for domain errors."""

    status_code = 500

    def __init__(self, message: str, code: str = "TASKFLOW_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(TaskflowError):
    """Input failed a shape or range check. Raised before any write."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message=message, code="VALIDATION_ERROR")


class PermissionDeniedError(TaskflowError):
    """Actor lacks the role or relationship required for the operation."""

    status_code = 403

    def __init__(self, message: str):
        super().__init__(message=message, code="PERMISSION_DENIED")


class NotFoundError(TaskflowError):
    """A record that must exist mid-operation is missing."""

    status_code = 404

    def __init__(self, message: str):
        super().__init__(message=message, code="NOT_FOUND")


class UpstreamError(TaskflowError):
    """A primary-path database or storage call failed.

    The underlying message is carried unmodified.
    """

    status_code = 502

    def __init__(self, message: str, service: str = "database"):
        self.service = service
        super().__init__(message=message, code="UPSTREAM_ERROR")
