"""Service-level exceptions for the notification pipeline."""
from __future__ import annotations


class NotificationError(Exception):
    """Base exception for the notification scheduler."""


class JobNotFoundError(NotificationError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class JobConflictError(NotificationError):
    """The requested operation is not allowed in the job's current status."""

    def __init__(self, job_id: str, status: str, operation: str = ""):
        self.job_id = job_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation or 'modify'} job {job_id} in status {status}")


class EmptyBatchError(NotificationError):
    def __init__(self):
        super().__init__("At least one notification request is required")


class InvalidTransitionError(NotificationError):
    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Transition {from_status} -> {to_status} is not allowed")


class WorkerPoolFullError(NotificationError):
    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(f"Worker pool queue is full ({capacity} pending tasks)")


class WorkerPoolClosedError(NotificationError):
    def __init__(self):
        super().__init__("Worker pool is not accepting tasks")
