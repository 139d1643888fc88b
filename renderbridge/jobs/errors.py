"""Errors raised by the render job subsystem."""


class RenderJobError(Exception):
    """Base class for render job failures."""


class InvalidArgument(RenderJobError):
    """Raised when a submission is malformed or its input image is missing."""


class JobNotFound(RenderJobError):
    """Raised when no record exists for a job id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobAlreadyExists(RenderJobError):
    """Raised when creating a record whose job id is already taken."""

    def __init__(self, job_id: str):
        super().__init__(f"Job already exists: {job_id}")
        self.job_id = job_id


class CorruptRecord(RenderJobError):
    """Raised when a persisted record cannot be parsed."""

    def __init__(self, job_id: str, reason: str):
        super().__init__(f"Job record {job_id} is unreadable: {reason}")
        self.job_id = job_id


class InvalidTransition(RenderJobError):
    """Raised on any attempt to move a record backwards or out of a terminal state."""


class AlreadyTerminal(RenderJobError):
    """Raised when cancelling a job that has already finished."""


class NotReady(RenderJobError):
    """Raised when asking for the result of a job that has not completed."""

    def __init__(self, job_id: str, status: str):
        super().__init__(f"Job not completed. Current status: {status}")
        self.job_id = job_id
        self.status = status


class BackendFailure(RenderJobError):
    """Raised by a backend invoker when the backend could not be run to completion."""
