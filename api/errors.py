"""
Job store errors.

Raised by api.database operations that reject an illegal lifecycle
transition. The HTTP layer maps them to 404 / 409 responses.
"""


class JobStoreError(Exception):
    """Base class for job store rejections."""


class JobNotFoundError(JobStoreError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobStateError(JobStoreError):
    """The job exists but its current status forbids the operation."""

    def __init__(self, job_id: str, status: str, message: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"{message} (job {job_id}, status: {status})")


class PostJobValidationError(ValueError):
    """Destination post job payload failed validation."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")
