from typing import Any, List, Optional


class BaseError(Exception):
    pass


class ValidationError(BaseError):
    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        self.errors = errors or []
        super(ValidationError, self).__init__(message)


class NotFoundError(BaseError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super(NotFoundError, self).__init__(f"ETL job not found for job_id={job_id}")


class AlreadyRunningError(BaseError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super(AlreadyRunningError, self).__init__(f"Job {job_id} is already running")


class UnsupportedOperationError(BaseError):
    pass


class ExecutionError(BaseError):
    """
    Raised when the extract, transform or load phase of a job fails.

    The original fault, if any, is kept in ``cause``.
    """

    def __init__(self, message: str, phase: Optional[str] = None, cause: Optional[Exception] = None):
        self.phase = phase
        self.cause = cause
        super(ExecutionError, self).__init__(message)


class LoadError(ExecutionError):
    def __init__(self, message: str, delivered: int = 0, cause: Optional[Exception] = None):
        self.delivered = delivered
        super(LoadError, self).__init__(message, phase="load", cause=cause)
