"""
Error taxonomy shared by the services and the HTTP layer.
"""
from typing import Optional


class ExamVariantsError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ExamVariantsError):
    """An uploaded table failed one of the ingestion stages.

    ``stage`` names the failing stage and ``code`` the specific failure, so
    callers can attribute the error without parsing the message.
    """

    def __init__(self, message: str, stage: str, code: str):
        super().__init__(message)
        self.stage = stage
        self.code = code


class PreconditionError(ExamVariantsError):
    """Input rejected before any side effect was attempted."""


class PersistenceError(ExamVariantsError):
    """A write transaction failed and was rolled back."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class NotFoundError(ExamVariantsError):
    """A referenced exam, generation or variant does not exist."""
