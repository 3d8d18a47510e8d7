"""
Workflow error taxonomy and its HTTP mapping.

Domain code raises the WorkflowError subclasses below; only the API layer
turns them into HTTPExceptions (via http_error_for / BusinessError).

Every error carries the occurrence, step and patient it concerns so the
nurse station UI can tell staff exactly what was not applied.

An inspection block is NOT an error: it is a recorded dispensing outcome.
"""
from typing import Optional

from fastapi import HTTPException, status
import logging

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base class for every failure surfaced by the medication workflow."""

    kind = "workflow_error"

    def __init__(
        self,
        message: str,
        record_id: Optional[int] = None,
        step: Optional[str] = None,
        patient_id: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.record_id = record_id
        self.step = step
        self.patient_id = patient_id

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": self.message,
            "record_id": self.record_id,
            "step": self.step,
            "patient_id": self.patient_id,
        }


class PreconditionFailed(WorkflowError):
    """Step attempted out of order, or the persisted status no longer matches
    what the caller expected (another staff member got there first)."""

    kind = "precondition_failed"


class OccurrenceNotFound(WorkflowError):
    kind = "occurrence_not_found"


class WorkflowValidationError(WorkflowError):
    """Bad input, rejected before any store call."""

    kind = "validation_error"


class StoreError(WorkflowError):
    """Database unreachable, timed out, or rejected the write.

    The operation is considered not applied; the same logical operation
    may be retried by the user.
    """

    kind = "store_error"


class BusinessError:
    """HTTP exceptions with safe (non-leaky) messages."""

    @staticmethod
    def not_found(resource: str = "Resource", reason: str = "") -> HTTPException:
        if reason:
            logger.warning(f"Not found: {resource} - {reason}")
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )

    @staticmethod
    def bad_request(detail) -> HTTPException:
        """400 for input validation errors. Details are safe to return."""
        logger.info(f"Bad request: {detail}")
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )

    @staticmethod
    def conflict(detail) -> HTTPException:
        """409 for state conflicts (wrong step order, concurrent update, duplicates)."""
        logger.info(f"Conflict: {detail}")
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )

    @staticmethod
    def server_error(original_error: Exception = None) -> HTTPException:
        """
        Generic 500 - logs actual error internally, hides from user.
        """
        if original_error:
            logger.error(
                f"Internal server error: {type(original_error).__name__}: {str(original_error)}",
                exc_info=True
            )
        else:
            logger.error("Internal server error occurred", exc_info=True)

        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred. Please try again later.",
        )

    @staticmethod
    def store_unavailable(error: "StoreError") -> HTTPException:
        """503 - store error; nothing was applied and the user may retry."""
        logger.error(f"Store error: {error.message}")
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error.to_dict(),
        )


def http_error_for(exc: WorkflowError) -> HTTPException:
    """Map a domain error onto the HTTP status the UI expects."""
    if isinstance(exc, OccurrenceNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_dict())
    if isinstance(exc, PreconditionFailed):
        return BusinessError.conflict(exc.to_dict())
    if isinstance(exc, WorkflowValidationError):
        return BusinessError.bad_request(exc.to_dict())
    if isinstance(exc, StoreError):
        return BusinessError.store_unavailable(exc)
    return BusinessError.server_error(exc)
