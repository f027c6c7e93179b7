"""
Portal-wide exception hierarchy.

Services raise these types and never ``HTTPException``. ``faiportal.main``
registers one handler per type so every route returns the same status code
for the same failure.

Usage:
    from faiportal.core.exceptions import StateConflictError, ValidationError

    raise ValidationError("Remarks are required", details={"remarks": "blank"})
    raise StateConflictError("SUB-1", "record_decision", "APPROVED")
"""
from typing import Any, Dict, List, Optional


class PortalError(Exception):
    """Base class for every error the core raises on purpose."""


class ValidationError(PortalError):
    """Input was well-formed but violated a business rule.

    Raised for an incomplete mandatory document set on creation, blank
    reviewer remarks, or an unacceptable upload. Nothing is persisted.

    Maps to HTTP 422.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.details = details or {}
        super().__init__(message)


class IncompleteSubmissionError(ValidationError):
    """Raised when mandatory document types are missing from a package."""

    def __init__(self, missing: List[str]) -> None:
        self.missing = missing
        super().__init__(
            f"Missing mandatory documents: {', '.join(missing)}",
            details={"missing": missing},
        )


class StateConflictError(PortalError):
    """The submission is not in the status the operation requires.

    Also raised when a conditional update loses a race against another
    actor. No partial mutation has been applied when this is raised.

    Maps to HTTP 409.
    """

    def __init__(self, submission_id: str, operation: str, current_status: Optional[str]) -> None:
        self.submission_id = submission_id
        self.operation = operation
        self.current_status = current_status
        super().__init__(
            f"Cannot '{operation}' submission {submission_id} (status={current_status})"
        )


class PermissionDeniedError(PortalError):
    """The acting role or organization may not trigger this operation.

    Maps to HTTP 403.
    """


class NotFoundError(PortalError):
    """Unknown submission, or one outside the actor's organization.

    Cross-organization reads deliberately look identical to missing records.

    Maps to HTTP 404.
    """

    def __init__(self, resource: str, resource_id: Optional[str] = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = resource
        if resource_id is not None:
            msg += f" id={resource_id}"
        super().__init__(msg + " not found")


class PersistenceFailure(PortalError):
    """The store was unreachable or refused the write; the operation was rolled back.

    Maps to HTTP 503.
    """


class AnalysisFailure(PortalError):
    """The analysis collaborator errored, timed out or returned an unusable verdict.

    Never surfaced to HTTP callers: the analysis adapter absorbs it and
    moves the submission to REJECTED.
    """
