from typing import Optional

from loguru import logger
from sqlmodel import Session

from faiportal.db.schema import ActorRole, SubmissionEvent, SubmissionStatus, utc_now


def record_transition(
    session: Session,
    submission_id: str,
    from_status: Optional[SubmissionStatus],
    to_status: SubmissionStatus,
    actor_role: ActorRole,
    actor_id: Optional[str] = None,
    note: Optional[str] = None
) -> SubmissionEvent:
    """
    Adds an audit row to the caller's session.
    Does NOT commit: the row lands in the same transaction as the status
    change it describes, so both are applied or neither is.
    """
    event = SubmissionEvent(
        submission_id=submission_id,
        from_status=from_status,
        to_status=to_status,
        actor_role=actor_role,
        actor_id=actor_id,
        note=note,
        occurred_at=utc_now()
    )
    session.add(event)
    logger.debug(
        f"Audit {submission_id}: {from_status.value if from_status else '-'} -> "
        f"{to_status.value} by {actor_role.value}{f' ({actor_id})' if actor_id else ''}"
    )
    return event
