from loguru import logger
from sqlmodel import Session

from faiportal.core.exceptions import ValidationError
from faiportal.db.schema import Decision, RejectionSource, Submission
from faiportal.models.auth import Actor
from faiportal.services.repository import SubmissionRepository
from faiportal.services.status_machine import DECISION_ACTIONS, TRANSITIONS, check_transition


class DecisionRecorder:
    """
    Records the IQA reviewer's final verdict on a PENDING_REVIEW submission.

    The remarks are the durable audit trail of the decision, so blank
    remarks are refused here and not only in the reviewing UI.
    """

    def __init__(self, session: Session):
        self.session = session
        self.repository = SubmissionRepository(session)

    def record_decision(
        self,
        actor: Actor,
        submission_id: str,
        decision: Decision,
        remarks: str
    ) -> Submission:
        """
        Raises:
            PermissionDeniedError: actor is not IQA.
            ValidationError: remarks blank or decision outside APPROVED/REJECTED.
            NotFoundError: unknown submission.
            StateConflictError: submission not in PENDING_REVIEW (incl. a repeated call).
        """
        try:
            action = DECISION_ACTIONS[Decision(decision)]
        except ValueError:
            raise ValidationError(
                f"Unknown decision '{decision}'.",
                details={"decision": "must be APPROVED or REJECTED"}
            )

        # Role first: a supplier learns nothing about the submission
        check_transition(action, submission_id, TRANSITIONS[action]["from"][0], actor.role)

        if not remarks or not remarks.strip():
            raise ValidationError(
                "Remarks are required to record a decision.",
                details={"remarks": "blank"}
            )

        submission = self.repository.require(submission_id)
        target = check_transition(action, submission.id, submission.status, actor.role)

        changes = {
            "status": target,
            "iqa_remarks": remarks,
            "is_new_verdict": True,
        }
        if target == TRANSITIONS["reject"]["to"]:
            changes["rejection_source"] = RejectionSource.REVIEWER

        updated = self.repository.compare_and_update(
            submission.id,
            submission.status,
            changes,
            operation=action,
            actor_role=actor.role,
            actor_id=actor.user_id,
            note=remarks.strip()[:500]
        )
        logger.info(f"IQA {actor.user_id} recorded {target.value} on {submission.id}")
        return updated
