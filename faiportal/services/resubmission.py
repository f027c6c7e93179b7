from collections import Counter
from typing import Dict, List, Optional

from fastapi import BackgroundTasks
from loguru import logger
from sqlmodel import Session

from faiportal.core.exceptions import IncompleteSubmissionError, NotFoundError, ValidationError
from faiportal.db.schema import DocType, Submission
from faiportal.models.auth import Actor
from faiportal.models.submission import DocumentUpload
from faiportal.services.analysis import AnalysisAdapter
from faiportal.services.completeness import evaluate
from faiportal.services.repository import SubmissionRepository, to_upload
from faiportal.services.status_machine import TRANSITIONS, check_transition


def merge_documents(
    current: Submission,
    uploads: List[DocumentUpload],
    remove: Optional[List[DocType]] = None
) -> List[DocumentUpload]:
    """
    Builds the replacement set for a resubmission. Every current document is
    kept unless its type is listed in `remove`; a new upload takes the place
    of the current document of the same type.
    """
    dropped = set(remove or [])
    merged: Dict[DocType, DocumentUpload] = {}
    for document in current.files:
        if document.doc_type not in dropped:
            merged[document.doc_type] = to_upload(document)
    for upload in uploads:
        merged[upload.type] = upload
    return list(merged.values())


class ResubmissionHandler:
    """
    Sends a REJECTED submission back through automated analysis with a new
    document set. The caller owns merging; this handler replaces files
    wholesale and does not diff against the previous set.

    The reviewer's remarks and the rejection source are left in place: they
    describe the verdict that prompted the revision.
    """

    def __init__(self, session: Session, adapter: AnalysisAdapter):
        self.session = session
        self.repository = SubmissionRepository(session)
        self.adapter = adapter

    def get_owned(self, actor: Actor, submission_id: str) -> Submission:
        submission = self.repository.require(submission_id)
        if submission.supplier_name != actor.organization:
            # Other organizations' packages look the same as missing ones
            raise NotFoundError("Submission", submission_id)
        return submission

    def resubmit(
        self,
        actor: Actor,
        submission_id: str,
        new_files: List[DocumentUpload],
        background_tasks: Optional[BackgroundTasks] = None
    ) -> Submission:
        """
        REJECTED -> PENDING_AI, then schedules a fresh analysis.

        With `background_tasks` the analysis runs after the response is sent;
        without, it runs inline before returning.

        Raises:
            PermissionDeniedError: actor is not a SUPPLIER.
            NotFoundError: unknown submission or another organization's.
            ValidationError: empty set or two documents of one type.
            IncompleteSubmissionError: a mandatory type is missing from the new set.
            StateConflictError: submission not REJECTED.
        """
        check_transition("resubmit", submission_id, TRANSITIONS["resubmit"]["from"][0], actor.role)
        submission = self.get_owned(actor, submission_id)

        if not new_files:
            raise ValidationError("A resubmission needs at least one document.")

        duplicates = [t.value for t, n in Counter(f.type for f in new_files).items() if n > 1]
        if duplicates:
            raise ValidationError(
                f"Only one document per type is allowed: {', '.join(duplicates)}",
                details={"duplicates": duplicates}
            )

        target = check_transition("resubmit", submission.id, submission.status, actor.role)

        report = evaluate(new_files)
        if not report.is_complete:
            logger.info(f"Refused incomplete resubmission of {submission.id}: missing {report.missing_types}")
            raise IncompleteSubmissionError(report.missing_types)

        updated = self.repository.compare_and_update(
            submission.id,
            submission.status,
            {
                "status": target,
                "ai_analysis": None,
                "is_new_verdict": False,
            },
            operation="resubmit",
            actor_role=actor.role,
            actor_id=actor.user_id,
            note=f"{len(new_files)} document(s)",
            replace_files=new_files
        )
        logger.info(f"Supplier {actor.user_id} resubmitted {submission.id} with {len(new_files)} document(s)")

        if background_tasks is not None:
            background_tasks.add_task(self.adapter.run, updated.id)
            return updated

        self.adapter.run(updated.id)
        # The adapter committed through its own session
        self.session.expire_all()
        return self.repository.require(updated.id)
