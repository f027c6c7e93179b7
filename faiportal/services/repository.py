from datetime import datetime, time
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from sqlalchemy import delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, or_, select

from faiportal.core.audit import record_transition
from faiportal.core.exceptions import NotFoundError, PersistenceFailure, StateConflictError
from faiportal.db.schema import (
    ActorRole, Submission, SubmissionDocument, SubmissionEvent, SubmissionStatus, utc_now
)
from faiportal.models.submission import DocumentUpload, SubmissionFilter


def to_document_row(upload: DocumentUpload, submission_id: str) -> SubmissionDocument:
    return SubmissionDocument(
        id=upload.id,
        submission_id=submission_id,
        doc_type=upload.type,
        name=upload.name,
        mime_type=upload.mime_type,
        last_modified=upload.last_modified,
        is_mandatory=upload.is_mandatory,
        content=upload.content
    )


def to_upload(document: SubmissionDocument) -> DocumentUpload:
    """Turns a stored document back into an upload (carry-over on resubmission)."""
    return DocumentUpload(
        id=document.id,
        type=document.doc_type,
        name=document.name,
        mime_type=document.mime_type,
        last_modified=document.last_modified,
        is_mandatory=document.is_mandatory,
        content=document.content
    )


class SubmissionRepository:
    """
    Keyed store for submissions.

    Every lifecycle mutation goes through `compare_and_update`, a single
    conditional UPDATE on (id, expected status). The status check and the
    write are one statement, so two actors can never both win a transition.
    """

    def __init__(self, session: Session):
        self.session = session

    # ==========================================================================
    # READS
    # ==========================================================================

    def get(self, submission_id: str) -> Optional[Submission]:
        return self.session.get(Submission, submission_id)

    def require(self, submission_id: str) -> Submission:
        submission = self.get(submission_id)
        if not submission:
            raise NotFoundError("Submission", submission_id)
        return submission

    def list_by_supplier(self, supplier_name: str) -> List[Submission]:
        statement = select(Submission).where(
            Submission.supplier_name == supplier_name)
        return list(self.session.exec(statement).all())

    def list_by_status(self, status: SubmissionStatus) -> List[Submission]:
        statement = select(Submission).where(Submission.status == status)
        return list(self.session.exec(statement).all())

    def search(
        self,
        filters: SubmissionFilter,
        supplier_scope: Optional[str] = None,
        match_supplier_name: bool = True
    ) -> List[Submission]:
        """
        Filtered listing. `supplier_scope` pins results to one organization
        regardless of the filter's `supplier` field.
        """
        statement = select(Submission)

        if supplier_scope is not None:
            statement = statement.where(Submission.supplier_name == supplier_scope)
        elif filters.supplier:
            statement = statement.where(Submission.supplier_name == filters.supplier)

        if filters.status:
            statement = statement.where(Submission.status == filters.status)

        # An inverted range or one ending in the future is ignored entirely
        today = utc_now().date()
        range_invalid = (
            (filters.start_date and filters.end_date and filters.start_date > filters.end_date)
            or (filters.end_date and filters.end_date > today)
        )
        if not range_invalid:
            if filters.start_date:
                statement = statement.where(
                    Submission.timestamp >= datetime.combine(filters.start_date, time.min))
            if filters.end_date:
                statement = statement.where(
                    Submission.timestamp <= datetime.combine(filters.end_date, time.max))

        if filters.q and filters.q.strip():
            pattern = f"%{filters.q.strip().lower()}%"
            clauses = [
                func.lower(col(Submission.part_number)).like(pattern),
                func.lower(col(Submission.id)).like(pattern),
            ]
            if match_supplier_name:
                clauses.append(func.lower(col(Submission.supplier_name)).like(pattern))
            statement = statement.where(or_(*clauses))

        return list(self.session.exec(statement).all())

    def supplier_names(self) -> List[str]:
        statement = select(Submission.supplier_name).distinct().order_by(Submission.supplier_name)
        return list(self.session.exec(statement).all())

    def count(self, status: Optional[SubmissionStatus] = None, since: Optional[datetime] = None) -> int:
        statement = select(func.count(Submission.id))
        if status:
            statement = statement.where(Submission.status == status)
        if since:
            statement = statement.where(Submission.timestamp >= since)
        return self.session.exec(statement).one()

    def history(self, submission_id: str) -> List[SubmissionEvent]:
        statement = (
            select(SubmissionEvent)
            .where(SubmissionEvent.submission_id == submission_id)
            .order_by(SubmissionEvent.occurred_at)
        )
        return list(self.session.exec(statement).all())

    # ==========================================================================
    # WRITES
    # ==========================================================================

    def add(
        self,
        submission: Submission,
        documents: Iterable[DocumentUpload],
        actor_role: ActorRole,
        actor_id: Optional[str] = None
    ) -> Submission:
        """Persists a new submission, its documents and the creation event atomically."""
        try:
            self.session.add(submission)
            for upload in documents:
                self.session.add(to_document_row(upload, submission.id))
            record_transition(
                self.session,
                submission_id=submission.id,
                from_status=None,
                to_status=submission.status,
                actor_role=actor_role,
                actor_id=actor_id
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Could not persist submission {submission.id}: {e}")
            raise PersistenceFailure(f"Could not persist submission {submission.id}.") from e

        self.session.refresh(submission)
        logger.info(f"Submission {submission.id} created for {submission.supplier_name}")
        return submission

    def replace_documents(self, submission_id: str, documents: Iterable[DocumentUpload]) -> None:
        """Swaps the whole document set. Does NOT commit; runs inside the caller's transaction."""
        self.session.execute(
            delete(SubmissionDocument).where(
                col(SubmissionDocument.submission_id) == submission_id)
        )
        for upload in documents:
            self.session.add(to_document_row(upload, submission_id))

    def compare_and_update(
        self,
        submission_id: str,
        expected_status: SubmissionStatus,
        changes: Dict[str, Any],
        *,
        operation: str,
        actor_role: ActorRole,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
        replace_files: Optional[List[DocumentUpload]] = None,
        audit: bool = True
    ) -> Submission:
        """
        Applies `changes` only if the submission is still in `expected_status`.

        Raises:
            NotFoundError: unknown id.
            StateConflictError: status moved (or never matched); nothing written.
            PersistenceFailure: the store failed; the transaction was rolled back.
        """
        statement = (
            update(Submission)
            .where(col(Submission.id) == submission_id)
            .where(col(Submission.status) == expected_status)
            .values(
                **changes,
                version=col(Submission.version) + 1,
                updated_at=utc_now()
            )
            .execution_options(synchronize_session=False)
        )

        try:
            result = self.session.execute(statement)

            if result.rowcount == 0:
                self.session.rollback()
                current = self.get(submission_id)
                if current is None:
                    raise NotFoundError("Submission", submission_id)
                raise StateConflictError(submission_id, operation, current.status.value)

            if replace_files is not None:
                self.replace_documents(submission_id, replace_files)

            if audit:
                record_transition(
                    self.session,
                    submission_id=submission_id,
                    from_status=expected_status,
                    to_status=changes.get("status", expected_status),
                    actor_role=actor_role,
                    actor_id=actor_id,
                    note=note
                )
            self.session.commit()

        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"'{operation}' on submission {submission_id} failed in the store: {e}")
            raise PersistenceFailure(f"Could not {operation} submission {submission_id}.") from e

        # The UPDATE bypassed the identity map; reload from the database
        self.session.expire_all()
        submission = self.require(submission_id)
        logger.info(
            f"Submission {submission_id}: {expected_status.value} -> {submission.status.value} ({operation})")
        return submission
