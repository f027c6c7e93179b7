import secrets
import time
from datetime import timedelta
from typing import List, Optional

from fastapi import BackgroundTasks
from loguru import logger
from sqlmodel import Session

from faiportal.core.exceptions import (
    IncompleteSubmissionError, NotFoundError, PermissionDeniedError,
    StateConflictError, ValidationError
)
from faiportal.db.schema import ActorRole, Submission, SubmissionStatus, utc_now
from faiportal.models.auth import Actor
from faiportal.models.submission import (
    DashboardStats, DocumentRead, DocumentUpload, NewVerdictsRead,
    ResubmissionUpdate, SubmissionCreate, SubmissionEventRead,
    SubmissionFilter, SubmissionRead
)
from faiportal.services.analysis import AnalysisAdapter, is_content_verifiable
from faiportal.services.completeness import evaluate
from faiportal.services.repository import SubmissionRepository
from faiportal.services.resubmission import ResubmissionHandler, merge_documents
from faiportal.services.status_machine import (
    allowed_actions, check_transition, sort_by_attention
)


DASHBOARD_WINDOW = timedelta(days=30)


def generate_submission_id() -> str:
    return f"SUB-{int(time.time() * 1000)}-{secrets.token_hex(2).upper()}"


class SubmissionService:
    """
    Supplier and reviewer entry points around a submission: creation behind
    the completeness gate, scoped reads, dashboard queries and the unread
    verdict flag. Lifecycle moves after creation are delegated to
    ResubmissionHandler, DecisionRecorder and AnalysisAdapter.
    """

    def __init__(self, session: Session, adapter: AnalysisAdapter):
        self.session = session
        self.repository = SubmissionRepository(session)
        self.adapter = adapter

    # ==========================================================================
    # HELPERS
    # ==========================================================================

    def _is_supplier(self, actor: Actor) -> bool:
        return actor.role == ActorRole.SUPPLIER

    def _get_scoped(self, actor: Actor, submission_id: str) -> Submission:
        """Suppliers only ever see their own organization's packages."""
        submission = self.repository.require(submission_id)
        if self._is_supplier(actor) and submission.supplier_name != actor.organization:
            raise NotFoundError("Submission", submission_id)
        return submission

    def _schedule_analysis(self, submission_id: str, background_tasks: Optional[BackgroundTasks]) -> None:
        if background_tasks is not None:
            background_tasks.add_task(self.adapter.run, submission_id)
            return
        self.adapter.run(submission_id)
        self.session.expire_all()

    def to_read(self, submission: Submission, actor: Actor) -> SubmissionRead:
        report = evaluate(submission.files)
        return SubmissionRead(
            id=submission.id,
            supplier_name=submission.supplier_name,
            part_number=submission.part_number,
            revision=submission.revision,
            timestamp=submission.timestamp,
            status=submission.status,
            files=[
                DocumentRead(
                    id=f.id,
                    type=f.doc_type,
                    name=f.name,
                    mime_type=f.mime_type,
                    last_modified=f.last_modified,
                    is_mandatory=f.is_mandatory,
                    content_verifiable=is_content_verifiable(f.mime_type)
                )
                for f in submission.files
            ],
            iqa_remarks=submission.iqa_remarks,
            is_new_verdict=submission.is_new_verdict,
            rejection_source=submission.rejection_source,
            ai_analysis=submission.ai_analysis,
            content_unverified_types=[
                f.doc_type for f in submission.files if not is_content_verifiable(f.mime_type)
            ],
            provided_mandatory=report.provided_mandatory,
            total_mandatory=report.total_mandatory,
            allowed_actions=allowed_actions(submission.status, actor.role)
        )

    # ==========================================================================
    # WRITE OPERATIONS
    # ==========================================================================

    def create(
        self,
        actor: Actor,
        data: SubmissionCreate,
        uploads: List[DocumentUpload],
        background_tasks: Optional[BackgroundTasks] = None
    ) -> Submission:
        """
        Creates a package in PENDING_AI and schedules its analysis.
        An incomplete mandatory set persists nothing.
        """
        target = check_transition("submit", "(new)", None, actor.role)

        report = evaluate(uploads)
        if not report.is_complete:
            logger.info(
                f"Rejected incomplete package from {actor.organization}: missing {report.missing_types}")
            raise IncompleteSubmissionError(report.missing_types)

        submission = Submission(
            id=generate_submission_id(),
            supplier_name=actor.organization,
            part_number=data.part_number.strip(),
            revision=data.revision.strip(),
            timestamp=utc_now(),
            status=target,
            created_by=actor.user_id
        )
        submission = self.repository.add(
            submission, uploads, actor_role=actor.role, actor_id=actor.user_id)

        self._schedule_analysis(submission.id, background_tasks)
        return self.repository.require(submission.id)

    def resubmit(
        self,
        actor: Actor,
        submission_id: str,
        data: ResubmissionUpdate,
        uploads: List[DocumentUpload],
        background_tasks: Optional[BackgroundTasks] = None
    ) -> Submission:
        """Keeps the current documents, swaps in the uploads by type and resubmits."""
        check_transition("resubmit", submission_id, SubmissionStatus.REJECTED, actor.role)
        handler = ResubmissionHandler(self.session, self.adapter)
        current = handler.get_owned(actor, submission_id)

        if not uploads and not data.remove:
            raise ValidationError("No changes to resubmit: upload a revised document or remove one.")

        new_files = merge_documents(current, uploads, data.remove)
        return handler.resubmit(actor, submission_id, new_files, background_tasks)

    def acknowledge_verdict(self, actor: Actor, submission_id: str) -> Submission:
        """Clears the unread-verdict flag. Idempotent."""
        if not self._is_supplier(actor):
            raise PermissionDeniedError("Only the submitting supplier can acknowledge a verdict.")

        submission = self._get_scoped(actor, submission_id)
        if not submission.is_new_verdict:
            return submission

        return self.repository.compare_and_update(
            submission.id,
            submission.status,
            {"is_new_verdict": False},
            operation="acknowledge",
            actor_role=actor.role,
            actor_id=actor.user_id,
            audit=False
        )

    # ==========================================================================
    # READ OPERATIONS
    # ==========================================================================

    def get(self, actor: Actor, submission_id: str) -> Submission:
        """Detail view. A supplier opening its own package acknowledges the verdict."""
        submission = self._get_scoped(actor, submission_id)
        if self._is_supplier(actor) and submission.is_new_verdict:
            try:
                submission = self.acknowledge_verdict(actor, submission_id)
            except StateConflictError:
                # The status moved under us; a read still returns the current row
                self.session.expire_all()
                submission = self.repository.require(submission_id)
        return submission

    def list_submissions(self, actor: Actor, filters: SubmissionFilter) -> List[Submission]:
        if self._is_supplier(actor):
            results = self.repository.search(
                filters, supplier_scope=actor.organization, match_supplier_name=False)
        else:
            results = self.repository.search(filters)
        return sort_by_attention(results)

    def needs_attention(self, actor: Actor) -> List[Submission]:
        """The reviewer's queue: everything waiting for a human decision."""
        if actor.role != ActorRole.IQA:
            raise PermissionDeniedError("The review queue is only available to IQA.")
        return sort_by_attention(self.repository.list_by_status(SubmissionStatus.PENDING_REVIEW))

    def has_new_verdicts(self, actor: Actor) -> NewVerdictsRead:
        if not self._is_supplier(actor):
            return NewVerdictsRead(has_new_verdicts=False, submission_ids=[])
        unread = [s for s in self.repository.list_by_supplier(actor.organization) if s.is_new_verdict]
        unread = sort_by_attention(unread)
        return NewVerdictsRead(
            has_new_verdicts=bool(unread),
            submission_ids=[s.id for s in unread]
        )

    def dashboard_stats(self, actor: Actor) -> DashboardStats:
        """30-day totals plus the all-time review backlog, scoped for suppliers."""
        since = utc_now() - DASHBOARD_WINDOW
        if self._is_supplier(actor):
            submissions = self.repository.list_by_supplier(actor.organization)
            recent = [s for s in submissions if s.timestamp >= since]
            return DashboardStats(
                total=len(recent),
                approved=sum(1 for s in recent if s.status == SubmissionStatus.APPROVED),
                rejected=sum(1 for s in recent if s.status == SubmissionStatus.REJECTED),
                pending_review=sum(1 for s in submissions if s.status == SubmissionStatus.PENDING_REVIEW)
            )

        return DashboardStats(
            total=self.repository.count(since=since),
            approved=self.repository.count(SubmissionStatus.APPROVED, since=since),
            rejected=self.repository.count(SubmissionStatus.REJECTED, since=since),
            pending_review=self.repository.count(SubmissionStatus.PENDING_REVIEW)
        )

    def supplier_names(self, actor: Actor) -> List[str]:
        if self._is_supplier(actor):
            return [actor.organization]
        return self.repository.supplier_names()

    def history(self, actor: Actor, submission_id: str) -> List[SubmissionEventRead]:
        submission = self._get_scoped(actor, submission_id)
        return [
            SubmissionEventRead(
                from_status=e.from_status,
                to_status=e.to_status,
                actor_role=e.actor_role,
                actor_id=e.actor_id,
                note=e.note,
                occurred_at=e.occurred_at
            )
            for e in self.repository.history(submission.id)
        ]
