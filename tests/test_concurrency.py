import pytest
from sqlmodel import Session

from faiportal.core.exceptions import NotFoundError, StateConflictError
from faiportal.db.schema import ActorRole, Decision, DocType, Submission, SubmissionStatus
from faiportal.services.decision import DecisionRecorder
from faiportal.services.repository import SubmissionRepository
from faiportal.services.submission import SubmissionService

from conftest import APPROVED_PAYLOAD, StaticProvider, make_upload, mandatory_uploads


def _fresh(engine, submission_id):
    with Session(engine) as s:
        repo = SubmissionRepository(s)
        submission = repo.require(submission_id)
        return {
            "status": submission.status,
            "iqa_remarks": submission.iqa_remarks,
            "version": submission.version,
            "files": sorted(f.name for f in submission.files),
            "events": len(repo.history(submission_id)),
        }


class TestCompareAndUpdate:
    def test_stale_expected_status_writes_nothing(self, engine, repository, make_submission):
        submission = make_submission(status=SubmissionStatus.PENDING_REVIEW)
        repository.compare_and_update(
            submission.id,
            SubmissionStatus.PENDING_REVIEW,
            {"status": SubmissionStatus.APPROVED, "iqa_remarks": "ok", "is_new_verdict": True},
            operation="approve",
            actor_role=ActorRole.IQA,
            actor_id="E1"
        )
        before = _fresh(engine, submission.id)

        with pytest.raises(StateConflictError) as exc:
            repository.compare_and_update(
                submission.id,
                SubmissionStatus.PENDING_REVIEW,
                {"status": SubmissionStatus.REJECTED, "iqa_remarks": "late"},
                operation="reject",
                actor_role=ActorRole.IQA,
                actor_id="E2"
            )

        assert exc.value.current_status == "APPROVED"
        assert _fresh(engine, submission.id) == before

    def test_unknown_submission(self, engine, repository):
        with pytest.raises(NotFoundError):
            repository.compare_and_update(
                "SUB-404",
                SubmissionStatus.PENDING_REVIEW,
                {"status": SubmissionStatus.APPROVED},
                operation="approve",
                actor_role=ActorRole.IQA
            )

    def test_losing_resubmission_keeps_winner_files(self, engine, repository, make_submission):
        submission = make_submission(status=SubmissionStatus.REJECTED)
        winner = mandatory_uploads()
        winner[0] = make_upload(DocType.ENGINEERING_DRAWING, name="winner.pdf")

        repository.compare_and_update(
            submission.id,
            SubmissionStatus.REJECTED,
            {"status": SubmissionStatus.PENDING_AI, "ai_analysis": None},
            operation="resubmit",
            actor_role=ActorRole.SUPPLIER,
            replace_files=winner
        )
        before = _fresh(engine, submission.id)

        with pytest.raises(StateConflictError):
            repository.compare_and_update(
                submission.id,
                SubmissionStatus.REJECTED,
                {"status": SubmissionStatus.PENDING_AI},
                operation="resubmit",
                actor_role=ActorRole.SUPPLIER,
                replace_files=[make_upload(DocType.ENGINEERING_DRAWING, name="loser.pdf")]
            )

        after = _fresh(engine, submission.id)
        assert after == before
        assert "winner.pdf" in after["files"]
        assert "loser.pdf" not in after["files"]


class TestConcurrentDecisions:
    def test_second_reviewer_loses(self, engine, make_submission, reviewer):
        submission = make_submission(status=SubmissionStatus.PENDING_REVIEW, ai_analysis=APPROVED_PAYLOAD)

        with Session(engine) as first_session, Session(engine) as second_session:
            first = DecisionRecorder(first_session)
            second = DecisionRecorder(second_session)
            # Both reviewers opened the package while it was PENDING_REVIEW
            first.repository.require(submission.id)
            second.repository.require(submission.id)

            first.record_decision(reviewer, submission.id, Decision.REJECTED, "Missing cert")
            with pytest.raises(StateConflictError):
                second.record_decision(reviewer, submission.id, Decision.APPROVED, "Looks fine")

        state = _fresh(engine, submission.id)
        assert state["status"] == SubmissionStatus.REJECTED
        assert state["iqa_remarks"] == "Missing cert"
        assert state["version"] == 2
        # Creation plus the winning decision
        assert state["events"] == 2


class TestDetailReadRace:
    def test_read_survives_acknowledge_conflict(self, session, engine, make_submission, supplier,
                                                adapter_factory, monkeypatch):
        submission = make_submission(status=SubmissionStatus.REJECTED, iqa_remarks="x", is_new_verdict=True)
        service = SubmissionService(session, adapter_factory(StaticProvider()))
        acknowledge = service.repository.compare_and_update

        def racing_update(*args, **kwargs):
            # A resubmission lands between the read and the acknowledgement
            with Session(engine) as other:
                SubmissionRepository(other).compare_and_update(
                    submission.id,
                    SubmissionStatus.REJECTED,
                    {"status": SubmissionStatus.PENDING_AI, "is_new_verdict": False},
                    operation="resubmit",
                    actor_role=ActorRole.SUPPLIER
                )
            return acknowledge(*args, **kwargs)

        monkeypatch.setattr(service.repository, "compare_and_update", racing_update)

        result = service.get(supplier, submission.id)

        assert isinstance(result, Submission)
        assert result.status == SubmissionStatus.PENDING_AI
        assert result.is_new_verdict is False
