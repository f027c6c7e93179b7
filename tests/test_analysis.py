import json
from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlmodel import Session

from faiportal.core.exceptions import AnalysisFailure
from faiportal.db.schema import DocType, RejectionSource, Submission, SubmissionStatus, utc_now
from faiportal.services.analysis import (
    SYSTEM_ERROR_REMARK, AnalysisRequest, ChecklistAnalysisProvider,
    GeminiAnalysisProvider, build_analysis_request, parse_analysis_result
)
from faiportal.services.requirements import mandatory_types
from faiportal.services.resubmission import ResubmissionHandler

from conftest import (
    APPROVED_PAYLOAD, FailingProvider, SlowProvider, StaticProvider,
    make_upload, mandatory_uploads
)


def _reload(engine, submission_id):
    with Session(engine) as s:
        submission = s.get(Submission, submission_id)
        s.expunge(submission)
        return submission


class TestAnalysisRequest:
    def test_mime_gating(self):
        docs = [
            make_upload(DocType.ENGINEERING_DRAWING, mime_type="application/pdf"),
            make_upload(DocType.PROCESS_MANAGEMENT_PLAN, name="pmp.odt",
                        mime_type="application/vnd.oasis.opendocument.text"),
            make_upload(DocType.FAI_REPORT_SUPPLIER, name="fai.PNG", mime_type="IMAGE/PNG"),
            make_upload(DocType.BOM, name="bom.xlsx",
                        mime_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
        ]
        request = AnalysisRequest("SUB-1", "ABC", "MOD-1", "01", docs)

        assert [d.type for d in request.inspectable] == [
            DocType.ENGINEERING_DRAWING, DocType.FAI_REPORT_SUPPLIER
        ]
        assert [d.type for d in request.metadata_only] == [
            DocType.PROCESS_MANAGEMENT_PLAN, DocType.BOM
        ]

    def test_inventory_lists_every_document(self):
        docs = [
            make_upload(DocType.ENGINEERING_DRAWING),
            make_upload(DocType.BOM, name="bom.csv", mime_type="text/csv"),
        ]
        inventory = AnalysisRequest("SUB-1", "ABC", "MOD-1", "01", docs).inventory()
        lines = inventory.splitlines()
        assert len(lines) == 2
        assert "[Engineering Drawing]" in lines[0] and "[READABLE CONTENT ATTACHED]" in lines[0]
        assert "[Bill of Materials]" in lines[1] and "METADATA ONLY" in lines[1]
        assert "text/csv" in lines[1]

    def test_document_without_bytes_is_metadata_only(self):
        request = AnalysisRequest("SUB-1", "ABC", "MOD-1", "01",
                                  [make_upload(DocType.ENGINEERING_DRAWING, content=None)])
        assert request.inspectable == []

    def test_built_from_stored_submission(self, make_submission):
        submission = make_submission()
        request = build_analysis_request(submission)
        assert request.submission_id == submission.id
        assert {d.type for d in request.documents} == set(mandatory_types())


class TestParseAnalysisResult:
    def _request(self, docs=None):
        return AnalysisRequest("SUB-1", "ABC", "MOD-1", "01",
                               mandatory_uploads() if docs is None else docs)

    def test_valid_payload(self):
        result = parse_analysis_result(APPROVED_PAYLOAD, self._request())
        assert result.overallVerdict.value == "APPROVED"
        assert len(result.details) == 2

    @pytest.mark.parametrize("payload", [
        None,
        "APPROVED",
        {"overallVerdict": "MAYBE", "summary": "x", "details": []},
        {"overallVerdict": "APPROVED", "details": []},
        {"overallVerdict": "APPROVED", "summary": "x",
         "details": [{"docType": "BOM", "result": "GREAT", "notes": ""}]},
        {"overallVerdict": "APPROVED", "summary": "x", "details": [], "confidence": 0.9},
    ])
    def test_malformed_payloads_fail(self, payload):
        with pytest.raises(AnalysisFailure):
            parse_analysis_result(payload, self._request())

    def test_approval_with_missing_mandatory_violates_policy(self):
        docs = [make_upload(DocType.ENGINEERING_DRAWING)]
        with pytest.raises(AnalysisFailure) as exc:
            parse_analysis_result(APPROVED_PAYLOAD, self._request(docs))
        assert "mandatory" in str(exc.value)

    def test_rejection_with_missing_mandatory_is_fine(self):
        docs = [make_upload(DocType.ENGINEERING_DRAWING)]
        payload = {"overallVerdict": "REJECTED", "summary": "missing docs", "details": []}
        assert parse_analysis_result(payload, self._request(docs)).overallVerdict.value == "REJECTED"


class TestChecklistProvider:
    def test_complete_package_approved(self):
        docs = mandatory_uploads()
        docs[1] = make_upload(DocType.PROCESS_MANAGEMENT_PLAN, name="pmp.odt",
                              mime_type="application/vnd.oasis.opendocument.text")
        payload = ChecklistAnalysisProvider().analyze(AnalysisRequest("SUB-1", "ABC", "MOD-1", "01", docs))

        assert payload["overallVerdict"] == "APPROVED"
        pmp = next(d for d in payload["details"] if d["docType"] == "Process Management Plan")
        assert pmp["result"] == "PASS"
        assert "not verified" in pmp["notes"]

    def test_incomplete_package_rejected(self):
        docs = [make_upload(DocType.ENGINEERING_DRAWING)]
        payload = ChecklistAnalysisProvider().analyze(AnalysisRequest("SUB-1", "ABC", "MOD-1", "01", docs))

        assert payload["overallVerdict"] == "REJECTED"
        failed = [d["docType"] for d in payload["details"] if d["result"] == "FAIL"]
        assert len(failed) == 5
        assert "Engineering Drawing" not in failed


class FakeModels:
    def __init__(self, text):
        self.text = text
        self.calls = []

    def generate_content(self, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        return SimpleNamespace(text=self.text)


class TestGeminiProvider:
    def _provider(self, text):
        provider = GeminiAnalysisProvider(api_key="test-key", model="gemini-test")
        models = FakeModels(text)
        provider._client = SimpleNamespace(models=models)
        return provider, models

    def test_attaches_only_supported_content(self):
        provider, models = self._provider(json.dumps(APPROVED_PAYLOAD))
        docs = [
            make_upload(DocType.ENGINEERING_DRAWING, content=b"pdf-bytes"),
            make_upload(DocType.BOM, name="bom.xlsx", mime_type="application/vnd.ms-excel", content=b"xls"),
        ]
        payload = provider.analyze(AnalysisRequest("SUB-1", "ABC", "MOD-1", "01", docs))

        assert payload == APPROVED_PAYLOAD
        call = models.calls[0]
        assert call["model"] == "gemini-test"
        parts = call["contents"][0].parts
        assert "MOD-1" in parts[0].text and "bom.xlsx" in parts[0].text
        inline = [p.inline_data for p in parts[1:]]
        assert len(inline) == 1
        assert inline[0].mime_type == "application/pdf"
        assert inline[0].data == b"pdf-bytes"
        assert call["config"].response_mime_type == "application/json"
        assert '"Engineering Drawing"' in call["config"].system_instruction

    def test_empty_response_raises(self):
        provider, _ = self._provider("")
        with pytest.raises(ValueError):
            provider.analyze(AnalysisRequest("SUB-1", "ABC", "MOD-1", "01", mandatory_uploads()))


class TestAnalysisAdapter:
    def test_success_stores_payload_verbatim(self, engine, make_submission, adapter_factory):
        submission = make_submission()
        provider = StaticProvider()

        result = adapter_factory(provider).run(submission.id)

        assert result.status == SubmissionStatus.PENDING_REVIEW
        stored = _reload(engine, submission.id)
        assert stored.status == SubmissionStatus.PENDING_REVIEW
        assert stored.ai_analysis == APPROVED_PAYLOAD
        assert stored.iqa_remarks is None
        assert len(provider.requests) == 1

    def test_rejected_verdict_still_goes_to_review(self, engine, make_submission, adapter_factory):
        payload = {"overallVerdict": "REJECTED", "summary": "bad drawing", "details": []}
        submission = make_submission()

        adapter_factory(StaticProvider(payload)).run(submission.id)

        stored = _reload(engine, submission.id)
        assert stored.status == SubmissionStatus.PENDING_REVIEW
        assert stored.ai_analysis == payload

    @pytest.mark.parametrize("provider", [
        FailingProvider(),
        FailingProvider(RuntimeError("quota exceeded")),
        StaticProvider({"overallVerdict": "MAYBE"}),
        StaticProvider(["not", "an", "object"]),
    ])
    def test_fail_closed(self, engine, make_submission, adapter_factory, provider):
        submission = make_submission()

        adapter_factory(provider).run(submission.id)

        stored = _reload(engine, submission.id)
        assert stored.status == SubmissionStatus.REJECTED
        assert stored.iqa_remarks == SYSTEM_ERROR_REMARK
        assert stored.ai_analysis is None
        assert stored.rejection_source == RejectionSource.SYSTEM
        assert stored.is_new_verdict is False

    def test_timeout_rejects(self, engine, make_submission, adapter_factory):
        submission = make_submission()

        adapter_factory(SlowProvider(delay=1.0), timeout_seconds=0.05).run(submission.id)

        stored = _reload(engine, submission.id)
        assert stored.status == SubmissionStatus.REJECTED
        assert stored.iqa_remarks == SYSTEM_ERROR_REMARK

    @pytest.mark.parametrize("verdict", ["APPROVED", "REJECTED"])
    def test_incomplete_package_never_reaches_review(self, engine, make_submission, adapter_factory, verdict):
        submission = make_submission(uploads=[make_upload(DocType.MATERIAL_CERT)])
        provider = StaticProvider({"overallVerdict": verdict, "summary": "partial", "details": []})

        adapter_factory(provider).run(submission.id)

        stored = _reload(engine, submission.id)
        assert stored.status == SubmissionStatus.REJECTED
        assert stored.rejection_source == RejectionSource.SYSTEM
        assert stored.ai_analysis is None
        assert provider.requests == []

    @pytest.mark.parametrize("status", [
        SubmissionStatus.AI_REVIEWING,
        SubmissionStatus.PENDING_REVIEW,
        SubmissionStatus.APPROVED,
    ])
    def test_skips_when_not_pending(self, engine, make_submission, adapter_factory, status):
        submission = make_submission(status=status)
        provider = StaticProvider()

        assert adapter_factory(provider).run(submission.id) is None

        assert provider.requests == []
        assert _reload(engine, submission.id).status == status

    def test_second_run_is_a_no_op(self, engine, make_submission, adapter_factory):
        submission = make_submission()
        provider = StaticProvider()
        adapter = adapter_factory(provider)

        adapter.run(submission.id)
        assert adapter.run(submission.id) is None
        assert len(provider.requests) == 1

    def test_history_records_system_moves(self, make_submission, adapter_factory, repository):
        submission = make_submission()
        adapter_factory(FailingProvider()).run(submission.id)

        moves = [(e.from_status, e.to_status) for e in repository.history(submission.id)]
        assert moves == [
            (None, SubmissionStatus.PENDING_AI),
            (SubmissionStatus.PENDING_AI, SubmissionStatus.AI_REVIEWING),
            (SubmissionStatus.AI_REVIEWING, SubmissionStatus.REJECTED),
        ]


class TestStalledAnalysisRecovery:
    def _age(self, engine, submission_id, hours):
        with Session(engine) as s:
            submission = s.get(Submission, submission_id)
            submission.updated_at = utc_now() - timedelta(hours=hours)
            s.add(submission)
            s.commit()

    def test_stale_in_flight_run_is_rejected(self, engine, make_submission, adapter_factory):
        submission = make_submission(status=SubmissionStatus.AI_REVIEWING)
        self._age(engine, submission.id, hours=2)

        adapter_factory(StaticProvider()).recover_stalled()

        stored = _reload(engine, submission.id)
        assert stored.status == SubmissionStatus.REJECTED
        assert stored.iqa_remarks == SYSTEM_ERROR_REMARK
        assert stored.rejection_source == RejectionSource.SYSTEM

    def test_recent_in_flight_run_is_left_alone(self, engine, make_submission, adapter_factory):
        submission = make_submission(status=SubmissionStatus.AI_REVIEWING)

        adapter_factory(StaticProvider()).recover_stalled()

        assert _reload(engine, submission.id).status == SubmissionStatus.AI_REVIEWING

    def test_queued_submissions_are_returned_for_dispatch(self, engine, make_submission, adapter_factory):
        queued = make_submission()
        make_submission(status=SubmissionStatus.PENDING_REVIEW)
        provider = StaticProvider()
        adapter = adapter_factory(provider)

        pending = adapter.recover_stalled()

        assert pending == [queued.id]
        adapter.run(queued.id)
        assert _reload(engine, queued.id).status == SubmissionStatus.PENDING_REVIEW
        assert len(provider.requests) == 1

    def test_recovered_package_can_be_resubmitted(self, session, engine, make_submission, supplier,
                                                  adapter_factory):
        submission = make_submission(status=SubmissionStatus.AI_REVIEWING)
        self._age(engine, submission.id, hours=2)
        adapter = adapter_factory(StaticProvider())
        adapter.recover_stalled()
        session.expire_all()

        result = ResubmissionHandler(session, adapter).resubmit(supplier, submission.id, mandatory_uploads())

        assert result.status == SubmissionStatus.PENDING_REVIEW
