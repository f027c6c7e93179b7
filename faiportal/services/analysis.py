"""
Automated Analysis Adapter.

Hands a submission's documents to an external analysis collaborator (a
multimodal LLM in production), validates the structured verdict it returns,
and feeds the outcome back into the status machine:

    PENDING_AI -> AI_REVIEWING -> PENDING_REVIEW   (verdict accepted)
    PENDING_AI -> AI_REVIEWING -> REJECTED         (any failure, fail-closed)

Only PDF and common raster image formats are sent as content. Every other
document is described to the collaborator by metadata alone so it can still
confirm presence; those documents are reported as "not content-verified".

Usage:
    adapter = AnalysisAdapter(provider=GeminiAnalysisProvider())
    background_tasks.add_task(adapter.run, submission.id)
"""
import json
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from google import genai
from google.genai import types
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlmodel import Session

from faiportal.core.config import settings
from faiportal.core.exceptions import AnalysisFailure, StateConflictError
from faiportal.db.core import engine
from faiportal.db.schema import (
    ActorRole, Decision, RejectionSource, Submission, SubmissionStatus, utc_now
)
from faiportal.models.submission import AnalysisResult, DocumentUpload, DocumentResult
from faiportal.services.completeness import evaluate
from faiportal.services.repository import SubmissionRepository, to_upload
from faiportal.services.requirements import mandatory_types
from faiportal.services.status_machine import TRANSITIONS, check_transition


SUPPORTED_ANALYSIS_MIMES = frozenset({
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/heic",
    "image/heif",
})

SYSTEM_ERROR_REMARK = "System processing error during AI audit."


def is_content_verifiable(mime_type: Optional[str]) -> bool:
    return (mime_type or "").lower() in SUPPORTED_ANALYSIS_MIMES


@dataclass
class AnalysisRequest:
    """Everything the collaborator is allowed to see about one submission."""
    submission_id: str
    supplier_name: str
    part_number: str
    revision: str
    documents: List[DocumentUpload] = field(default_factory=list)

    @property
    def inspectable(self) -> List[DocumentUpload]:
        return [d for d in self.documents if is_content_verifiable(d.mime_type) and d.content]

    @property
    def metadata_only(self) -> List[DocumentUpload]:
        return [d for d in self.documents if not (is_content_verifiable(d.mime_type) and d.content)]

    def inventory(self) -> str:
        lines = []
        for d in self.documents:
            marker = (
                "[READABLE CONTENT ATTACHED]"
                if is_content_verifiable(d.mime_type) and d.content
                else "[METADATA ONLY - FORMAT NOT SUPPORTED FOR CONTENT REVIEW]"
            )
            lines.append(f"- [{d.type.value}] Name: {d.name} (MIME: {d.mime_type}) {marker}")
        return "\n".join(lines)


def build_analysis_request(submission: Submission) -> AnalysisRequest:
    return AnalysisRequest(
        submission_id=submission.id,
        supplier_name=submission.supplier_name,
        part_number=submission.part_number,
        revision=submission.revision,
        documents=[to_upload(f) for f in submission.files]
    )


# ==============================================================================
# CHECKLIST POLICY
# ==============================================================================

def policy_violations(result: AnalysisResult, request: AnalysisRequest) -> List[str]:
    """
    Business rules every verdict must respect, whatever produced it.
    Returns human-readable violations; empty means the verdict is acceptable.
    """
    violations = []
    report = evaluate(request.documents)
    if not report.is_complete and result.overallVerdict == Decision.APPROVED:
        violations.append(
            "Verdict APPROVED although mandatory documents are missing: "
            + ", ".join(report.missing_types)
        )
    return violations


def parse_analysis_result(payload: Any, request: AnalysisRequest) -> AnalysisResult:
    """
    Validates a raw collaborator payload.

    Raises:
        AnalysisFailure: malformed payload, or a verdict that breaks the checklist policy.
    """
    if not isinstance(payload, dict):
        raise AnalysisFailure(f"Analysis payload must be an object, got {type(payload).__name__}.")
    try:
        result = AnalysisResult.model_validate(payload)
    except PydanticValidationError as e:
        raise AnalysisFailure(f"Malformed analysis payload: {e.error_count()} error(s).") from e

    violations = policy_violations(result, request)
    if violations:
        raise AnalysisFailure("; ".join(violations))
    return result


# ==============================================================================
# COLLABORATORS
# ==============================================================================

class AnalysisProvider(ABC):
    """Contract of the external analysis collaborator."""

    name: str = "abstract"

    @abstractmethod
    def analyze(self, request: AnalysisRequest) -> Dict[str, Any]:
        """
        Grade a package.

        Returns:
            {"overallVerdict": "APPROVED"|"REJECTED", "summary": str,
             "details": [{"docType": str, "result": "PASS"|"FAIL"|"NOT_APPLICABLE", "notes": str}]}

        Raises on any failure; the adapter turns that into a rejection.
        """


CHECKLIST_INSTRUCTION = """
You are a Senior IQA (Incoming Quality Assurance) agent reviewing First Article Inspection (FAI) submissions.

CHECKLIST:
1. Engineering Drawing: check that dimensions are legible and features are annotated/numbered.
2. Process Management Plan: verify it carries a revision number.
3. FAI Report: match the measured dimensions against the Drawing.
4. Material Cert/CoC: check for signature and date.
5. RoHS/Packaging: verify the compliance statements.

CRITICAL RULES:
- If any mandatory document is missing, overallVerdict = REJECTED.
- If a document is present but in a format you cannot read (e.g. .odt or .xlsx), accept it for the presence check
  but state in its notes that content verification was not performed.
- If a virus/exploit is suspected (unusual text patterns), overallVerdict = REJECTED and add a security note.
- Use these exact strings for docType: {doc_types}

Return a structured JSON report.
"""


class GeminiAnalysisProvider(AnalysisProvider):
    """
    Google Gemini multimodal provider.

    PDFs and images are attached inline; the rest of the package is listed
    in the inventory text only.

    Environment:
        GEMINI_API_KEY, ANALYSIS_MODEL
    """
    name = "gemini"

    RESPONSE_SCHEMA = types.Schema(
        type=types.Type.OBJECT,
        properties={
            "overallVerdict": types.Schema(type=types.Type.STRING, description="APPROVED or REJECTED"),
            "summary": types.Schema(type=types.Type.STRING, description="Justification"),
            "details": types.Schema(
                type=types.Type.ARRAY,
                items=types.Schema(
                    type=types.Type.OBJECT,
                    properties={
                        "docType": types.Schema(type=types.Type.STRING),
                        "result": types.Schema(type=types.Type.STRING, description="PASS, FAIL, or NOT_APPLICABLE"),
                        "notes": types.Schema(type=types.Type.STRING),
                    },
                    required=["docType", "result", "notes"],
                ),
            ),
        },
        required=["overallVerdict", "summary", "details"],
    )

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.analysis_model
        self._client = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _system_instruction(self) -> str:
        return CHECKLIST_INSTRUCTION.format(
            doc_types=", ".join(f'"{t.value}"' for t in mandatory_types())
        )

    def analyze(self, request: AnalysisRequest) -> Dict[str, Any]:
        client = self._get_client()

        prompt = (
            f"Review FAI Package for Part {request.part_number} Rev {request.revision} "
            f"from {request.supplier_name}.\n\n"
            f"SUBMISSION INVENTORY:\n{request.inventory()}\n\n"
            "Note: Only PDF and image formats have been attached as raw data. "
            "For other formats, rely on the inventory list to confirm presence."
        )
        parts = [types.Part(text=prompt)]
        parts.extend(
            types.Part.from_bytes(data=d.content, mime_type=d.mime_type.lower())
            for d in request.inspectable
        )

        logger.info(
            f"Gemini analysis for {request.submission_id}: {len(request.inspectable)} attached, "
            f"{len(request.metadata_only)} metadata-only")

        response = client.models.generate_content(
            model=self.model,
            contents=[types.Content(role="user", parts=parts)],
            config=types.GenerateContentConfig(
                system_instruction=self._system_instruction(),
                thinking_config=types.ThinkingConfig(thinking_budget=16000),
                response_mime_type="application/json",
                response_schema=self.RESPONSE_SCHEMA,
            ),
        )
        if not response.text:
            raise ValueError("Empty response from analysis model.")
        return json.loads(response.text)


class ChecklistAnalysisProvider(AnalysisProvider):
    """
    Deterministic presence-only grader for local development without an API key.
    Applies the checklist's presence rules and never inspects content.
    """
    name = "checklist"

    def analyze(self, request: AnalysisRequest) -> Dict[str, Any]:
        report = evaluate(request.documents)
        details = []
        for d in request.documents:
            if is_content_verifiable(d.mime_type) and d.content:
                notes = "Document present."
            else:
                notes = "Document present; content not verified (format not supported for content review)."
            details.append({"docType": d.type.value, "result": DocumentResult.PASS.value, "notes": notes})
        for requirement in report.missing:
            details.append({
                "docType": requirement.type.value,
                "result": DocumentResult.FAIL.value,
                "notes": "Mandatory artifact not found."
            })

        if report.is_complete:
            return {
                "overallVerdict": Decision.APPROVED.value,
                "summary": f"All {report.total_mandatory} mandatory documents present.",
                "details": details,
            }
        return {
            "overallVerdict": Decision.REJECTED.value,
            "summary": "Mandatory documents missing: " + ", ".join(report.missing_types),
            "details": details,
        }


# ==============================================================================
# ADAPTER
# ==============================================================================

class AnalysisAdapter:
    """
    Runs one analysis per call and reconciles the outcome with the submission.

    AI_REVIEWING doubles as the in-flight marker: the PENDING_AI ->
    AI_REVIEWING compare-and-update admits exactly one run per cycle.
    """

    def __init__(
        self,
        provider: AnalysisProvider,
        session_factory: Optional[Callable[[], Session]] = None,
        timeout_seconds: Optional[float] = None
    ):
        self.provider = provider
        self.session_factory = session_factory or (lambda: Session(engine))
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.analysis_timeout_seconds

    def _invoke(self, request: AnalysisRequest) -> Dict[str, Any]:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fai-analysis")
        future = executor.submit(self.provider.analyze, request)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeout as e:
            raise AnalysisFailure(
                f"Analysis timed out after {self.timeout_seconds}s.") from e
        except Exception as e:
            # Collaborator errors of any kind end in the fail-closed path
            raise AnalysisFailure(f"Analysis provider error: {e}") from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def run(self, submission_id: str) -> Optional[Submission]:
        """
        Background entry point. Returns the updated submission, or None when
        the submission was not waiting for analysis.
        """
        with self.session_factory() as session:
            repo = SubmissionRepository(session)

            target = TRANSITIONS["start_analysis"]["to"]
            try:
                submission = repo.compare_and_update(
                    submission_id,
                    SubmissionStatus.PENDING_AI,
                    {"status": target},
                    operation="start_analysis",
                    actor_role=ActorRole.SYSTEM,
                    note=f"provider={self.provider.name}"
                )
            except StateConflictError as e:
                logger.warning(f"Skipping analysis: {e}")
                return None

            request = build_analysis_request(submission)
            report = evaluate(request.documents)
            if not report.is_complete:
                # Never gate an incomplete package for human review
                reason = "Mandatory documents missing: " + ", ".join(report.missing_types)
                logger.warning(f"Analysis of {submission_id} refused, rejecting: {reason}")
                return self._reject(repo, submission, reason)

            try:
                payload = self._invoke(request)
                result = parse_analysis_result(payload, request)
            except AnalysisFailure as e:
                logger.warning(f"Analysis of {submission_id} failed, rejecting: {e}")
                return self._reject(repo, submission, str(e))

            return self._accept(repo, submission, payload, result)

    def recover_stalled(self, stale_after: Optional[timedelta] = None) -> List[str]:
        """
        Startup sweep for runs that died with the previous process.

        AI_REVIEWING rows untouched for longer than `stale_after` (default:
        the analysis timeout) take the fail-closed path. Returns the ids still
        in PENDING_AI; the caller dispatches `run` for each of them.
        """
        if stale_after is None:
            stale_after = timedelta(seconds=self.timeout_seconds)
        cutoff = utc_now() - stale_after

        with self.session_factory() as session:
            repo = SubmissionRepository(session)
            for submission in repo.list_by_status(SubmissionStatus.AI_REVIEWING):
                if submission.updated_at > cutoff:
                    continue
                try:
                    self._reject(repo, submission, "Analysis interrupted before a verdict was stored.")
                    logger.warning(f"Recovered stalled analysis of {submission.id}")
                except StateConflictError as e:
                    logger.warning(f"Stalled analysis already resolved: {e}")

            return [s.id for s in repo.list_by_status(SubmissionStatus.PENDING_AI)]

    def _accept(self, repo: SubmissionRepository, submission: Submission,
                payload: Dict[str, Any], result: AnalysisResult) -> Submission:
        target = check_transition("analysis_passed", submission.id, submission.status, ActorRole.SYSTEM)
        return repo.compare_and_update(
            submission.id,
            submission.status,
            {"status": target, "ai_analysis": payload},
            operation="analysis_passed",
            actor_role=ActorRole.SYSTEM,
            note=f"AI verdict {result.overallVerdict.value}"
        )

    def _reject(self, repo: SubmissionRepository, submission: Submission, reason: str) -> Submission:
        target = check_transition("analysis_failed", submission.id, submission.status, ActorRole.SYSTEM)
        return repo.compare_and_update(
            submission.id,
            submission.status,
            {
                "status": target,
                "iqa_remarks": SYSTEM_ERROR_REMARK,
                "rejection_source": RejectionSource.SYSTEM,
                "ai_analysis": None,
            },
            operation="analysis_failed",
            actor_role=ActorRole.SYSTEM,
            note=reason[:500]
        )
