from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict
from sqlmodel import SQLModel, Field

from faiportal.db.schema import (
    ActorRole, Decision, DocType, RejectionSource, SubmissionStatus
)

# ==========================================
# INPUTS
# ==========================================


class DocumentUpload(SQLModel):
    """
    One document as handed to the lifecycle services, already read from the
    multipart stream. Never persisted directly.
    """
    id: str
    type: DocType
    name: str
    mime_type: str = "application/octet-stream"
    last_modified: int = 0
    is_mandatory: bool = False
    content: Optional[bytes] = None


class SubmissionCreate(SQLModel):
    """
    JSON part of the multipart create request.
    `doc_types[i]` names the requirement satisfied by the i-th uploaded file.
    """
    part_number: str = Field(
        min_length=1,
        max_length=100,
        schema_extra={"examples": ["MOD-441-B"]},
        description="The part under inspection."
    )
    revision: str = Field(
        min_length=1,
        max_length=20,
        schema_extra={"examples": ["02"]},
        description="Part/drawing revision."
    )
    doc_types: List[DocType] = Field(
        default_factory=list,
        description="Document type of each uploaded file, in upload order."
    )
    last_modified: List[int] = Field(
        default_factory=list,
        description="Optional client last-modified time (epoch ms) of each file, in upload order."
    )


class ResubmissionUpdate(SQLModel):
    """
    JSON part of the multipart resubmission request.
    Every current document is kept unless its type is listed in `remove`;
    an upload replaces the current document of the same type.
    """
    doc_types: List[DocType] = Field(
        default_factory=list,
        description="Document type of each uploaded file, in upload order."
    )
    last_modified: List[int] = Field(default_factory=list)
    remove: List[DocType] = Field(
        default_factory=list,
        description="Types whose current document is dropped from the package."
    )


class DecisionPayload(SQLModel):
    decision: Decision = Field(
        description="Final verdict of the IQA reviewer."
    )
    remarks: str = Field(
        max_length=4000,
        description="Mandatory reviewer remarks; the durable audit trail of the verdict."
    )


class SubmissionFilter(SQLModel):
    status: Optional[SubmissionStatus] = None
    supplier: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    q: Optional[str] = Field(
        default=None,
        description="Case-insensitive match on part number, id, or (reviewers only) supplier name."
    )

# ==========================================
# ANALYSIS VERDICT (wire format of the collaborator)
# ==========================================


class DocumentResult(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class AnalysisDetail(BaseModel):
    model_config = ConfigDict(extra="forbid")

    docType: str
    result: DocumentResult
    notes: str


class AnalysisResult(BaseModel):
    """Structured verdict returned by the analysis collaborator."""
    model_config = ConfigDict(extra="forbid")

    overallVerdict: Decision
    summary: str
    details: List[AnalysisDetail]

# ==========================================
# OUTPUTS
# ==========================================


class RequirementRead(SQLModel):
    type: DocType
    mandatory: bool
    description: str


class DocumentRead(SQLModel):
    id: str
    type: DocType
    name: str
    mime_type: str
    last_modified: int
    is_mandatory: bool
    content_verifiable: bool = Field(
        description="False when the analysis could only check presence (unsupported format)."
    )


class SubmissionRead(SQLModel):
    id: str
    supplier_name: str
    part_number: str
    revision: str
    timestamp: datetime
    status: SubmissionStatus
    files: List[DocumentRead]
    iqa_remarks: Optional[str] = None
    is_new_verdict: bool = False
    rejection_source: Optional[RejectionSource] = None
    ai_analysis: Optional[Dict[str, Any]] = None
    content_unverified_types: List[DocType] = []
    provided_mandatory: int = 0
    total_mandatory: int = 0
    allowed_actions: List[str] = []


class SubmissionEventRead(SQLModel):
    from_status: Optional[SubmissionStatus]
    to_status: SubmissionStatus
    actor_role: ActorRole
    actor_id: Optional[str]
    note: Optional[str]
    occurred_at: datetime


class DashboardStats(SQLModel):
    total: int = Field(description="Submissions created in the last 30 days.")
    approved: int = Field(description="Approved submissions created in the last 30 days.")
    rejected: int = Field(description="Rejected submissions created in the last 30 days.")
    pending_review: int = Field(description="All submissions waiting for a reviewer, regardless of age.")


class NewVerdictsRead(SQLModel):
    has_new_verdicts: bool
    submission_ids: List[str]
