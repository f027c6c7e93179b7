from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
import uuid
from sqlalchemy import Column, LargeBinary
from sqlmodel import SQLModel, Field, Relationship, JSON
from enum import Enum


class SubmissionStatus(str, Enum):
    DRAFT = "DRAFT"                    # Reserved, never produced by the core flow
    PENDING_AI = "PENDING_AI"          # Waiting for the analysis adapter
    AI_REVIEWING = "AI_REVIEWING"      # Analysis in flight
    PENDING_REVIEW = "PENDING_REVIEW"  # Waiting for the IQA reviewer
    APPROVED = "APPROVED"              # Terminal
    REJECTED = "REJECTED"              # Terminal, re-enterable via resubmission


class DocType(str, Enum):
    ENGINEERING_DRAWING = "Engineering Drawing"
    PROCESS_MANAGEMENT_PLAN = "Process Management Plan"
    CLEANLINESS_REPORT = "Cleanliness Report"
    FAI_REPORT_SUPPLIER = "FAI Report (Supplier)"
    MATERIAL_CERT = "Material Certification & CoC"
    ROHS_DECLARATION = "RoHS Certification"
    PACKAGING_REQ = "Packaging Requirements"
    REACH_COMPLIANCE = "REACH Compliance"
    BOM = "Bill of Materials"


class ActorRole(str, Enum):
    SUPPLIER = "SUPPLIER"
    IQA = "IQA"
    SYSTEM = "SYSTEM"  # Analysis adapter, never carried by a token


class Decision(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RejectionSource(str, Enum):
    REVIEWER = "REVIEWER"  # IQA decision
    SYSTEM = "SYSTEM"      # Fail-closed analysis


def utc_now() -> datetime:
    """Naive UTC, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin(SQLModel):
    """
    Standard audit timestamps for database records.
    Every entity inheriting from this mixin tracks when it was originally
    created and when it was last modified.
    """
    created_at: datetime = Field(
        default_factory=utc_now,
        description="The UTC timestamp when this record was first persisted. Example: '2024-03-01 14:30:00'"
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"onupdate": utc_now},
        description="The UTC timestamp when this record was last modified. Updates automatically."
    )


class Submission(TimestampMixin, SQLModel, table=True):
    """
    A First Article Inspection package sent by a Supplier organization.
    This is the central entity of the review workflow: the analysis adapter,
    the IQA reviewer and the supplier (on resubmission) each move it along
    the status machine. It is never hard-deleted.
    """
    id: str = Field(
        primary_key=True,
        description="Generated identifier. Example: 'SUB-1718000000000-4F2A'"
    )
    supplier_name: str = Field(
        index=True,
        description="The submitting organization, copied from the authenticated actor. Example: 'ABC Manufacturing'"
    )
    part_number: str = Field(
        index=True,
        description="The part under inspection. Example: 'MOD-441-B'"
    )
    revision: str = Field(
        description="The drawing/part revision. Example: '02'"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        index=True,
        description="Creation time of the package (UTC)."
    )
    status: SubmissionStatus = Field(
        default=SubmissionStatus.PENDING_AI,
        index=True,
        description="Current lifecycle state. Example: 'PENDING_REVIEW'"
    )
    iqa_remarks: Optional[str] = Field(
        default=None,
        description="Reviewer remarks, or the fixed system message after a failed analysis."
    )
    is_new_verdict: bool = Field(
        default=False,
        description="Unread-verdict flag for the supplier. Set by a decision, cleared on acknowledge/resubmit."
    )
    rejection_source: Optional[RejectionSource] = Field(
        default=None,
        description="Who rejected the package when status is REJECTED. Example: 'SYSTEM'"
    )
    ai_analysis: Optional[Dict[str, Any]] = Field(
        default=None,
        sa_type=JSON,
        description="The analysis verdict, stored verbatim: overallVerdict, summary, details[]."
    )
    created_by: Optional[str] = Field(
        default=None,
        description="Identity of the submitting user (token subject)."
    )
    version: int = Field(
        default=1,
        description="Bumped on every mutation; used for compare-and-update."
    )

    files: List["SubmissionDocument"] = Relationship(
        back_populates="submission",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "lazy": "selectin"}
    )
    events: List["SubmissionEvent"] = Relationship(
        back_populates="submission",
        sa_relationship_kwargs={"order_by": "SubmissionEvent.occurred_at"}
    )


class SubmissionDocument(TimestampMixin, SQLModel, table=True):
    """
    One uploaded artifact of a submission.
    Owned exclusively by its parent and replaced wholesale, never edited in
    place. At most one document per type exists within a submission.
    """
    pk: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        description="Storage key of the row."
    )
    id: str = Field(
        description="Identifier unique within the submission. Example: 'k3j9x0a1b'"
    )
    submission_id: str = Field(
        foreign_key="submission.id",
        index=True,
        description="The owning submission."
    )
    doc_type: DocType = Field(
        description="Which registry requirement this document satisfies. Example: 'Engineering Drawing'"
    )
    name: str = Field(
        description="Original file name. Example: 'DWG-441B.pdf'"
    )
    mime_type: str = Field(
        default="application/octet-stream",
        description="Content type reported at upload. Example: 'application/pdf'"
    )
    last_modified: int = Field(
        default=0,
        description="Client-side last-modified time in epoch milliseconds."
    )
    is_mandatory: bool = Field(
        default=False,
        description="Snapshot of the registry flag at upload time; never re-derived."
    )
    content: Optional[bytes] = Field(
        default=None,
        sa_column=Column(LargeBinary),
        description="Opaque document bytes."
    )

    submission: Submission = Relationship(back_populates="files")


class SubmissionEvent(SQLModel, table=True):
    """
    Append-only audit trail of status transitions.
    iqa_remarks is the durable verdict; this table records who moved the
    package and when.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True
    )
    submission_id: str = Field(
        foreign_key="submission.id",
        index=True
    )
    from_status: Optional[SubmissionStatus] = Field(
        default=None,
        description="Null for the creation event."
    )
    to_status: SubmissionStatus
    actor_role: ActorRole
    actor_id: Optional[str] = Field(default=None)
    note: Optional[str] = Field(default=None)
    occurred_at: datetime = Field(default_factory=utc_now)

    submission: Submission = Relationship(back_populates="events")
