import json
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile, status
from pydantic import ValidationError as PydanticValidationError

from faiportal.core.dependencies import (
    get_current_actor, get_decision_recorder, get_submission_service
)
from faiportal.core.exceptions import ValidationError
from faiportal.db.schema import SubmissionStatus
from faiportal.models.auth import Actor
from faiportal.models.submission import (
    DecisionPayload, ResubmissionUpdate, SubmissionCreate,
    SubmissionEventRead, SubmissionFilter, SubmissionRead
)
from faiportal.services.decision import DecisionRecorder
from faiportal.services.submission import SubmissionService
from faiportal.utils.uploads import read_uploads

router = APIRouter()


def _parse_payload(model, payload: str):
    """The JSON half of a multipart request."""
    try:
        return model.model_validate_json(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid submission payload.",
            details={"errors": json.loads(e.json(include_url=False))}
        )


@router.post(
    "/",
    response_model=SubmissionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Submit FAI Package",
    description="Creates a package from a JSON `payload` part and the uploaded `files`, paired by position "
                "with `payload.doc_types`. All mandatory documents are required. Analysis starts in the background."
)
def create_submission(
    background_tasks: BackgroundTasks,
    payload: str = Form(...),
    files: List[UploadFile] = File(default=[]),
    actor: Actor = Depends(get_current_actor),
    service: SubmissionService = Depends(get_submission_service)
):
    data = _parse_payload(SubmissionCreate, payload)
    uploads = read_uploads(files, data.doc_types, data.last_modified)
    submission = service.create(actor, data, uploads, background_tasks)
    return service.to_read(submission, actor)


@router.get(
    "/",
    response_model=List[SubmissionRead],
    status_code=status.HTTP_200_OK,
    summary="List Submissions",
    description="Suppliers see their own organization's packages; IQA sees all. Sorted by review priority, newest first."
)
def list_submissions(
    status_filter: Optional[SubmissionStatus] = Query(default=None, alias="status"),
    supplier: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    q: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionService = Depends(get_submission_service)
):
    filters = SubmissionFilter(
        status=status_filter,
        supplier=supplier,
        start_date=start_date,
        end_date=end_date,
        q=q
    )
    return [service.to_read(s, actor) for s in service.list_submissions(actor, filters)]


@router.get(
    "/attention",
    response_model=List[SubmissionRead],
    status_code=status.HTTP_200_OK,
    summary="Review Queue",
    description="IQA only. Packages waiting for a reviewer decision, newest first."
)
def needs_attention(
    actor: Actor = Depends(get_current_actor),
    service: SubmissionService = Depends(get_submission_service)
):
    return [service.to_read(s, actor) for s in service.needs_attention(actor)]


@router.get(
    "/{submission_id}",
    response_model=SubmissionRead,
    status_code=status.HTTP_200_OK,
    summary="Submission Detail",
    description="Opening its own package as a supplier marks the verdict as read."
)
def get_submission(
    submission_id: str,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionService = Depends(get_submission_service)
):
    return service.to_read(service.get(actor, submission_id), actor)


@router.get(
    "/{submission_id}/history",
    response_model=List[SubmissionEventRead],
    status_code=status.HTTP_200_OK,
    summary="Status History"
)
def get_history(
    submission_id: str,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionService = Depends(get_submission_service)
):
    return service.history(actor, submission_id)


@router.post(
    "/{submission_id}/decision",
    response_model=SubmissionRead,
    status_code=status.HTTP_200_OK,
    summary="Record Decision",
    description="IQA only. Approves or rejects a package in PENDING_REVIEW. Remarks are mandatory."
)
def record_decision(
    submission_id: str,
    data: DecisionPayload,
    actor: Actor = Depends(get_current_actor),
    recorder: DecisionRecorder = Depends(get_decision_recorder),
    service: SubmissionService = Depends(get_submission_service)
):
    submission = recorder.record_decision(actor, submission_id, data.decision, data.remarks)
    return service.to_read(submission, actor)


@router.put(
    "/{submission_id}/files",
    response_model=SubmissionRead,
    status_code=status.HTTP_200_OK,
    summary="Resubmit Package",
    description="Supplier only. Sends a REJECTED package back to analysis. Current documents are kept "
                "unless listed in `payload.remove`; uploaded files replace documents of the same type."
)
def resubmit(
    submission_id: str,
    background_tasks: BackgroundTasks,
    payload: str = Form(default="{}"),
    files: List[UploadFile] = File(default=[]),
    actor: Actor = Depends(get_current_actor),
    service: SubmissionService = Depends(get_submission_service)
):
    data = _parse_payload(ResubmissionUpdate, payload)
    uploads = read_uploads(files, data.doc_types, data.last_modified)
    submission = service.resubmit(actor, submission_id, data, uploads, background_tasks)
    return service.to_read(submission, actor)


@router.post(
    "/{submission_id}/acknowledge",
    response_model=SubmissionRead,
    status_code=status.HTTP_200_OK,
    summary="Acknowledge Verdict",
    description="Supplier only. Clears the unread-verdict flag."
)
def acknowledge(
    submission_id: str,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionService = Depends(get_submission_service)
):
    return service.to_read(service.acknowledge_verdict(actor, submission_id), actor)
