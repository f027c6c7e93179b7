from typing import List
from fastapi import APIRouter, Depends, status

from faiportal.core.dependencies import get_current_actor, get_submission_service
from faiportal.models.auth import Actor
from faiportal.models.submission import DashboardStats, NewVerdictsRead
from faiportal.services.submission import SubmissionService

router = APIRouter()


@router.get(
    "/stats",
    response_model=DashboardStats,
    status_code=status.HTTP_200_OK,
    summary="Dashboard Stats",
    description="Totals for the last 30 days and the current review backlog. Suppliers see their own numbers."
)
def get_stats(
    actor: Actor = Depends(get_current_actor),
    service: SubmissionService = Depends(get_submission_service)
):
    return service.dashboard_stats(actor)


@router.get(
    "/suppliers",
    response_model=List[str],
    status_code=status.HTTP_200_OK,
    summary="Supplier Filter Options"
)
def list_suppliers(
    actor: Actor = Depends(get_current_actor),
    service: SubmissionService = Depends(get_submission_service)
):
    return service.supplier_names(actor)


@router.get(
    "/new-verdicts",
    response_model=NewVerdictsRead,
    status_code=status.HTTP_200_OK,
    summary="Unread Verdicts",
    description="Drives the supplier's 'new verdict' banner."
)
def new_verdicts(
    actor: Actor = Depends(get_current_actor),
    service: SubmissionService = Depends(get_submission_service)
):
    return service.has_new_verdicts(actor)
