from typing import List
from fastapi import APIRouter, status

from faiportal.models.submission import RequirementRead
from faiportal.services.requirements import list_requirements

router = APIRouter()


@router.get(
    "/",
    response_model=List[RequirementRead],
    status_code=status.HTTP_200_OK,
    summary="Document Checklist",
    description="The FAI document catalog in display order, with the mandatory flag of each type."
)
def get_requirements():
    return [
        RequirementRead(type=r.type, mandatory=r.mandatory, description=r.description)
        for r in list_requirements()
    ]
