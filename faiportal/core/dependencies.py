from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from faiportal.core.config import settings
from faiportal.db.core import get_session
from faiportal.models.auth import Actor
from faiportal.services.analysis import (
    AnalysisAdapter, AnalysisProvider, ChecklistAnalysisProvider, GeminiAnalysisProvider
)
from faiportal.services.decision import DecisionRecorder
from faiportal.services.identity import IdentityService
from faiportal.services.submission import SubmissionService

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_analysis_provider() -> AnalysisProvider:
    """Selects the analysis collaborator from ANALYSIS_PROVIDER."""
    if settings.analysis_provider == "checklist":
        return ChecklistAnalysisProvider()
    return GeminiAnalysisProvider()


def get_analysis_adapter(
    provider: AnalysisProvider = Depends(get_analysis_provider)
) -> AnalysisAdapter:
    return AnalysisAdapter(provider=provider)


def get_identity_service() -> IdentityService:
    return IdentityService()


def get_submission_service(
    session: Session = Depends(get_session),
    adapter: AnalysisAdapter = Depends(get_analysis_adapter)
) -> SubmissionService:
    """Creates a SubmissionService instance using the active DB session."""
    return SubmissionService(session, adapter)


def get_decision_recorder(session: Session = Depends(get_session)) -> DecisionRecorder:
    return DecisionRecorder(session)


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    identity: IdentityService = Depends(get_identity_service)
) -> Actor:
    """
    Resolves the caller's role and organization from the bearer token.
    This is the gatekeeper for protected routes.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None or not credentials.credentials:
        raise credentials_exception

    actor = identity.verify_access_token(credentials.credentials)
    if actor is None:
        raise credentials_exception

    return actor
