import asyncio
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from faiportal.api.v1 import index
from faiportal.api.v1 import requirements
from faiportal.api.v1 import submissions
from faiportal.api.v1 import dashboard

from faiportal.core.config import settings
from faiportal.core.dependencies import get_analysis_provider
from faiportal.core.exceptions import (
    NotFoundError, PermissionDeniedError, PersistenceFailure,
    PortalError, StateConflictError, ValidationError
)
from faiportal.core.logging import setup_logging
from faiportal.db.core import init_db
from faiportal.services.analysis import AnalysisAdapter

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()

    # Analyses lost with the previous process
    adapter = AnalysisAdapter(provider=get_analysis_provider())
    loop = asyncio.get_running_loop()
    for submission_id in adapter.recover_stalled():
        loop.run_in_executor(None, adapter.run, submission_id)

    logger.info(f"{settings.app_name} started (analysis provider: {settings.analysis_provider})")
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

# Middlewares
origins = []

if settings.allowed_hosts:
    origins = settings.allowed_hosts.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Error mapping
ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StateConflictError: status.HTTP_409_CONFLICT,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    PersistenceFailure: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    code = next(
        (c for error_type, c in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")

    body = {"detail": str(exc)}
    if isinstance(exc, ValidationError) and exc.details:
        body["errors"] = exc.details
    if isinstance(exc, StateConflictError):
        body["current_status"] = exc.current_status
    return JSONResponse(status_code=code, content=body)


# Register routes
app.include_router(index.router, prefix="/api/v1")
app.include_router(requirements.router,
                   prefix="/api/v1/requirements", tags=["Requirements"])
app.include_router(submissions.router,
                   prefix="/api/v1/submissions", tags=["Submissions"])
app.include_router(dashboard.router,
                   prefix="/api/v1/dashboard", tags=["Dashboard"])

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=None,
    )
