import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tourney_staging.config import CORS_ORIGINS, LOG_LEVEL
from tourney_staging.database import init_db
from tourney_staging.errors import (
    AlreadyAssignedError,
    ConfirmationRequiredError,
    NoGroupsError,
    NotFoundError,
    RemoteError,
    StagingError,
    ValidationError,
)
from tourney_staging.routes import runtime, staging
from tourney_staging.services.staging_service import get_staging_service

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Tournament Staging API")

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_cors_origins.extend(CORS_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Staging pipeline (selection, assignment, generation, board)
app.include_router(staging.router, prefix="/api", tags=["staging"])
# Results, court scheduling and the live timer
app.include_router(runtime.router, prefix="/api", tags=["runtime"])


def status_code_for(error: StagingError) -> int:
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (AlreadyAssignedError, ConfirmationRequiredError)):
        return 409
    if isinstance(error, NoGroupsError):
        return 400
    if isinstance(error, RemoteError):
        return 502
    return 400


@app.exception_handler(StagingError)
async def staging_error_handler(request: Request, exc: StagingError) -> JSONResponse:
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, RemoteError):
        body["remote_status"] = exc.status_code
        body["remote_detail"] = exc.detail
    return JSONResponse(status_code=status_code_for(exc), content=body)


def _service():
    # Honour dependency overrides so tests run startup against their own service
    return app.dependency_overrides.get(get_staging_service, get_staging_service)()


@app.on_event("startup")
async def on_startup():
    init_db()  # Entity Store tables live in DATABASE_URL (in-memory by default)
    state = await _service().startup()
    logger.info(f"Staging API started; timer {state.status.value} for matches {state.active_match_ids}")


@app.on_event("shutdown")
async def on_shutdown():
    await _service().shutdown()


@app.get("/api/health")
def health_check():
    return {"app_name": "Tournament Staging API", "status": "healthy"}
