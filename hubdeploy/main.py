import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hubdeploy.config import settings
from hubdeploy.db import PoolConfig, close_pool, init_pool
from hubdeploy.errors import (
    ConflictError,
    DeployError,
    InvalidStateError,
    NotFoundError,
    PartialRollbackError,
    RemoteError,
    ValidationError,
)
from hubdeploy.routers.deployments import router as deployments_router
from hubdeploy.routers.mappings import router as mappings_router
from hubdeploy.routers.templates import router as templates_router

logger = logging.getLogger(__name__)

_ERROR_STATUS: list[tuple[type[DeployError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ConflictError, 409),
    (PartialRollbackError, 409),
    (RemoteError, 502),
]


def _status_for(error: DeployError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=settings.log_level.upper())
    await init_pool(
        settings.database_url,
        PoolConfig(
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        ),
    )
    yield
    await close_pool()


app = FastAPI(
    title="hubdeploy",
    description="HubSpot configuration deployment and field-mapping API",
    lifespan=lifespan,
)

app.include_router(templates_router)
app.include_router(deployments_router)
app.include_router(mappings_router)


@app.exception_handler(DeployError)
async def deploy_error_handler(request: Request, exc: DeployError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("Unmapped service error", extra={"path": request.url.path, "code": exc.code})
    return JSONResponse(status_code=status_code, content={"detail": exc.to_detail()})


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
