"""SCCS FastAPI application."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sccs.api.auth import router as auth_router
from sccs.api.compliance import router as compliance_router
from sccs.api.evidence import router as evidence_router
from sccs.api.health import router as health_router
from sccs.api.projects import router as projects_router
from sccs.config import settings
from sccs.storage.evidence import now_iso, recorder

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await recorder.ensure_directory()
    await recorder.record(
        "server_start", "info", {"port": settings.port, "timestamp": now_iso()}
    )
    logger.info("Server running on port %s", settings.port)
    yield


app = FastAPI(
    title="SCCS - Supabase Compliance Check Service",
    description="Checks and fixes MFA, RLS and PITR compliance for Supabase projects",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render errors as {error, timestamp} for the UI."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "timestamp": now_iso()},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed path, query or body input."""
    return JSONResponse(
        status_code=422,
        content={
            "error": "Invalid request",
            "details": jsonable_encoder(exc.errors()),
            "timestamp": now_iso(),
        },
    )


app.include_router(health_router, tags=["Health"])
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(projects_router, prefix="/api", tags=["Projects"])
app.include_router(compliance_router, prefix="/api/compliance", tags=["Compliance"])
app.include_router(evidence_router, prefix="/api/evidence", tags=["Evidence"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "SCCS", "version": settings.app_version, "docs": "/docs"}


if __name__ == "__main__":
    uvicorn.run("sccs.main:app", host="0.0.0.0", port=settings.port)
