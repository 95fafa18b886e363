# SPDX-License-Identifier: MPL-2.0
"""FastAPI application for the Quantum Shield API."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Body, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from quantum_shield import __version__
from quantum_shield.config import ShieldSettings
from quantum_shield.core.exceptions import (
    LedgerAnchorError,
    MigrationError,
    NotFoundError,
    QuantumShieldError,
    ValidationError,
)
from quantum_shield.core.models import (
    ComplianceCheck,
    CryptoState,
    IntegrityVerification,
    MigrationRequest,
    MigrationStatus,
    ProvenanceChain,
    ProvenanceEvent,
    ShieldPage,
    Shield,
    ShieldSummary,
    utcnow,
)
from quantum_shield.services.shield.service import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ShieldService,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

router = APIRouter(prefix=API_PREFIX)


def _status_for(exc: QuantumShieldError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, MigrationError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, LedgerAnchorError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def shield_error_handler(request: Request, exc: QuantumShieldError) -> JSONResponse:
    """Map domain errors to status codes; server-side failures are logged."""
    code = _status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=code, content=exc.to_dict())


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    violations = [
        f"{'.'.join(str(p) for p in error['loc'])}: {error['msg']}" for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content=ValidationError(violations).to_dict()
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error", "message": "Internal server error", "details": {}},
    )


def _service(request: Request) -> ShieldService:
    return request.app.state.service


@router.post("/shield", response_model=ShieldSummary, tags=["Shields"])
async def create_shield(request: Request, body: Dict[str, Any] = Body(...)) -> ShieldSummary:
    """Shield an asset and return a summary of the new shield."""
    shield = await _service(request).shield_asset(body)
    return ShieldSummary.from_shield(shield)


@router.get("/verify/{shield_id}", response_model=IntegrityVerification, tags=["Shields"])
async def verify_shield(request: Request, shield_id: str) -> IntegrityVerification:
    return await _service(request).verify_shield(shield_id)


@router.get("/provenance/{shield_id}", response_model=ProvenanceChain, tags=["Provenance"])
async def get_provenance(request: Request, shield_id: str) -> ProvenanceChain:
    return await _service(request).get_provenance(shield_id)


@router.post(
    "/provenance/{shield_id}/events",
    response_model=ProvenanceEvent,
    status_code=status.HTTP_201_CREATED,
    tags=["Provenance"],
)
async def add_provenance_event(
    request: Request, shield_id: str, body: Dict[str, Any] = Body(...)
) -> ProvenanceEvent:
    return await _service(request).add_provenance_event(shield_id, body)


@router.get("/compliance/{shield_id}", response_model=ComplianceCheck, tags=["Compliance"])
async def check_compliance(request: Request, shield_id: str) -> ComplianceCheck:
    return await _service(request).check_compliance(shield_id)


@router.get("/shields", response_model=ShieldPage, tags=["Shields"])
async def list_shields(
    request: Request,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
) -> ShieldPage:
    return await _service(request).list_shields(limit=limit, offset=offset)


@router.get("/shields/{shield_id}", response_model=Shield, tags=["Shields"])
async def get_shield(request: Request, shield_id: str) -> Shield:
    return await _service(request).get_shield(shield_id)


@router.get("/migration", response_model=MigrationStatus, tags=["Crypto Agility"])
async def migration_status(request: Request) -> MigrationStatus:
    return _service(request).get_migration_status()


@router.post("/migration", response_model=MigrationStatus, tags=["Crypto Agility"])
async def migrate(request: Request, body: Dict[str, Any] = Body(...)) -> MigrationStatus:
    """Migrate every shield to the requested posture."""
    migration = MigrationRequest.parse(body)
    try:
        target = CryptoState.parse(migration.target_state)
    except MigrationError as exc:
        raise ValidationError([f"targetState: {exc.message}"]) from None
    return await _service(request).migrate_to_state(target)


def create_app(
    service: Optional[ShieldService] = None, settings: Optional[ShieldSettings] = None
) -> FastAPI:
    """Build the API application.

    Without an explicit ``service`` one is built from ``settings`` when the
    application starts.
    """
    settings = settings or ShieldSettings.from_env()
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.service is None
        if owned:
            app.state.service = ShieldService.from_settings(settings)
        logger.info(
            "Quantum Shield API started in %s posture",
            app.state.service.agility.current_state.value,
        )
        try:
            yield
        finally:
            if owned:
                await app.state.service.close()
                app.state.service = None

    app = FastAPI(
        title="Quantum Shield API",
        description="Quantum-safe attestations and provenance for digital assets",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.settings = settings

    # Rate limiting
    app.state.limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_exception_handler(QuantumShieldError, shield_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, request_validation_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Security headers middleware
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'self'"
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=600,
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request) -> Dict[str, str]:
        """Health check endpoint for monitoring and load balancers."""
        current = request.app.state.service
        return {
            "status": "healthy",
            "service": "quantum-shield",
            "version": __version__,
            "migrationState": current.agility.current_state.value if current else "unknown",
            "timestamp": utcnow().isoformat(),
        }

    app.include_router(router)
    return app


app = create_app()
