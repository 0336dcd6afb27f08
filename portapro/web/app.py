"""FastAPI application factory."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

if TYPE_CHECKING:
    from fastapi.exceptions import HTTPException

from portapro.config.logging import setup_logging
from portapro.config.settings import get_settings
from portapro.tenancy.guard import GuardOutcome
from portapro.web.dependencies import TenantRedirect, sign_in_location
from portapro.web.middleware import RequestIDMiddleware
from portapro.web.routes.pages import router as pages_router
from portapro.web.routes.team import router as team_router
from portapro.web.routes.tenant import router as tenant_router

logger = structlog.get_logger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

# API callers get a status code instead of a redirect
_API_STATUS = {
    GuardOutcome.REDIRECT_UNAUTHORIZED: 403,
    GuardOutcome.REDIRECT_MARKETING: 404,
    GuardOutcome.REDIRECT_DASHBOARD: 409,
    GuardOutcome.LOOKUP_UNAVAILABLE: 503,
    GuardOutcome.CHECKING: 503,
}
_RETRY_AFTER_SECONDS = "5"


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api/")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="PortaPro",
        description="Tenant gateway for PortaPro operator workspaces",
        version="0.1.0",
    )

    # Send browsers to sign-in; return JSON for API
    @app.exception_handler(401)
    async def auth_redirect_handler(request: Request, exc: HTTPException) -> Response:
        if not _is_api(request):
            target = request.url.path
            if request.url.query:
                target = f"{target}?{request.url.query}"
            return RedirectResponse(url=sign_in_location(target), status_code=303)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(TenantRedirect)
    async def tenant_redirect_handler(request: Request, exc: TenantRedirect) -> Response:
        decision = exc.decision
        unavailable = decision.outcome in (
            GuardOutcome.LOOKUP_UNAVAILABLE,
            GuardOutcome.CHECKING,
        )
        if _is_api(request):
            return JSONResponse(
                status_code=_API_STATUS.get(decision.outcome, 403),
                content={
                    "detail": decision.reason or decision.outcome.value,
                    "outcome": decision.outcome.value,
                    "location": decision.location,
                },
                headers={"Retry-After": _RETRY_AFTER_SECONDS} if unavailable else None,
            )
        if unavailable or not decision.location:
            return templates.TemplateResponse(
                request,
                "unavailable.html",
                {"retry_url": str(request.url)},
                status_code=503,
                headers={"Retry-After": _RETRY_AFTER_SECONDS},
            )
        return RedirectResponse(url=decision.location, status_code=303)

    # Middleware (last added runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    # Health check (public)
    @app.get("/api/health")
    async def health_check() -> dict[str, object]:
        from portapro.web.health import check_health

        return await check_health()

    # Guarded routes resolve the tenant per request through require_tenant
    app.include_router(pages_router)
    app.include_router(tenant_router)
    app.include_router(team_router)

    logger.info("app_created", root_domain=settings.root_domain)
    return app
