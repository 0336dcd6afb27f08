"""Server-rendered HTML page routes."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from portapro.config.settings import get_settings
from portapro.tenancy.hostname import marketing_url
from portapro.web.dependencies import require_tenant, safe_redirect_path
from portapro.web.tenant_context import TenantContext

router = APIRouter(tags=["pages"])

templates = Jinja2Templates(directory=str(Path(__file__).parent.parent / "templates"))


@router.get("/unauthorized", response_class=HTMLResponse)
async def unauthorized_page(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "unauthorized.html",
        {"marketing_url": marketing_url(get_settings().root_domain)},
        status_code=403,
    )


@router.get("/auth", response_class=HTMLResponse)
async def sign_in_page(request: Request, redirect_url: str = "/dashboard") -> HTMLResponse:
    """Sign-in is hosted by Clerk; this page only mounts its widget."""
    return templates.TemplateResponse(
        request, "sign_in.html", {"redirect_url": safe_redirect_path(redirect_url)}
    )


@router.get("/dashboard", response_class=HTMLResponse)
async def dashboard_page(
    request: Request,
    tenant: TenantContext = Depends(require_tenant),
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {"organization": tenant.organization, "email": tenant.email},
    )
