"""
web/routes.py -- Jinja2 template routes for the VPlan browser frontend.

The pages are thin shells: the timetable and news are fetched by
static/scripts/vplan.js from /api/vplan and /api/news, and the login form posts
to /api/authenticate/{username} from static/scripts/login.js. These routes only
decide which shell to serve.

Routes:
  GET /       -- timetable page (redirects to /login without a session)
  GET /login  -- login form

Static files (scripts, stylesheet) are served from web/static at /static; the
mount happens in asgi.py.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from auth.dependencies import try_get_current_ident

logger = logging.getLogger("vplan.web")

_WEB_DIR = Path(__file__).parent

templates = Jinja2Templates(directory=str(_WEB_DIR / "templates"))
static_files = StaticFiles(directory=str(_WEB_DIR / "static"))
router = APIRouter()

# Day columns rendered by the timetable page: today and the next two plans.
_DAY_COLUMNS = 3


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths.

    Rejects absolute URLs and protocol-relative "//host" targets so the login
    page cannot be used as an open redirect.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


def _require_auth(request: Request) -> Optional[RedirectResponse]:
    """Return a redirect to /login if the request has no valid session, else None.

    Call at the top of protected route handlers:
        if redirect := _require_auth(request):
            return redirect
    """
    if try_get_current_ident(request) is None:
        return RedirectResponse(f"/login?next={request.url.path}", status_code=302)
    return None


@router.get("/", response_class=HTMLResponse)
def index(request: Request, cls: str = "") -> HTMLResponse:
    """Timetable page. ?cls= preselects the class filter."""
    if redirect := _require_auth(request):
        return redirect
    return templates.TemplateResponse(
        request,
        "index.html",
        {"class_name": cls[:32], "day_columns": _DAY_COLUMNS},
    )


@router.get("/login", response_class=HTMLResponse)
def login_page(request: Request, next: Optional[str] = None) -> HTMLResponse:
    """Login form. Already-authenticated visitors go straight to the timetable."""
    target = _safe_next(next)
    if try_get_current_ident(request) is not None:
        return RedirectResponse(target, status_code=302)
    return templates.TemplateResponse(request, "login.html", {"next_url": target})
