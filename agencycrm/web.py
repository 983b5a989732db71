"""Server-rendered pages and static assets for the browser front end."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from jinja2 import TemplateError

logger = logging.getLogger("agencycrm.web")

HOME_TEMPLATE = "pages/index.html"
USERS_TEMPLATE = "pages/users.html"


def _template_environment(templates_dir: Path) -> Optional[Jinja2Templates]:
    if not templates_dir.is_dir():
        logger.warning("Templates directory does not exist: %s", templates_dir)
        return None
    return Jinja2Templates(directory=str(templates_dir))


def register_ui_routes(app: FastAPI, *, templates_dir: Path, static_dir: Path) -> None:
    """Expose the HTML pages and ``/static`` files on the provided FastAPI app."""

    templates = _template_environment(templates_dir)
    if static_dir.is_dir():
        app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")
    else:
        logger.warning("Static directory does not exist: %s", static_dir)

    router = APIRouter(include_in_schema=False)

    def _render(request: Request, name: str, **extra: Any) -> Response:
        if templates is None:
            return PlainTextResponse(
                "Templates not available",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        context: Dict[str, Any] = {"page": name}
        context.update(extra)
        try:
            return templates.TemplateResponse(request, name, context)
        except TemplateError:
            logger.exception("Error rendering template %s", name)
            return PlainTextResponse(
                "Internal Server error",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

    @router.get("/", response_class=HTMLResponse, name="ui_home")
    async def home_page(request: Request):
        return _render(request, HOME_TEMPLATE)

    @router.get("/users", response_class=HTMLResponse, name="ui_users")
    async def users_page(request: Request):
        return _render(request, USERS_TEMPLATE)

    app.include_router(router)


__all__ = ["register_ui_routes", "HOME_TEMPLATE", "USERS_TEMPLATE"]
