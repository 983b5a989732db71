"""HTTP API for creating and reading users."""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

import anyio
from fastapi import APIRouter, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Config, load_config
from .middleware import error_response, install_middleware
from .models import CreateUserRequest, CreateUserResponse, HealthResponse, UserResponse
from .repository import connect_repository
from .service import EmailAlreadyExists, ServiceError, UserNotFound, UserService
from .web import register_ui_routes

logger = logging.getLogger("agencycrm.server")

API_PREFIX = "/api/v1"

_USER_ID_PATTERN = re.compile(r"[+-]?[0-9]+")
_MAX_USER_ID = 2**63 - 1


def _rfc3339_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _parse_user_id(value: str) -> Optional[int]:
    """Return ``value`` as a signed 64-bit integer, or ``None`` if it is not one."""

    if not _USER_ID_PATTERN.fullmatch(value):
        return None
    parsed = int(value)
    if not -_MAX_USER_ID - 1 <= parsed <= _MAX_USER_ID:
        return None
    return parsed


async def _in_thread(func, *args):
    # Repository calls block on database I/O; abandon the worker if the
    # request times out so the handler can respond.
    return await anyio.to_thread.run_sync(func, *args, abandon_on_cancel=True)


def register_api_routes(app: FastAPI, service: UserService) -> None:
    """Expose the JSON API endpoints on the provided FastAPI application."""

    @app.get("/health", response_model=HealthResponse)
    async def healthcheck() -> HealthResponse:
        return HealthResponse(status="ok", time=_rfc3339_now())

    router = APIRouter(prefix=f"{API_PREFIX}/users", tags=["users"])

    @router.get("", response_model=List[UserResponse])
    @router.get("/", response_model=List[UserResponse], include_in_schema=False)
    async def list_users() -> List[UserResponse]:
        try:
            return await _in_thread(service.get_users)
        except ServiceError as exc:
            logger.error("Error getting users: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to get users",
            ) from exc

    @router.post("", response_model=CreateUserResponse, status_code=status.HTTP_201_CREATED)
    @router.post(
        "/",
        response_model=CreateUserResponse,
        status_code=status.HTTP_201_CREATED,
        include_in_schema=False,
    )
    async def create_user(payload: CreateUserRequest) -> CreateUserResponse:
        if payload.missing_fields():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Name and Email are required",
            )

        try:
            user_id = await _in_thread(service.create_user, payload)
        except EmailAlreadyExists as exc:
            logger.info("Rejected duplicate user: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="A user with that email already exists",
            ) from exc
        except ServiceError as exc:
            logger.error("Error creating user: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to create user",
            ) from exc

        return CreateUserResponse(id=user_id)

    @router.get("/{user_id}", response_model=UserResponse)
    async def get_user(user_id: str) -> UserResponse:
        parsed_id = _parse_user_id(user_id)
        if parsed_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid user ID",
            )

        try:
            return await _in_thread(service.get_user, parsed_id)
        except UserNotFound:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User not found",
            ) from None
        except ServiceError as exc:
            logger.error("Error getting user: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to get user",
            ) from exc

    app.include_router(router)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        response = error_response(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request payload")


def create_app(
    *,
    service: Optional[UserService] = None,
    config: Optional[Config] = None,
    include_web: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application for the user service.

    When ``service`` is omitted a PostgreSQL-backed one is built from
    ``config`` (or from the environment). The service is closed when the
    application shuts down.
    """

    app_config = config or load_config()
    app_service = service or UserService(connect_repository(app_config.db))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        logger.info("Closing user repository")
        app_service.close()

    app = FastAPI(
        title="AgencyCRM User Service",
        version="0.1.0",
        description="Create and look up users stored in a relational database.",
        lifespan=lifespan,
    )
    app.state.config = app_config
    app.state.service = app_service

    install_middleware(app, request_timeout=app_config.server.request_timeout)
    _register_error_handlers(app)
    register_api_routes(app, app_service)

    if include_web:
        register_ui_routes(
            app,
            templates_dir=app_config.templates_dir,
            static_dir=app_config.static_dir,
        )

    return app


__all__ = ["API_PREFIX", "create_app", "register_api_routes"]
