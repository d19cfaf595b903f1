"""HTTP API exposing create/read/update/delete operations on user records."""

from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime
from http import HTTPStatus
from typing import Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .codec import CodecError, PersistenceError, SnapshotFile
from .config import Settings, load_settings
from .models import User
from .store import UserNotFoundError, UserStore, UserValidationError

logger = logging.getLogger("userstore.service")

REQUEST_ID_HEADER = "X-Request-ID"


class CreateUserRequest(BaseModel):
    display_name: str = Field(default="", description="Display name of the user")
    email: str = Field(default="", description="Contact address; not validated")


class UpdateUserRequest(BaseModel):
    display_name: str = Field(default="", description="Display name of the user")


class CreateUserResponse(BaseModel):
    user_id: str


class UserResponse(BaseModel):
    created_at: datetime
    display_name: str
    email: str


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        created_at=user.created_at,
        display_name=user.display_name,
        email=user.email,
    )


def error_response(status_code: int, message: str) -> JSONResponse:
    """Render the ``{"status", "error"}`` envelope used for every failure."""

    return JSONResponse(
        status_code=status_code,
        content={"status": HTTPStatus(status_code).phrase, "error": message},
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID and emit one access log line for it."""

    async def dispatch(self, request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or secrets.token_hex(8)
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id
        client = request.client.host if request.client else "-"
        logger.info(
            '[%s] %s "%s %s" %d %.1fms',
            request_id,
            client,
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = errors[0].get("msg", "invalid request") if errors else "invalid request"
        return error_response(status.HTTP_400_BAD_REQUEST, str(message))

    @app.exception_handler(PersistenceError)
    async def persistence_failed(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence failure while handling %s %s: %s", request.method, request.url.path, exc)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "failed to persist user store")

    @app.exception_handler(CodecError)
    async def codec_failed(request: Request, exc: CodecError) -> JSONResponse:
        logger.error("Snapshot codec failure while handling %s %s: %s", request.method, request.url.path, exc)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "user store is corrupt")

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error while handling %s %s", request.method, request.url.path)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal server error")


def register_user_routes(app: FastAPI, store: UserStore) -> None:
    """Expose the user endpoints under ``/api/v1/users``."""

    router = APIRouter(prefix="/api/v1/users")

    def get_store() -> UserStore:
        return store

    @router.get("", response_model=Dict[str, UserResponse])
    def list_users(users: UserStore = Depends(get_store)) -> Dict[str, UserResponse]:
        return {user.id: user_to_response(user) for user in users.list()}

    @router.post("", status_code=status.HTTP_201_CREATED, response_model=CreateUserResponse)
    def create_user(
        payload: CreateUserRequest,
        users: UserStore = Depends(get_store),
    ) -> CreateUserResponse:
        try:
            user_id = users.create(payload.display_name, payload.email)
        except UserValidationError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return CreateUserResponse(user_id=user_id)

    @router.get("/{user_id}", response_model=UserResponse)
    def read_user(user_id: str, users: UserStore = Depends(get_store)) -> UserResponse:
        try:
            user = users.get(user_id)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return user_to_response(user)

    @router.patch("/{user_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
    def update_user(
        user_id: str,
        payload: UpdateUserRequest,
        users: UserStore = Depends(get_store),
    ) -> Response:
        try:
            users.update(user_id, payload.display_name)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except UserValidationError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
    def delete_user(user_id: str, users: UserStore = Depends(get_store)) -> Response:
        try:
            users.delete(user_id)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    app.include_router(router)


def create_app(
    *,
    store: Optional[UserStore] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the ASGI application around a single, process-wide user store."""

    if store is None:
        if settings is None:
            settings = load_settings()
        store = UserStore(SnapshotFile(settings.store_path))
    store.initialize()

    trusted_proxies = settings.trusted_proxies if settings is not None else "*"

    app = FastAPI(
        title="User Store",
        description="Create, read, update and delete user records backed by a JSON file",
        version="1.0.0",
    )
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=trusted_proxies)
    app.state.store = store

    _register_error_handlers(app)

    @app.get("/", response_class=PlainTextResponse)
    def server_time() -> str:
        return datetime.now().astimezone().isoformat()

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    register_user_routes(app, store)

    return app


__all__ = ["create_app", "error_response", "register_user_routes", "user_to_response"]
