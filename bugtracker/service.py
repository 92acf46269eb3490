"""HTTP API exposing accounts and bug records."""

from __future__ import annotations

import functools
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, TypeVar

import anyio
from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .bugs import BugService
from .config import Settings, load_settings
from .database import Database
from .errors import InvalidToken, NotFound, TrackerError
from .identity import AuthenticatedUser, IdentityManager
from .models import Bug, BugStats, Principal, User
from .repository import BugRepository, SQLiteBugRepository
from .tokens import TokenSigner
from .validation import MAX_RECORD_ID, validate_bug_filter

logger = logging.getLogger("bugtracker.api")

T = TypeVar("T")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserResponse(_CamelModel):
    id: int
    name: str
    email: str
    role: str
    created_at: datetime


class AuthResponse(UserResponse):
    token: str


class UserSummary(_CamelModel):
    id: int
    name: str
    email: str


class BugResponse(_CamelModel):
    id: int
    title: str
    description: str
    status: str
    priority: str
    created_by: Optional[UserSummary]
    assigned_to: Optional[UserSummary] = None
    created_at: datetime
    updated_at: datetime


class StatsResponse(_CamelModel):
    total_bugs: int
    open_bugs: int
    in_progress_bugs: int
    resolved_bugs: int
    assigned_to_me: int


class LoginRequest(BaseModel):
    email: str
    password: str


class MessageResponse(BaseModel):
    message: str


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role.value,
        created_at=user.created_at,
    )


def auth_to_response(auth: AuthenticatedUser) -> AuthResponse:
    return AuthResponse(**user_to_response(auth.user).model_dump(), token=auth.token)


def stats_to_response(stats: BugStats) -> StatsResponse:
    return StatsResponse(
        total_bugs=stats.total_bugs,
        open_bugs=stats.open_bugs,
        in_progress_bugs=stats.in_progress_bugs,
        resolved_bugs=stats.resolved_bugs,
        assigned_to_me=stats.assigned_to_me,
    )


def _summaries(database: Database, bugs: Iterable[Bug]) -> Dict[int, UserSummary]:
    user_ids = set()
    for bug in bugs:
        user_ids.add(bug.created_by)
        if bug.assigned_to is not None:
            user_ids.add(bug.assigned_to)
    summaries: Dict[int, UserSummary] = {}
    for user_id in user_ids:
        user = database.get_user(user_id)
        if user is not None:
            summaries[user_id] = UserSummary(id=user.id, name=user.name, email=user.email)
    return summaries


def bugs_to_response(database: Database, bugs: List[Bug]) -> List[BugResponse]:
    """Render bugs with their creator and assignee embedded as user summaries."""

    summaries = _summaries(database, bugs)
    return [
        BugResponse(
            id=bug.id,
            title=bug.title,
            description=bug.description,
            status=bug.status.value,
            priority=bug.priority.value,
            created_by=summaries.get(bug.created_by),
            assigned_to=summaries.get(bug.assigned_to) if bug.assigned_to is not None else None,
            created_at=bug.created_at,
            updated_at=bug.updated_at,
        )
        for bug in bugs
    ]


def _parse_bug_id(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise NotFound("Bug not found") from None
    if not 1 <= value <= MAX_RECORD_ID:
        raise NotFound("Bug not found")
    return value


async def _run(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking store call on a worker thread."""

    return await anyio.to_thread.run_sync(functools.partial(func, *args, **kwargs))


def _build_auth_dependency(identity: IdentityManager):
    bearer_security = HTTPBearer(auto_error=False)

    async def dependency(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_security),
    ) -> Principal:
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise InvalidToken("Missing bearer token")
        return await _run(identity.resolve_principal, credentials.credentials)

    return dependency


def register_user_routes(
    router: APIRouter,
    identity: IdentityManager,
    *,
    current_principal: Callable[..., Principal],
) -> None:
    @router.post("/users/register", status_code=status.HTTP_201_CREATED, response_model=AuthResponse)
    async def register(payload: Dict[str, Any] = Body(...)) -> AuthResponse:
        user = await _run(
            identity.register,
            payload.get("name"),
            payload.get("email"),
            payload.get("password"),
        )
        token = identity.issue_token(user.id)
        return auth_to_response(AuthenticatedUser(user=user, token=token))

    @router.post("/users/login", response_model=AuthResponse)
    async def login(request: LoginRequest) -> AuthResponse:
        auth = await _run(identity.authenticate, request.email, request.password)
        return auth_to_response(auth)

    @router.get("/users/profile", response_model=UserResponse)
    async def get_profile(principal: Principal = Depends(current_principal)) -> UserResponse:
        user = await _run(identity.get_profile, principal)
        return user_to_response(user)

    @router.put("/users/profile", response_model=AuthResponse)
    async def update_profile(
        payload: Dict[str, Any] = Body(...),
        principal: Principal = Depends(current_principal),
    ) -> AuthResponse:
        auth = await _run(identity.update_profile, principal, payload)
        return auth_to_response(auth)

    @router.get("/users", response_model=List[UserResponse])
    async def list_users(principal: Principal = Depends(current_principal)) -> List[UserResponse]:
        users = await _run(identity.list_users)
        return [user_to_response(user) for user in users]


def register_bug_routes(
    router: APIRouter,
    bugs: BugService,
    database: Database,
    *,
    current_principal: Callable[..., Principal],
) -> None:
    def _render(items: List[Bug]) -> List[BugResponse]:
        return bugs_to_response(database, items)

    @router.post("/bugs", status_code=status.HTTP_201_CREATED, response_model=BugResponse)
    async def create_bug(
        payload: Dict[str, Any] = Body(...),
        principal: Principal = Depends(current_principal),
    ) -> BugResponse:
        bug = await _run(bugs.create_bug, payload, principal)
        return (await _run(_render, [bug]))[0]

    @router.get("/bugs", response_model=List[BugResponse])
    async def list_bugs(
        bug_status: Optional[str] = Query(default=None, alias="status"),
        priority: Optional[str] = Query(default=None),
        assigned_to: Optional[str] = Query(default=None, alias="assignedTo"),
        principal: Principal = Depends(current_principal),
    ) -> List[BugResponse]:
        bug_filter = validate_bug_filter(bug_status, priority, assigned_to)
        items = await _run(bugs.list_bugs, bug_filter, principal)
        return await _run(_render, items)

    # Registered before /bugs/{bug_id} so "stats" is never parsed as an id.
    @router.get("/bugs/stats", response_model=StatsResponse)
    async def bug_stats(principal: Principal = Depends(current_principal)) -> StatsResponse:
        stats = await _run(bugs.compute_stats, principal)
        return stats_to_response(stats)

    @router.get("/bugs/{bug_id}", response_model=BugResponse)
    async def get_bug(bug_id: str, principal: Principal = Depends(current_principal)) -> BugResponse:
        bug = await _run(bugs.get_bug, _parse_bug_id(bug_id))
        return (await _run(_render, [bug]))[0]

    @router.put("/bugs/{bug_id}", response_model=BugResponse)
    async def update_bug(
        bug_id: str,
        payload: Dict[str, Any] = Body(...),
        principal: Principal = Depends(current_principal),
    ) -> BugResponse:
        bug = await _run(bugs.update_bug, _parse_bug_id(bug_id), payload, principal)
        return (await _run(_render, [bug]))[0]

    @router.delete("/bugs/{bug_id}", response_model=MessageResponse)
    async def delete_bug(bug_id: str, principal: Principal = Depends(current_principal)) -> MessageResponse:
        await _run(bugs.delete_bug, _parse_bug_id(bug_id), principal)
        return MessageResponse(message="Bug deleted successfully")


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(TrackerError)
    async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
        content: Dict[str, Any] = {"detail": exc.message, "error": type(exc).__name__}
        fields = getattr(exc, "fields", None)
        if fields:
            content["fields"] = fields
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields: Dict[str, str] = {}
        for error in exc.errors():
            loc = [str(part) for part in error.get("loc", ()) if not isinstance(part, int)]
            if loc and loc[0] in {"body", "query", "path"}:
                loc = loc[1:]
            fields.setdefault(".".join(loc) or "body", str(error.get("msg", "invalid")))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": "Invalid or missing fields: " + ", ".join(sorted(fields)),
                "error": "ValidationError",
                "fields": fields,
            },
        )


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    repository: BugRepository | None = None,
    prefix: str = "/api",
) -> FastAPI:
    """Instantiate the FastAPI application.

    A database passed in by the caller stays open after shutdown; one created
    here from ``settings`` is closed when the application stops.
    """

    settings = settings or load_settings()
    owns_database = database is None
    db = database or Database(settings.database_path)
    db.initialize()

    signer = TokenSigner(settings.token_secret, ttl=settings.token_ttl)
    identity = IdentityManager(db, signer, min_password_length=settings.password_min_length)
    bug_service = BugService(repository or SQLiteBugRepository(db), user_lookup=db.get_user)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        db.initialize()
        logger.info("Bug tracker API ready (database=%s)", db.path)
        try:
            yield
        finally:
            if owns_database:
                db.close()

    app = FastAPI(
        title="Bug Tracker API",
        version="1.0.0",
        description="Track bugs with owner-or-admin mutation rights.",
        lifespan=lifespan,
    )
    app.state.database = db
    app.state.identity = identity
    app.state.bugs = bug_service

    _install_error_handlers(app)

    @app.get("/")
    async def welcome() -> Dict[str, str]:
        return {"message": "Welcome to Bug Tracker API"}

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    current_principal = _build_auth_dependency(identity)
    router = APIRouter()
    register_user_routes(router, identity, current_principal=current_principal)
    register_bug_routes(router, bug_service, db, current_principal=current_principal)
    app.include_router(router, prefix=prefix)

    return app


__all__ = ["create_app"]
