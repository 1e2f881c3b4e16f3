from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Path, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette import status

from keyledger.core.auth import AuthenticatedUser, require_auth_token
from keyledger.core.db import build_engine, build_session_factory, get_db, init_db
from keyledger.core.errors import register_exception_handlers
from keyledger.core.log_config import configure_logging
from keyledger.core.settings import Settings, config_settings
from keyledger.models.schemas.assignment import (
    AssignmentCreatedModel,
    AssignmentCreateModel,
    AssignmentHistoryModel,
)
from keyledger.models.schemas.base import OkResponseModel
from keyledger.models.schemas.key import KeyCreatedModel, KeyCreateModel, KeyModel
from keyledger.models.schemas.user import (
    LoginModel,
    LoginResponseModel,
    UserCreatedModel,
    UserCreateModel,
    UserModel,
    UserUpdateModel,
)
from keyledger.services.auth_service import IdentityProvider
from keyledger.services.key_service import KeyRegistry
from keyledger.services.ledger_service import AssignmentLedger
from keyledger.services.user_service import UserService

public_router = APIRouter()

# Everything under /api except login requires a bearer token
api_router = APIRouter(prefix="/api", dependencies=[Depends(require_auth_token)])


@public_router.get("/healthz", summary="Database connectivity check")
def healthcheck(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except SQLAlchemyError:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "disconnected"},
        )


@public_router.post(
    "/api/auth/login",
    response_model=LoginResponseModel,
    summary="Authenticate user and return a bearer token",
)
def login(credentials: LoginModel, request: Request, db: Session = Depends(get_db)):
    return IdentityProvider(db, request.app.state.settings).login(credentials)


# --- Keys ---


@api_router.get("/keys", response_model=list[KeyModel], summary="List active keys")
def get_keys(db: Session = Depends(get_db)):
    """Active keys, each marked AVAILABLE or ASSIGNED."""
    return AssignmentLedger(db).list_active_keys()


@api_router.post(
    "/keys",
    response_model=KeyCreatedModel,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new key",
)
def post_keys(key_data: KeyCreateModel, db: Session = Depends(get_db)):
    return KeyRegistry(db).create_key(key_data)


@api_router.delete(
    "/keys/{key_id}", response_model=OkResponseModel, summary="Retire a key"
)
def delete_key(
    key_id: int = Path(..., description="ID of the key to retire"),
    db: Session = Depends(get_db),
):
    KeyRegistry(db).retire_key(key_id)
    return OkResponseModel()


@api_router.post(
    "/keys/assign",
    response_model=AssignmentCreatedModel,
    status_code=status.HTTP_201_CREATED,
    summary="Assign a key to a user",
)
def post_assignment(
    assignment_data: AssignmentCreateModel,
    current_user: AuthenticatedUser = Depends(require_auth_token),
    db: Session = Depends(get_db),
):
    assignment_id = AssignmentLedger(db).assign(
        key_id=assignment_data.key_id,
        holder_id=assignment_data.assigned_to,
        actor_id=current_user.id,
    )
    return AssignmentCreatedModel(id=assignment_id)


@api_router.post(
    "/keys/return/{key_id}", response_model=OkResponseModel, summary="Return a key"
)
def post_return(
    key_id: int = Path(..., description="ID of the key to return"),
    current_user: AuthenticatedUser = Depends(require_auth_token),
    db: Session = Depends(get_db),
):
    """Succeeds whether or not the key was out."""
    AssignmentLedger(db).return_key(key_id, actor_id=current_user.id)
    return OkResponseModel()


@api_router.get(
    "/keys/history/{key_id}",
    response_model=list[AssignmentHistoryModel],
    summary="Assignment history for a key, newest first",
)
def get_history(
    key_id: int = Path(..., description="ID of the key"),
    db: Session = Depends(get_db),
):
    return AssignmentLedger(db).history(key_id)


# --- Users ---


@api_router.get("/users", response_model=list[UserModel], summary="List users")
def get_users(db: Session = Depends(get_db)):
    return UserService(db).list_users()


@api_router.post(
    "/users",
    response_model=UserCreatedModel,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user with a temporary password",
)
def post_users(user_data: UserCreateModel, db: Session = Depends(get_db)):
    return UserService(db).create_user(user_data)


@api_router.put("/users/{user_id}", response_model=OkResponseModel, summary="Update a user")
def put_user(
    user_data: UserUpdateModel,
    user_id: int = Path(..., description="ID of the user to update"),
    db: Session = Depends(get_db),
):
    UserService(db).update_user(user_id, user_data)
    return OkResponseModel()


@api_router.delete(
    "/users/{user_id}", response_model=OkResponseModel, summary="Deactivate a user"
)
def delete_user(
    user_id: int = Path(..., description="ID of the user to deactivate"),
    db: Session = Depends(get_db),
):
    UserService(db).deactivate_user(user_id)
    return OkResponseModel()


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
) -> FastAPI:
    """
    Build the application around an explicit store.

    Without a session factory one is built from ``settings.DATABASE_URL``.
    Tables are created, and the bootstrap admin seeded, at startup.
    """
    settings = settings or config_settings
    configure_logging(settings.LOG_LEVEL)

    if session_factory is None:
        engine = build_engine(settings.DATABASE_URL, settings.DB_TIMEOUT_SECONDS)
        session_factory = build_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(session_factory.kw["bind"])
        if settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD:
            with session_factory() as db:
                UserService(db).ensure_admin(settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
        yield

    app = FastAPI(
        title="Key custody ledger",
        description="Tracks who holds each key and the full custody history.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(public_router)
    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("keyledger.main:app", host="0.0.0.0", port=8000, reload=True)
