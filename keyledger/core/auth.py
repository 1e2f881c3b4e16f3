from dataclasses import dataclass
from typing import Annotated, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from keyledger.core.db import get_db
from keyledger.core.exceptions import Unauthenticated
from keyledger.core.settings import Settings

# auto_error=False so a missing header raises our own Unauthenticated error
# and is rendered like every other 401.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

TOKEN_SALT = "keyledger.bearer"

_password_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    return _password_hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.SECRET_KEY, salt=TOKEN_SALT)


def issue_token(user_id: int, settings: Settings) -> str:
    """Signed bearer token naming the user; expires after TOKEN_TTL_SECONDS."""
    return _serializer(settings).dumps({"uid": user_id})


def read_token(token: str, settings: Settings) -> Optional[int]:
    """
    User id carried by a bearer token, or None if the token is unknown,
    tampered with or expired.

    Static service tokens from settings are checked first.
    """
    if token in settings.TOKENS:
        return settings.TOKENS[token]
    try:
        payload = _serializer(settings).loads(token, max_age=settings.TOKEN_TTL_SECONDS)
    except (SignatureExpired, BadSignature):
        return None
    user_id = payload.get("uid") if isinstance(payload, dict) else None
    return user_id if isinstance(user_id, int) else None


@dataclass(frozen=True)
class AuthenticatedUser:
    id: int
    email: str


def require_auth_token(
    request: Request,
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    db: Annotated[Session, Depends(get_db)],
) -> AuthenticatedUser:
    """
    Dependency that requires a valid Bearer token for an active user.

    Raises Unauthenticated for a missing, invalid or expired token, or when
    the user it names no longer exists or has been deactivated.
    """
    # Imported here; the service layer depends on this module.
    from keyledger.services.auth_service import IdentityProvider

    if not token:
        raise Unauthenticated()

    identity = IdentityProvider(db, request.app.state.settings)
    return identity.authenticate(token)
