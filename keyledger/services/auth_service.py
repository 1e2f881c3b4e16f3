# services/auth_service.py
import logging

from sqlalchemy.orm import Session

from keyledger.core.auth import (
    AuthenticatedUser,
    issue_token,
    read_token,
    verify_password,
)
from keyledger.core.exceptions import InvalidCredentials, Unauthenticated
from keyledger.core.settings import Settings
from keyledger.models.schemas.user import (
    LoginModel,
    LoginResponseModel,
    UserSummaryModel,
)
from keyledger.repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)


class IdentityProvider:
    """Turns credentials into tokens and tokens back into active users."""

    def __init__(self, db: Session, settings: Settings):
        self.user_repo = UserRepository(db)
        self.settings = settings

    def login(self, credentials: LoginModel) -> LoginResponseModel:
        user = self.user_repo.get_active_user_by_email(credentials.email)
        if user is None or not verify_password(credentials.password, user.password_hash):
            logger.warning("Failed login attempt")
            raise InvalidCredentials()

        return LoginResponseModel(
            token=issue_token(user.id, self.settings),
            user=UserSummaryModel(id=user.id, email=user.email),
        )

    def authenticate(self, token: str) -> AuthenticatedUser:
        user_id = read_token(token, self.settings)
        if user_id is None:
            raise Unauthenticated()

        user = self.user_repo.get_active_user(user_id)
        if user is None:
            raise Unauthenticated()

        return AuthenticatedUser(id=user.id, email=user.email)
