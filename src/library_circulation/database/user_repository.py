"""
Staff user repository.

Passwords are hashed with passlib before they reach the database and are
verified through the same context.
"""

import logging

from passlib.context import CryptContext
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..errors import InvalidCredentials, UserNotFound, ValidationError
from ..models.user import User as UserModel
from ..models.user import UserCreate, UserStatus, UserUpdate
from .repository import BaseRepository
from .schema import User as UserDB
from .session import safe_flush, safe_query

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


class UserRepository(BaseRepository[UserDB, UserCreate, UserUpdate, UserModel]):
    not_found_error = UserNotFound

    def __init__(self, session: Session):
        super().__init__(session)

    @property
    def model_class(self) -> type[UserDB]:
        return UserDB

    @property
    def response_schema(self) -> type[UserModel]:
        return UserModel

    def create(self, data: UserCreate) -> UserModel:
        fields = data.model_dump()
        fields["password"] = hash_password(fields["password"])
        db_user = UserDB(**fields)
        self.session.add(db_user)
        safe_flush(self.session, "create User")
        self.session.refresh(db_user)
        logger.info("Created user %s with role %s", db_user.username, db_user.role.value)
        return self._to_response_model(db_user)

    def _find_by_login(self, identifier: str) -> UserDB | None:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(UserDB).where(or_(UserDB.username == identifier, UserDB.email == identifier))
            ).scalars().first(),
            "Failed to look up user",
        )

    def get_by_username(self, username: str) -> UserModel | None:
        db_user = self._find_by_login(username)
        return self._to_response_model(db_user) if db_user else None

    def authenticate(self, identifier: str, password: str) -> UserModel:
        """
        Check a username-or-email and password pair.

        Raises:
            InvalidCredentials: Unknown user, wrong password or inactive account
        """
        db_user = self._find_by_login(identifier)
        if db_user is None or not verify_password(password, db_user.password):
            raise InvalidCredentials("Invalid username or password")
        if db_user.status != UserStatus.ACTIVE:
            raise InvalidCredentials("Account is inactive")
        return self._to_response_model(db_user)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        if len(new_password) < 8:
            raise ValidationError("Password must be at least 8 characters")
        db_user = self._require_row(user_id, for_update=True)
        if not verify_password(current_password, db_user.password):
            raise InvalidCredentials("Current password is incorrect")

        db_user.password = hash_password(new_password)
        safe_flush(self.session, "change password")
        logger.info("Password changed for user %s", db_user.username)
