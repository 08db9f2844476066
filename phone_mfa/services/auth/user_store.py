"""
User datastore access for the verification flows.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...core.errors import DuplicateEntryError
from ...models.user import User

logger = logging.getLogger(__name__)


class UserDirectory(ABC):
    """What the verification engine needs from the user datastore."""

    @abstractmethod
    def find_by_phone(self, phone: str) -> Optional[User]:
        pass

    @abstractmethod
    def find_by_id(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    def update_phone_verification(self, user_id: str, phone: str, verified: bool, mfa_enabled: bool) -> User:
        pass

    @abstractmethod
    def is_phone_owned_by_other(self, phone: str, excluding_user_id: Optional[str]) -> bool:
        pass

    @abstractmethod
    def set_mfa_enabled(self, user_id: str, enabled: bool) -> Optional[User]:
        pass


class SqlAlchemyUserDirectory(UserDirectory):
    def __init__(self, db: Session):
        self.db = db

    def find_by_phone(self, phone: str) -> Optional[User]:
        return self.db.query(User).filter(User.phone_number == phone).first()

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def is_phone_owned_by_other(self, phone: str, excluding_user_id: Optional[str]) -> bool:
        query = self.db.query(User.id).filter(User.phone_number == phone)
        if excluding_user_id is not None:
            query = query.filter(User.id != excluding_user_id)
        return query.first() is not None

    def update_phone_verification(self, user_id: str, phone: str, verified: bool, mfa_enabled: bool) -> User:
        user = self.find_by_id(user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")

        user.phone_number = phone
        user.phone_verified = verified
        user.mfa_enabled = mfa_enabled
        user.phone_verified_at = datetime.utcnow() if verified else None
        user.updated_at = datetime.utcnow()

        try:
            self.db.commit()
        except IntegrityError as e:
            # Another account claimed the number between our check and the write
            self.db.rollback()
            logger.warning(f"[PhoneMFA][Users] Unique violation saving phone for user {user_id}")
            raise DuplicateEntryError("This phone number is already registered to another account") from e

        self.db.refresh(user)
        return user

    def set_mfa_enabled(self, user_id: str, enabled: bool) -> Optional[User]:
        user = self.find_by_id(user_id)
        if user is None:
            return None
        user.mfa_enabled = enabled
        user.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(user)
        return user
