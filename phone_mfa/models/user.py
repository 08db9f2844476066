from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime
from ..db import Base
import uuid


def generate_user_id():
    """Generate a UUID string for users.id"""
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    id = Column(String(64), primary_key=True, default=generate_user_id)
    email = Column(String, nullable=True, index=True)
    display_name = Column(String, nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)

    # Phone MFA fields
    phone_number = Column(String(20), unique=True, nullable=True, index=True)  # E.164, e.g. +14155552671
    phone_verified = Column(Boolean, default=False, nullable=False, index=True)
    mfa_enabled = Column(Boolean, default=False, nullable=False, index=True)
    phone_verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True)
