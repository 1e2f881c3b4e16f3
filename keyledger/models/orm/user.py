from sqlalchemy import Boolean, Column, DateTime, Integer, String

from .base import Base, utcnow


class UserORM(Base):
    __tablename__ = "users"
    __repr_exclude__ = ("password_hash",)

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
