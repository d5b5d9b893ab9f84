"""User and permission models."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from snapsecure_api.db.base import Base


class User(Base):
    """Registered user."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), nullable=False, unique=True, index=True)
    email = Column(String(100), nullable=False, unique=True, index=True)
    password_hash = Column(Text, nullable=False)
    display_name = Column(String(100), nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    public_key = Column(Text, nullable=True)  # Ledger attribution id, not a signing key
    private_key_encrypted = Column(Text, nullable=True)
    security_score = Column(Integer, default=100, nullable=False)
    last_active = Column(DateTime, default=datetime.utcnow, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    permissions = relationship("Permission", back_populates="user", cascade="all, delete-orphan")


class Permission(Base):
    """Device permission grant state per user."""

    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("user_id", "permission_type", name="uq_permission_user_type"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    permission_type = Column(String(50), nullable=False)  # CAMERA, MICROPHONE, GALLERY
    is_granted = Column(Boolean, nullable=False)
    granted_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    security_context = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="permissions")
