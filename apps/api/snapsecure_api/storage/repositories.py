"""Persistence contract consumed by the audit core.

Each call runs in its own short session so the long-lived services built
on top of these repositories can be shared between request threads.
SQLAlchemy failures surface as ``DependencyUnavailable``.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError as DuplicateRowError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from snapsecure_api.errors import DependencyUnavailable
from snapsecure_api.models import LedgerEntry, Permission, SecurityLog, User

logger = logging.getLogger(__name__)


class BaseRepository:
    """Session handling shared by all repositories."""

    def __init__(self, session_factory: sessionmaker):
        """Initialize repository with a session factory."""
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Storage call failed: {operation}",
                extra={"operation": operation, "error": str(e)},
            )
            raise DependencyUnavailable(f"{operation} failed: {e}") from e
        finally:
            db.close()


class LedgerRepository(BaseRepository):
    """Storage for ledger entries."""

    def insert(self, entry: LedgerEntry) -> LedgerEntry:
        """Insert entry and return it as persisted."""
        with self._session("ledger.insert") as db:
            db.add(entry)
            db.flush()
            db.refresh(entry)
        return entry

    def get_by_hash(self, tx_hash: str) -> Optional[LedgerEntry]:
        """Get entry by hash."""
        with self._session("ledger.get_by_hash") as db:
            return db.query(LedgerEntry).filter(LedgerEntry.tx_hash == tx_hash).first()

    def list_all(self) -> list[LedgerEntry]:
        """List all entries in insertion (block) order."""
        with self._session("ledger.list_all") as db:
            return db.query(LedgerEntry).order_by(LedgerEntry.block_number.asc()).all()

    def list_by_type(self, tx_type: str) -> list[LedgerEntry]:
        """List entries of one type in block order."""
        with self._session("ledger.list_by_type") as db:
            return (
                db.query(LedgerEntry)
                .filter(LedgerEntry.tx_type == tx_type)
                .order_by(LedgerEntry.block_number.asc())
                .all()
            )

    def last(self) -> Optional[LedgerEntry]:
        """Get entry with the highest block number."""
        with self._session("ledger.last") as db:
            return db.query(LedgerEntry).order_by(LedgerEntry.block_number.desc()).first()

    def count_confirmed(self) -> int:
        """Count confirmed entries."""
        with self._session("ledger.count_confirmed") as db:
            return (
                db.query(func.count(LedgerEntry.id))
                .filter(LedgerEntry.is_confirmed == True)  # noqa: E712
                .scalar()
            )


class SecurityLogRepository(BaseRepository):
    """Storage for security log rows (insert only)."""

    def insert(self, log: SecurityLog) -> Optional[SecurityLog]:
        """Insert log row.

        Returns None when a row for the same ledger hash and event type
        already exists.
        """
        db = self._session_factory()
        try:
            db.add(log)
            db.commit()
        except DuplicateRowError:
            db.rollback()
            logger.info(
                "Security log row already present",
                extra={"tx_hash": log.blockchain_hash, "event_type": log.event_type},
            )
            return None
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                "Storage call failed: security_log.insert",
                extra={"operation": "security_log.insert", "error": str(e)},
            )
            raise DependencyUnavailable(f"security_log.insert failed: {e}") from e
        finally:
            db.close()
        return log

    def list_for_hash(self, tx_hash: str) -> list[SecurityLog]:
        """List rows that reference a ledger hash."""
        with self._session("security_log.list_for_hash") as db:
            return (
                db.query(SecurityLog)
                .filter(SecurityLog.blockchain_hash == tx_hash)
                .order_by(SecurityLog.id.asc())
                .all()
            )

    def linked_hashes(self) -> set[str]:
        """Return every ledger hash referenced by at least one row."""
        with self._session("security_log.linked_hashes") as db:
            rows = (
                db.query(SecurityLog.blockchain_hash)
                .filter(SecurityLog.blockchain_hash.isnot(None))
                .distinct()
                .all()
            )
            return {row[0] for row in rows}

    def count(self, risk_level: Optional[str] = None) -> int:
        """Count rows, optionally for one risk level."""
        with self._session("security_log.count") as db:
            query = db.query(func.count(SecurityLog.id))
            if risk_level:
                query = query.filter(SecurityLog.risk_level == risk_level)
            return query.scalar()


class UserRepository(BaseRepository):
    """Storage for users and their permissions."""

    def get_by_id(self, user_id: int) -> Optional[User]:
        """Get user by id."""
        with self._session("user.get_by_id") as db:
            return db.query(User).filter(User.id == user_id).first()

    def get_by_username(self, username: str) -> Optional[User]:
        """Get user by username."""
        with self._session("user.get_by_username") as db:
            return db.query(User).filter(User.username == username).first()

    def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        with self._session("user.get_by_email") as db:
            return db.query(User).filter(User.email == email).first()

    def create(self, **fields) -> User:
        """Create user."""
        with self._session("user.create") as db:
            user = User(**fields)
            db.add(user)
            db.flush()
            db.refresh(user)
        return user

    def update(self, user_id: int, **fields) -> Optional[User]:
        """Update user fields. Returns None if the user does not exist."""
        with self._session("user.update") as db:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                return None
            for name, value in fields.items():
                setattr(user, name, value)
            user.updated_at = datetime.utcnow()
            db.flush()
            db.refresh(user)
        return user

    def get_permissions(self, user_id: int) -> list[Permission]:
        """List permissions for user."""
        with self._session("user.get_permissions") as db:
            return (
                db.query(Permission)
                .filter(Permission.user_id == user_id)
                .order_by(Permission.permission_type.asc())
                .all()
            )

    def set_permission(
        self,
        user_id: int,
        permission_type: str,
        is_granted: bool,
        security_context: Optional[dict] = None,
    ) -> Permission:
        """Create or update a permission row."""
        now = datetime.utcnow()
        with self._session("user.set_permission") as db:
            permission = (
                db.query(Permission)
                .filter(
                    Permission.user_id == user_id,
                    Permission.permission_type == permission_type,
                )
                .first()
            )
            if permission is None:
                permission = Permission(user_id=user_id, permission_type=permission_type)
                db.add(permission)
            permission.is_granted = is_granted
            permission.granted_at = now if is_granted else None
            permission.revoked_at = None if is_granted else now
            permission.security_context = security_context
            permission.updated_at = now
            db.flush()
            db.refresh(permission)
        return permission
