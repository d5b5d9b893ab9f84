"""Database models - import all models here for metadata discovery."""

from snapsecure_api.models.ledger import LedgerEntry, SecurityLog
from snapsecure_api.models.user import Permission, User

__all__ = [
    "User",
    "Permission",
    "LedgerEntry",
    "SecurityLog",
]
