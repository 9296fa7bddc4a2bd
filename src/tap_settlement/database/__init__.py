"""
Settlement database module.

SQLAlchemy models and async session management for SQLite (development) and
PostgreSQL (production).
"""

from .models import Base, MerchantDB, PaymentDB, PayoutDB, TransferDB
from .session import Database

__all__ = [
    "Base",
    "Database",
    "MerchantDB",
    "PaymentDB",
    "PayoutDB",
    "TransferDB",
]
