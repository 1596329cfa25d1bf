"""Database layer - engine, base classes, transactions and locks."""

from rental_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString, enum_check
from rental_kernel.db.engine import create_tables, get_engine, get_session
from rental_kernel.db.locks import KeyedLockRegistry
from rental_kernel.db.transaction import TransactionRunner

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "enum_check",
    "KeyedLockRegistry",
    "TransactionRunner",
]
