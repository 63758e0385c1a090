"""Persistence layer: local JSON stores and the SQL token backup."""

from mediasession.infrastructure.persistence.database import Database
from mediasession.infrastructure.persistence.local_store import (
    LOCAL_TOKENS_KEY,
    PENDING_TOKENS_KEY,
    FileVerifierStore,
    LocalTokenStore,
    PendingTokenSlot,
)
from mediasession.infrastructure.persistence.models import MediaTokenModel
from mediasession.infrastructure.persistence.remote_store import SqlRemoteTokenStore
from mediasession.infrastructure.persistence.repositories import MediaTokenRepository

__all__ = [
    "LOCAL_TOKENS_KEY",
    "PENDING_TOKENS_KEY",
    "Database",
    "FileVerifierStore",
    "LocalTokenStore",
    "MediaTokenModel",
    "MediaTokenRepository",
    "PendingTokenSlot",
    "SqlRemoteTokenStore",
]
