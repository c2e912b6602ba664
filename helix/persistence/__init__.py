"""
Persistence Module - Durable, offline-tolerant storage of learner progress.

Components:
- models: SQLAlchemy tables for positions, sessions, profiles, snapshots
- database: async engine and transactional session scopes
- storage: session-scoped and long-lived local key/value stores
- updates: position updates and the retry queue
- strategies: ordered write fallbacks
- gateway: write path with mirroring, retry and recovery
- repository: server-side reads/writes and session results
- migration: anonymous -> authenticated re-keying
"""

from helix.persistence.gateway import PersistenceGateway
from helix.persistence.migration import AnonymousMigrator, MigrationResult
from helix.persistence.repository import ProgressRepository, SessionSummary
from helix.persistence.storage import KeyValueStorage, MemoryStorage, SqliteStorage
from helix.persistence.updates import PositionUpdate, UpdateQueue, diff_tube

__all__ = [
    "AnonymousMigrator",
    "KeyValueStorage",
    "MemoryStorage",
    "MigrationResult",
    "PersistenceGateway",
    "PositionUpdate",
    "ProgressRepository",
    "SessionSummary",
    "SqliteStorage",
    "UpdateQueue",
    "diff_tube",
]
