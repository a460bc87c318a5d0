"""Per-user credential and preference storage.

Values are keyed by (scope, user_id) and never expire. The in-memory
store serves tests and local development; PostgreSQL is used when a
database URL is configured.
"""

from src.relay.store.memory import InMemoryCredentialStore
from src.relay.store.models import (
    CredentialScope,
    CredentialStore,
    webhook_user_id,
)
from src.relay.store.repository import DatabaseError, PostgresCredentialStore

__all__ = [
    "CredentialScope",
    "CredentialStore",
    "DatabaseError",
    "InMemoryCredentialStore",
    "PostgresCredentialStore",
    "webhook_user_id",
]
