"""Credential and preference store interface.

Every stored value is keyed by a (scope, user_id) pair:
- CREDENTIAL: the user's Jules API key
- PREFERRED_REPO: optional repository hint such as "org/name"

User ids are opaque strings. Surfaces namespace them so identities from
different platforms never collide (see webhook_user_id()).
"""

from enum import Enum
from typing import Optional, Protocol, runtime_checkable


WEBHOOK_USER_PREFIX = "webhook:"


class CredentialScope(str, Enum):
    """Kinds of per-user values the store holds."""

    CREDENTIAL = "credential"
    PREFERRED_REPO = "preferred_repo"


def webhook_user_id(external_id: str) -> str:
    """Namespace an external webhook identity for use as a store key."""
    return f"{WEBHOOK_USER_PREFIX}{external_id}"


@runtime_checkable
class CredentialStore(Protocol):
    """Protocol for durable per-user key-value storage.

    Implementations must not expire values. Concurrency control, if any,
    is left to the backing store.
    """

    async def get(self, scope: CredentialScope, user_id: str) -> Optional[str]:
        """Return the stored value, or None if absent."""
        ...

    async def put(self, scope: CredentialScope, user_id: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        ...

    async def delete(self, scope: CredentialScope, user_id: str) -> None:
        """Remove a value. Deleting an absent value is not an error."""
        ...
