"""In-memory credential store for local development and tests."""

from typing import Dict, Optional, Tuple

from src.relay.store.models import CredentialScope


class InMemoryCredentialStore:
    """CredentialStore backed by a dict. Values are lost on restart."""

    def __init__(self) -> None:
        self._values: Dict[Tuple[CredentialScope, str], str] = {}

    async def get(self, scope: CredentialScope, user_id: str) -> Optional[str]:
        return self._values.get((scope, user_id))

    async def put(self, scope: CredentialScope, user_id: str, value: str) -> None:
        self._values[(scope, user_id)] = value

    async def delete(self, scope: CredentialScope, user_id: str) -> None:
        self._values.pop((scope, user_id), None)

    def clear(self) -> None:
        """Remove every stored value."""
        self._values.clear()
