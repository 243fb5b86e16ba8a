"""Code store interface.

The pairing manager talks to its store only through this interface. Every
method is a single atomic operation against the backend, which is what makes
claim safe across processes sharing one store.
"""

from abc import ABC, abstractmethod
from typing import Any


class CodeStore(ABC):
    """Key-value store with TTL and conditional updates.

    Values are JSON-compatible dicts. Keys are pairing codes; backends may
    namespace them internally.
    """

    @abstractmethod
    async def set_if_absent(self, key: str, value: dict[str, Any], ttl: int) -> bool:
        """Store value unless key exists. Returns True if written."""

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        """Return stored value or None if absent or expired."""

    @abstractmethod
    async def compare_and_swap(
        self,
        key: str,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool:
        """Apply changes if every field in expected matches the stored value.

        The remaining TTL is kept. Returns True if the update was applied,
        False if the key is absent or any expected field differs.
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove key. Returns True if it existed."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """List all stored keys."""

    async def compare_and_swap_state(
        self,
        key: str,
        expected_state: str,
        new_state: str,
        changes: dict[str, Any] | None = None,
    ) -> bool:
        """Atomically move a record from expected_state to new_state."""
        update = dict(changes or {})
        update["state"] = new_state
        return await self.compare_and_swap(key, {"state": expected_state}, update)

    async def ping(self) -> bool:
        """Check the backend is reachable."""
        return True

    async def close(self) -> None:
        """Release backend resources."""
