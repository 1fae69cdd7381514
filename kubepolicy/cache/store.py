"""In-memory registry of every observed object.

Objects are indexed by group kind, then by the identity the observation layer
assigned (the object's UID).  The store belongs to one controller: only the
controller's drain task mutates it.  Reads return copies so a topology build
never observes a mutation half way through.
"""

from __future__ import annotations

from typing import Any

from kubepolicy.machinery.objects import GroupKind


class Store:
    """Latest known state of all observed objects."""

    def __init__(self) -> None:
        self._objects: dict[GroupKind, dict[str, Any]] = {}

    def upsert(self, kind: GroupKind, identity: str, obj: Any) -> None:
        """Insert or replace the object stored under (kind, identity)."""
        self._objects.setdefault(kind, {})[identity] = obj

    def delete(self, kind: GroupKind, identity: str) -> None:
        """Remove the object stored under (kind, identity).  No-op if absent."""
        by_identity = self._objects.get(kind)
        if by_identity is None:
            return
        by_identity.pop(identity, None)
        if not by_identity:
            del self._objects[kind]

    def get(self, kind: GroupKind, identity: str) -> Any | None:
        return self._objects.get(kind, {}).get(identity)

    def items(self) -> dict[GroupKind, dict[str, Any]]:
        """Snapshot of the whole store."""
        return {kind: dict(by_identity) for kind, by_identity in self._objects.items()}

    def items_by_kind(self, kind: GroupKind) -> list[Any]:
        """Snapshot of the objects of one kind."""
        return list(self._objects.get(kind, {}).values())

    def kinds(self) -> list[GroupKind]:
        return list(self._objects)

    def __len__(self) -> int:
        return sum(len(by_identity) for by_identity in self._objects.values())

    def __contains__(self, key: tuple[GroupKind, str]) -> bool:
        kind, identity = key
        return identity in self._objects.get(kind, {})
