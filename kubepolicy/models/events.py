"""Change events delivered to reconcilers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from kubepolicy.machinery.objects import GroupKind


class EventType(StrEnum):
    """Kind of change observed for an object."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ResourceEvent:
    """A change applied to the Store during one reconciliation cycle.

    ``old_object`` is None for CREATE, ``new_object`` is None for DELETE.
    Both are the typed objects the Store held (or now holds).
    """

    kind: GroupKind
    event_type: EventType
    old_object: Any | None = None
    new_object: Any | None = None

    @property
    def object(self) -> Any | None:
        """The most recent state of the object the event is about."""
        return self.new_object if self.new_object is not None else self.old_object
