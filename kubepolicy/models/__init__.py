"""Core data structures for KubePolicy."""

from kubepolicy.models.config import KubePolicyConfig
from kubepolicy.models.events import EventType, ResourceEvent

__all__ = [
    "EventType",
    "KubePolicyConfig",
    "ResourceEvent",
]
