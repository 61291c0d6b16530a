"""State management: declared resources, snapshots and environment locks."""

from .lock import EnvironmentLock, LockManager
from .models import Environment, ObservedResource, ResourceDeclaration, Snapshot
from .store import StateStore

__all__ = [
    "Environment",
    "ObservedResource",
    "ResourceDeclaration",
    "Snapshot",
    "StateStore",
    "EnvironmentLock",
    "LockManager",
]
