"""Authentication state coordination.

- AuthStateCoordinator: single-flight identity resolution and recovery,
  including suspend/resume recovery
- RefreshCoordinator: single-flight, time-bounded credential refresh
- SingleFlight: shared-attempt primitive used by both
- MemoryAuthStateCache / FileAuthStateCache: optional persistence caches
"""

from auth_coordinator.coordination.persistence import (
    FileAuthStateCache,
    MemoryAuthStateCache,
    SyncEventType,
)
from auth_coordinator.coordination.refresh_coordinator import RefreshCoordinator
from auth_coordinator.coordination.single_flight import SingleFlight
from auth_coordinator.coordination.state_coordinator import AuthStateCoordinator, determine_resume_strategy

__all__ = [
    "AuthStateCoordinator",
    "FileAuthStateCache",
    "MemoryAuthStateCache",
    "RefreshCoordinator",
    "SingleFlight",
    "SyncEventType",
    "determine_resume_strategy",
]
