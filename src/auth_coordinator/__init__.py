"""auth-coordinator: authentication state coordination and proactive credential refresh."""

__version__ = "0.1.0"

from auth_coordinator.config import AppConfig, CoordinatorConfig, MonitorConfig
from auth_coordinator.coordination import (
    AuthStateCoordinator,
    FileAuthStateCache,
    MemoryAuthStateCache,
    RefreshCoordinator,
)
from auth_coordinator.exceptions import (
    AuthCoordinatorError,
    AuthenticationError,
    ConfigurationError,
)
from auth_coordinator.models import (
    AuthStateSnapshot,
    CredentialRecord,
    Identity,
    MonitoringStatus,
    ResumeResult,
    ResumeStrategy,
)
from auth_coordinator.monitor import MonitorEventType, ProactiveRefreshMonitor
from auth_coordinator.security import (
    ClassifiedAuthError,
    ErrorKind,
    RecoveryStrategy,
    classify,
    is_authentication_error,
)

__all__ = [
    "__version__",
    # Configuration
    "AppConfig",
    "CoordinatorConfig",
    "MonitorConfig",
    # Coordination
    "AuthStateCoordinator",
    "FileAuthStateCache",
    "MemoryAuthStateCache",
    "RefreshCoordinator",
    # Monitoring
    "MonitorEventType",
    "ProactiveRefreshMonitor",
    # Classification
    "ClassifiedAuthError",
    "ErrorKind",
    "RecoveryStrategy",
    "classify",
    "is_authentication_error",
    # Models
    "AuthStateSnapshot",
    "CredentialRecord",
    "Identity",
    "MonitoringStatus",
    "ResumeResult",
    "ResumeStrategy",
    # Exceptions
    "AuthCoordinatorError",
    "AuthenticationError",
    "ConfigurationError",
]
