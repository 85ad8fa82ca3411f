"""Exception hierarchy for auth-coordinator.

AuthCoordinatorError
├── AuthenticationError        - authentication failed or is unavailable
│   └── ClassifiedAuthError    - classified failure (security/classifier.py)
└── ConfigurationError         - configuration file missing or invalid
"""

from __future__ import annotations

__all__ = [
    "AuthCoordinatorError",
    "AuthenticationError",
    "ConfigurationError",
]


class AuthCoordinatorError(Exception):
    """Base class for all auth-coordinator errors."""


class AuthenticationError(AuthCoordinatorError):
    """Authentication failed, expired, or could not be established."""


class ConfigurationError(AuthCoordinatorError, ValueError):
    """Configuration is missing required fields or fails validation."""
