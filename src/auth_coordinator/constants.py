"""Application-wide constants for auth-coordinator.

Constants that define coordination and refresh timing.
For user-configurable settings per deployment, see config.py.
"""

import os

import httpx
from platformdirs import user_config_dir

# ============================================================================
# Configuration Directory
# ============================================================================

# OS-specific config directory for config, cached auth state and credentials.
#
# Platform-specific paths:
# - macOS: ~/Library/Application Support/auth-coordinator/
# - Linux: ~/.config/auth-coordinator/
# - Windows: %APPDATA%\auth-coordinator\
APP_NAME: str = "auth-coordinator"
CONFIG_DIR: str = os.path.realpath(user_config_dir(APP_NAME))

CONFIG_FILE_NAME: str = "auth_coordinator_config.json"
AUTH_STATE_CACHE_FILE_NAME: str = "auth_state.json"
CREDENTIAL_FILE_NAME: str = "credentials.json"

# ============================================================================
# Authentication State Coordinator
# ============================================================================

# How long a successful identity resolution is trusted before the identity
# provider is asked again (seconds)
AUTH_CACHE_DURATION_SECONDS: float = 5 * 60

# Upper bound on a single credential exchange with the identity provider (seconds)
REFRESH_TIMEOUT_SECONDS: float = 30.0

# Remaining validity a refreshed credential must have to count as a successful
# coordinated refresh (seconds)
REFRESH_SAFETY_MARGIN_SECONDS: float = 0.0

# A resume within this long after a suspension trusts the cached auth state
SUSPEND_GRACE_PERIOD_SECONDS: float = 30 * 60

# A resume after this long requires the user to authenticate again; in between
# the credential is refreshed and the identity resolved again
MAX_SUSPEND_DURATION_SECONDS: float = 24 * 60 * 60

# ============================================================================
# Proactive Refresh Monitor
# ============================================================================

# Refresh opportunistically once the credential expires within this window
PROACTIVE_REFRESH_THRESHOLD_SECONDS: float = 10 * 60

# Floor of remaining validity below which a critical operation must not start
CRITICAL_OPERATION_THRESHOLD_SECONDS: float = 2 * 60

# Background check cadence
BACKGROUND_CHECK_INTERVAL_SECONDS: float = 5 * 60

# Consecutive failed background refreshes before the loop disables itself
MAX_BACKGROUND_FAILURES: int = 3

# Wait before the next background attempt after a failed one
BACKGROUND_RETRY_DELAY_SECONDS: float = 30.0

# ============================================================================
# Persistence Cache
# ============================================================================

# Cached auth state is fresh for this long; stale reads accept twice the age
AUTH_STATE_CACHE_EXPIRY_SECONDS: float = 15 * 60

# ============================================================================
# Error Classification
# ============================================================================

RETRY_BASE_DELAY_SECONDS: float = 1.0
RATE_LIMITED_MAX_DELAY_SECONDS: float = 30.0
NETWORK_MAX_DELAY_SECONDS: float = 10.0
SERVICE_UNAVAILABLE_MAX_DELAY_SECONDS: float = 60.0
CONCURRENT_REFRESH_DELAY_SECONDS: float = 0.5

# Errors retained by AuthErrorHandler for diagnostics
ERROR_LOG_MAX_SIZE: int = 100

# Timeout errors, checked before transport errors (httpx timeouts are
# transport errors too)
TIMEOUT_ERRORS: tuple[type[Exception], ...] = (
    TimeoutError,
    httpx.TimeoutException,
)

# Transport errors that indicate the identity provider could not be reached
TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    BrokenPipeError,
    EOFError,
    ConnectionError,
    ConnectionResetError,
    ConnectionAbortedError,
    httpx.TransportError,
)

# ============================================================================
# OAuth Reference Provider
# ============================================================================

# Timeout for OAuth HTTP requests (userinfo, token refresh)
OAUTH_CLIENT_TIMEOUT_SECONDS: int = 30

# Default scopes requested on refresh
DEFAULT_OAUTH_SCOPES: tuple[str, ...] = ("openid", "profile", "email", "offline_access")
