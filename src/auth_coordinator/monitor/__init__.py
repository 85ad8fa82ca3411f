"""Proactive credential refresh monitoring."""

from auth_coordinator.monitor.events import (
    EventListener,
    MonitorEventEmitter,
    MonitorEventType,
)
from auth_coordinator.monitor.proactive import ProactiveRefreshMonitor, ScheduledRefresh

__all__ = [
    "EventListener",
    "MonitorEventEmitter",
    "MonitorEventType",
    "ProactiveRefreshMonitor",
    "ScheduledRefresh",
]
