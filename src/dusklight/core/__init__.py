"""
Core components of dusklight.

This package contains:
- devices: Device dataclass and DeviceRegistry
- timers: named session timers and their registry
"""

from dusklight.core.devices import Device, DeviceRegistry, IngestResult, StateKind, decode_payload
from dusklight.core.timers import DelayedTask, SessionState, SessionTimer, TimerManager

__all__ = [
    "Device",
    "DeviceRegistry",
    "IngestResult",
    "StateKind",
    "decode_payload",
    "DelayedTask",
    "SessionState",
    "SessionTimer",
    "TimerManager",
]
