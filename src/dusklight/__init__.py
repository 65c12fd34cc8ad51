"""
dusklight: turns a light on at dusk when a door opens or motion is seen.

This library provides:
- NOAA sunrise/sunset calculation and dusk detection
- Device registry with state change detection
- Named, cancellable session timers
- The rule engine deciding when to switch on and off
"""

from dusklight.core.devices import Device, DeviceRegistry
from dusklight.core.timers import SessionState, TimerManager
from dusklight.rules.engine import RuleEngine, build_registry
from dusklight.rules.models import RuleSettings
from dusklight.solar.dusk import DuskOracle

__version__ = "0.1.0"

__all__ = [
    "Device",
    "DeviceRegistry",
    "SessionState",
    "TimerManager",
    "RuleEngine",
    "RuleSettings",
    "build_registry",
    "DuskOracle",
]
