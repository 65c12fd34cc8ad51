"""
Rule engine for dusklight.

Turns the light on when a door opens or motion is detected at dusk, and
off again after the trigger clears.
"""

from .adapter import MockSwitchAdapter, SwitchAdapter, switch_payload
from .engine import RuleEngine, build_registry
from .models import (
    CONTACT,
    MOTION,
    SWITCH,
    TRIGGERS,
    EngineResult,
    RuleSettings,
)

__all__ = [
    "RuleEngine",
    "build_registry",
    "SwitchAdapter",
    "MockSwitchAdapter",
    "switch_payload",
    "EngineResult",
    "RuleSettings",
    "CONTACT",
    "MOTION",
    "SWITCH",
    "TRIGGERS",
]
