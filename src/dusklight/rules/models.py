"""
Data models for the rule engine.

Device/trigger names, tunable settings and per-report results.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from dusklight.solar.calculator import CIVIL_TWILIGHT_ANGLE

# =============================================================================
# Device ids (also used as session/trigger names)
# =============================================================================

CONTACT = "contact"
MOTION = "motion"
SWITCH = "switch"

TRIGGERS = (CONTACT, MOTION)

# zigbee2mqtt attribute names
CONTACT_ATTR = "contact"  # True = closed
MOTION_ATTR = "occupancy"  # True = motion detected
ACTION_ATTR = "action"

SWITCH_ON = "ON"
SWITCH_OFF = "OFF"


@dataclass(frozen=True)
class RuleSettings:
    """
    Tunables for the rule engine.

    Attributes:
        off_delay: Delay before turning off after the door closes
        motion_off_delay: Delay before turning off after motion clears
        motion_expiry: Forced end of a motion session (stuck sensor guard)
        twilight_angle: Zenith angle used for dusk detection
        override_action: Switch "action" value that counts as manual override
        switch_state_attr: Switch payload field for state and commands
    """

    off_delay: timedelta = timedelta(seconds=15)
    motion_off_delay: timedelta = timedelta(seconds=10)
    motion_expiry: timedelta = timedelta(minutes=15)
    twilight_angle: float = CIVIL_TWILIGHT_ANGLE
    override_action: str = "single_right"
    switch_state_attr: str = "state_right"


@dataclass
class EngineResult:
    """Result of processing one report or timer completion."""

    device_id: Optional[str] = None
    changed: bool = False
    commands: List[bool] = field(default_factory=list)  # True = ON
    error: Optional[str] = None
