"""
Solar position helpers.

- calculator: NOAA sunrise/sunset equations
- dusk: per-day cached dusk detection
"""

from dusklight.solar.calculator import (
    CIVIL_TWILIGHT_ANGLE,
    SUNRISE_ANGLE,
    compute_sun_time,
    julian_century,
    julian_day,
)
from dusklight.solar.dusk import DuskOracle

__all__ = [
    "CIVIL_TWILIGHT_ANGLE",
    "SUNRISE_ANGLE",
    "compute_sun_time",
    "julian_century",
    "julian_day",
    "DuskOracle",
]
