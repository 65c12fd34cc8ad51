"""
Dusk oracle: answers "is it dark enough for the lights right now".

Sunrise/sunset are computed lazily, once per local calendar day. Without a
configured location a fixed 7pm-to-7am window is used instead.
"""

import logging
from datetime import date, datetime, tzinfo
from typing import Optional, Tuple

from .calculator import CIVIL_TWILIGHT_ANGLE, compute_sun_time

logger = logging.getLogger(__name__)

# Fallback dusk window (local hours)
FALLBACK_DUSK_HOUR = 19
FALLBACK_DAWN_HOUR = 7


class DuskOracle:
    """
    Dusk detection with a once-per-day sun times cache.

    Coordinates are standard (longitude positive east). The oracle keeps no
    lock of its own; the rule engine serializes calls.
    """

    def __init__(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        angle: float = CIVIL_TWILIGHT_ANGLE,
        tz: Optional[tzinfo] = None,
    ) -> None:
        """
        Initialize the oracle.

        Args:
            latitude: Degrees, positive north (None = no location)
            longitude: Degrees, positive east (None = no location)
            angle: Zenith angle used for "sunrise" and "sunset"
            tz: Local zone (default: system local zone)
        """
        self.latitude = latitude
        self.longitude = longitude
        self.angle = angle
        self.tz = tz

        self._date: Optional[date] = None
        self._sunrise: Optional[datetime] = None
        self._sunset: Optional[datetime] = None

    @property
    def has_location(self) -> bool:
        """True when sun times are computed instead of the fixed window."""
        if self.latitude is None or self.longitude is None:
            return False
        return not (self.latitude == 0 and self.longitude == 0)

    def sun_times(self, now: datetime) -> Tuple[datetime, datetime]:
        """
        Get (sunrise, sunset) for the local date of ``now``.

        Recomputes only when the date differs from the cached one.

        Raises:
            ValueError: If no location is configured
        """
        if not self.has_location:
            raise ValueError("No location configured")

        now = self._localize(now)
        today = now.date()

        if self._date != today:
            # calculator wants longitude positive west
            lng = -self.longitude
            self._sunrise = compute_sun_time(today, True, self.angle, self.latitude, lng, self.tz)
            self._sunset = compute_sun_time(today, False, self.angle, self.latitude, lng, self.tz)
            self._date = today

            logger.info(
                f"Computed timings for {today:%d %b %Y}: "
                f"sunrise {self._sunrise:%H:%M:%S %Z}, sunset {self._sunset:%H:%M:%S %Z}"
            )

        assert self._sunrise is not None and self._sunset is not None
        return self._sunrise, self._sunset

    def is_dusk(self, now: Optional[datetime] = None) -> bool:
        """
        Check whether ``now`` lies in the dusk window.

        Args:
            now: Time to check (default: current time). Naive values are
                taken as local time.
        """
        if now is None:
            now = datetime.now()
        now = self._localize(now)

        if not self.has_location:
            return now.hour >= FALLBACK_DUSK_HOUR or now.hour < FALLBACK_DAWN_HOUR

        sunrise, sunset = self.sun_times(now)
        return now < sunrise or now > sunset

    def _localize(self, now: datetime) -> datetime:
        return now.astimezone(self.tz)
