"""
Sunrise/sunset calculator based on NOAA's solar position equations.

Ported from the NOAA online calculator:
https://gml.noaa.gov/grad/solcalc/sunrise.html

Most of the functions operate on the Julian century (centuries since
J2000.0). Only solar noon works from the Julian day directly.

Latitude is positive north. Longitude is positive WEST (inverse of the
usual convention); callers holding standard coordinates negate it first.
"""

import math
from datetime import date, datetime, timedelta, tzinfo, UTC
from typing import Optional

DEG2RAD = math.pi / 180

# Zenith angle of the official sunrise/sunset (refraction + solar disc)
SUNRISE_ANGLE = 90.833

# Civil twilight
CIVIL_TWILIGHT_ANGLE = 96.0


def julian_day(day: date) -> float:
    """Julian day for the given calendar date (days since 4713 BCE)."""
    year = day.year
    month = day.month
    if month <= 2:
        year -= 1
        month += 12

    a = math.floor(year // 100)
    b = 2 - a + math.floor(a / 4)
    return (
        math.floor(365.25 * (year + 4716))
        + math.floor(30.6001 * (month + 1))
        + day.day
        + b
        - 1524.5
    )


def julian_century(jd: float) -> float:
    """Julian centuries since J2000.0 for the given Julian day."""
    return (jd - 2451545.0) / 36525.0


def mean_obliquity_of_ecliptic(t: float) -> float:
    seconds = 21.448 - t * (46.8150 + t * (0.00059 - t * 0.001813))
    return 23.0 + (26.0 + seconds / 60.0) / 60.0


def obliquity_correction(t: float) -> float:
    e0 = mean_obliquity_of_ecliptic(t)
    omega = 125.04 - 1934.136 * t
    return e0 + 0.00256 * math.cos(DEG2RAD * omega)


def sun_geometric_mean_anomaly(t: float) -> float:
    return 357.52911 + t * (35999.05029 - 0.0001537 * t)


def sun_equation_of_center(t: float) -> float:
    m = DEG2RAD * sun_geometric_mean_anomaly(t)
    return (
        math.sin(m) * (1.914602 - t * (0.004817 + 0.000014 * t))
        + math.sin(2 * m) * (0.019993 - 0.000101 * t)
        + math.sin(3 * m) * 0.000289
    )


def sun_geometric_mean_longitude(t: float) -> float:
    return math.fmod(280.46646 + t * (36000.76983 + 0.0003032 * t), 360)


def sun_true_longitude(t: float) -> float:
    return sun_geometric_mean_longitude(t) + sun_equation_of_center(t)


def sun_apparent_longitude(t: float) -> float:
    omega = 125.04 - 1934.136 * t
    return sun_true_longitude(t) - 0.00569 - 0.00478 * math.sin(DEG2RAD * omega)


def earth_orbit_eccentricity(t: float) -> float:
    return 0.016708634 - t * (0.000042037 + 0.0000001267 * t)


def equation_of_time(t: float) -> float:
    """Difference between true and mean solar time, in minutes."""
    epsilon = obliquity_correction(t) * DEG2RAD
    l0 = sun_geometric_mean_longitude(t) * DEG2RAD
    e = earth_orbit_eccentricity(t)
    m = sun_geometric_mean_anomaly(t) * DEG2RAD

    y = math.tan(epsilon / 2)
    y *= y

    sin_m = math.sin(m)
    etime = (
        y * math.sin(2 * l0)
        - 2 * e * sin_m
        + 4 * e * y * sin_m * math.cos(2 * l0)
        - 0.5 * y * y * math.sin(4 * l0)
        - 1.25 * e * e * math.sin(2 * m)
    )
    return (etime / DEG2RAD) * 4


def sun_declination(t: float) -> float:
    """Declination of the sun, in degrees."""
    e = obliquity_correction(t) * DEG2RAD
    lam = sun_apparent_longitude(t) * DEG2RAD
    return math.asin(math.sin(e) * math.sin(lam)) / DEG2RAD


def hour_angle(angle: float, declination: float, latitude: float) -> float:
    """
    Hour angle of the sun at the given zenith angle, in degrees.

    Positive for rising; negate for setting. The cosine is clamped so that
    polar day/night yields 180°/0° instead of a domain error.
    """
    decl = declination * DEG2RAD
    zenith = angle * DEG2RAD
    lat = latitude * DEG2RAD

    cos_h = math.cos(zenith) / (math.cos(lat) * math.cos(decl)) - math.tan(lat) * math.tan(decl)
    cos_h = max(-1.0, min(1.0, cos_h))
    return math.acos(cos_h) / DEG2RAD


def solar_noon_utc(jd: float, longitude: float) -> float:
    """UTC solar noon for the given Julian day, in minutes after midnight."""
    tnoon = julian_century(jd + longitude / 360)
    noon = 720 + longitude * 4 - equation_of_time(tnoon)

    # refine using the first estimate
    tnoon = julian_century(jd - 0.5 + noon / 1440)
    return 720 + longitude * 4 - equation_of_time(tnoon)


def sun_time_utc_minutes(
    jd: float,
    rising: bool,
    angle: float,
    latitude: float,
    longitude: float,
    passes: int = 2,
) -> float:
    """
    Minutes after UTC midnight at which the sun reaches ``angle``.

    The first pass uses the declination at solar noon. Each further pass
    re-evaluates at the fractional day of the previous result.
    """

    def at(t: float) -> float:
        ha = hour_angle(angle, sun_declination(t), latitude)
        if not rising:
            ha = -ha
        return 720 + 4 * (longitude - ha) - equation_of_time(t)

    noon = solar_noon_utc(jd, longitude)
    minutes = at(julian_century(jd + noon / 1440))

    for _ in range(passes - 1):
        minutes = at(julian_century(jd + minutes / 1440))

    return minutes


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def utc_minutes_to_datetime(minutes: float, day: date, tz: Optional[tzinfo] = None) -> datetime:
    """
    Convert minutes after UTC midnight of ``day`` into a local datetime.

    The offset is rounded to the nearest second. ``tz`` defaults to the
    system's local zone.
    """
    seconds = _round_half_away(minutes * 60)
    midnight = datetime(day.year, day.month, day.day, tzinfo=UTC)
    return (midnight + timedelta(seconds=seconds)).astimezone(tz)


def compute_sun_time(
    day: date,
    rising: bool,
    angle: float,
    latitude: float,
    longitude: float,
    tz: Optional[tzinfo] = None,
) -> datetime:
    """
    Time at which the sun reaches the given zenith angle on ``day``.

    With an angle of 90.833° this is plain sunrise (``rising=True``) or
    sunset. Other angles give twilight, e.g. 96° for civil twilight.

    Args:
        day: Calendar date (a datetime is accepted, only its date is used)
        rising: True for the morning crossing, False for the evening one
        angle: Zenith angle in degrees
        latitude: Degrees, positive north
        longitude: Degrees, positive WEST
        tz: Zone of the returned datetime (default: system local zone)

    Returns:
        Timezone-aware datetime
    """
    if isinstance(day, datetime):
        day = day.date()

    minutes = sun_time_utc_minutes(julian_day(day), rising, angle, latitude, longitude)
    return utc_minutes_to_datetime(minutes, day, tz)
