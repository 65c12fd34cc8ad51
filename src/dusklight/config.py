"""
Daemon configuration.

The config file is JSON with optional whole-line // comments:

    {
        // MQTT broker
        "server": "tcp://192.168.1.2:1883",
        "username": "dusklight",
        "password": "secret",

        "location": [1.35, 103.82],   // lat, lng (east positive)

        "off_delay": "15s",
        "motion_off_delay": "10s",
        "motion_expiry": "15m",

        "sensor": "front_door",
        "motion_sensor": "hallway_motion",
        "switch": "hallway_switch"
    }
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import urlsplit

from dusklight.errors import ConfigurationError
from dusklight.rules.models import RuleSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/dusklight.conf"

# whole line comments
CONFIG_COMMENTS_RE = re.compile(r"^\s*//.*$", re.MULTILINE)

# broker URL, must carry a port
SERVER_URL_RE = re.compile(r"^[a-z]+://.*:[0-9]{1,5}$")

_DURATION_PART_RE = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

DEFAULTS = RuleSettings()


def parse_duration(value: Union[str, int, float], name: str = "duration") -> timedelta:
    """
    Parse a duration such as "15s", "1m30s", "1.5h" or a number of seconds.

    Spaces are ignored.

    Raises:
        ConfigurationError: If the value is malformed or negative
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"invalid {name}: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        seconds = _parse_duration_string(value.replace(" ", ""), name)
    else:
        raise ConfigurationError(f"invalid {name}: {value!r}")

    if seconds < 0:
        raise ConfigurationError(f"{name} cannot be negative")
    return timedelta(seconds=seconds)


def _parse_duration_string(text: str, name: str) -> float:
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0
    if not text:
        raise ConfigurationError(f"invalid {name}: empty duration")

    total = 0.0
    pos = 0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ConfigurationError(f"invalid {name}: {text!r}")
    return sign * total


def _parse_location(value: Any) -> Tuple[Optional[float], Optional[float]]:
    if value is None:
        return None, None
    if (
        not isinstance(value, (list, tuple))
        or len(value) != 2
        or not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value)
    ):
        raise ConfigurationError(f"invalid location, expected [lat, lng]: {value!r}")

    lat, lng = float(value[0]), float(value[1])
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ConfigurationError(f"location out of range: {value!r}")
    return lat, lng


@dataclass(frozen=True)
class DaemonConfig:
    """
    Validated daemon configuration.

    Attributes:
        server: Broker URL, e.g. "tcp://host:1883"
        username: Broker username
        password: Broker password
        latitude: Degrees, positive north (None = fixed dusk window)
        longitude: Degrees, positive east (None = fixed dusk window)
        off_delay: Contact turn-off delay
        motion_off_delay: Motion turn-off delay
        motion_expiry: Forced end of motion sessions
        sensor: Contact sensor friendly name
        motion_sensor: Motion sensor friendly name (optional)
        switch: Switch friendly name
    """

    server: str
    username: str = ""
    password: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    off_delay: timedelta = DEFAULTS.off_delay
    motion_off_delay: timedelta = DEFAULTS.motion_off_delay
    motion_expiry: timedelta = DEFAULTS.motion_expiry
    sensor: str = ""
    motion_sensor: Optional[str] = None
    switch: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DaemonConfig":
        """
        Build and validate a config from a decoded dict.

        Raises:
            ConfigurationError: On any missing or invalid value
        """
        if not isinstance(data, dict):
            raise ConfigurationError("config must be a JSON object")

        server = data.get("server") or ""
        if not server:
            raise ConfigurationError("MQTT server not specified")
        if not SERVER_URL_RE.match(server):
            raise ConfigurationError("invalid MQTT server: needs to be in URL format with port")
        # port out of 0-65535 raises here
        try:
            urlsplit(server).port
        except ValueError as e:
            raise ConfigurationError(f"invalid MQTT server: {e}") from e

        lat, lng = _parse_location(data.get("location"))

        def duration(key: str, default: timedelta) -> timedelta:
            value = data.get(key)
            if value is None or value == "":
                return default
            return parse_duration(value, key)

        sensor = data.get("sensor") or ""
        switch = data.get("switch") or ""
        if not sensor:
            raise ConfigurationError("contact sensor not specified")
        if not switch:
            raise ConfigurationError("switch not specified")

        return cls(
            server=server,
            username=data.get("username") or "",
            password=data.get("password") or "",
            latitude=lat,
            longitude=lng,
            off_delay=duration("off_delay", DEFAULTS.off_delay),
            motion_off_delay=duration("motion_off_delay", DEFAULTS.motion_off_delay),
            motion_expiry=duration("motion_expiry", DEFAULTS.motion_expiry),
            sensor=sensor,
            motion_sensor=data.get("motion_sensor") or None,
            switch=switch,
        )

    def to_settings(self) -> RuleSettings:
        """Rule engine settings derived from this config."""
        return RuleSettings(
            off_delay=self.off_delay,
            motion_off_delay=self.motion_off_delay,
            motion_expiry=self.motion_expiry,
        )


def parse_config(text: str) -> DaemonConfig:
    """Parse config file contents (JSON with // line comments)."""
    text = CONFIG_COMMENTS_RE.sub("", text)
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ConfigurationError(f"unable to parse config: {e}") from e
    return DaemonConfig.from_dict(data)


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> DaemonConfig:
    """
    Load and validate the config file.

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"unable to read config {path}: {e}") from e

    config = parse_config(text)
    logger.debug(f"Loaded config from {path}")
    return config
