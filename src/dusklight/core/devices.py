"""
Device registry: last known state of each sensor/actuator.

The registry owns the devices, not the behavior. It decodes inbound
reports, extracts each device's state attribute and detects transitions.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from dusklight.errors import MissingAttributeError, PayloadDecodeError, UnknownDeviceError

logger = logging.getLogger(__name__)

StateValue = Union[bool, str]


def _utc_now() -> datetime:
    """Get current UTC time (for default factory)."""
    return datetime.now(UTC)


class StateKind(Enum):
    """Kind of value a device reports as its state."""

    BOOLEAN = "boolean"  # contact, occupancy
    STRING = "string"  # switch "ON"/"OFF"

    @classmethod
    def of(cls, value: StateValue) -> "StateKind":
        if isinstance(value, bool):
            return cls.BOOLEAN
        if isinstance(value, str):
            return cls.STRING
        raise TypeError(f"Unsupported state value: {value!r}")


@dataclass
class Device:
    """
    A named sensor or actuator.

    Attributes:
        id: Logical name ("contact", "motion", "switch")
        topic: Channel identifier owned by the transport
        state_attr: Payload field carrying the state
        state: Current value, its kind is fixed for the device's lifetime
        last_updated: When the last accepted change was ingested
    """

    id: str
    topic: str
    state_attr: str
    state: StateValue
    last_updated: Optional[datetime] = None
    kind: StateKind = field(init=False)

    def __post_init__(self) -> None:
        self.kind = StateKind.of(self.state)

    def accepts(self, value: Any) -> bool:
        """Check whether ``value`` is of this device's state kind."""
        if self.kind is StateKind.BOOLEAN:
            return isinstance(value, bool)
        return isinstance(value, str)


@dataclass(frozen=True)
class IngestResult:
    """Outcome of ingesting one report."""

    device: Device
    payload: Dict[str, Any]
    changed: bool


def decode_payload(raw: Union[bytes, str, Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Decode a report payload into a dict.

    Raises:
        PayloadDecodeError: If the payload is not a JSON object
    """
    if isinstance(raw, Mapping):
        return dict(raw)

    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise PayloadDecodeError(f"unable to parse payload: {e}") from e

    if not isinstance(decoded, dict):
        raise PayloadDecodeError(f"payload is not an object: {type(decoded).__name__}")
    return decoded


class DeviceRegistry:
    """
    Tracks devices by topic and by logical id.

    Not thread-safe; the rule engine lock guards it.
    """

    def __init__(self) -> None:
        self._devices: Dict[str, Device] = {}
        self._devices_by_id: Dict[str, Device] = {}

    def add_device(self, device: Device) -> Device:
        """
        Register a device.

        Raises:
            ValueError: If the id or topic is already registered
        """
        if device.id in self._devices_by_id:
            raise ValueError(f"Device with id '{device.id}' already exists")
        if device.topic in self._devices:
            raise ValueError(f"Topic '{device.topic}' already mapped to '{self._devices[device.topic].id}'")

        self._devices[device.topic] = device
        self._devices_by_id[device.id] = device
        logger.debug(f"Added device {device.id} ({device.topic}), attr={device.state_attr}")
        return device

    def lookup(self, topic: str) -> Optional[Device]:
        """Get a device by topic."""
        return self._devices.get(topic)

    def lookup_by_id(self, device_id: str) -> Optional[Device]:
        """Get a device by logical id, without touching its state."""
        return self._devices_by_id.get(device_id)

    def all_devices(self) -> List[Device]:
        return list(self._devices_by_id.values())

    def set_state(self, device_id: str, value: StateValue) -> None:
        """
        Overwrite a device's state (e.g. resetting a stuck sensor).

        Raises:
            UnknownDeviceError: If no such device exists
            TypeError: If the value is of the wrong kind
        """
        device = self._devices_by_id.get(device_id)
        if device is None:
            raise UnknownDeviceError(f"Device '{device_id}' does not exist")
        if not device.accepts(value):
            raise TypeError(f"Device '{device_id}' holds {device.kind.value} state, got {value!r}")

        device.state = value
        device.last_updated = _utc_now()

    def ingest(self, topic: str, raw: Union[bytes, str, Mapping[str, Any]]) -> IngestResult:
        """
        Ingest a report for the device on ``topic``.

        A value is a change only when it differs from the stored one and is
        of the same kind. Values of another kind are ignored.

        Raises:
            UnknownDeviceError: If no device listens on the topic
            PayloadDecodeError: If the payload is not a JSON object
            MissingAttributeError: If the state attribute is absent
        """
        device = self._devices.get(topic)
        if device is None:
            raise UnknownDeviceError(f"No device on topic '{topic}'")

        payload = decode_payload(raw)

        if device.state_attr not in payload:
            raise MissingAttributeError(device.state_attr, topic)

        value = payload[device.state_attr]
        if not device.accepts(value):
            logger.debug(
                f"Ignoring {device.id} {device.state_attr}={value!r}: "
                f"expected {device.kind.value}"
            )
            return IngestResult(device=device, payload=payload, changed=False)

        if value == device.state:
            return IngestResult(device=device, payload=payload, changed=False)

        device.state = value
        device.last_updated = _utc_now()
        logger.debug(f"Device {device.id} ({device.topic}) {device.state_attr} changed to {value!r}")
        return IngestResult(device=device, payload=payload, changed=True)
