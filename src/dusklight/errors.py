"""
Error types raised by dusklight.

Per-report errors (decode, missing attribute, unknown device) are local:
the report is dropped and the daemon carries on. Configuration errors are
fatal at startup.
"""


class DusklightError(Exception):
    """Base class for all dusklight errors."""


class PayloadDecodeError(DusklightError, ValueError):
    """Inbound payload is not a JSON object."""


class MissingAttributeError(DusklightError, KeyError):
    """Inbound payload lacks the device's state attribute."""

    def __init__(self, attribute: str, topic: str) -> None:
        super().__init__(f"state attr '{attribute}' not found for '{topic}'")
        self.attribute = attribute
        self.topic = topic

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0])


class UnknownDeviceError(DusklightError, KeyError):
    """No device is registered under the given topic or id."""

    def __str__(self) -> str:
        return str(self.args[0])


class ConfigurationError(DusklightError, ValueError):
    """Process configuration is missing or invalid."""
