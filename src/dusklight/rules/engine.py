"""
Rule engine - decides when to turn the light on and off.

Sessions (pending turn-offs) are keyed by trigger name and live in the
TimerManager; whether a timer exists for a trigger is the source of truth
for "a session is active".

Contact sensor:
- open: pause own session, else convert a motion session, else start a
  session and turn on (if the switch is off and it is dusk)
- closed: start the turn-off countdown

Motion sensor:
- active: pause own session, else start a session with expiry and turn on
  (if the switch is off and it is dusk)
- inactive: start the (shorter) turn-off countdown

Switch:
- manual press discards every session

Timer completion turns the light off. A forced motion expiry also resets
the motion sensor's state so that a stuck sensor counts as a fresh trigger.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from dusklight.core.devices import Device, DeviceRegistry
from dusklight.core.timers import SessionState, TimerManager
from dusklight.errors import MissingAttributeError, PayloadDecodeError
from dusklight.solar.dusk import DuskOracle

from .adapter import SwitchAdapter
from .models import (
    ACTION_ATTR,
    CONTACT,
    CONTACT_ATTR,
    MOTION,
    MOTION_ATTR,
    SWITCH,
    SWITCH_OFF,
    SWITCH_ON,
    TRIGGERS,
    EngineResult,
    RuleSettings,
)

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


def build_registry(
    sensor: str,
    switch: str,
    motion_sensor: Optional[str] = None,
    switch_state_attr: str = "state_right",
) -> DeviceRegistry:
    """
    Create the registry with the devices the engine knows about.

    Initial states assume the door is closed, no motion and the light off.

    Args:
        sensor: Contact sensor topic
        switch: Switch topic
        motion_sensor: Motion sensor topic (None = no motion device)
        switch_state_attr: Switch payload field carrying ON/OFF
    """
    registry = DeviceRegistry()
    registry.add_device(Device(id=CONTACT, topic=sensor, state_attr=CONTACT_ATTR, state=True))
    if motion_sensor:
        registry.add_device(
            Device(id=MOTION, topic=motion_sensor, state_attr=MOTION_ATTR, state=False)
        )
    registry.add_device(
        Device(id=SWITCH, topic=switch, state_attr=switch_state_attr, state=SWITCH_OFF)
    )
    return registry


class RuleEngine:
    """
    Event-driven light automation.

    All entry points (reports and timer completions) run under one engine
    lock. Switch commands are collected while the lock is held and sent
    after it is released.
    """

    def __init__(
        self,
        devices: DeviceRegistry,
        timers: TimerManager,
        oracle: DuskOracle,
        adapter: SwitchAdapter,
        settings: Optional[RuleSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the engine and take over timer completions.

        Args:
            devices: Registry holding contact/motion/switch devices
            timers: Session timer registry
            oracle: Dusk detection
            adapter: Where switch commands go
            settings: Delays and names (defaults if None)
            clock: Current time source (for testing)
        """
        self._devices = devices
        self._timers = timers
        self._oracle = oracle
        self._adapter = adapter
        self._settings = settings or RuleSettings()
        self._clock = clock or _local_now
        self._lock = threading.Lock()

        self._timers.set_fire_handler(self.handle_timer)

    @property
    def settings(self) -> RuleSettings:
        return self._settings

    def session_state(self, name: str) -> SessionState:
        """Idle/Armed/Counting for the given trigger."""
        return self._timers.session_state(name)

    # =========================================================================
    # Entry points
    # =========================================================================

    def handle_report(
        self, topic: str, raw: Union[bytes, str, Mapping[str, Any]]
    ) -> Optional[EngineResult]:
        """
        Process one inbound device report.

        Args:
            topic: Device topic (transport prefix already stripped)
            raw: JSON payload or decoded mapping

        Returns:
            EngineResult, or None if no device listens on ``topic``
        """
        device = self._devices.lookup(topic)
        if device is None:
            return None

        result = EngineResult(device_id=device.id)

        with self._lock:
            try:
                ingested = self._devices.ingest(topic, raw)
            except (PayloadDecodeError, MissingAttributeError) as e:
                logger.warning(f"Dropping report from {topic!r}: {e}")
                result.error = str(e)
                return result

            result.changed = ingested.changed

            # fires for every report
            self._handle_device_event(device, ingested.payload, result.commands)

            if ingested.changed:
                logger.debug(
                    f"Device {device.id!r} ({device.topic!r}) {device.state_attr} "
                    f"changed to {device.state!r}"
                )
                self._handle_device_changed(device, ingested.payload, result.commands)

        self._dispatch(result.commands)
        return result

    def handle_timer(self, name: str, expired: bool) -> EngineResult:
        """
        Process a session timer completion.

        Called by the TimerManager from its timer thread.
        """
        result = EngineResult(device_id=name)

        with self._lock:
            if name in TRIGGERS:
                logger.info(f"Session {name!r} {'expired' if expired else 'ended'}, turning off")
                result.commands.append(False)

                if expired and name == MOTION and self._devices.lookup_by_id(MOTION) is not None:
                    # stuck sensor: next "active" report must count as a change
                    self._devices.set_state(MOTION, False)
                    result.changed = True
            else:
                logger.warning(f"Unknown timer {name!r} fired")

        self._dispatch(result.commands)
        return result

    # =========================================================================
    # Handlers (engine lock held)
    # =========================================================================

    def _handle_device_event(
        self, device: Device, payload: Dict[str, Any], commands: List[bool]
    ) -> None:
        """Handle any report, changed or not."""
        if device.id != SWITCH:
            return

        action = payload.get(ACTION_ATTR)
        if action != self._settings.override_action:
            return

        logger.debug(f"Switch actuated: {action}")

        discarded = [name for name in TRIGGERS if self._timers.destroy_timer(name)]
        if discarded:
            logger.info(f"Manual override - discarding session(s) {', '.join(discarded)}")

    def _handle_device_changed(
        self, device: Device, payload: Dict[str, Any], commands: List[bool]
    ) -> None:
        """Handle a state transition."""
        if device.id == CONTACT:
            if device.state:
                self._on_contact_closed()
            else:
                self._on_contact_opened(commands)
        elif device.id == MOTION:
            if device.state:
                self._on_motion_active(commands)
            else:
                self._on_motion_inactive()

    def _on_contact_opened(self, commands: List[bool]) -> None:
        if self._timers.stop_timer(CONTACT) is not None:
            logger.info("Door reopened - paused contact session")
        elif self._timers.stop_timer(MOTION) is not None:
            # reuse the motion session, the light is already on
            self._timers.destroy_timer(MOTION)
            self._timers.add_timer(CONTACT)
            logger.info("Door opened - converted motion session into contact session")
        elif not self._switch_is_on() and self._is_dusk():
            if self._timers.add_timer(CONTACT) is not None:
                logger.info("Door opened - starting contact session")
                commands.append(True)

    def _on_contact_closed(self) -> None:
        if self._timers.start_timer(CONTACT, self._settings.off_delay):
            logger.info(f"Door closed - turning off in {self._settings.off_delay}")

    def _on_motion_active(self, commands: List[bool]) -> None:
        if self._timers.stop_timer(MOTION) is not None:
            logger.info("Motion detected - paused motion session")
        elif not self._switch_is_on() and self._is_dusk():
            timer = self._timers.add_timer_with_expiry(MOTION, self._settings.motion_expiry)
            if timer is not None:
                logger.info(
                    f"Motion detected - starting motion session "
                    f"(expires in {self._settings.motion_expiry})"
                )
                commands.append(True)

    def _on_motion_inactive(self) -> None:
        if self._timers.start_timer(MOTION, self._settings.motion_off_delay):
            logger.info(f"Motion cleared - turning off in {self._settings.motion_off_delay}")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _switch_is_on(self) -> bool:
        switch = self._devices.lookup_by_id(SWITCH)
        return switch is not None and switch.state == SWITCH_ON

    def _is_dusk(self) -> bool:
        return self._oracle.is_dusk(self._clock())

    def _dispatch(self, commands: List[bool]) -> None:
        """Send switch commands. Must not be called with the lock held."""
        for turn_on in commands:
            logger.debug(f"Turning switch {'ON' if turn_on else 'OFF'} now")
            try:
                self._adapter.send_switch_state(turn_on)
            except Exception as e:
                logger.error(f"Error sending switch command: {e}", exc_info=True)
