"""Tests for the rule engine state machine."""

import time
from datetime import datetime, timedelta, UTC

import pytest

from dusklight.core.timers import SessionState, TimerManager
from dusklight.rules import (
    CONTACT,
    MOTION,
    MockSwitchAdapter,
    RuleEngine,
    RuleSettings,
    build_registry,
)
from dusklight.rules.adapter import SwitchAdapter
from dusklight.solar.dusk import DuskOracle

DOOR = "front_door"
PIR = "hall_motion"
SWITCH = "hall_switch"

ON = True
OFF = False


class Clock:
    """Settable clock for dusk checks."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    # 9 PM: dusk in the fixed fallback window
    return Clock(datetime(2025, 1, 15, 21, 0, tzinfo=UTC))


@pytest.fixture
def adapter():
    return MockSwitchAdapter()


@pytest.fixture
def timers():
    manager = TimerManager()
    yield manager
    manager.destroy_all()


def make_engine(timers, adapter, clock, **overrides) -> RuleEngine:
    settings = RuleSettings(
        off_delay=overrides.pop("off_delay", timedelta(milliseconds=50)),
        motion_off_delay=overrides.pop("motion_off_delay", timedelta(milliseconds=50)),
        motion_expiry=overrides.pop("motion_expiry", timedelta(seconds=30)),
    )
    return RuleEngine(
        devices=build_registry(sensor=DOOR, switch=SWITCH, motion_sensor=PIR),
        timers=timers,
        oracle=DuskOracle(tz=UTC),
        adapter=adapter,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def engine(timers, adapter, clock):
    return make_engine(timers, adapter, clock)


def door(engine, closed: bool):
    return engine.handle_report(DOOR, {"contact": closed, "battery": 100})


def motion(engine, active: bool):
    return engine.handle_report(PIR, {"occupancy": active})


class TestContactSessions:
    """Door-triggered sessions."""

    def test_open_close_elapse(self, engine, adapter, wait_until):
        """Door open at dusk turns on, closing starts countdown, elapsing turns off."""
        result = door(engine, closed=False)
        assert result.changed
        assert result.commands == [ON]
        assert adapter.get_commands() == [ON]
        assert engine.session_state(CONTACT) is SessionState.ARMED

        result = door(engine, closed=True)
        assert result.commands == []

        assert adapter.wait_for_commands(2)
        assert adapter.get_commands() == [ON, OFF]
        assert wait_until(lambda: engine.session_state(CONTACT) is SessionState.IDLE)

    def test_repeated_open_is_not_a_change(self, engine, adapter, timers):
        """A second "open" report creates nothing new."""
        door(engine, closed=False)
        first = timers.get_timer(CONTACT)

        result = door(engine, closed=False)
        assert not result.changed
        assert result.commands == []
        assert adapter.get_commands() == [ON]
        assert timers.get_timer(CONTACT) is first

    def test_reopen_pauses_countdown(self, timers, adapter, clock):
        """Door reopened mid-countdown pauses the session without a new ON."""
        engine = make_engine(timers, adapter, clock, off_delay=timedelta(seconds=30))
        door(engine, closed=False)
        door(engine, closed=True)
        assert engine.session_state(CONTACT) is SessionState.COUNTING

        result = door(engine, closed=False)
        assert result.commands == []
        assert engine.session_state(CONTACT) is SessionState.ARMED
        assert adapter.get_commands() == [ON]

    def test_not_dusk(self, engine, adapter, clock, timers):
        """No session during the day."""
        clock.now = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        result = door(engine, closed=False)
        assert result.changed
        assert result.commands == []
        assert timers.active_sessions() == []

    def test_switch_already_on(self, engine, adapter, timers):
        """No session when the light is already on."""
        engine.handle_report(SWITCH, {"state_right": "ON"})
        door(engine, closed=False)
        assert adapter.get_commands() == []
        assert timers.active_sessions() == []

    def test_close_without_session(self, engine, adapter, clock):
        """Closing a door opened during the day does nothing."""
        clock.now = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        door(engine, closed=False)
        result = door(engine, closed=True)
        assert result.changed
        assert result.commands == []
        assert engine.session_state(CONTACT) is SessionState.IDLE
        assert adapter.get_commands() == []


class TestMotionSessions:
    """Motion-triggered sessions."""

    def test_active_inactive_elapse(self, engine, adapter, wait_until):
        result = motion(engine, True)
        assert result.commands == [ON]
        assert engine.session_state(MOTION) is SessionState.ARMED

        motion(engine, False)
        assert adapter.wait_for_commands(2)
        assert adapter.get_commands() == [ON, OFF]
        assert wait_until(lambda: engine.session_state(MOTION) is SessionState.IDLE)

    def test_redetected_pauses(self, timers, adapter, clock):
        engine = make_engine(timers, adapter, clock, motion_off_delay=timedelta(seconds=30))
        motion(engine, True)
        motion(engine, False)
        assert engine.session_state(MOTION) is SessionState.COUNTING

        result = motion(engine, True)
        assert result.commands == []
        assert engine.session_state(MOTION) is SessionState.ARMED

    def test_stuck_sensor_expires(self, timers, adapter, clock, wait_until):
        """Without an "inactive" report the expiry turns off and resets motion."""
        engine = make_engine(timers, adapter, clock, motion_expiry=timedelta(milliseconds=100))
        motion(engine, True)

        assert adapter.wait_for_commands(2)
        assert adapter.get_commands() == [ON, OFF]
        assert wait_until(lambda: engine.session_state(MOTION) is SessionState.IDLE)

        # sensor still says "active": now counts as a fresh trigger
        result = motion(engine, True)
        assert result.changed
        assert result.commands == [ON]

    def test_primary_and_expiry_race_single_off(self, timers, adapter, clock, wait_until):
        """Primary and expiry elapsing together issue exactly one OFF."""
        engine = make_engine(
            timers,
            adapter,
            clock,
            motion_off_delay=timedelta(milliseconds=100),
            motion_expiry=timedelta(milliseconds=100),
        )
        motion(engine, True)
        motion(engine, False)

        assert wait_until(lambda: engine.session_state(MOTION) is SessionState.IDLE)
        time.sleep(0.2)
        assert adapter.get_commands().count(OFF) == 1


class TestConversion:
    """Motion sessions taken over by the door."""

    def test_paused_motion_converts_to_contact(self, timers, adapter, clock):
        """Door opening while a motion session is paused reuses it, no second ON."""
        engine = make_engine(timers, adapter, clock, motion_off_delay=timedelta(seconds=30))
        motion(engine, True)
        motion(engine, False)
        motion(engine, True)  # paused
        assert engine.session_state(MOTION) is SessionState.ARMED

        result = door(engine, closed=False)
        assert result.commands == []
        assert engine.session_state(MOTION) is SessionState.IDLE
        assert engine.session_state(CONTACT) is SessionState.ARMED
        assert adapter.get_commands() == [ON]

    def test_counting_motion_converts_to_contact(self, timers, adapter, clock):
        engine = make_engine(timers, adapter, clock, motion_off_delay=timedelta(seconds=30))
        motion(engine, True)
        motion(engine, False)

        door(engine, closed=False)
        assert engine.session_state(MOTION) is SessionState.IDLE
        assert engine.session_state(CONTACT) is SessionState.ARMED
        assert adapter.get_commands() == [ON]

    def test_converted_session_turns_off_after_close(self, engine, adapter, wait_until):
        motion(engine, True)
        door(engine, closed=False)
        door(engine, closed=True)

        assert adapter.wait_for_commands(2)
        assert adapter.get_commands() == [ON, OFF]
        assert wait_until(lambda: engine.session_state(CONTACT) is SessionState.IDLE)


class TestManualOverride:
    """Manual switch presses."""

    def test_override_destroys_all_sessions(self, timers, adapter, clock):
        engine = make_engine(timers, adapter, clock, off_delay=timedelta(seconds=30))
        door(engine, closed=False)
        # motion can't start a second session while the light is on,
        # so put one in place directly
        timers.add_timer(MOTION)

        result = engine.handle_report(SWITCH, {"state_right": "OFF", "action": "single_right"})
        assert result.commands == []
        assert timers.active_sessions() == []
        assert adapter.get_commands() == [ON]

    def test_override_without_sessions(self, engine, adapter):
        result = engine.handle_report(SWITCH, {"state_right": "OFF", "action": "single_right"})
        assert result.commands == []
        assert adapter.get_commands() == []

    def test_other_actions_ignored(self, engine, timers):
        door(engine, closed=False)
        engine.handle_report(SWITCH, {"state_right": "OFF", "action": "single_left"})
        assert timers.active_sessions() == [CONTACT]

    def test_override_then_close_does_nothing(self, engine, adapter):
        door(engine, closed=False)
        engine.handle_report(SWITCH, {"state_right": "ON", "action": "single_right"})
        door(engine, closed=True)
        time.sleep(0.15)
        assert adapter.get_commands() == [ON]


class TestReports:
    """Malformed and foreign reports."""

    def test_unknown_topic(self, engine):
        assert engine.handle_report("garage_door", {"contact": False}) is None

    def test_missing_attribute_drops_report(self, engine, adapter, timers):
        result = engine.handle_report(DOOR, {"battery": 80})
        assert result.error is not None
        assert not result.changed
        assert timers.active_sessions() == []

    def test_missing_attribute_skips_override(self, engine, timers):
        """Switch reports without the state field run no handlers at all."""
        door(engine, closed=False)
        result = engine.handle_report(SWITCH, {"action": "single_right"})
        assert result.error is not None
        assert timers.active_sessions() == [CONTACT]

    def test_invalid_json_drops_report(self, engine, adapter):
        result = engine.handle_report(DOOR, b"{oops")
        assert result.error is not None
        assert adapter.get_commands() == []

    def test_type_mismatch_ignored(self, engine, adapter):
        result = engine.handle_report(DOOR, {"contact": "open"})
        assert result.error is None
        assert not result.changed
        assert adapter.get_commands() == []


class TestTimerHandler:
    """Direct timer completion handling."""

    def test_contact_fire_turns_off(self, engine, adapter):
        result = engine.handle_timer(CONTACT, False)
        assert result.commands == [OFF]
        assert adapter.get_commands() == [OFF]

    def test_motion_expiry_resets_state(self, engine):
        motion(engine, True)
        engine.handle_timer(MOTION, True)
        assert motion(engine, True).changed

    def test_motion_normal_fire_keeps_state(self, engine):
        motion(engine, True)
        engine.handle_timer(MOTION, False)
        assert not motion(engine, True).changed

    def test_unknown_timer(self, engine, adapter):
        assert engine.handle_timer("garage", False).commands == []
        assert adapter.get_commands() == []


class FailingAdapter(SwitchAdapter):
    def send_switch_state(self, turn_on: bool) -> None:
        raise ConnectionError("broker gone")


def test_adapter_failure_does_not_propagate(timers, clock):
    """A failing switch command is logged, the session still starts."""
    engine = make_engine(timers, FailingAdapter(), clock)
    result = door(engine, closed=False)
    assert result.commands == [ON]
    assert engine.session_state(CONTACT) is SessionState.ARMED


def test_without_motion_device(timers, adapter, clock):
    """Engines without a motion sensor ignore motion entirely."""
    engine = RuleEngine(
        devices=build_registry(sensor=DOOR, switch=SWITCH),
        timers=timers,
        oracle=DuskOracle(tz=UTC),
        adapter=adapter,
        clock=clock,
    )
    assert engine.handle_report(PIR, {"occupancy": True}) is None
    assert engine.handle_timer(MOTION, True).commands == [OFF]
