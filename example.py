#!/usr/bin/env python3
"""
Quick example demonstrating dusklight without a broker.

Run with: PYTHONPATH=src python3 example.py
"""

import time
from datetime import datetime, timedelta

from dusklight.core.timers import TimerManager
from dusklight.rules import CONTACT, MOTION, MockSwitchAdapter, RuleEngine, RuleSettings, build_registry
from dusklight.solar import DuskOracle

print("=" * 60)
print("dusklight Example")
print("=" * 60)

# 1. Components
print("\n1. Creating components...")
devices = build_registry(sensor="front_door", switch="hall_switch", motion_sensor="hall_motion")
timers = TimerManager()
oracle = DuskOracle(1.3521, 103.8198)  # Singapore
adapter = MockSwitchAdapter()
print(f"   ✓ Devices: {', '.join(d.id for d in devices.all_devices())}")

today = datetime.now().astimezone()
sunrise, sunset = oracle.sun_times(today)
print(f"   ✓ Twilight today: {sunrise:%H:%M} - {sunset:%H:%M}")

# 2. Engine, pretending it is 9 PM
print("\n2. Creating rule engine (clock fixed at 9 PM)...")
engine = RuleEngine(
    devices=devices,
    timers=timers,
    oracle=oracle,
    adapter=adapter,
    settings=RuleSettings(off_delay=timedelta(seconds=1), motion_off_delay=timedelta(seconds=1)),
    clock=lambda: today.replace(hour=21, minute=0),
)
print("   ✓ Engine ready")

# 3. Door session
print("\n3. Door opens...")
engine.handle_report("front_door", b'{"contact": false}')
print(f"   Commands: {adapter.get_commands()}  session: {engine.session_state(CONTACT).value}")

print("   Door closes...")
engine.handle_report("front_door", b'{"contact": true}')
print(f"   Session: {engine.session_state(CONTACT).value}")

adapter.wait_for_commands(2)
print(f"   ✓ After delay: {adapter.get_commands()}")

# 4. Motion converted into a door session
print("\n4. Motion, then the door opens...")
adapter.clear_commands()
time.sleep(0.1)
engine.handle_report("hall_motion", b'{"occupancy": true}')
engine.handle_report("front_door", b'{"contact": false}')
print(
    f"   Commands: {adapter.get_commands()}  "
    f"contact: {engine.session_state(CONTACT).value}  motion: {engine.session_state(MOTION).value}"
)

# 5. Manual override
print("\n5. Switch pressed by hand...")
engine.handle_report("hall_switch", b'{"state_right": "ON", "action": "single_right"}')
print(f"   ✓ Sessions left: {timers.active_sessions()}")

timers.destroy_all()
print("\n" + "=" * 60)
print("Done")
print("=" * 60)
