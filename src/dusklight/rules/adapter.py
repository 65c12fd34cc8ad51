"""
Switch adapter interface for the rule engine.

The adapter is the only way the engine acts on the outside world. The
daemon provides an MQTT implementation; tests use MockSwitchAdapter.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from .models import SWITCH_OFF, SWITCH_ON


def switch_payload(state_attr: str, turn_on: bool) -> Dict[str, Any]:
    """Build a switch command payload, e.g. {"state_right": "ON"}."""
    return {state_attr: SWITCH_ON if turn_on else SWITCH_OFF}


class SwitchAdapter(ABC):
    """
    Abstract interface for switching the light.

    Implementations may block; the engine never calls them while holding
    its lock.
    """

    @abstractmethod
    def send_switch_state(self, turn_on: bool) -> None:
        """
        Turn the switch on or off.

        Args:
            turn_on: True for ON, False for OFF
        """
        pass


class MockSwitchAdapter(SwitchAdapter):
    """
    Mock adapter for testing.

    Records every command. Safe to use from timer threads.
    """

    def __init__(self) -> None:
        self._commands: List[bool] = []
        self._lock = threading.Lock()
        self._sent = threading.Condition(self._lock)

    def get_commands(self) -> List[bool]:
        """Get recorded commands (True = ON)."""
        with self._lock:
            return self._commands.copy()

    def clear_commands(self) -> None:
        with self._lock:
            self._commands.clear()

    def wait_for_commands(self, count: int, timeout: float = 2.0) -> bool:
        """Block until at least ``count`` commands were recorded."""
        with self._sent:
            return self._sent.wait_for(lambda: len(self._commands) >= count, timeout)

    # SwitchAdapter implementation

    def send_switch_state(self, turn_on: bool) -> None:
        with self._sent:
            self._commands.append(turn_on)
            self._sent.notify_all()
