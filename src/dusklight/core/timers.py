"""
Named, cancellable session timers.

A session timer pairs a primary countdown (dormant until started) with an
optional independent expiry countdown. Whichever elapses first completes
the timer; a one-shot latch makes sure completion runs once per instance.

Lock order: callers holding the rule engine lock may call into the
manager (which takes the registry lock). Completion runs the fire handler
first and only then takes the registry lock for self-removal.
"""

import logging
import threading
from datetime import timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

FireHandler = Callable[[str, bool], None]


class SessionState(Enum):
    """Derived state of a trigger's session."""

    IDLE = "idle"  # no timer
    ARMED = "armed"  # timer exists, not counting down
    COUNTING = "counting"  # counting down to turn-off


class DelayedTask:
    """
    Cancellable, restartable delayed callback on top of threading.Timer.

    Every start/cancel bumps a generation counter; a run whose generation is
    stale exits without calling back.
    """

    def __init__(self, callback: Callable[[], None], name: str = "") -> None:
        self._callback = callback
        self._name = name
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._timer is not None

    def start(self, delay: timedelta) -> None:
        """(Re)start the countdown."""
        with self._lock:
            self._cancel_locked()
            self._generation += 1
            timer = threading.Timer(delay.total_seconds(), self._run, args=(self._generation,))
            timer.daemon = True
            if self._name:
                timer.name = f"timer-{self._name}"
            self._timer = timer
            timer.start()

    def cancel(self) -> bool:
        """Stop the countdown. Returns True if it was running."""
        with self._lock:
            return self._cancel_locked()

    def _cancel_locked(self) -> bool:
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        self._generation += 1
        return True

    def _run(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        self._callback()


class SessionTimer:
    """
    Handle for one pending turn-off session.

    Attributes:
        name: Session key (trigger name)
        primary: Main countdown, dormant on creation
        expiry: Optional forced-completion countdown
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.primary: Optional[DelayedTask] = None
        self.expiry: Optional[DelayedTask] = None
        self._fired = False
        self._latch = threading.Lock()

    @property
    def fired(self) -> bool:
        with self._latch:
            return self._fired

    @property
    def state(self) -> SessionState:
        if self.fired:
            return SessionState.IDLE
        if self.primary is not None and self.primary.is_running:
            return SessionState.COUNTING
        return SessionState.ARMED

    def claim(self) -> bool:
        """Set the one-shot latch. Only the first caller gets True."""
        with self._latch:
            if self._fired:
                return False
            self._fired = True
            return True

    def cancel(self) -> None:
        """Cancel both countdowns."""
        if self.primary is not None:
            self.primary.cancel()
        if self.expiry is not None:
            self.expiry.cancel()

    def __repr__(self) -> str:
        return f"SessionTimer(name={self.name!r}, state={self.state.value}, fired={self.fired})"


class TimerManager:
    """
    Registry of named session timers, at most one per name.

    The registry has its own lock, independent of the rule engine's, so that
    completing timers can remove themselves while an event is processed.
    """

    def __init__(self, on_fire: Optional[FireHandler] = None) -> None:
        """
        Initialize the manager.

        Args:
            on_fire: Called as on_fire(name, expired) once per completed timer
        """
        self._on_fire = on_fire
        self._timers: Dict[str, SessionTimer] = {}
        self._lock = threading.Lock()

    def set_fire_handler(self, on_fire: FireHandler) -> None:
        """Set the completion handler (normally the rule engine)."""
        self._on_fire = on_fire

    # =========================================================================
    # Registry operations
    # =========================================================================

    def add_timer(self, name: str) -> Optional[SessionTimer]:
        """
        Create a dormant timer.

        Returns:
            The new timer, or None if one already exists for ``name``
        """
        timer = SessionTimer(name)
        timer.primary = DelayedTask(lambda: self._complete(timer, False), name)

        with self._lock:
            if name in self._timers:
                return None
            self._timers[name] = timer

        logger.debug(f"Timer {name!r} created")
        return timer

    def add_timer_with_expiry(self, name: str, expiry: timedelta) -> Optional[SessionTimer]:
        """
        Create a dormant timer that completes after ``expiry`` no matter what
        the primary countdown does.

        Returns:
            The new timer, or None if one already exists for ``name``
        """
        timer = self.add_timer(name)
        if timer is not None:
            timer.expiry = DelayedTask(lambda: self._complete(timer, True), f"{name}-expiry")
            timer.expiry.start(expiry)
            logger.debug(f"Timer {name!r} expires in {expiry}")
        return timer

    def start_timer(self, name: str, duration: timedelta) -> bool:
        """
        (Re)start the primary countdown of an existing timer.

        Returns:
            True if the timer was found
        """
        with self._lock:
            timer = self._timers.get(name)
            if timer is None:
                return False
            assert timer.primary is not None
            timer.primary.start(duration)
        return True

    def stop_timer(self, name: str) -> Optional[SessionTimer]:
        """
        Halt the primary countdown, keeping the timer. The expiry countdown
        keeps running.

        Returns:
            The timer, or None if not found
        """
        with self._lock:
            timer = self._timers.get(name)
            if timer is None:
                return None
            assert timer.primary is not None
            timer.primary.cancel()
        return timer

    def destroy_timer(self, name: str) -> bool:
        """
        Cancel both countdowns and remove the timer.

        Returns:
            True if a timer existed
        """
        with self._lock:
            timer = self._timers.pop(name, None)
            if timer is None:
                return False
            timer.cancel()

        logger.debug(f"Timer {name!r} destroyed")
        return True

    def get_timer(self, name: str) -> Optional[SessionTimer]:
        with self._lock:
            return self._timers.get(name)

    def session_state(self, name: str) -> SessionState:
        """Get the derived session state for ``name``."""
        timer = self.get_timer(name)
        if timer is None:
            return SessionState.IDLE
        return timer.state

    def active_sessions(self) -> List[str]:
        with self._lock:
            return list(self._timers)

    def destroy_all(self) -> None:
        """Cancel and drop every timer (shutdown)."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    # =========================================================================
    # Completion
    # =========================================================================

    def _complete(self, timer: SessionTimer, expired: bool) -> None:
        """Run completion for ``timer``; only the first call does anything."""
        if not timer.claim():
            return

        logger.debug(f"Timer {timer.name!r} {'expired' if expired else 'fired'}")

        try:
            if self._on_fire is not None:
                self._on_fire(timer.name, expired)
        except Exception as e:
            logger.error(f"Error in fire handler for timer {timer.name!r}: {e}", exc_info=True)
        finally:
            with self._lock:
                # a destroy/recreate may have replaced us under the same name
                if self._timers.get(timer.name) is timer:
                    del self._timers[timer.name]
            timer.cancel()
