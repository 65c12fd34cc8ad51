"""
dusklight daemon entry point.

Usage:
    dusklight --config /etc/dusklight.conf [--debug]
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from dusklight.config import DEFAULT_CONFIG_PATH, DaemonConfig, load_config
from dusklight.core.timers import TimerManager
from dusklight.errors import ConfigurationError
from dusklight.rules.engine import RuleEngine, build_registry
from dusklight.solar.dusk import DuskOracle
from dusklight.transport import MqttTransport

logger = logging.getLogger("dusklight")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dusklight",
        description="Turns a light on at dusk when a door opens or motion is detected",
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="config file")
    parser.add_argument("--debug", action="store_true", help="output debug messages")
    return parser


def setup_logging(debug: bool) -> None:
    """Configure root logging; journald adds its own timestamps."""
    under_systemd = bool(os.environ.get("INVOCATION_ID") and os.environ.get("JOURNAL_STREAM"))
    fmt = "%(levelname)s %(name)s: %(message)s"
    if not under_systemd:
        fmt = "%(asctime)s " + fmt

    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=fmt)

    # keep paho quiet unless debugging
    if not debug:
        logging.getLogger("paho").setLevel(logging.WARNING)


def build_engine(config: DaemonConfig, transport: MqttTransport) -> RuleEngine:
    """Wire registry, timers, oracle and adapter into an engine."""
    settings = config.to_settings()
    devices = build_registry(
        sensor=config.sensor,
        switch=config.switch,
        motion_sensor=config.motion_sensor,
        switch_state_attr=settings.switch_state_attr,
    )
    oracle = DuskOracle(config.latitude, config.longitude, angle=settings.twilight_angle)
    if not oracle.has_location:
        logger.info("No location configured, using fixed 7pm-7am dusk window")

    return RuleEngine(
        devices=devices,
        timers=TimerManager(),
        oracle=oracle,
        adapter=transport.switch_adapter(),
        settings=settings,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)

    try:
        config = load_config(args.config)
        transport = MqttTransport(config)
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 1

    engine = build_engine(config, transport)
    transport.attach(engine)
    transport.client.enable_logger(logging.getLogger("paho"))

    transport.connect()
    try:
        transport.loop_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        transport.disconnect()

    return 0


if __name__ == "__main__":
    sys.exit(main())
