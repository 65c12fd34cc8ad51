"""
MQTT transport for zigbee2mqtt.

Relays device reports from the broker into the rule engine and publishes
switch commands back.
"""

import json
import logging
import threading
from typing import Optional
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from dusklight.config import DaemonConfig
from dusklight.errors import ConfigurationError
from dusklight.rules.adapter import SwitchAdapter, switch_payload
from dusklight.rules.engine import RuleEngine

logger = logging.getLogger(__name__)

TOPIC_PREFIX = "zigbee2mqtt/"
CLIENT_ID = "dusklight"

_TLS_SCHEMES = {"ssl", "tls", "mqtts", "wss"}
_WS_SCHEMES = {"ws", "wss"}


def device_topic(topic: str) -> Optional[str]:
    """
    Strip the zigbee2mqtt prefix from a device report topic.

    Returns:
        The device's friendly name, or None for foreign topics, the bridge,
        and set/get requests
    """
    if not topic.startswith(TOPIC_PREFIX):
        return None

    name = topic[len(TOPIC_PREFIX):]
    if name.endswith("/set") or name.endswith("/get") or name.startswith("bridge/"):
        return None
    return name


class MqttSwitchAdapter(SwitchAdapter):
    """Publishes switch commands to zigbee2mqtt."""

    def __init__(self, client: mqtt.Client, switch: str, state_attr: str = "state_right") -> None:
        self._client = client
        self._topic = f"{TOPIC_PREFIX}{switch}/set"
        self._state_attr = state_attr

    def send_switch_state(self, turn_on: bool) -> None:
        payload = json.dumps(switch_payload(self._state_attr, turn_on))
        info = self._client.publish(self._topic, payload, qos=0, retain=False)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(f"Publish to {self._topic} failed: {mqtt.error_string(info.rc)}")


class MqttTransport:
    """
    Owns the paho client: connect, subscribe, route messages.

    paho reconnects on its own; every (re)connect re-subscribes.
    """

    def __init__(self, config: DaemonConfig, client: Optional[mqtt.Client] = None) -> None:
        self.config = config
        self._engine: Optional[RuleEngine] = None
        self._connected = threading.Event()

        url = urlsplit(config.server)
        try:
            port = url.port
        except ValueError as e:
            raise ConfigurationError(f"invalid MQTT server: {config.server}") from e
        if not url.hostname or port is None:
            raise ConfigurationError(f"invalid MQTT server: {config.server}")
        self.host = url.hostname
        self.port = port
        self.scheme = url.scheme

        if client is None:
            client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=CLIENT_ID,
                transport="websockets" if self.scheme in _WS_SCHEMES else "tcp",
            )
            if self.scheme in _TLS_SCHEMES:
                client.tls_set()
            if config.username:
                client.username_pw_set(config.username, config.password or None)
            client.reconnect_delay_set(min_delay=1, max_delay=60)

        self._client = client
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    @property
    def client(self) -> mqtt.Client:
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    def attach(self, engine: RuleEngine) -> None:
        """Route incoming reports to ``engine``."""
        self._engine = engine

    def switch_adapter(self) -> MqttSwitchAdapter:
        """Adapter publishing to the configured switch."""
        return MqttSwitchAdapter(self._client, self.config.switch)

    def connect(self) -> None:
        """Start connecting; paho keeps retrying in the background loop."""
        logger.info(f"Connecting to MQTT broker {self.config.server}...")
        try:
            self._client.connect(self.host, self.port, keepalive=60)
        except OSError as e:
            # loop_forever(retry_first_connection=True) keeps trying
            logger.warning(f"Cannot connect to MQTT broker: {e}")

    def loop_forever(self) -> None:
        """Block processing network traffic until disconnect()."""
        logger.info("Waiting for MQTT events...")
        self._client.loop_forever(retry_first_connection=True)

    def disconnect(self) -> None:
        self._client.disconnect()

    # =========================================================================
    # paho callbacks
    # =========================================================================

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.error(f"MQTT connection refused: {reason_code}")
            return

        self._connected.set()
        client.subscribe(f"{TOPIC_PREFIX}#", qos=0)
        logger.info("Subscribed to MQTT topic")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        self._connected.clear()
        if reason_code.is_failure:
            logger.warning(f"Unexpected MQTT disconnection: {reason_code}")
        else:
            logger.info("Disconnected from MQTT broker")

    def _on_message(self, client, userdata, msg) -> None:
        topic = device_topic(msg.topic)
        if topic is None:
            return

        logger.debug(f"recv {msg.topic!r}, payload {msg.payload!r}")

        if self._engine is None:
            return

        try:
            self._engine.handle_report(topic, msg.payload)
        except Exception as e:
            logger.error(f"Error handling message on {msg.topic!r}: {e}", exc_info=True)
