"""MQTT client wrapper with publish buffering and control-topic intake."""

import json
import logging
import threading
import time
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, Callable, Dict, Optional

import paho.mqtt.client as mqtt

from .config import MQTTConfig, UNSConfig

logger = logging.getLogger(__name__)


@dataclass
class Message:
    """MQTT message to be published."""

    topic: str
    payload: Dict[str, Any]
    retain: bool = False
    qos: int = 1


class MQTTClient:
    """MQTT client with a background publish queue.

    Publishing only enqueues; a daemon thread drains the queue, so a slow
    broker never blocks the scheduler tick or a start request.
    """

    # Control topics - ROOT level (outside UNS path for easy access)
    CONTROL_ROOT = "shopfloor-twin"
    CONTROL_TOPIC = f"{CONTROL_ROOT}/control/+"
    STATUS_TOPIC = f"{CONTROL_ROOT}/status"
    COMMANDS = ("force-breakdown", "expire-tool", "inject-ncr")

    MACHINES_TOPIC = "_state/machines"

    def __init__(
        self,
        mqtt_config: MQTTConfig,
        uns_config: UNSConfig,
        on_command: Optional[Callable[[str, Dict[str, Any]], None]] = None,
    ):
        self.mqtt_config = mqtt_config
        self.uns_config = uns_config
        self.on_command = on_command

        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._publish_queue: Queue[Message] = Queue()
        self._publish_thread: Optional[threading.Thread] = None
        self._running = False
        self._dry_run = False

        # Stats
        self._messages_published = 0
        self._messages_dropped = 0
        self._commands_handled = 0

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def base_topic(self) -> str:
        """Get the base topic path."""
        return f"{self.uns_config.topic_prefix}/{self.uns_config.enterprise}/{self.uns_config.site}"

    @property
    def messages_published(self) -> int:
        return self._messages_published

    def connect(self, dry_run: bool = False) -> bool:
        """Connect to the MQTT broker."""
        self._dry_run = dry_run

        if dry_run:
            logger.info("Dry run mode - not connecting to MQTT broker")
            self._connected = True
            self._start_publish_thread()
            return True

        try:
            self._client = mqtt.Client(
                client_id=self.mqtt_config.client_id,
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            )

            if self.mqtt_config.username:
                self._client.username_pw_set(
                    self.mqtt_config.username, self.mqtt_config.password
                )

            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message

            logger.info(
                f"Connecting to MQTT broker {self.mqtt_config.broker}:{self.mqtt_config.port}"
            )
            self._client.connect(self.mqtt_config.broker, self.mqtt_config.port)
            self._client.loop_start()

            # Wait for connection
            timeout = 10
            start = time.time()
            while not self._connected and (time.time() - start) < timeout:
                time.sleep(0.1)

            if self._connected:
                self._start_publish_thread()
                self._subscribe_to_control()
                self.publish_status()

            return self._connected

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    def disconnect(self) -> None:
        """Disconnect from the MQTT broker."""
        self._running = False

        if self._publish_thread:
            self._publish_thread.join(timeout=2)

        if self._client and not self._dry_run:
            self._client.loop_stop()
            self._client.disconnect()

        self._connected = False
        logger.info("Disconnected from MQTT broker")

    def publish(self, topic: str, payload: Dict[str, Any], retain: bool = False) -> bool:
        """Queue a message under the UNS base topic."""
        full_topic = f"{self.base_topic}/{topic}"
        msg = Message(topic=full_topic, payload=payload, retain=retain, qos=self.mqtt_config.qos)
        self._publish_queue.put(msg)
        return True

    def publish_machine_update(self, message: Dict[str, Any]) -> bool:
        """Live channel sink: retained full machine snapshot."""
        return self.publish(self.MACHINES_TOPIC, message, retain=True)

    def _start_publish_thread(self) -> None:
        """Start the background publish thread."""
        self._running = True
        self._publish_thread = threading.Thread(target=self._publish_loop, daemon=True)
        self._publish_thread.start()

    def _publish_loop(self) -> None:
        """Background thread that publishes queued messages."""
        while self._running:
            try:
                msg = self._publish_queue.get(timeout=0.1)
                self._do_publish(msg)
            except Empty:
                continue

    def _do_publish(self, msg: Message) -> None:
        """Actually publish a message."""
        payload_str = json.dumps(msg.payload)

        if self._dry_run:
            logger.debug(f"[DRY RUN] {msg.topic}: {payload_str[:100]}")
            self._messages_published += 1
            return

        if self._client and self._connected:
            try:
                result = self._client.publish(
                    msg.topic, payload_str, qos=msg.qos, retain=msg.retain
                )
                if result.rc == mqtt.MQTT_ERR_SUCCESS:
                    self._messages_published += 1
                else:
                    self._messages_dropped += 1
                    logger.warning(f"Failed to publish to {msg.topic}: {result.rc}")
            except Exception as e:
                self._messages_dropped += 1
                logger.error(f"Error publishing to {msg.topic}: {e}")
        else:
            self._messages_dropped += 1

    def _subscribe_to_control(self) -> None:
        """Subscribe to the root-level control topics."""
        if not self._client:
            return

        self._client.subscribe(self.CONTROL_TOPIC, qos=1)
        logger.info(f"Subscribed to control topic: {self.CONTROL_TOPIC}")

    def publish_status(self) -> None:
        """Retained twin status: where snapshots go and which commands are accepted."""
        status = {
            "enterprise": self.uns_config.enterprise,
            "site": self.uns_config.site,
            "snapshot_topic": f"{self.base_topic}/{self.MACHINES_TOPIC}",
            "commands": list(self.COMMANDS),
            "commands_handled": self._commands_handled,
            "messages_published": self._messages_published,
            "messages_dropped": self._messages_dropped,
            "timestamp_ms": int(time.time() * 1000),
        }
        self._publish_queue.put(
            Message(topic=self.STATUS_TOPIC, payload=status, retain=True, qos=self.mqtt_config.qos)
        )

    def _on_connect(self, client, userdata, flags, rc, properties=None) -> None:
        """Handle connection callback."""
        if rc == 0:
            self._connected = True
            logger.info("Connected to MQTT broker")
        else:
            logger.error(f"Connection failed with code {rc}")

    def _on_disconnect(self, client, userdata, flags, rc, properties=None) -> None:
        """Handle disconnection callback."""
        self._connected = False
        if rc != 0:
            logger.warning(f"Unexpected disconnection (rc={rc})")

    def _on_message(self, client, userdata, msg) -> None:
        """Handle incoming control messages: shopfloor-twin/control/<command>."""
        try:
            command = msg.topic.rsplit("/", 1)[-1]
            if command not in self.COMMANDS:
                logger.warning(f"Ignoring unknown control command: {msg.topic}")
                return

            raw = msg.payload.decode() if msg.payload else ""
            payload = json.loads(raw) if raw else {}

            if self.on_command:
                self.on_command(command, payload)
            self._commands_handled += 1
            logger.info(f"Control command handled: {command}")
            self.publish_status()

        except Exception as e:
            logger.error(f"Error processing control message: {e}")
