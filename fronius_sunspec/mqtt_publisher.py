"""MQTT Publisher with change detection and topic management"""

import time
import json
import threading
from typing import Dict, Any
import paho.mqtt.client as mqtt

from .config import MQTTConfig
from .logging_setup import get_logger


class MQTTPublisher:
    """
    MQTT Publisher for Fronius SunSpec snapshots.

    Features:
    - Publish-on-change mode
    - Topics named after SunSpec points: <prefix>/<inverter|meter>/<unit id>/<point>
    - Automatic reconnection
    - JSON payload formatting for lists and dicts
    - Retained messages support
    """

    # Per-MPPT points, published below mppt/string<n>/
    MPPT_POINTS = ('DCA', 'DCV', 'DCW', 'DCWH')

    # Common model fields published once per change
    INFO_FIELDS = ('manufacturer', 'model', 'options', 'version',
                   'serial_number', 'device_address')

    # Nested sections published under their own device type
    SECTIONS = ('storage', 'controls')

    def __init__(self, config: MQTTConfig, publish_mode: str = 'changed'):
        """
        Initialize MQTT publisher.

        Args:
            config: MQTT configuration
            publish_mode: 'changed' (only publish changes) or 'all' (always publish)
        """
        self.config = config
        self.publish_mode = publish_mode
        self.client: mqtt.Client = None
        self.connected = False
        self.last_values: Dict[str, Any] = {}
        self.lock = threading.Lock()
        self.log = get_logger()

        # Stats
        self.messages_published = 0
        self.messages_skipped = 0
        self.connection_count = 0

        if config.enabled:
            self._setup_client()

    def _setup_client(self):
        """Setup MQTT client with callbacks"""
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)

        if self.config.username:
            self.client.username_pw_set(
                self.config.username,
                self.config.password
            )

        # Broker marks the bridge offline if the connection drops
        self.client.will_set(
            f"{self.config.topic_prefix}/status", "offline",
            qos=self.config.qos, retain=True
        )
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.reconnect_delay_set(min_delay=1, max_delay=60)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Handle connection established"""
        if reason_code == 0:
            self.connected = True
            self.connection_count += 1
            self.log.info(
                f"MQTT connected to {self.config.broker}:{self.config.port}"
            )
        else:
            self.connected = False
            self.log.error(f"MQTT connection failed: {reason_code}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        """Handle disconnection"""
        self.connected = False
        if reason_code != 0:
            self.log.warning(f"MQTT disconnected unexpectedly: {reason_code}")

    def connect(self) -> bool:
        """
        Connect to MQTT broker.

        Returns:
            True if connection successful
        """
        if not self.config.enabled:
            self.log.info("MQTT publishing disabled")
            return False

        try:
            self.client.connect(
                self.config.broker,
                self.config.port,
                keepalive=60
            )
            self.client.loop_start()

            # Wait briefly for connection
            for _ in range(10):
                if self.connected:
                    break
                time.sleep(0.1)

            return self.connected

        except OSError as e:
            self.log.error(f"MQTT connection error: {e}")
            return False

    def disconnect(self):
        """Disconnect from MQTT broker"""
        if self.client:
            self.client.loop_stop()
            self.client.disconnect()
        self.connected = False
        self.log.info("MQTT disconnected")

    def _build_topic(self, device_type: str, device_id: Any,
                     field: str = None) -> str:
        """
        Build MQTT topic path.

        Args:
            device_type: 'inverter', 'meter', 'storage' or 'controls'
            device_id: Modbus unit id
            field: Optional point name

        Returns:
            Topic string like 'fronius/inverter/1/W'
        """
        base = f"{self.config.topic_prefix}/{device_type}/{device_id}"
        if field:
            return f"{base}/{field}"
        return base

    def _should_publish(self, topic: str, value: Any) -> bool:
        """
        Check if value should be published based on mode.

        Args:
            topic: MQTT topic
            value: Value to publish

        Returns:
            True if should publish
        """
        if self.publish_mode == 'all':
            return True

        with self.lock:
            if topic not in self.last_values:
                self.last_values[topic] = value
                return True

            if self.last_values[topic] != value:
                self.last_values[topic] = value
                return True

        return False

    def _publish(self, topic: str, payload: str, retain: bool = None) -> bool:
        """
        Internal publish method.

        Args:
            topic: MQTT topic
            payload: String payload
            retain: Override retain setting

        Returns:
            True if published successfully
        """
        if not self.connected:
            return False

        if retain is None:
            retain = self.config.retain

        try:
            result = self.client.publish(
                topic,
                payload,
                qos=self.config.qos,
                retain=retain
            )
        except (ValueError, RuntimeError) as e:
            self.log.error(f"MQTT publish to {topic} error: {e}")
            return False

        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            self.messages_published += 1
            return True

        self.log.debug(f"MQTT publish to {topic} failed: rc={result.rc}")
        return False

    def publish(self, topic: str, value: Any, retain: bool = None) -> bool:
        """
        Publish a value to topic.

        Args:
            topic: MQTT topic
            value: Value to publish (will be converted to string/JSON)
            retain: Override retain setting

        Returns:
            True if published successfully
        """
        # Convert to JSON if dict/list
        if isinstance(value, (dict, list)):
            payload = json.dumps(value)
        elif isinstance(value, float):
            payload = str(round(value, 3))
        else:
            payload = str(value)

        return self._publish(topic, payload, retain)

    def publish_if_changed(self, topic: str, value: Any,
                           retain: bool = None) -> bool:
        """
        Publish only if value changed (based on publish_mode).

        Args:
            topic: MQTT topic
            value: Value to publish
            retain: Override retain setting

        Returns:
            True if published, False if skipped or failed
        """
        if self._should_publish(topic, value):
            return self.publish(topic, value, retain)

        self.messages_skipped += 1
        return False

    def _point_topic(self, device_type: str, device_id: Any, point: str) -> str:
        # DCA_1 -> mppt/string1/DCA
        name, _, module = point.rpartition('_')
        if name in self.MPPT_POINTS and module.isdigit():
            return self._build_topic(device_type, device_id, f"mppt/string{module}/{name}")
        return self._build_topic(device_type, device_id, point)

    def publish_device_data(self, device_type: str, device_id: Any, data: Dict):
        """
        Publish a read_all() snapshot.

        Args:
            device_type: 'inverter' or 'meter'
            device_id: Modbus unit id
            data: Snapshot keyed by SunSpec point name
        """
        if not self.connected:
            return

        for point, value in data.items():
            if value is None or point in self.SECTIONS or point in ('status', 'events', 'device_id'):
                continue
            if point in self.INFO_FIELDS and value == '':
                continue
            self.publish_if_changed(self._point_topic(device_type, device_id, point), value)

        # Status info
        if data.get('status'):
            status = data['status']
            topic = self._build_topic(device_type, device_id, 'status')
            self.publish_if_changed(topic, status.get('description', 'Unknown'))

            topic = self._build_topic(device_type, device_id, 'alarm')
            self.publish_if_changed(topic, status.get('alarm', False))

        # Events (always publish if any exist, don't retain)
        if 'events' in data:
            topic = self._build_topic(device_type, device_id, 'events')
            if data['events']:
                self.publish(topic, data['events'], retain=False)
            else:
                # Clear events if none active
                self.publish_if_changed(topic, [])

        for section in self.SECTIONS:
            for point, value in (data.get(section) or {}).items():
                if value is not None:
                    topic = self._build_topic(section, device_id, point)
                    self.publish_if_changed(topic, value)

    def publish_status(self, status: str):
        """
        Publish application status.

        Args:
            status: Status string ('online', 'offline', etc.)
        """
        topic = f"{self.config.topic_prefix}/status"
        self.publish(topic, status, retain=True)

    def get_stats(self) -> Dict:
        """Return publisher statistics"""
        return {
            'enabled': self.config.enabled,
            'connected': self.connected,
            'broker': self.config.broker,
            'port': self.config.port,
            'messages_published': self.messages_published,
            'messages_skipped': self.messages_skipped,
            'publish_mode': self.publish_mode,
            'connection_count': self.connection_count
        }
