"""YAML Configuration loader for Fronius SunSpec"""

import os
import yaml
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional


@dataclass
class ModbusConfig:
    """Modbus TCP / RTU connection settings"""
    use_tcp: bool = True
    host: str = ""
    port: int = 502
    device: str = ""          # Serial device path (RTU)
    baud: int = 9600
    slave_id: int = 1
    sec_timeout: int = 3
    usec_timeout: int = 0
    reconnect_delay: float = 5
    reconnect_delay_max: float = 320
    exponential: bool = True
    debug: bool = False

    def validate(self):
        """
        Check field ranges.

        Raises:
            ValueError: On the first out-of-range field
        """
        if not 1 <= self.slave_id <= 247:
            raise ValueError(f"modbus.slave_id must be 1-247, got {self.slave_id}")
        if self.baud <= 0:
            raise ValueError(f"modbus.baud must be positive, got {self.baud}")
        if not 1 <= self.port <= 65535:
            raise ValueError(f"modbus.port must be 1-65535, got {self.port}")
        if self.reconnect_delay <= 0 or self.reconnect_delay_max <= 0:
            raise ValueError("modbus.reconnect_delay and reconnect_delay_max must be positive")
        if self.reconnect_delay >= self.reconnect_delay_max:
            raise ValueError(
                f"modbus.reconnect_delay ({self.reconnect_delay}) must be less than "
                f"reconnect_delay_max ({self.reconnect_delay_max})"
            )
        if self.sec_timeout < 0 or self.usec_timeout < 0:
            raise ValueError("modbus timeouts must not be negative")
        if self.usec_timeout >= 1_000_000:
            raise ValueError(f"modbus.usec_timeout must be below 1000000, got {self.usec_timeout}")
        if self.sec_timeout == 0 and self.usec_timeout == 0:
            raise ValueError("modbus timeout must not be zero")
        if self.use_tcp and not self.host:
            raise ValueError("modbus.host is required when use_tcp is set")
        if not self.use_tcp and not self.device:
            raise ValueError("modbus.device is required when use_tcp is not set")

    def for_slave(self, slave_id: int) -> 'ModbusConfig':
        """Per-device copy addressing another Modbus unit id."""
        config = replace(self, slave_id=slave_id)
        config.validate()
        return config


@dataclass
class DevicesConfig:
    """Device configuration - explicit device IDs"""
    inverters: List[int] = field(default_factory=list)  # List of inverter Modbus IDs
    meters: List[int] = field(default_factory=list)      # List of meter Modbus IDs
    read_storage: bool = True       # Read model 124 on hybrid inverters
    read_controls: bool = False     # Read model 123 immediate controls


@dataclass
class MQTTConfig:
    """MQTT broker settings"""
    enabled: bool = True
    broker: str = "localhost"
    port: int = 1883
    username: str = ""
    password: str = ""
    topic_prefix: str = "fronius"
    retain: bool = True
    qos: int = 0


@dataclass
class GeneralConfig:
    """General application settings"""
    log_level: str = "INFO"
    log_file: str = ""
    poll_interval: int = 5
    publish_mode: str = "changed"  # 'changed' or 'all'


class ConfigLoader:
    """YAML configuration loader with singleton pattern"""

    _instance: Optional['ConfigLoader'] = None

    def __init__(self, config_path: str = None):
        self.config: Dict = {}
        self.general: GeneralConfig = None
        self.modbus: ModbusConfig = None
        self.devices: DevicesConfig = None
        self.mqtt: MQTTConfig = None
        self._load_config(config_path)

    @classmethod
    def get_instance(cls, config_path: str = None) -> 'ConfigLoader':
        """Get singleton instance"""
        if cls._instance is None:
            cls._instance = ConfigLoader(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton (useful for testing)"""
        cls._instance = None

    def _load_config(self, config_path: str = None):
        """Load and parse YAML configuration"""
        paths = [
            config_path,
            os.environ.get('FRONIUS_SUNSPEC_CONFIG'),
            '/app/config/fronius_sunspec.yaml',
            'config/fronius_sunspec.yaml',
            'fronius_sunspec.yaml'
        ]

        for path in filter(None, paths):
            if os.path.exists(path):
                with open(path, 'r') as f:
                    self.config = yaml.safe_load(f) or {}
                self._parse_config()
                return

        raise FileNotFoundError(
            "No configuration file found. Searched paths:\n" +
            "\n".join(f"  - {p}" for p in filter(None, paths))
        )

    def _parse_config(self):
        """Parse configuration into dataclasses"""
        # Parse general settings
        gen = self.config.get('general', {})
        self.general = GeneralConfig(
            log_level=gen.get('log_level', 'INFO'),
            log_file=gen.get('log_file', ''),
            poll_interval=gen.get('poll_interval', 5),
            publish_mode=gen.get('publish_mode', 'changed')
        )

        # Parse modbus settings (host or device required)
        mb = self.config.get('modbus', {})
        self.modbus = ModbusConfig(
            use_tcp=mb.get('use_tcp', True),
            host=mb.get('host', ''),
            port=mb.get('port', 502),
            device=mb.get('device', ''),
            baud=mb.get('baud', 9600),
            slave_id=mb.get('slave_id', 1),
            sec_timeout=mb.get('sec_timeout', 3),
            usec_timeout=mb.get('usec_timeout', 0),
            reconnect_delay=mb.get('reconnect_delay', 5),
            reconnect_delay_max=mb.get('reconnect_delay_max', 320),
            exponential=mb.get('exponential', True),
            debug=mb.get('debug', False)
        )
        self.modbus.validate()

        # Parse devices settings
        dev = self.config.get('devices', {})
        inverters = dev.get('inverters', [1])
        meters = dev.get('meters', [240])
        # Handle single int or list
        if isinstance(inverters, int):
            inverters = [inverters]
        if isinstance(meters, int):
            meters = [meters]

        self.devices = DevicesConfig(
            inverters=inverters or [],
            meters=meters or [],
            read_storage=dev.get('read_storage', True),
            read_controls=dev.get('read_controls', False)
        )
        for unit_id in self.devices.inverters + self.devices.meters:
            if not 1 <= unit_id <= 247:
                raise ValueError(f"devices: unit id must be 1-247, got {unit_id}")

        # Parse MQTT settings
        mq = self.config.get('mqtt', {})
        self.mqtt = MQTTConfig(
            enabled=mq.get('enabled', True),
            broker=mq.get('broker', 'localhost'),
            port=mq.get('port', 1883),
            username=mq.get('username', ''),
            password=mq.get('password', ''),
            topic_prefix=mq.get('topic_prefix', 'fronius'),
            retain=mq.get('retain', True),
            qos=mq.get('qos', 0)
        )


def get_config(config_path: str = None) -> ConfigLoader:
    """Get configuration singleton"""
    return ConfigLoader.get_instance(config_path)
