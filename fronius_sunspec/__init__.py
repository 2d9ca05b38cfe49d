"""
Fronius SunSpec - Modbus register model detection and decoding

Identifies Fronius inverters and smart meters (SunSpec float and
integer+scale-factor models), validates their register layout and decodes
measurements into physical values. Includes a poller and MQTT bridge.
"""

__version__ = "1.0.0"

from .config import ConfigLoader, ModbusConfig, get_config
from .detector import DetectionState, DeviceIdentity
from .errors import ModbusError, Severity
from .fronius_types import Input, OperatingState, Phase, TemperatureSensor
from .inverter import Inverter
from .logging_setup import setup_logging, get_logger
from .meter import Meter
from .mqtt_publisher import MQTTPublisher
from .poller import DevicePoller, create_devices
from .registers import EncodingVariant
from .transport import ModbusTransport, ReconnectPolicy

__all__ = [
    "__version__",
    "ConfigLoader",
    "ModbusConfig",
    "get_config",
    "DetectionState",
    "DeviceIdentity",
    "ModbusError",
    "Severity",
    "Input",
    "OperatingState",
    "Phase",
    "TemperatureSensor",
    "Inverter",
    "Meter",
    "setup_logging",
    "get_logger",
    "MQTTPublisher",
    "DevicePoller",
    "create_devices",
    "EncodingVariant",
    "ModbusTransport",
    "ReconnectPolicy",
]
