"""Sequential polling of Fronius inverters and meters

Architecture:
- DevicePoller: one thread visiting every device in turn
- One transport and session per device
- Per-device ReconnectPolicy backoff after failures
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .config import DevicesConfig, ModbusConfig
from .device import SunSpecDevice
from .errors import ModbusError
from .inverter import Inverter
from .logging_setup import get_logger
from .meter import Meter
from .transport import ReconnectPolicy


@dataclass
class PolledDevice:
    """Device plus its backoff bookkeeping."""
    device: SunSpecDevice
    policy: ReconnectPolicy
    next_attempt: float = 0.0
    info: Dict = field(default_factory=dict)
    last_error: Optional[str] = None

    @property
    def kind(self) -> str:
        return self.device.FAMILY.name

    @property
    def unit_id(self) -> int:
        return self.device.unit_id


def create_devices(modbus_config: ModbusConfig, devices_config: DevicesConfig,
                   kinds=('inverter', 'meter')) -> List[PolledDevice]:
    """
    Build one device (with its own transport) per configured unit id.

    Args:
        modbus_config: Shared connection settings
        devices_config: Inverter and meter unit ids
        kinds: Device classes to include

    Returns:
        List of PolledDevice in polling order (meters first)
    """
    polled = []
    if 'meter' in kinds:
        for unit_id in devices_config.meters:
            config = modbus_config.for_slave(unit_id)
            polled.append(PolledDevice(Meter(config), ReconnectPolicy.from_config(config)))
    if 'inverter' in kinds:
        for unit_id in devices_config.inverters:
            config = modbus_config.for_slave(unit_id)
            polled.append(PolledDevice(Inverter(config), ReconnectPolicy.from_config(config)))
    return polled


class DevicePoller(threading.Thread):
    """
    Single polling thread for all devices (inverters + meters).

    Devices are visited sequentially. A device that fails validation or a
    poll is backed off according to its ReconnectPolicy and revalidated on
    the next attempt.
    """

    def __init__(self, devices: List[PolledDevice], poll_interval: float,
                 publish_callback: Callable[[int, str, Dict], None],
                 read_storage: bool = True, read_controls: bool = False,
                 on_connect: Optional[Callable[[int, str, Dict], None]] = None,
                 on_error: Optional[Callable[[int, str, ModbusError], None]] = None):
        super().__init__(daemon=True, name="DevicePoller")
        self.devices = devices
        self.poll_interval = poll_interval
        self.publish_callback = publish_callback
        self.read_storage = read_storage
        self.read_controls = read_controls
        self.on_connect = on_connect
        self.on_error = on_error
        self.log = get_logger()
        self._stop_event = threading.Event()
        self.successful_polls = 0
        self.failed_polls = 0

    def run(self):
        self.log.info(f"Polling {len(self.devices)} device(s) every {self.poll_interval}s")
        while not self._stop_event.is_set():
            self.poll_once()
            self._stop_event.wait(self.poll_interval)

        for polled in self.devices:
            polled.device.disconnect()

    def stop(self):
        self._stop_event.set()

    @property
    def running(self) -> bool:
        return self.is_alive() and not self._stop_event.is_set()

    def poll_once(self) -> Dict[str, Dict]:
        """
        Visit every device whose backoff has expired.

        Returns:
            Snapshots keyed by '<kind>/<unit id>' for the devices read successfully
        """
        snapshots = {}
        for polled in self.devices:
            if self._stop_event.is_set():
                break
            if time.monotonic() < polled.next_attempt:
                continue
            data = self._poll_device(polled)
            if data is not None:
                snapshots[f"{polled.kind}/{polled.unit_id}"] = data
        return snapshots

    def _poll_device(self, polled: PolledDevice) -> Optional[Dict]:
        device = polled.device
        try:
            if not device.transport.is_connected:
                device.connect()

            if not device.is_valid:
                self._validate(polled)
            else:
                device.fetch_registers()

            if isinstance(device, Inverter):
                if self.read_storage:
                    device.fetch_storage_registers()
                if self.read_controls:
                    device.fetch_control_registers()

            data = device.read_all()
        except ModbusError as e:
            self._handle_error(polled, e)
            return None

        data.update(polled.info)
        polled.policy.reset()
        polled.last_error = None
        self.successful_polls += 1
        try:
            self.publish_callback(polled.unit_id, polled.kind, data)
        except (ValueError, RuntimeError, OSError) as e:
            self.log.error(f"{polled.kind.capitalize()} {polled.unit_id}: publish error: {e}")
        else:
            self.log.debug(f"{polled.kind.capitalize()} {polled.unit_id}: published (W={data.get('W')})")
        return data

    def _validate(self, polled: PolledDevice):
        device = polled.device
        identity = device.validate_device()
        polled.info = device.get_common()
        polled.info['device_id'] = polled.unit_id
        self.log.info(
            f"{polled.kind.capitalize()} {polled.unit_id}: {polled.info['manufacturer']} "
            f"{polled.info['model']} (SN: {polled.info['serial_number']}, "
            f"model {identity.model_id})"
        )
        if self.on_connect:
            self.on_connect(polled.unit_id, polled.kind, dict(polled.info))

    def _handle_error(self, polled: PolledDevice, error: ModbusError):
        self.failed_polls += 1
        polled.last_error = str(error)
        delay = polled.policy.next_delay()
        polled.next_attempt = time.monotonic() + delay

        if error.is_fatal:
            self.log.error(f"{polled.kind.capitalize()} {polled.unit_id}: {error}, retry in {delay}s")
        else:
            self.log.warning(f"{polled.kind.capitalize()} {polled.unit_id}: {error}, reconnect in {delay}s")
            # Force a fresh connection on the next attempt
            polled.device.disconnect()

        if self.on_error:
            self.on_error(polled.unit_id, polled.kind, error)

    def get_stats(self) -> Dict:
        return {
            'successful_polls': self.successful_polls,
            'failed_polls': self.failed_polls,
            'devices': {
                f"{p.kind}/{p.unit_id}": {
                    'valid': p.device.is_valid,
                    'last_error': p.last_error,
                }
                for p in self.devices
            },
        }
