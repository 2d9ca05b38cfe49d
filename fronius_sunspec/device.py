"""Device session, register shadow and the SunSpec common model"""

import errno
from typing import List, Optional

from . import registers as regs
from .codec import decode_physical_value, decode_raw, decode_string
from .config import ModbusConfig
from .detector import DetectionState, DeviceFamily, DeviceIdentity, Detector
from .errors import ModbusError
from .logging_setup import get_logger
from .registers import EncodingVariant, ModelFamily, RegisterAddress
from .transport import ModbusTransport


class RegisterShadow:
    """
    Last-read register values of one device, bounded to [start, end).

    Every register carries a fetched flag; reading a window that was never
    fetched fails instead of returning zeros. Stores are write-through, so
    windows fetched by separate calls may come from different points in time.
    """

    def __init__(self, start: int, end: int):
        if end <= start:
            raise ValueError(f"Empty register span [{start}, {end})")
        self.start = start
        self.end = end
        self.values: List[int] = [0] * (end - start)
        self.fetched: List[bool] = [False] * (end - start)

    def _offset(self, address: int, count: int) -> int:
        if count < 1 or address < self.start or address + count > self.end:
            raise ModbusError.fatal(
                f"Register window [{address}, {address + count}) outside "
                f"shadow span [{self.start}, {self.end})",
                code=errno.ERANGE
            )
        return address - self.start

    def store(self, address: int, registers: List[int]):
        offset = self._offset(address, len(registers))
        for i, value in enumerate(registers):
            self.values[offset + i] = value & 0xFFFF
            self.fetched[offset + i] = True

    def is_fetched(self, address: int, count: int = 1) -> bool:
        offset = self._offset(address, count)
        return all(self.fetched[offset:offset + count])

    def window(self, address: int, count: int) -> List[int]:
        """
        Return count registers starting at address.

        Raises:
            ModbusError: FATAL if the window is outside the span or not yet read
        """
        offset = self._offset(address, count)
        if not all(self.fetched[offset:offset + count]):
            raise ModbusError.fatal(
                f"Register window [{address}, {address + count}) not yet read",
                code=errno.ENODATA
            )
        return self.values[offset:offset + count]

    def clear(self):
        self.values = [0] * len(self.values)
        self.fetched = [False] * len(self.fetched)


class DeviceSession:
    """
    Exclusive state of one device: transport, shadow, identity and detection state.

    Attributes:
        transport: Object with read_registers(address, count)
        family: DeviceFamily being detected
        shadow: RegisterShadow spanning the family's registers
        identity: DeviceIdentity once classified, None otherwise
        state: Current DetectionState
    """

    def __init__(self, transport, family: DeviceFamily, unit_id: Optional[int] = None):
        self.transport = transport
        self.family = family
        self.unit_id = unit_id
        self.shadow = RegisterShadow(regs.COMMON_START, family.shadow_end)
        self.identity: Optional[DeviceIdentity] = None
        self.state = DetectionState.UNVALIDATED
        self.log = get_logger()

    @property
    def label(self) -> str:
        if self.unit_id is None:
            return self.family.name.capitalize()
        return f"{self.family.name.capitalize()} {self.unit_id}"

    @property
    def is_valid(self) -> bool:
        return self.state is DetectionState.VALID and self.identity is not None

    def fetch(self, address: int, count: int, context: str) -> List[int]:
        """
        Read a register window through the transport into the shadow.

        Args:
            address: First register
            count: Number of registers
            context: Operation name used in error messages

        Returns:
            The registers read

        Raises:
            ModbusError: Transport error wrapped with operation and window,
                severity preserved
        """
        try:
            registers = self.transport.read_registers(address, count)
        except ModbusError as e:
            raise e.wrap(f"{self.label}: {context} [{address}, {address + count})") from e
        self.shadow.store(address, registers)
        return registers

    def window(self, address: int, count: int) -> List[int]:
        return self.shadow.window(address, count)

    def reset(self):
        """Forget everything before a new identification run."""
        self.shadow.clear()
        self.identity = None
        self.state = DetectionState.UNVALIDATED

    def invalidate(self):
        self.identity = None
        self.state = DetectionState.INVALID


class SunSpecDevice:
    """
    Shared surface of Fronius inverters and meters.

    Owns one DeviceSession (and through it one transport). Subclasses add
    the physical getters for their model family.
    """

    FAMILY: DeviceFamily = None

    def __init__(self, config: Optional[ModbusConfig] = None, transport=None):
        if transport is None:
            if config is None:
                raise ValueError("Either a ModbusConfig or a transport is required")
            config.validate()
            transport = ModbusTransport(config)
        unit_id = config.slave_id if config is not None else getattr(
            getattr(transport, 'config', None), 'slave_id', None)
        self.transport = transport
        self.session = DeviceSession(transport, self.FAMILY, unit_id)
        self.detector = Detector(self.session)
        self.log = get_logger()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self):
        self.transport.connect()

    def disconnect(self):
        self.transport.disconnect()

    # ------------------------------------------------------------------
    # Identification
    # ------------------------------------------------------------------

    def check_signature(self):
        self.detector.check_signature()

    def read_common_block(self):
        self.detector.read_common_block()

    def validate_device(self) -> DeviceIdentity:
        """
        Identify the device and fetch its measurement blocks.

        Returns:
            DeviceIdentity of the validated device

        Raises:
            ModbusError: FATAL or TRANSIENT from the failing step
        """
        return self.detector.validate()

    def fetch_registers(self):
        """Re-read end marker, measurement block and extensions."""
        self.detector.fetch_blocks()

    @property
    def identity(self) -> Optional[DeviceIdentity]:
        return self.session.identity

    @property
    def is_valid(self) -> bool:
        return self.session.is_valid

    @property
    def state(self) -> DetectionState:
        return self.session.state

    @property
    def unit_id(self) -> Optional[int]:
        return self.session.unit_id

    def _require_valid(self, operation: str) -> DeviceIdentity:
        if not self.session.is_valid:
            raise ModbusError.not_validated(operation)
        return self.session.identity

    def get_id(self) -> int:
        """SunSpec model id."""
        return self._require_valid("get_id").model_id

    def get_phases(self) -> int:
        return self._require_valid("get_phases").phase_count

    def get_use_float_registers(self) -> bool:
        return self._require_valid("get_use_float_registers").use_float_registers

    # ------------------------------------------------------------------
    # Common model
    # ------------------------------------------------------------------

    def _common_window(self, name: str) -> List[int]:
        reg = regs.lookup(ModelFamily.COMMON, EncodingVariant.FLOAT, name)
        if not self.session.shadow.is_fetched(reg.address, reg.count):
            raise ModbusError.fatal(f"{name}: common block not yet read", code=errno.ENODATA)
        return self.session.window(reg.address, reg.count)

    def get_manufacturer(self) -> str:
        return decode_string(self._common_window('Mn'))

    def get_model(self) -> str:
        return decode_string(self._common_window('Md'))

    def get_options(self) -> str:
        return decode_string(self._common_window('Opt'))

    def get_firmware_version(self) -> str:
        return decode_string(self._common_window('Vr'))

    def get_serial_number(self) -> str:
        return decode_string(self._common_window('SN'))

    def get_device_address(self) -> int:
        """
        Modbus device address reported in the common block.

        Raises:
            ModbusError: FATAL if not yet read or outside 1-247
        """
        address = self._common_window('DA')[0]
        if not 1 <= address <= 247:
            raise ModbusError.fatal(f"Invalid device address {address}, expected 1-247")
        return address

    def get_common(self) -> dict:
        return {
            'manufacturer': self.get_manufacturer(),
            'model': self.get_model(),
            'options': self.get_options(),
            'version': self.get_firmware_version(),
            'serial_number': self.get_serial_number(),
            'device_address': self.get_device_address(),
        }

    # ------------------------------------------------------------------
    # Decode helpers for subclasses
    # ------------------------------------------------------------------

    def _register(self, model: ModelFamily, name: str) -> RegisterAddress:
        return regs.lookup(model, self.session.identity.encoding, name)

    def _value(self, operation: str, name: str, sf_name: Optional[str] = None,
               model: Optional[ModelFamily] = None) -> Optional[float]:
        """
        Decode one physical value of the validated device.

        The scale factor is only consulted under INTEGER_SCALED encoding;
        float models carry no scale-factor registers.
        """
        identity = self._require_valid(operation)
        model = model or self.FAMILY.model
        value_reg = regs.lookup(model, identity.encoding, name)
        sf_reg = None
        if sf_name is not None and value_reg.reg_type != 'float32':
            sf_reg = regs.lookup(model, identity.encoding, sf_name)
        return decode_physical_value(self.session.shadow, value_reg, identity.encoding, sf_reg)

    def _raw(self, operation: str, name: str, model: Optional[ModelFamily] = None) -> Optional[int]:
        """Decode an integer register (state, event, enum) of the validated device."""
        identity = self._require_valid(operation)
        reg = regs.lookup(model or self.FAMILY.model, identity.encoding, name)
        return decode_raw(self.session.window(reg.address, reg.count), reg.reg_type)
