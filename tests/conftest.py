"""Shared fixtures: an in-memory Modbus transport serving SunSpec register maps"""

import errno
import struct
from typing import Dict, List, Optional

import pytest

from fronius_sunspec import registers as regs
from fronius_sunspec.codec import float_to_registers
from fronius_sunspec.config import ConfigLoader, ModbusConfig
from fronius_sunspec.errors import ModbusError
from fronius_sunspec.registers import EncodingVariant, ModelFamily


def encode_string(text: str, count: int) -> List[int]:
    """Pack text two characters per register, NUL padded."""
    data = text.encode('latin-1').ljust(count * 2, b'\x00')[:count * 2]
    return list(struct.unpack(f'>{count}H', data))


class FakeTransport:
    """
    Register map served through the transport interface.

    Unset registers read as 0. Reads whose window starts at an address in
    `errors` raise that error instead. With `require_connection` set, reads
    on a disconnected transport fail the way a closed client does.
    """

    def __init__(self, registers: Optional[Dict[int, int]] = None, slave_id: int = 1):
        self.registers: Dict[int, int] = dict(registers or {})
        self.errors: Dict[int, ModbusError] = {}
        self.reads: List[tuple] = []
        self.config = ModbusConfig(host='192.0.2.10', slave_id=slave_id)
        self.connected = False
        self.require_connection = False
        self.successful_reads = 0
        self.failed_reads = 0

    @property
    def is_connected(self) -> bool:
        return self.connected

    def connect(self):
        self.connected = True

    def disconnect(self):
        self.connected = False

    def read_registers(self, address: int, count: int) -> List[int]:
        self.reads.append((address, count))
        if self.require_connection and not self.connected:
            raise ModbusError.transient("Modbus client not connected", errno.ENOTCONN)
        if address in self.errors:
            self.failed_reads += 1
            raise self.errors[address]
        self.successful_reads += 1
        return [self.registers.get(a, 0) for a in range(address, address + count)]

    # Map builders

    def put(self, address: int, words: List[int]):
        for i, word in enumerate(words):
            self.registers[address + i] = word & 0xFFFF

    def put_point(self, family: ModelFamily, encoding: EncodingVariant, name: str, words: List[int]):
        reg = regs.lookup(family, encoding, name)
        assert len(words) == reg.count, f"{name} needs {reg.count} registers"
        self.put(reg.address, words)

    def put_float(self, family: ModelFamily, name: str, value: float):
        self.put_point(family, EncodingVariant.FLOAT, name, float_to_registers(value))


def build_common(transport: FakeTransport, manufacturer: str = 'Fronius',
                 model: str = 'Symo 10.0-3-M', options: str = '3.17.2-1',
                 version: str = '0.3.30.2', serial: str = '31234567',
                 device_address: int = 1):
    common = regs.CATALOG[(ModelFamily.COMMON, EncodingVariant.FLOAT)]
    transport.put(regs.COMMON_START, list(regs.SUNSPEC_SIGNATURE) + [regs.COMMON_MODEL_ID, regs.COMMON_SIZE])
    for name, text in (('Mn', manufacturer), ('Md', model), ('Opt', options),
                       ('Vr', version), ('SN', serial)):
        transport.put(common[name].address, encode_string(text, common[name].count))
    transport.put(common['DA'].address, [device_address])


def build_inverter(transport: FakeTransport, model_id: int = 113, storage: bool = True):
    """Lay out a complete Fronius inverter map for model_id."""
    encoding = EncodingVariant.FLOAT if model_id >= 110 else EncodingVariant.INTEGER_SCALED
    build_common(transport, model='Symo 10.0-3-M')
    size = regs.MODEL_SIZES[(ModelFamily.INVERTER, encoding)]
    transport.put(regs.MODEL_ID_ADDRESS, [model_id, size])

    for extension, model in ((ModelFamily.CONTROLS, 123), (ModelFamily.MPPT, 160),
                             (ModelFamily.STORAGE, 124)):
        if extension is ModelFamily.STORAGE and not storage:
            continue
        header = regs.model_header(extension, encoding)
        transport.put(header.address, [model, regs.MODEL_SIZES[(extension, encoding)]])

    end = regs.end_marker(ModelFamily.INVERTER, encoding)
    transport.put(end.address, list(regs.END_MARKER))
    return encoding


def build_meter(transport: FakeTransport, model_id: int = 213):
    """Lay out a complete Fronius smart meter map for model_id."""
    encoding = EncodingVariant.FLOAT if model_id >= 210 else EncodingVariant.INTEGER_SCALED
    build_common(transport, model='Smart Meter 63A', serial='12345678', device_address=240)
    size = regs.MODEL_SIZES[(ModelFamily.METER, encoding)]
    transport.put(regs.MODEL_ID_ADDRESS, [model_id, size])
    end = regs.end_marker(ModelFamily.METER, encoding)
    transport.put(end.address, list(regs.END_MARKER))
    return encoding


@pytest.fixture(autouse=True)
def _reset_config_singleton():
    ConfigLoader.reset_instance()
    yield
    ConfigLoader.reset_instance()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def meter_transport():
    return FakeTransport(slave_id=240)
