"""
Tests for the register shadow, device session and common model accessors.
"""

import errno

import pytest

from fronius_sunspec import detector
from fronius_sunspec.config import ModbusConfig
from fronius_sunspec.detector import DetectionState
from fronius_sunspec.device import DeviceSession, RegisterShadow
from fronius_sunspec.errors import ModbusError
from fronius_sunspec.inverter import Inverter
from fronius_sunspec.meter import Meter
from fronius_sunspec.transport import ModbusTransport

from conftest import FakeTransport, build_inverter, build_meter


class TestRegisterShadow:
    def test_store_and_window(self):
        shadow = RegisterShadow(40000, 40010)
        shadow.store(40002, [1, 2, 3])
        assert shadow.window(40002, 3) == [1, 2, 3]
        assert shadow.is_fetched(40003)

    def test_unread_window(self):
        shadow = RegisterShadow(40000, 40010)
        shadow.store(40000, [1])
        with pytest.raises(ModbusError) as exc_info:
            shadow.window(40000, 2)
        assert exc_info.value.code == errno.ENODATA

    def test_out_of_span(self):
        shadow = RegisterShadow(40000, 40010)
        with pytest.raises(ModbusError) as exc_info:
            shadow.store(40009, [1, 2])
        assert exc_info.value.code == errno.ERANGE
        assert exc_info.value.is_fatal

    def test_values_masked_to_16_bits(self):
        shadow = RegisterShadow(0, 2)
        shadow.store(0, [0x1FFFF])
        assert shadow.window(0, 1) == [0xFFFF]

    def test_clear(self):
        shadow = RegisterShadow(0, 4)
        shadow.store(0, [1, 2])
        shadow.clear()
        assert not shadow.is_fetched(0, 2)

    def test_empty_span(self):
        with pytest.raises(ValueError):
            RegisterShadow(10, 10)


class TestDeviceSession:
    def test_label(self, transport):
        assert DeviceSession(transport, detector.INVERTER, 3).label == "Inverter 3"
        assert DeviceSession(transport, detector.METER).label == "Meter"

    def test_fetch_wraps_errors_with_context(self, transport):
        transport.errors[40000] = ModbusError.transient("Read failed", errno.ETIMEDOUT)
        session = DeviceSession(transport, detector.INVERTER, 1)
        with pytest.raises(ModbusError) as exc_info:
            session.fetch(40000, 4, "check_signature")
        error = exc_info.value
        assert error.code == errno.ETIMEDOUT
        assert error.is_transient
        assert error.message == "Inverter 1: check_signature [40000, 40004): Read failed"

    def test_shadow_covers_every_inverter_read(self, transport):
        session = DeviceSession(transport, detector.INVERTER)
        assert session.shadow.end == 40341

    def test_reset(self, transport):
        build_inverter(transport)
        session = DeviceSession(transport, detector.INVERTER)
        session.fetch(40000, 4, "check_signature")
        session.state = DetectionState.VALID
        session.reset()
        assert session.state is DetectionState.UNVALIDATED
        assert not session.shadow.is_fetched(40000, 4)


class TestSunSpecDevice:
    def test_requires_config_or_transport(self):
        with pytest.raises(ValueError):
            Inverter()

    def test_builds_transport_from_config(self):
        inverter = Inverter(ModbusConfig(host='192.0.2.10', slave_id=3))
        assert isinstance(inverter.transport, ModbusTransport)
        assert inverter.unit_id == 3

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            Meter(ModbusConfig(host='192.0.2.10', slave_id=0))

    def test_unit_id_from_transport(self):
        assert Meter(transport=FakeTransport(slave_id=240)).unit_id == 240

    @pytest.mark.parametrize("getter", ["get_id", "get_phases", "get_use_float_registers"])
    def test_identity_getters_before_validation(self, transport, getter):
        inverter = Inverter(transport=transport)
        with pytest.raises(ModbusError) as exc_info:
            getattr(inverter, getter)()
        assert exc_info.value.is_fatal
        assert exc_info.value.code == errno.ENODATA

    def test_common_before_read(self, transport):
        inverter = Inverter(transport=transport)
        with pytest.raises(ModbusError, match="common block not yet read"):
            inverter.get_manufacturer()

    def test_common_model(self, transport):
        build_inverter(transport, 113)
        inverter = Inverter(transport=transport)
        inverter.validate_device()
        assert inverter.get_common() == {
            'manufacturer': 'Fronius',
            'model': 'Symo 10.0-3-M',
            'options': '3.17.2-1',
            'version': '0.3.30.2',
            'serial_number': '31234567',
            'device_address': 1,
        }

    def test_common_available_after_signature_steps(self, transport):
        build_meter(transport, 213)
        meter = Meter(transport=transport)
        meter.check_signature()
        meter.read_common_block()
        assert meter.get_serial_number() == '12345678'
        assert meter.state is DetectionState.COMMON_READ
        assert not meter.is_valid

    def test_invalid_device_address(self, transport):
        build_inverter(transport, 113)
        transport.put(40068, [0])
        inverter = Inverter(transport=transport)
        inverter.validate_device()
        with pytest.raises(ModbusError, match="Invalid device address 0"):
            inverter.get_device_address()

    def test_identity_after_validation(self, transport):
        build_inverter(transport, 112)
        inverter = Inverter(transport=transport)
        inverter.validate_device()
        assert inverter.get_id() == 112
        assert inverter.get_phases() == 2
        assert inverter.get_use_float_registers() is True
