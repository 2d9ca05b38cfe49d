"""
Tests for the Fronius smart meter getters (models 201-203 / 211-213).
"""

import errno

import pytest

from fronius_sunspec.errors import ModbusError
from fronius_sunspec.fronius_types import Phase
from fronius_sunspec.meter import Meter
from fronius_sunspec.registers import EncodingVariant, ModelFamily

from conftest import build_meter

INT = EncodingVariant.INTEGER_SCALED


def _validated(transport, model_id=213) -> Meter:
    build_meter(transport, model_id)
    meter = Meter(transport=transport)
    meter.validate_device()
    return meter


class TestIntegerMeter:
    def test_average_voltage(self, meter_transport):
        build_meter(meter_transport, 203)
        meter_transport.put(40076, [2300])     # PhV
        meter_transport.put(40084, [0xFFFF])   # V_SF = -1
        meter = Meter(transport=meter_transport)
        meter.validate_device()
        assert meter.get_ac_voltage(Phase.AVERAGE) == pytest.approx(230.0)
        assert meter.get_ac_voltage(Phase.TOTAL) == pytest.approx(230.0)

    def test_power_sign(self, meter_transport):
        build_meter(meter_transport, 203)
        meter_transport.put_point(ModelFamily.METER, INT, 'W', [0xF830])      # -2000
        meter_transport.put_point(ModelFamily.METER, INT, 'WphC', [0x0190])   # 400
        meter_transport.put_point(ModelFamily.METER, INT, 'W_SF', [0])
        meter = Meter(transport=meter_transport)
        meter.validate_device()
        assert meter.get_ac_power_active() == -2000.0
        assert meter.get_ac_power_active(Phase.C) == 400.0

    def test_energy_counters(self, meter_transport):
        build_meter(meter_transport, 203)
        meter_transport.put_point(ModelFamily.METER, INT, 'TotWhImp', [0x0012, 0xD687])  # 1234567
        meter_transport.put_point(ModelFamily.METER, INT, 'TotWhExpPhA', [0, 500])
        meter_transport.put_point(ModelFamily.METER, INT, 'TotWh_SF', [0])
        meter_transport.put_point(ModelFamily.METER, INT, 'TotVAhImp', [0, 42])
        meter_transport.put_point(ModelFamily.METER, INT, 'TotVAh_SF', [1])
        meter = Meter(transport=meter_transport)
        meter.validate_device()
        assert meter.get_ac_energy_active_import() == 1234567.0
        assert meter.get_ac_energy_active_export(Phase.A) == 500.0
        assert meter.get_ac_energy_apparent_import() == 420.0

    def test_unimplemented_scale_factor(self, meter_transport):
        build_meter(meter_transport, 201)
        meter_transport.put_point(ModelFamily.METER, INT, 'Hz', [5000])
        meter_transport.put_point(ModelFamily.METER, INT, 'Hz_SF', [0x8000])
        meter = Meter(transport=meter_transport)
        meter.validate_device()
        assert meter.get_ac_frequency() is None


class TestFloatMeter:
    def test_values(self, meter_transport):
        build_meter(meter_transport, 213)
        meter_transport.put_float(ModelFamily.METER, 'AphB', 3.25)
        meter_transport.put_float(ModelFamily.METER, 'PPV', 400.5)
        meter_transport.put_float(ModelFamily.METER, 'Hz', 49.875)
        meter_transport.put_float(ModelFamily.METER, 'VAR', -150.0)
        meter_transport.put_float(ModelFamily.METER, 'PFphA', 0.75)
        meter_transport.put_float(ModelFamily.METER, 'TotVAhExpPhC', 2048.0)
        meter = Meter(transport=meter_transport)
        meter.validate_device()

        assert meter.get_ac_current(Phase.B) == 3.25
        assert meter.get_ac_voltage(Phase.AVERAGE_LL) == 400.5
        assert meter.get_ac_frequency() == 49.875
        assert meter.get_ac_power_reactive() == -150.0
        assert meter.get_ac_power_factor(Phase.A) == 0.75
        assert meter.get_ac_energy_apparent_export(Phase.C) == 2048.0

    def test_identity(self, meter_transport):
        meter = _validated(meter_transport, 212)
        assert meter.get_phases() == 2
        assert meter.get_use_float_registers() is True
        assert meter.get_device_address() == 240


class TestEvents:
    def test_meter_flags(self, meter_transport):
        build_meter(meter_transport, 213)
        meter_transport.put_point(ModelFamily.METER, EncodingVariant.FLOAT, 'Evt', [0, 0x0024])
        meter = Meter(transport=meter_transport)
        meter.validate_device()
        names = [event['name'] for event in meter.get_events()]
        assert names == ['POWER_FAILURE', 'OVER_CURRENT']

    def test_no_events(self, meter_transport):
        meter = _validated(meter_transport, 213)
        assert meter.get_events() == []


class TestGuards:
    def test_getter_before_validation(self, meter_transport):
        meter = Meter(transport=meter_transport)
        with pytest.raises(ModbusError) as exc_info:
            meter.get_ac_voltage(Phase.AVERAGE)
        assert exc_info.value.is_fatal

    @pytest.mark.parametrize("phase", [Phase.AB, Phase.AVERAGE])
    def test_unsupported_power_phase(self, meter_transport, phase):
        meter = _validated(meter_transport)
        with pytest.raises(ModbusError) as exc_info:
            meter.get_ac_power_active(phase)
        assert exc_info.value.code == errno.EINVAL

    def test_unsupported_power_factor_phase(self, meter_transport):
        meter = _validated(meter_transport)
        with pytest.raises(ModbusError):
            meter.get_ac_power_factor(Phase.AB)

    def test_wrong_end_marker(self, meter_transport):
        build_meter(meter_transport, 213)
        meter_transport.put(40195, [0x0001, 0x0000])
        meter = Meter(transport=meter_transport)
        with pytest.raises(ModbusError, match="End block mismatch at 40195"):
            meter.validate_device()
        assert not meter.is_valid


class TestReadAll:
    def test_snapshot_keys(self, meter_transport):
        meter = _validated(meter_transport, 213)
        data = meter.read_all()
        assert data['model_id'] == 213
        for key in ('PhV', 'PPVphAB', 'A', 'WphA', 'VARphC', 'PF',
                    'TotWhImp', 'TotVAhExpPhB', 'Evt', 'events'):
            assert key in data

    def test_fetch_refreshes_values(self, meter_transport):
        meter = _validated(meter_transport, 213)
        meter_transport.put_float(ModelFamily.METER, 'W', 1500.0)
        assert meter.get_ac_power_active() == 0.0
        meter.fetch_meter_registers()
        assert meter.get_ac_power_active() == 1500.0
