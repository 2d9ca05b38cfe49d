"""Fronius smart meter: SunSpec models 201-203 / 211-213"""

import errno
from typing import Dict, List, Optional

from . import detector
from .device import SunSpecDevice
from .errors import ModbusError
from .fronius_types import Phase, decode_events

# Aggregate and per-phase point suffixes
_PHASE_SUFFIX = {
    Phase.TOTAL: '',
    Phase.A: 'phA',
    Phase.B: 'phB',
    Phase.C: 'phC',
}

_ENERGY_SUFFIX = {
    Phase.TOTAL: '',
    Phase.A: 'PhA',
    Phase.B: 'PhB',
    Phase.C: 'PhC',
}

AC_VOLTAGE_POINTS = {
    Phase.AVERAGE: 'PhV',
    Phase.TOTAL: 'PhV',
    Phase.A: 'PhVphA',
    Phase.B: 'PhVphB',
    Phase.C: 'PhVphC',
    Phase.AVERAGE_LL: 'PPV',
    Phase.AB: 'PPVphAB',
    Phase.BC: 'PPVphBC',
    Phase.CA: 'PPVphCA',
}

AC_POWER_FACTOR_POINTS = {
    Phase.AVERAGE: 'PF',
    Phase.TOTAL: 'PF',
    Phase.A: 'PFphA',
    Phase.B: 'PFphB',
    Phase.C: 'PFphC',
}


class Meter(SunSpecDevice):
    """
    Fronius smart meter on one Modbus unit id.

    Positive power is import from the grid, negative is export.
    """

    FAMILY = detector.METER

    def fetch_meter_registers(self):
        """Poll end marker and meter block."""
        self.fetch_registers()

    def _phase_point(self, operation: str, prefix: str, phase: Phase,
                     suffixes: Dict[Phase, str] = _PHASE_SUFFIX) -> str:
        if phase not in suffixes:
            raise ModbusError.fatal(
                f"{operation}: unsupported phase {phase.name}", code=errno.EINVAL
            )
        return f"{prefix}{suffixes[phase]}"

    def get_ac_current(self, phase: Phase = Phase.TOTAL) -> Optional[float]:
        point = self._phase_point("get_ac_current", 'A', phase)
        return self._value("get_ac_current", point, 'A_SF')

    def get_ac_voltage(self, phase: Phase = Phase.AVERAGE) -> Optional[float]:
        """AC voltage in V: phase-to-neutral average/A/B/C or phase-to-phase average/AB/BC/CA."""
        if phase not in AC_VOLTAGE_POINTS:
            raise ModbusError.fatal(
                f"get_ac_voltage: unsupported phase {phase.name}", code=errno.EINVAL
            )
        return self._value("get_ac_voltage", AC_VOLTAGE_POINTS[phase], 'V_SF')

    def get_ac_frequency(self) -> Optional[float]:
        return self._value("get_ac_frequency", 'Hz', 'Hz_SF')

    def get_ac_power_active(self, phase: Phase = Phase.TOTAL) -> Optional[float]:
        point = self._phase_point("get_ac_power_active", 'W', phase)
        return self._value("get_ac_power_active", point, 'W_SF')

    def get_ac_power_apparent(self, phase: Phase = Phase.TOTAL) -> Optional[float]:
        point = self._phase_point("get_ac_power_apparent", 'VA', phase)
        return self._value("get_ac_power_apparent", point, 'VA_SF')

    def get_ac_power_reactive(self, phase: Phase = Phase.TOTAL) -> Optional[float]:
        point = self._phase_point("get_ac_power_reactive", 'VAR', phase)
        return self._value("get_ac_power_reactive", point, 'VAR_SF')

    def get_ac_power_factor(self, phase: Phase = Phase.AVERAGE) -> Optional[float]:
        if phase not in AC_POWER_FACTOR_POINTS:
            raise ModbusError.fatal(
                f"get_ac_power_factor: unsupported phase {phase.name}", code=errno.EINVAL
            )
        return self._value("get_ac_power_factor", AC_POWER_FACTOR_POINTS[phase], 'PF_SF')

    # Energy counters in Wh / VAh

    def get_ac_energy_active_export(self, phase: Phase = Phase.TOTAL) -> Optional[float]:
        point = self._phase_point("get_ac_energy_active_export", 'TotWhExp', phase, _ENERGY_SUFFIX)
        return self._value("get_ac_energy_active_export", point, 'TotWh_SF')

    def get_ac_energy_active_import(self, phase: Phase = Phase.TOTAL) -> Optional[float]:
        point = self._phase_point("get_ac_energy_active_import", 'TotWhImp', phase, _ENERGY_SUFFIX)
        return self._value("get_ac_energy_active_import", point, 'TotWh_SF')

    def get_ac_energy_apparent_export(self, phase: Phase = Phase.TOTAL) -> Optional[float]:
        point = self._phase_point("get_ac_energy_apparent_export", 'TotVAhExp', phase, _ENERGY_SUFFIX)
        return self._value("get_ac_energy_apparent_export", point, 'TotVAh_SF')

    def get_ac_energy_apparent_import(self, phase: Phase = Phase.TOTAL) -> Optional[float]:
        point = self._phase_point("get_ac_energy_apparent_import", 'TotVAhImp', phase, _ENERGY_SUFFIX)
        return self._value("get_ac_energy_apparent_import", point, 'TotVAh_SF')

    def get_events(self) -> List[Dict]:
        """Active SunSpec meter event flags."""
        return decode_events({'Evt': self._raw("get_events", 'Evt')})

    def read_all(self) -> Dict:
        """Snapshot of every decoded value, keyed by SunSpec point name."""
        self._require_valid("read_all")
        data = {
            'model_id': self.get_id(),
            'phases': self.get_phases(),
            'Hz': self.get_ac_frequency(),
        }
        for phase, point in AC_VOLTAGE_POINTS.items():
            data[point] = self.get_ac_voltage(phase)
        for phase, point in AC_POWER_FACTOR_POINTS.items():
            data[point] = self.get_ac_power_factor(phase)

        for phase, suffix in _PHASE_SUFFIX.items():
            data[f'A{suffix}'] = self.get_ac_current(phase)
            data[f'W{suffix}'] = self.get_ac_power_active(phase)
            data[f'VA{suffix}'] = self.get_ac_power_apparent(phase)
            data[f'VAR{suffix}'] = self.get_ac_power_reactive(phase)

        for phase, suffix in _ENERGY_SUFFIX.items():
            data[f'TotWhExp{suffix}'] = self.get_ac_energy_active_export(phase)
            data[f'TotWhImp{suffix}'] = self.get_ac_energy_active_import(phase)
            data[f'TotVAhExp{suffix}'] = self.get_ac_energy_apparent_export(phase)
            data[f'TotVAhImp{suffix}'] = self.get_ac_energy_apparent_import(phase)

        data['Evt'] = self._raw("read_all", 'Evt')
        data['events'] = self.get_events()
        return data
