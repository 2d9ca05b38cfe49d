"""Fronius inverter: SunSpec models 101-103 / 111-113 with MPPT, controls and storage"""

import errno
from typing import Dict, List, Optional

from . import detector
from .codec import decode_string
from .device import SunSpecDevice
from .errors import ModbusError
from .fronius_types import (ChargeStatus, Input, OperatingState, Phase,
                            TemperatureSensor, decode_events, parse_state)
from .registers import ModelFamily

AC_CURRENT_POINTS = {
    Phase.TOTAL: 'A',
    Phase.A: 'AphA',
    Phase.B: 'AphB',
    Phase.C: 'AphC',
}

AC_VOLTAGE_POINTS = {
    Phase.A: 'PhVphA',
    Phase.B: 'PhVphB',
    Phase.C: 'PhVphC',
    Phase.AB: 'PPVphAB',
    Phase.BC: 'PPVphBC',
    Phase.CA: 'PPVphCA',
}

# MPPT module number per DC input
MPPT_INPUTS = {
    Input.A: 1,
    Input.B: 2,
}

# Storage points and their scale factors (model 124)
STORAGE_POINTS = {
    'WChaMax': 'WChaMax_SF',
    'WChaGra': 'WChaDisChaGra_SF',
    'WDisChaGra': 'WChaDisChaGra_SF',
    'VAChaMax': 'VAChaMax_SF',
    'MinRsvPct': 'MinRsvPct_SF',
    'ChaState': 'ChaState_SF',
    'StorAval': 'StorAval_SF',
    'InBatV': 'InBatV_SF',
    'OutWRte': 'InOutWRte_SF',
    'InWRte': 'InOutWRte_SF',
}

STORAGE_RAW_POINTS = ('StorCtl_Mod', 'ChaSt', 'InOutWRte_WinTms',
                      'InOutWRte_RvrtTms', 'InOutWRte_RmpTms', 'ChaGriSet')

# Immediate controls points and their scale factors (model 123)
CONTROL_POINTS = {
    'WMaxLimPct': 'WMaxLimPct_SF',
    'OutPFSet': 'OutPFSet_SF',
    'VArWMaxPct': 'VArPct_SF',
    'VArMaxPct': 'VArPct_SF',
    'VArAvalPct': 'VArPct_SF',
}

CONTROL_RAW_POINTS = (
    'Conn_WinTms', 'Conn_RvrtTms', 'Conn',
    'WMaxLimPct_WinTms', 'WMaxLimPct_RvrtTms', 'WMaxLimPct_RmpTms', 'WMaxLim_Ena',
    'OutPFSet_WinTms', 'OutPFSet_RvrtTms', 'OutPFSet_RmpTms', 'OutPFSet_Ena',
    'VArPct_WinTms', 'VArPct_RvrtTms', 'VArPct_RmpTms', 'VArPct_Mod', 'VArPct_Ena',
)


def _select(points: Dict, selector, operation: str) -> str:
    try:
        return points[selector]
    except KeyError:
        raise ModbusError.fatal(
            f"{operation}: unsupported selector {selector.name}", code=errno.EINVAL
        ) from None


class Inverter(SunSpecDevice):
    """
    Fronius inverter on one Modbus unit id.

    Call validate_device() once, then fetch_inverter_registers() before each
    set of getter calls. Getters answer from the register shadow and raise
    ModbusError (FATAL) while the device is not validated.
    """

    FAMILY = detector.INVERTER

    def __init__(self, config=None, transport=None):
        super().__init__(config, transport)
        self.has_storage = False
        self.has_controls = False

    def validate_device(self):
        """Revalidate; storage and controls must be fetched again afterwards."""
        self.has_storage = False
        self.has_controls = False
        return super().validate_device()

    def fetch_inverter_registers(self):
        """Poll end marker, inverter block and MPPT extension."""
        self.fetch_registers()

    # ------------------------------------------------------------------
    # AC
    # ------------------------------------------------------------------

    def get_ac_current(self, phase: Phase = Phase.TOTAL) -> Optional[float]:
        """AC current in A (total or per phase)."""
        point = _select(AC_CURRENT_POINTS, phase, "get_ac_current")
        return self._value("get_ac_current", point, 'A_SF')

    def get_ac_voltage(self, phase: Phase = Phase.A) -> Optional[float]:
        """AC voltage in V, phase-to-neutral (A/B/C) or phase-to-phase (AB/BC/CA)."""
        point = _select(AC_VOLTAGE_POINTS, phase, "get_ac_voltage")
        return self._value("get_ac_voltage", point, 'V_SF')

    def get_ac_power_active(self) -> Optional[float]:
        return self._value("get_ac_power_active", 'W', 'W_SF')

    def get_ac_power_apparent(self) -> Optional[float]:
        return self._value("get_ac_power_apparent", 'VA', 'VA_SF')

    def get_ac_power_reactive(self) -> Optional[float]:
        return self._value("get_ac_power_reactive", 'VAr', 'VAr_SF')

    def get_ac_frequency(self) -> Optional[float]:
        return self._value("get_ac_frequency", 'Hz', 'Hz_SF')

    def get_ac_power_factor(self) -> Optional[float]:
        return self._value("get_ac_power_factor", 'PF', 'PF_SF')

    def get_ac_energy(self) -> Optional[float]:
        """Lifetime AC energy in Wh."""
        return self._value("get_ac_energy", 'WH', 'WH_SF')

    # ------------------------------------------------------------------
    # DC
    # ------------------------------------------------------------------

    def _dc_value(self, operation: str, input: Input, point: str) -> Optional[float]:
        # TOTAL lives in the inverter block, A/B in the MPPT modules
        if input is Input.TOTAL:
            return self._value(operation, point, f'{point}_SF')
        module = _select(MPPT_INPUTS, input, operation)
        return self._value(operation, f'{point}_{module}', f'{point}_SF', ModelFamily.MPPT)

    def get_dc_current(self, input: Input = Input.TOTAL) -> Optional[float]:
        return self._dc_value("get_dc_current", input, 'DCA')

    def get_dc_voltage(self, input: Input = Input.TOTAL) -> Optional[float]:
        return self._dc_value("get_dc_voltage", input, 'DCV')

    def get_dc_power(self, input: Input = Input.TOTAL) -> Optional[float]:
        return self._dc_value("get_dc_power", input, 'DCW')

    def get_dc_energy(self, input: Input = Input.A) -> Optional[float]:
        """Lifetime DC energy of one MPPT input in Wh."""
        module = _select(MPPT_INPUTS, input, "get_dc_energy")
        return self._value("get_dc_energy", f'DCWH_{module}', 'DCWH_SF', ModelFamily.MPPT)

    def get_mppt_count(self) -> Optional[int]:
        return self._raw("get_mppt_count", 'N', ModelFamily.MPPT)

    def get_mppt_label(self, input: Input = Input.A) -> str:
        module = _select(MPPT_INPUTS, input, "get_mppt_label")
        self._require_valid("get_mppt_label")
        reg = self._register(ModelFamily.MPPT, f'IDStr_{module}')
        return decode_string(self.session.window(reg.address, reg.count))

    # ------------------------------------------------------------------
    # Temperature and status
    # ------------------------------------------------------------------

    def get_temperature(self, sensor: TemperatureSensor = TemperatureSensor.CABINET) -> Optional[float]:
        """Temperature in degrees Celsius."""
        return self._value("get_temperature", sensor.value, 'Tmp_SF')

    def _state(self, operation: str, point: str) -> Optional[OperatingState]:
        code = self._raw(operation, point)
        if code is None:
            return None
        try:
            return OperatingState(code)
        except ValueError:
            raise ModbusError.fatal(f"{operation}: invalid inverter operating state {code}") from None

    def get_state(self) -> Optional[OperatingState]:
        return self._state("get_state", 'St')

    def get_vendor_state(self) -> Optional[OperatingState]:
        """Fronius vendor operating state (StVnd)."""
        return self._state("get_vendor_state", 'StVnd')

    def get_event_registers(self) -> Dict[str, Optional[int]]:
        return {
            name: self._raw("get_event_registers", name)
            for name in ('Evt1', 'Evt2', 'EvtVnd1', 'EvtVnd2', 'EvtVnd3', 'EvtVnd4')
        }

    def get_events(self) -> List[Dict]:
        """Active SunSpec and Fronius event flags with descriptions."""
        return decode_events(self.get_event_registers())

    # ------------------------------------------------------------------
    # Storage (model 124) and immediate controls (model 123)
    # ------------------------------------------------------------------

    def fetch_storage_registers(self) -> bool:
        """
        Fetch the basic storage model of hybrid inverters.

        Returns:
            False if the inverter has no storage model
        """
        self.has_storage = self.detector.fetch_extension(ModelFamily.STORAGE)
        return self.has_storage

    def fetch_control_registers(self) -> bool:
        self.has_controls = self.detector.fetch_extension(ModelFamily.CONTROLS)
        return self.has_controls

    def get_storage_charge_state(self) -> Optional[float]:
        """Battery state of charge in percent."""
        return self._value("get_storage_charge_state", 'ChaState', 'ChaState_SF', ModelFamily.STORAGE)

    def get_storage_battery_voltage(self) -> Optional[float]:
        return self._value("get_storage_battery_voltage", 'InBatV', 'InBatV_SF', ModelFamily.STORAGE)

    def get_storage_charge_status(self) -> Optional[ChargeStatus]:
        code = self._raw("get_storage_charge_status", 'ChaSt', ModelFamily.STORAGE)
        if code is None:
            return None
        try:
            return ChargeStatus(code)
        except ValueError:
            raise ModbusError.fatal(f"get_storage_charge_status: invalid charge status {code}") from None

    def get_storage_data(self) -> Dict:
        data = {
            name: self._value("get_storage_data", name, sf, ModelFamily.STORAGE)
            for name, sf in STORAGE_POINTS.items()
        }
        for name in STORAGE_RAW_POINTS:
            data[name] = self._raw("get_storage_data", name, ModelFamily.STORAGE)
        return data

    def get_controls(self) -> Dict:
        data = {
            name: self._value("get_controls", name, sf, ModelFamily.CONTROLS)
            for name, sf in CONTROL_POINTS.items()
        }
        for name in CONTROL_RAW_POINTS:
            data[name] = self._raw("get_controls", name, ModelFamily.CONTROLS)
        return data

    # ------------------------------------------------------------------

    def read_all(self) -> Dict:
        """
        Snapshot of every decoded value, keyed by SunSpec point name.

        Values the device reports as not implemented are None.
        """
        self._require_valid("read_all")
        data = {
            'model_id': self.get_id(),
            'phases': self.get_phases(),
            'W': self.get_ac_power_active(),
            'VA': self.get_ac_power_apparent(),
            'VAr': self.get_ac_power_reactive(),
            'Hz': self.get_ac_frequency(),
            'PF': self.get_ac_power_factor(),
            'WH': self.get_ac_energy(),
        }
        for phase, point in AC_CURRENT_POINTS.items():
            data[point] = self.get_ac_current(phase)
        for phase, point in AC_VOLTAGE_POINTS.items():
            data[point] = self.get_ac_voltage(phase)

        for point, getter in (('DCA', self.get_dc_current), ('DCV', self.get_dc_voltage),
                              ('DCW', self.get_dc_power)):
            data[point] = getter(Input.TOTAL)
            for input, module in MPPT_INPUTS.items():
                data[f'{point}_{module}'] = getter(input)
        for input, module in MPPT_INPUTS.items():
            data[f'DCWH_{module}'] = self.get_dc_energy(input)
        data['N'] = self.get_mppt_count()

        for sensor in TemperatureSensor:
            data[sensor.value] = self.get_temperature(sensor)

        # Raw codes so that an unknown state is reported instead of raised
        data['St'] = self._raw("read_all", 'St')
        data['StVnd'] = self._raw("read_all", 'StVnd')
        data['status'] = parse_state(data['StVnd'] if data['StVnd'] is not None else data['St'])
        data['events'] = self.get_events()

        if self.has_storage:
            data['storage'] = self.get_storage_data()
        if self.has_controls:
            data['controls'] = self.get_controls()
        return data
