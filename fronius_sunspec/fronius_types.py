"""Selectors, operating states and event flags of Fronius SunSpec devices"""

from enum import Enum, IntEnum, IntFlag
from typing import Dict, List, Optional


class Phase(Enum):
    """AC phase selector for inverter and meter getters."""
    TOTAL = "total"
    AVERAGE = "average"
    A = "a"
    B = "b"
    C = "c"
    AVERAGE_LL = "average_ll"  # line-to-line average (meter only)
    AB = "ab"
    BC = "bc"
    CA = "ca"


class Input(Enum):
    """DC input selector: TOTAL from the inverter block, A/B from the MPPT modules."""
    TOTAL = "total"
    A = "a"
    B = "b"


class TemperatureSensor(Enum):
    CABINET = "TmpCab"
    HEATSINK = "TmpSnk"
    TRANSFORMER = "TmpTrns"
    OTHER = "TmpOt"


class OperatingState(IntEnum):
    """Inverter operating state (St / StVnd register)."""
    POWER_OFF = 1
    SLEEPING = 2
    STARTING = 3
    MPPT = 4
    THROTTLED = 5
    SHUTTING_DOWN = 6
    FAULT = 7
    STANDBY = 8
    NO_BUSINIT = 9
    NO_COMM_INV = 10
    SN_OVERCURRENT = 11
    BOOTLOAD = 12
    AFCI = 13

    @property
    def description(self) -> str:
        return _STATE_DESCRIPTIONS[self]

    @property
    def is_active(self) -> bool:
        """True while the inverter feeds in (tracking or throttled)."""
        return self in (OperatingState.MPPT, OperatingState.THROTTLED)


_STATE_DESCRIPTIONS = {
    OperatingState.POWER_OFF: "Off",
    OperatingState.SLEEPING: "Sleeping (auto-shutdown)",
    OperatingState.STARTING: "Starting up",
    OperatingState.MPPT: "Tracking power point",
    OperatingState.THROTTLED: "Forced power reduction",
    OperatingState.SHUTTING_DOWN: "Shutting down",
    OperatingState.FAULT: "One or more faults exist",
    OperatingState.STANDBY: "Standby",
    OperatingState.NO_BUSINIT: "No SolarNet communication",
    OperatingState.NO_COMM_INV: "No communication with inverter",
    OperatingState.SN_OVERCURRENT: "Overcurrent on SolarNet plug detected",
    OperatingState.BOOTLOAD: "Inverter is being updated",
    OperatingState.AFCI: "AFCI Event",
}


def parse_state(code: Optional[int]) -> Dict:
    """
    Translate an operating state code.

    Args:
        code: Raw St/StVnd value (None if not implemented)

    Returns:
        Dictionary with code, name, description and alarm flag
    """
    try:
        state = OperatingState(code)
    except ValueError:
        return {
            'code': code,
            'name': 'UNKNOWN',
            'description': f'Invalid inverter operating state: {code}',
            'alarm': True
        }
    return {
        'code': int(state),
        'name': state.name,
        'description': state.description,
        'alarm': state is OperatingState.FAULT
    }


class ChargeStatus(IntEnum):
    """Storage charge status (model 124 ChaSt)."""
    OFF = 1
    EMPTY = 2
    DISCHARGING = 3
    CHARGING = 4
    FULL = 5
    HOLDING = 6
    TESTING = 7


class Event(IntFlag):
    """SunSpec Evt1 flags."""
    GROUND_FAULT = 0x0001
    DC_OVER_VOLT = 0x0002
    AC_DISCONNECT = 0x0004
    DC_DISCONNECT = 0x0008
    GRID_DISCONNECT = 0x0010
    CABINET_OPEN = 0x0020
    MANUAL_SHUTDOWN = 0x0040
    OVER_TEMP = 0x0080
    OVER_FREQUENCY = 0x0100
    UNDER_FREQUENCY = 0x0200
    AC_OVER_VOLT = 0x0400
    AC_UNDER_VOLT = 0x0800
    BLOWN_STRING_FUSE = 0x1000
    UNDER_TEMP = 0x2000
    MEMORY_LOSS = 0x4000
    HW_TEST_FAILURE = 0x8000


class Vendor1(IntFlag):
    """Fronius EvtVnd1 flags."""
    INSULATION_FAULT = 0x00000001
    GRID_ERROR = 0x00000002
    AC_OVERCURRENT = 0x00000004
    DC_OVERCURRENT = 0x00000008
    OVER_TEMP = 0x00000010
    POWER_LOW = 0x00000020
    DC_LOW = 0x00000040
    INTERMEDIATE_FAULT = 0x00000080
    FREQUENCY_HIGH = 0x00000100
    FREQUENCY_LOW = 0x00000200
    AC_VOLTAGE_HIGH = 0x00000400
    AC_VOLTAGE_LOW = 0x00000800
    DIRECT_CURRENT = 0x00001000
    RELAY_FAULT = 0x00002000
    POWER_STAGE_FAULT = 0x00004000
    CONTROL_FAULT = 0x00008000
    GC_GRID_VOLT_ERR = 0x00010000
    GC_GRID_FREQU_ERR = 0x00020000
    ENERGY_TRANSFER_FAULT = 0x00040000
    REF_POWER_SOURCE_AC = 0x00080000
    ANTI_ISLANDING_FAULT = 0x00100000
    FIXED_VOLTAGE_FAULT = 0x00200000
    MEMORY_FAULT = 0x00400000
    DISPLAY_FAULT = 0x00800000
    COMMUNICATION_FAULT = 0x01000000
    TEMP_SENSORS_FAULT = 0x02000000
    DC_AC_BOARD_FAULT = 0x04000000
    ENS_FAULT = 0x08000000
    FAN_FAULT = 0x10000000
    DEFECTIVE_FUSE = 0x20000000
    OUTPUT_CHOKE_FAULT = 0x40000000
    CONVERTER_RELAY_FAULT = 0x80000000


class Vendor2(IntFlag):
    """Fronius EvtVnd2 flags."""
    NO_SOLARNET_COMM = 0x00000001
    INV_ADDRESS_FAULT = 0x00000002
    NO_FEED_IN_24H = 0x00000004
    PLUG_FAULT = 0x00000008
    PHASE_ALLOC_FAULT = 0x00000010
    GRID_CONDUCTOR_OPEN = 0x00000020
    SOFTWARE_ISSUE = 0x00000040
    POWER_DERATING = 0x00000080
    JUMPER_INCORRECT = 0x00000100
    INCOMPATIBLE_FEATURE = 0x00000200
    VENTS_BLOCKED = 0x00000400
    POWER_REDUCTION_ERROR = 0x00000800
    ARC_DETECTED = 0x00001000
    AFCI_SELF_TEST_FAILED = 0x00002000
    CURRENT_SENSOR_ERROR = 0x00004000
    DC_SWITCH_FAULT = 0x00008000
    AFCI_DEFECTIVE = 0x00010000
    AFCI_MANUAL_TEST_OK = 0x00020000
    PS_PWR_SUPPLY_ISSUE = 0x00040000
    AFCI_NO_COMM = 0x00080000
    AFCI_MANUAL_TEST_FAILED = 0x00100000
    AC_POLARITY_REVERSED = 0x00200000
    FAULTY_AC_DEVICE = 0x00400000
    FLASH_FAULT = 0x00800000
    GENERAL_ERROR = 0x01000000
    GROUNDING_ISSUE = 0x02000000
    LIMITATION_FAULT = 0x04000000
    OPEN_CONTACT = 0x08000000
    OVERVOLTAGE_PROTECTION = 0x10000000
    PROGRAM_STATUS = 0x20000000
    SOLARNET_ISSUE = 0x40000000
    SUPPLY_VOLTAGE_FAULT = 0x80000000


class Vendor3(IntFlag):
    """Fronius EvtVnd3 flags."""
    TIME_FAULT = 0x1
    USB_FAULT = 0x2
    DC_HIGH = 0x4
    INIT_ERROR = 0x8


class MeterEvent(IntFlag):
    """SunSpec meter Evt flags (models 201-213)."""
    POWER_FAILURE = 0x00000004
    UNDER_VOLTAGE = 0x00000008
    LOW_PF = 0x00000010
    OVER_CURRENT = 0x00000020
    OVER_VOLTAGE = 0x00000040
    MISSING_SENSOR = 0x00000080


EVENT_DESCRIPTIONS: Dict[type, Dict[IntFlag, str]] = {
    Event: {
        Event.GROUND_FAULT: "Ground fault",
        Event.DC_OVER_VOLT: "DC over voltage",
        Event.AC_DISCONNECT: "AC disconnect open",
        Event.DC_DISCONNECT: "DC disconnect open",
        Event.GRID_DISCONNECT: "Grid shutdown",
        Event.CABINET_OPEN: "Cabinet open",
        Event.MANUAL_SHUTDOWN: "Manual shutdown",
        Event.OVER_TEMP: "Over temperature",
        Event.OVER_FREQUENCY: "Frequency above limit",
        Event.UNDER_FREQUENCY: "Frequency under limit",
        Event.AC_OVER_VOLT: "AC voltage above limit",
        Event.AC_UNDER_VOLT: "AC voltage under limit",
        Event.BLOWN_STRING_FUSE: "Blown string fuse",
        Event.UNDER_TEMP: "Under temperature",
        Event.MEMORY_LOSS: "Generic Memory or Communication error (internal)",
        Event.HW_TEST_FAILURE: "Hardware test failure",
    },
    Vendor1: {
        Vendor1.INSULATION_FAULT: "DC Insulation fault",
        Vendor1.GRID_ERROR: "Grid error",
        Vendor1.AC_OVERCURRENT: "Overcurrent AC",
        Vendor1.DC_OVERCURRENT: "Overcurrent DC",
        Vendor1.OVER_TEMP: "Over-temperature",
        Vendor1.POWER_LOW: "Power low",
        Vendor1.DC_LOW: "DC low",
        Vendor1.INTERMEDIATE_FAULT: "Intermediate circuit error",
        Vendor1.FREQUENCY_HIGH: "AC frequency too high",
        Vendor1.FREQUENCY_LOW: "AC frequency too low",
        Vendor1.AC_VOLTAGE_HIGH: "AC voltage too high",
        Vendor1.AC_VOLTAGE_LOW: "AC voltage too low",
        Vendor1.DIRECT_CURRENT: "Direct current feed in",
        Vendor1.RELAY_FAULT: "Relay problem",
        Vendor1.POWER_STAGE_FAULT: "Internal power stage error",
        Vendor1.CONTROL_FAULT: "Control problems",
        Vendor1.GC_GRID_VOLT_ERR: "Guard Controller - AC voltage error",
        Vendor1.GC_GRID_FREQU_ERR: "Guard Controller - AC Frequency Error",
        Vendor1.ENERGY_TRANSFER_FAULT: "Energy transfer not possible",
        Vendor1.REF_POWER_SOURCE_AC: "Reference power source AC outside tolerances",
        Vendor1.ANTI_ISLANDING_FAULT: "Error during anti islanding test",
        Vendor1.FIXED_VOLTAGE_FAULT: "Fixed voltage lower than current MPP voltage",
        Vendor1.MEMORY_FAULT: "Memory fault",
        Vendor1.DISPLAY_FAULT: "Display",
        Vendor1.COMMUNICATION_FAULT: "Internal communication error",
        Vendor1.TEMP_SENSORS_FAULT: "Temperature sensors defective",
        Vendor1.DC_AC_BOARD_FAULT: "DC or AC board fault",
        Vendor1.ENS_FAULT: "ENS error",
        Vendor1.FAN_FAULT: "Fan error",
        Vendor1.DEFECTIVE_FUSE: "Defective fuse",
        Vendor1.OUTPUT_CHOKE_FAULT: "Output choke connected to wrong poles",
        Vendor1.CONVERTER_RELAY_FAULT: "The buck converter relay does not open at high DC voltage",
    },
    Vendor2: {
        Vendor2.NO_SOLARNET_COMM: "No SolarNet communication",
        Vendor2.INV_ADDRESS_FAULT: "Inverter address incorrect",
        Vendor2.NO_FEED_IN_24H: "24h no feed in",
        Vendor2.PLUG_FAULT: "Faulty plug connections",
        Vendor2.PHASE_ALLOC_FAULT: "Incorrect phase allocation",
        Vendor2.GRID_CONDUCTOR_OPEN: "Grid conductor open or supply phase has failed",
        Vendor2.SOFTWARE_ISSUE: "Incompatible or old software",
        Vendor2.POWER_DERATING: "Power Derating Due To Overtemperature",
        Vendor2.JUMPER_INCORRECT: "Jumper set incorrectly",
        Vendor2.INCOMPATIBLE_FEATURE: "Incompatible feature",
        Vendor2.VENTS_BLOCKED: "Defective ventilator/air vents blocked",
        Vendor2.POWER_REDUCTION_ERROR: "Power reduction on error",
        Vendor2.ARC_DETECTED: "Arc Detected",
        Vendor2.AFCI_SELF_TEST_FAILED: "AFCI Self Test Failed",
        Vendor2.CURRENT_SENSOR_ERROR: "Current Sensor Error",
        Vendor2.DC_SWITCH_FAULT: "DC switch fault",
        Vendor2.AFCI_DEFECTIVE: "AFCI Defective",
        Vendor2.AFCI_MANUAL_TEST_OK: "AFCI Manual Test Successful",
        Vendor2.PS_PWR_SUPPLY_ISSUE: "Power Stack Supply Missing",
        Vendor2.AFCI_NO_COMM: "AFCI Communication Stopped",
        Vendor2.AFCI_MANUAL_TEST_FAILED: "AFCI Manual Test Failed",
        Vendor2.AC_POLARITY_REVERSED: "AC polarity reversed",
        Vendor2.FAULTY_AC_DEVICE: "AC measurement device fault",
        Vendor2.FLASH_FAULT: "Flash fault",
        Vendor2.GENERAL_ERROR: "General error",
        Vendor2.GROUNDING_ISSUE: "Grounding fault",
        Vendor2.LIMITATION_FAULT: "Power limitation fault",
        Vendor2.OPEN_CONTACT: "External NO contact open",
        Vendor2.OVERVOLTAGE_PROTECTION: "External overvoltage protection has tripped",
        Vendor2.PROGRAM_STATUS: "Internal processor program status",
        Vendor2.SOLARNET_ISSUE: "SolarNet issue",
        Vendor2.SUPPLY_VOLTAGE_FAULT: "Supply voltage fault",
    },
    Vendor3: {
        Vendor3.TIME_FAULT: "Time error",
        Vendor3.USB_FAULT: "USB error",
        Vendor3.DC_HIGH: "DC high",
        Vendor3.INIT_ERROR: "Init error",
    },
    MeterEvent: {
        MeterEvent.POWER_FAILURE: "Loss of power or phase",
        MeterEvent.UNDER_VOLTAGE: "Voltage below threshold (phase loss)",
        MeterEvent.LOW_PF: "Power factor below threshold",
        MeterEvent.OVER_CURRENT: "Current input over threshold",
        MeterEvent.OVER_VOLTAGE: "Voltage input over threshold",
        MeterEvent.MISSING_SENSOR: "Sensor not connected",
    },
}

# Register name -> flag class
EVENT_REGISTERS = {
    'Evt1': Event,
    'EvtVnd1': Vendor1,
    'EvtVnd2': Vendor2,
    'EvtVnd3': Vendor3,
    'Evt': MeterEvent,
}


def decode_events(values: Dict[str, Optional[int]]) -> List[Dict]:
    """
    Expand event bitfields into the list of active flags.

    Args:
        values: Event register name (Evt1, EvtVnd1-3, meter Evt) to raw value

    Returns:
        List of active event dictionaries with register, bit value, name and description
    """
    events = []
    for register, flag_class in EVENT_REGISTERS.items():
        value = values.get(register)
        if not value:
            continue
        for flag in flag_class:
            if value & flag.value:
                events.append({
                    'register': register,
                    'bit_value': flag.value,
                    'name': flag.name,
                    'description': EVENT_DESCRIPTIONS[flag_class][flag]
                })
    return events
