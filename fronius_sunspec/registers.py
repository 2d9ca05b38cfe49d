"""
SunSpec register catalog for Fronius inverters and smart meters.

All addresses are 0-based Modbus PDU addresses (Fronius documents the
signature register as 40001, it is read at address 40000).

The catalog is generated from ordered point lists: each list describes one
SunSpec model in wire order and the address of every point is derived by
accumulating register counts from the model header. Integer+scale-factor
variants of the Fronius extension models (MPPT 160, controls 123,
storage 124) sit INT_OFFSET registers below their float counterparts.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import ModbusError


class EncodingVariant(Enum):
    """Register encoding of a SunSpec model family."""
    FLOAT = "float"
    INTEGER_SCALED = "int+sf"


class ModelFamily(Enum):
    COMMON = "common"
    INVERTER = "inverter"
    METER = "meter"
    CONTROLS = "controls"
    MPPT = "mppt"
    STORAGE = "storage"


# Register counts implied by the SunSpec point type
_TYPE_WORD_COUNTS = {
    'uint16': 1,
    'int16': 1,
    'sunssf': 1,
    'enum16': 1,
    'bitfield16': 1,
    'acc32': 2,
    'uint32': 2,
    'int32': 2,
    'float32': 2,
    'bitfield32': 2,
    'uint64': 4,
}

# Types whose register count is given explicitly
_VARIABLE_TYPES = ('string', 'raw')


@dataclass(frozen=True)
class RegisterAddress:
    """
    Contiguous register window identifying one SunSpec point.

    Attributes:
        address: First register (0-based PDU address)
        count: Number of 16-bit registers
        reg_type: SunSpec point type (uint16, int16, sunssf, acc32, float32, string, ...)
    """
    address: int
    count: int = 1
    reg_type: str = 'uint16'

    def __post_init__(self):
        if not 0 <= self.address <= 0xFFFF:
            raise ValueError(f"Register address out of range: {self.address}")
        if self.count < 1:
            raise ValueError(f"Register {self.address}: count must be >= 1, got {self.count}")
        if self.reg_type in _VARIABLE_TYPES:
            return
        expected = _TYPE_WORD_COUNTS.get(self.reg_type)
        if expected is None:
            raise ValueError(f"Register {self.address}: unknown type '{self.reg_type}'")
        if self.count != expected:
            raise ValueError(
                f"Register {self.address}: type '{self.reg_type}' needs "
                f"{expected} register(s), got {self.count}"
            )

    @property
    def end(self) -> int:
        """First address after this window."""
        return self.address + self.count

    def shifted(self, delta: int) -> 'RegisterAddress':
        return RegisterAddress(self.address + delta, self.count, self.reg_type)


# Offset between float and integer+SF addresses of the extension models
INT_OFFSET = 10

# ---------------------------------------------------------------------------
# Point lists in wire order: (name, type) or (name, type, count)
# ---------------------------------------------------------------------------

_HEADER = [('ID', 'uint16'), ('L', 'uint16')]

# Common model 1 starts at the SunSpec signature
_COMMON_POINTS = [
    ('SID', 'uint32'),
    ('ID', 'uint16'),
    ('L', 'uint16'),
    ('Mn', 'string', 16),
    ('Md', 'string', 16),
    ('Opt', 'string', 8),
    ('Vr', 'string', 8),
    ('SN', 'string', 16),
    ('DA', 'uint16'),
]

# Inverter models 101-103
_INVERTER_INT_POINTS = _HEADER + [
    ('A', 'uint16'), ('AphA', 'uint16'), ('AphB', 'uint16'), ('AphC', 'uint16'),
    ('A_SF', 'sunssf'),
    ('PPVphAB', 'uint16'), ('PPVphBC', 'uint16'), ('PPVphCA', 'uint16'),
    ('PhVphA', 'uint16'), ('PhVphB', 'uint16'), ('PhVphC', 'uint16'),
    ('V_SF', 'sunssf'),
    ('W', 'int16'), ('W_SF', 'sunssf'),
    ('Hz', 'uint16'), ('Hz_SF', 'sunssf'),
    ('VA', 'int16'), ('VA_SF', 'sunssf'),
    ('VAr', 'int16'), ('VAr_SF', 'sunssf'),
    ('PF', 'int16'), ('PF_SF', 'sunssf'),
    ('WH', 'acc32'), ('WH_SF', 'sunssf'),
    ('DCA', 'uint16'), ('DCA_SF', 'sunssf'),
    ('DCV', 'uint16'), ('DCV_SF', 'sunssf'),
    ('DCW', 'int16'), ('DCW_SF', 'sunssf'),
    ('TmpCab', 'int16'), ('TmpSnk', 'int16'), ('TmpTrns', 'int16'), ('TmpOt', 'int16'),
    ('Tmp_SF', 'sunssf'),
    ('St', 'enum16'), ('StVnd', 'enum16'),
    ('Evt1', 'bitfield32'), ('Evt2', 'bitfield32'),
    ('EvtVnd1', 'bitfield32'), ('EvtVnd2', 'bitfield32'),
    ('EvtVnd3', 'bitfield32'), ('EvtVnd4', 'bitfield32'),
]

# Inverter models 111-113
_INVERTER_FLOAT_POINTS = _HEADER + [
    (name, 'float32') for name in (
        'A', 'AphA', 'AphB', 'AphC',
        'PPVphAB', 'PPVphBC', 'PPVphCA', 'PhVphA', 'PhVphB', 'PhVphC',
        'W', 'Hz', 'VA', 'VAr', 'PF', 'WH', 'DCA', 'DCV', 'DCW',
        'TmpCab', 'TmpSnk', 'TmpTrns', 'TmpOt',
    )
] + [
    ('St', 'enum16'), ('StVnd', 'enum16'),
    ('Evt1', 'bitfield32'), ('Evt2', 'bitfield32'),
    ('EvtVnd1', 'bitfield32'), ('EvtVnd2', 'bitfield32'),
    ('EvtVnd3', 'bitfield32'), ('EvtVnd4', 'bitfield32'),
]

_PHASES = ('', 'PhA', 'PhB', 'PhC')


def _per_phase(prefix: str, reg_type: str, suffixes=('', 'phA', 'phB', 'phC')) -> List[Tuple]:
    return [(f"{prefix}{s}", reg_type) for s in suffixes]


_METER_ENERGY_GROUPS = ('TotWhExp', 'TotWhImp', 'TotVAhExp', 'TotVAhImp')
_METER_VARH_GROUPS = ('TotVArhImpQ1', 'TotVArhImpQ2', 'TotVArhExpQ3', 'TotVArhExpQ4')

# Meter models 201-203
_METER_INT_POINTS = (
    _HEADER
    + _per_phase('A', 'int16') + [('A_SF', 'sunssf')]
    + _per_phase('PhV', 'int16') + _per_phase('PPV', 'int16', ('', 'phAB', 'phBC', 'phCA'))
    + [('V_SF', 'sunssf'), ('Hz', 'int16'), ('Hz_SF', 'sunssf')]
    + _per_phase('W', 'int16') + [('W_SF', 'sunssf')]
    + _per_phase('VA', 'int16') + [('VA_SF', 'sunssf')]
    + _per_phase('VAR', 'int16') + [('VAR_SF', 'sunssf')]
    + _per_phase('PF', 'int16') + [('PF_SF', 'sunssf')]
    + _per_phase('TotWhExp', 'acc32', _PHASES) + _per_phase('TotWhImp', 'acc32', _PHASES)
    + [('TotWh_SF', 'sunssf')]
    + _per_phase('TotVAhExp', 'acc32', _PHASES) + _per_phase('TotVAhImp', 'acc32', _PHASES)
    + [('TotVAh_SF', 'sunssf')]
    + [p for group in _METER_VARH_GROUPS for p in _per_phase(group, 'acc32', _PHASES)]
    + [('TotVArh_SF', 'sunssf'), ('Evt', 'bitfield32')]
)

# Meter models 211-213
_METER_FLOAT_POINTS = (
    _HEADER
    + _per_phase('A', 'float32')
    + _per_phase('PhV', 'float32') + _per_phase('PPV', 'float32', ('', 'phAB', 'phBC', 'phCA'))
    + [('Hz', 'float32')]
    + _per_phase('W', 'float32') + _per_phase('VA', 'float32')
    + _per_phase('VAR', 'float32') + _per_phase('PF', 'float32')
    + [p for group in _METER_ENERGY_GROUPS + _METER_VARH_GROUPS
       for p in _per_phase(group, 'float32', _PHASES)]
    + [('Evt', 'bitfield32')]
)

# Immediate controls model 123
_CONTROLS_POINTS = _HEADER + [
    ('Conn_WinTms', 'uint16'), ('Conn_RvrtTms', 'uint16'), ('Conn', 'enum16'),
    ('WMaxLimPct', 'uint16'), ('WMaxLimPct_WinTms', 'uint16'),
    ('WMaxLimPct_RvrtTms', 'uint16'), ('WMaxLimPct_RmpTms', 'uint16'),
    ('WMaxLim_Ena', 'enum16'),
    ('OutPFSet', 'int16'), ('OutPFSet_WinTms', 'uint16'),
    ('OutPFSet_RvrtTms', 'uint16'), ('OutPFSet_RmpTms', 'uint16'),
    ('OutPFSet_Ena', 'enum16'),
    ('VArWMaxPct', 'int16'), ('VArMaxPct', 'int16'), ('VArAvalPct', 'int16'),
    ('VArPct_WinTms', 'uint16'), ('VArPct_RvrtTms', 'uint16'), ('VArPct_RmpTms', 'uint16'),
    ('VArPct_Mod', 'enum16'), ('VArPct_Ena', 'enum16'),
    ('WMaxLimPct_SF', 'sunssf'), ('OutPFSet_SF', 'sunssf'), ('VArPct_SF', 'sunssf'),
]

MPPT_MODULES = 2


def _mppt_module(n: int) -> List[Tuple]:
    return [
        (f'ID_{n}', 'uint16'), (f'IDStr_{n}', 'string', 8),
        (f'DCA_{n}', 'uint16'), (f'DCV_{n}', 'uint16'), (f'DCW_{n}', 'uint16'),
        (f'DCWH_{n}', 'acc32'), (f'Tms_{n}', 'uint32'), (f'Tmp_{n}', 'int16'),
        (f'DCSt_{n}', 'enum16'), (f'DCEvt_{n}', 'bitfield32'),
    ]


# Multiple MPPT extension model 160 (integer+SF on the wire for both variants)
_MPPT_POINTS = _HEADER + [
    ('DCA_SF', 'sunssf'), ('DCV_SF', 'sunssf'), ('DCW_SF', 'sunssf'), ('DCWH_SF', 'sunssf'),
    ('Evt', 'bitfield32'), ('N', 'uint16'), ('TmsPer', 'uint16'),
] + [p for n in range(1, MPPT_MODULES + 1) for p in _mppt_module(n)]

# Basic storage controls model 124
_STORAGE_POINTS = _HEADER + [
    ('WChaMax', 'uint16'), ('WChaGra', 'uint16'), ('WDisChaGra', 'uint16'),
    ('StorCtl_Mod', 'bitfield16'), ('VAChaMax', 'uint16'), ('MinRsvPct', 'uint16'),
    ('ChaState', 'uint16'), ('StorAval', 'uint16'), ('InBatV', 'uint16'),
    ('ChaSt', 'enum16'), ('OutWRte', 'int16'), ('InWRte', 'int16'),
    ('InOutWRte_WinTms', 'uint16'), ('InOutWRte_RvrtTms', 'uint16'),
    ('InOutWRte_RmpTms', 'uint16'), ('ChaGriSet', 'enum16'),
    ('WChaMax_SF', 'sunssf'), ('WChaDisChaGra_SF', 'sunssf'), ('VAChaMax_SF', 'sunssf'),
    ('MinRsvPct_SF', 'sunssf'), ('ChaState_SF', 'sunssf'), ('StorAval_SF', 'sunssf'),
    ('InBatV_SF', 'sunssf'), ('InOutWRte_SF', 'sunssf'),
]


def build_layout(start: int, points: Sequence[Tuple]) -> Dict[str, RegisterAddress]:
    """
    Assign consecutive addresses to an ordered point list.

    Args:
        start: Address of the first point
        points: (name, type) or (name, type, count) tuples in wire order

    Returns:
        Mapping of point name to RegisterAddress
    """
    layout: Dict[str, RegisterAddress] = {}
    address = start
    for point in points:
        name, reg_type = point[0], point[1]
        count = point[2] if len(point) > 2 else _TYPE_WORD_COUNTS[reg_type]
        if name in layout:
            raise ValueError(f"Duplicate register name '{name}' at {address}")
        layout[name] = RegisterAddress(address, count, reg_type)
        address += count
    return layout


def _shift_layout(layout: Dict[str, RegisterAddress], delta: int) -> Dict[str, RegisterAddress]:
    return {name: reg.shifted(delta) for name, reg in layout.items()}


# ---------------------------------------------------------------------------
# Fixed addresses
# ---------------------------------------------------------------------------

SUNSPEC_SIGNATURE = (0x5375, 0x6E53)  # 'SunS'
COMMON_MODEL_ID = 1
COMMON_START = 40000
COMMON_SIZE = 65

MODEL_ID_ADDRESS = 40069          # first model after the common block
MODEL_BLOCK_START = MODEL_ID_ADDRESS + 2

END_MARKER = (0xFFFF, 0)

MPPT_MODEL_ID = 160
CONTROLS_MODEL_ID = 123
STORAGE_MODEL_ID = 124

# Float addresses of the Fronius inverter model chain (int = float - INT_OFFSET)
_CONTROLS_FLOAT_START = 40237
_MPPT_FLOAT_START = 40263
_STORAGE_FLOAT_START = 40313
_INVERTER_END_FLOAT = 40339

_COMMON = build_layout(COMMON_START, _COMMON_POINTS)
_CONTROLS_FLOAT = build_layout(_CONTROLS_FLOAT_START, _CONTROLS_POINTS)
_MPPT_FLOAT = build_layout(_MPPT_FLOAT_START, _MPPT_POINTS)
_STORAGE_FLOAT = build_layout(_STORAGE_FLOAT_START, _STORAGE_POINTS)

CATALOG: Dict[Tuple[ModelFamily, EncodingVariant], Dict[str, RegisterAddress]] = {
    (ModelFamily.COMMON, EncodingVariant.FLOAT): _COMMON,
    (ModelFamily.COMMON, EncodingVariant.INTEGER_SCALED): _COMMON,
    (ModelFamily.INVERTER, EncodingVariant.FLOAT):
        build_layout(MODEL_ID_ADDRESS, _INVERTER_FLOAT_POINTS),
    (ModelFamily.INVERTER, EncodingVariant.INTEGER_SCALED):
        build_layout(MODEL_ID_ADDRESS, _INVERTER_INT_POINTS),
    (ModelFamily.METER, EncodingVariant.FLOAT):
        build_layout(MODEL_ID_ADDRESS, _METER_FLOAT_POINTS),
    (ModelFamily.METER, EncodingVariant.INTEGER_SCALED):
        build_layout(MODEL_ID_ADDRESS, _METER_INT_POINTS),
    (ModelFamily.CONTROLS, EncodingVariant.FLOAT): _CONTROLS_FLOAT,
    (ModelFamily.CONTROLS, EncodingVariant.INTEGER_SCALED): _shift_layout(_CONTROLS_FLOAT, -INT_OFFSET),
    (ModelFamily.MPPT, EncodingVariant.FLOAT): _MPPT_FLOAT,
    (ModelFamily.MPPT, EncodingVariant.INTEGER_SCALED): _shift_layout(_MPPT_FLOAT, -INT_OFFSET),
    (ModelFamily.STORAGE, EncodingVariant.FLOAT): _STORAGE_FLOAT,
    (ModelFamily.STORAGE, EncodingVariant.INTEGER_SCALED): _shift_layout(_STORAGE_FLOAT, -INT_OFFSET),
}

# Declared model lengths (registers after the ID/L header)
MODEL_SIZES: Dict[Tuple[ModelFamily, EncodingVariant], int] = {
    (ModelFamily.INVERTER, EncodingVariant.INTEGER_SCALED): 50,
    (ModelFamily.INVERTER, EncodingVariant.FLOAT): 60,
    (ModelFamily.METER, EncodingVariant.INTEGER_SCALED): 105,
    (ModelFamily.METER, EncodingVariant.FLOAT): 124,
    (ModelFamily.CONTROLS, EncodingVariant.INTEGER_SCALED): 24,
    (ModelFamily.CONTROLS, EncodingVariant.FLOAT): 24,
    (ModelFamily.MPPT, EncodingVariant.INTEGER_SCALED): 48,
    (ModelFamily.MPPT, EncodingVariant.FLOAT): 48,
    (ModelFamily.STORAGE, EncodingVariant.INTEGER_SCALED): 24,
    (ModelFamily.STORAGE, EncodingVariant.FLOAT): 24,
}

# End-of-block marker addresses: the inverter chain ends after model 124,
# the meter chain directly after the meter model
END_MARKER_ADDRESSES: Dict[Tuple[ModelFamily, EncodingVariant], int] = {
    (ModelFamily.INVERTER, EncodingVariant.FLOAT): _INVERTER_END_FLOAT,
    (ModelFamily.INVERTER, EncodingVariant.INTEGER_SCALED): _INVERTER_END_FLOAT - INT_OFFSET,
    (ModelFamily.METER, EncodingVariant.FLOAT):
        MODEL_BLOCK_START + MODEL_SIZES[(ModelFamily.METER, EncodingVariant.FLOAT)],
    (ModelFamily.METER, EncodingVariant.INTEGER_SCALED):
        MODEL_BLOCK_START + MODEL_SIZES[(ModelFamily.METER, EncodingVariant.INTEGER_SCALED)],
}


def lookup(family: ModelFamily, encoding: EncodingVariant, name: str) -> RegisterAddress:
    """
    Resolve a symbolic point name to its register window.

    Raises:
        ModbusError: FATAL if the point does not exist in that model variant
    """
    try:
        return CATALOG[(family, encoding)][name]
    except KeyError:
        raise ModbusError.fatal(
            f"Unknown register '{name}' for {family.value} ({encoding.value})"
        ) from None


def find(family: ModelFamily, encoding: EncodingVariant, name: str) -> Optional[RegisterAddress]:
    """Like lookup() but returns None for points the variant does not define."""
    return CATALOG[(family, encoding)].get(name)


def model_header(family: ModelFamily, encoding: EncodingVariant) -> RegisterAddress:
    """ID/L header window of a model."""
    return RegisterAddress(lookup(family, encoding, 'ID').address, 2, 'raw')


def model_block(family: ModelFamily, encoding: EncodingVariant) -> RegisterAddress:
    """Data window of a model (the registers after the ID/L header)."""
    header = model_header(family, encoding)
    return RegisterAddress(header.end, MODEL_SIZES[(family, encoding)], 'raw')


def end_marker(family: ModelFamily, encoding: EncodingVariant) -> RegisterAddress:
    return RegisterAddress(END_MARKER_ADDRESSES[(family, encoding)], 2, 'raw')
