"""SunSpec model identification and validated block fetch

Detection runs strictly in order:

    UNVALIDATED -> SIGNATURE_CHECKED -> COMMON_READ -> ID_CLASSIFIED
                -> BLOCK_FETCHED -> VALID

Any failure moves the session to INVALID and drops its identity. Nothing is
retried here; reconnect and backoff belong to the caller (see poller.py).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Sequence, Tuple

from . import registers as regs
from .codec import to_hex16
from .errors import ModbusError, Severity
from .logging_setup import get_logger
from .registers import EncodingVariant, ModelFamily


class DetectionState(Enum):
    UNVALIDATED = "unvalidated"
    SIGNATURE_CHECKED = "signature_checked"
    COMMON_READ = "common_read"
    ID_CLASSIFIED = "id_classified"
    BLOCK_FETCHED = "block_fetched"
    VALID = "valid"
    INVALID = "invalid"


@dataclass(frozen=True)
class DeviceIdentity:
    """Model id, phase count and encoding derived from the first model header."""
    model_id: int
    phase_count: int
    encoding: EncodingVariant

    @property
    def use_float_registers(self) -> bool:
        return self.encoding is EncodingVariant.FLOAT


@dataclass(frozen=True)
class DeviceFamily:
    """
    Static description of a device class.

    Attributes:
        name: 'inverter' or 'meter'
        model: Catalog namespace of the measurement model
        model_ids: Allow-list of SunSpec model ids
        extensions: Extension models fetched together with the measurement block
    """
    name: str
    model: ModelFamily
    model_ids: Tuple[int, ...]
    extensions: Tuple[ModelFamily, ...] = ()

    @property
    def sizes(self) -> Dict[EncodingVariant, int]:
        return {enc: regs.MODEL_SIZES[(self.model, enc)] for enc in EncodingVariant}

    @property
    def shadow_end(self) -> int:
        """First address after the last register this family ever reads."""
        return max(regs.end_marker(self.model, enc).end for enc in EncodingVariant)


INVERTER = DeviceFamily(
    name='inverter',
    model=ModelFamily.INVERTER,
    model_ids=(101, 102, 103, 111, 112, 113),
    extensions=(ModelFamily.MPPT,)
)

METER = DeviceFamily(
    name='meter',
    model=ModelFamily.METER,
    model_ids=(201, 202, 203, 211, 212, 213)
)

# Extension model ids expected in the header of each namespace
EXTENSION_MODEL_IDS = {
    ModelFamily.MPPT: regs.MPPT_MODEL_ID,
    ModelFamily.CONTROLS: regs.CONTROLS_MODEL_ID,
    ModelFamily.STORAGE: regs.STORAGE_MODEL_ID,
}


def classify_model_id(family: DeviceFamily, model_id: int) -> DeviceIdentity:
    """
    Derive the identity from a model id.

    The tens digit selects the encoding (0 integer+SF, 1 float), the units
    digit is the phase count.

    Raises:
        ModbusError: FATAL if model_id is not in the family's allow-list
    """
    if model_id not in family.model_ids:
        allowed = ", ".join(str(m) for m in family.model_ids)
        raise ModbusError.fatal(
            f"Invalid {family.name} model id {model_id}, expected one of {{{allowed}}}"
        )
    encoding = EncodingVariant.FLOAT if (model_id // 10) % 10 else EncodingVariant.INTEGER_SCALED
    return DeviceIdentity(model_id=model_id, phase_count=model_id % 10, encoding=encoding)


def validate_block_length(family: DeviceFamily, length: int):
    """
    Check a declared model length against both known sizes of the family.

    Raises:
        ModbusError: FATAL if length matches neither size
    """
    sizes = family.sizes
    if length not in sizes.values():
        raise ModbusError.fatal(
            f"Invalid {family.name} block length {length}, expected "
            f"{sizes[EncodingVariant.INTEGER_SCALED]} (int+sf) or "
            f"{sizes[EncodingVariant.FLOAT]} (float)"
        )


def check_end_block(registers: Sequence[int], address: int):
    """
    Verify the end-of-model marker (0xFFFF, 0).

    Raises:
        ModbusError: FATAL citing received vs expected registers
    """
    expected = regs.END_MARKER
    received = tuple(registers[:2])
    if received != expected:
        raise ModbusError.fatal(
            f"End block mismatch at {address}: received "
            f"[0x{to_hex16(received[0])}, 0x{to_hex16(received[1])}], expected "
            f"[0x{to_hex16(expected[0])}, 0x{to_hex16(expected[1])}]"
        )


def check_extension_header(model: ModelFamily, registers: Sequence[int], address: int):
    """
    Verify an extension model header (id and length).

    Raises:
        ModbusError: FATAL on a mismatch
    """
    expected_id = EXTENSION_MODEL_IDS[model]
    expected_len = regs.MODEL_SIZES[(model, EncodingVariant.FLOAT)]
    if registers[0] != expected_id or registers[1] != expected_len:
        raise ModbusError.fatal(
            f"{model.value} header mismatch at {address}: received "
            f"[{registers[0]}, {registers[1]}], expected [{expected_id}, {expected_len}]"
        )


class Detector:
    """Runs the identification sequence on one DeviceSession."""

    def __init__(self, session):
        self.session = session
        self.family: DeviceFamily = session.family
        self.log = get_logger()

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def check_signature(self):
        """
        Read the SunSpec signature and the common model header.

        Raises:
            ModbusError: FATAL if the map does not start with 'SunS', id 1, length 65
        """
        start = regs.COMMON_START
        received = self.session.fetch(start, 4, "check_signature")
        expected = list(regs.SUNSPEC_SIGNATURE) + [regs.COMMON_MODEL_ID, regs.COMMON_SIZE]
        if list(received) != expected:
            raise ModbusError.fatal(
                f"SunSpec signature mismatch at {start}: received "
                f"[{' '.join(to_hex16(r) for r in received)}], expected "
                f"[{' '.join(to_hex16(r) for r in expected)}]"
            )
        self.session.state = DetectionState.SIGNATURE_CHECKED

    def read_common_block(self):
        """
        Fetch common model 1 (Mn .. DA).

        Raises:
            ModbusError: FATAL on any transport error
        """
        start = regs.lookup(ModelFamily.COMMON, EncodingVariant.FLOAT, 'Mn').address
        try:
            self.session.fetch(start, regs.COMMON_SIZE, "read_common_block")
        except ModbusError as e:
            raise e.wrap("common block is mandatory", Severity.FATAL) from e
        self.session.state = DetectionState.COMMON_READ

    def classify(self) -> DeviceIdentity:
        """Read the model id window and classify it."""
        model_id, length = self.session.fetch(regs.MODEL_ID_ADDRESS, 2, "read_model_id")
        identity = classify_model_id(self.family, model_id)
        validate_block_length(self.family, length)
        self.session.identity = identity
        self.session.state = DetectionState.ID_CLASSIFIED
        self.log.debug(
            f"{self.session.label}: model {model_id}, length {length}, "
            f"{identity.encoding.value}, {identity.phase_count} phase(s)"
        )
        return identity

    def fetch_blocks(self):
        """
        Fetch end marker, measurement block and extensions.

        Used by validate() and for every periodic poll. A failure drops the
        identity so that getters stop answering from stale registers.

        Raises:
            ModbusError: not validated, or the first failing read/check
        """
        identity = self.session.identity
        if identity is None:
            raise ModbusError.not_validated(f"fetch_{self.family.name}_registers")

        try:
            self._fetch_blocks(identity.encoding)
        except ModbusError:
            self.session.invalidate()
            raise
        self.session.state = DetectionState.VALID

    def _fetch_blocks(self, encoding: EncodingVariant):
        model = self.family.model

        end = regs.end_marker(model, encoding)
        marker = self.session.fetch(end.address, end.count, "read_end_block")
        check_end_block(marker, end.address)

        block = regs.model_block(model, encoding)
        self.session.fetch(block.address, block.count, f"read_{self.family.name}_block")

        for extension in self.family.extensions:
            self.fetch_extension(extension, required=True)

        self.session.state = DetectionState.BLOCK_FETCHED

    def fetch_extension(self, model: ModelFamily, required: bool = False) -> bool:
        """
        Fetch an extension model (header and data).

        Args:
            model: Extension namespace (MPPT, CONTROLS, STORAGE)
            required: Raise on a header mismatch instead of returning False

        Returns:
            True if the model is present and was fetched
        """
        identity = self.session.identity
        if identity is None:
            raise ModbusError.not_validated(f"fetch_{model.value}_registers")

        header = regs.model_header(model, identity.encoding)
        size = regs.MODEL_SIZES[(model, identity.encoding)]
        try:
            registers = self.session.fetch(header.address, header.count + size, f"read_{model.value}_block")
        except ModbusError as e:
            if required or not is_address_error(e):
                raise
            self.log.debug(f"{self.session.label}: {model.value} model not mapped: {e}")
            return False
        try:
            check_extension_header(model, registers, header.address)
        except ModbusError:
            if required:
                raise
            self.log.debug(f"{self.session.label}: no {model.value} model at {header.address}")
            return False
        return True

    # ------------------------------------------------------------------

    def validate(self) -> DeviceIdentity:
        """
        Run the full identification sequence.

        Returns:
            DeviceIdentity of the validated device

        Raises:
            ModbusError: From the first failing step; the session is INVALID
        """
        self.session.reset()
        try:
            self.check_signature()
            self.read_common_block()
            identity = self.classify()
            self._fetch_blocks(identity.encoding)
        except ModbusError as e:
            self.session.invalidate()
            self.log.warning(f"{self.session.label}: validation failed: {e}")
            raise

        self.session.state = DetectionState.VALID
        self.log.info(
            f"{self.session.label}: validated model {identity.model_id} "
            f"({identity.encoding.value}, {identity.phase_count} phase(s))"
        )
        return identity


def is_address_error(error: ModbusError) -> bool:
    """True for an illegal data address response (probed model not mapped)."""
    return error.exception_code == 2
