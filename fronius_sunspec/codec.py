"""Register value conversions for SunSpec Modbus (integer, float, string, scale factor)"""

import math
import struct
from typing import List, Optional, Sequence

from .errors import ModbusError
from .registers import EncodingVariant

# Special values indicating "not implemented"
NOT_IMPLEMENTED_UINT16 = 0xFFFF
NOT_IMPLEMENTED_INT16 = 0x8000
NOT_IMPLEMENTED_UINT32 = 0xFFFFFFFF
NOT_IMPLEMENTED_INT32 = 0x80000000


def swap_bytes16(value: int) -> int:
    """Swap the two bytes of a 16-bit register."""
    return ((value >> 8) | (value << 8)) & 0xFFFF


def to_int16(value: int) -> int:
    """Reinterpret an unsigned 16-bit register as signed."""
    value &= 0xFFFF
    if value >= 0x8000:
        return value - 0x10000
    return value


def u32_from_registers(r0: int, r1: int, word_swap: bool = False,
                       byte_swap: bool = False) -> int:
    """
    Combine two registers into an unsigned 32-bit integer.

    r0 supplies the high word unless word_swap is set. byte_swap swaps the
    bytes inside each register before the words are combined.
    """
    hi, lo = r0 & 0xFFFF, r1 & 0xFFFF
    if byte_swap:
        hi, lo = swap_bytes16(hi), swap_bytes16(lo)
    if word_swap:
        hi, lo = lo, hi
    return (hi << 16) | lo


def i32_from_registers(r0: int, r1: int, word_swap: bool = False,
                       byte_swap: bool = False) -> int:
    value = u32_from_registers(r0, r1, word_swap, byte_swap)
    if value >= 0x80000000:
        return value - 0x100000000
    return value


def u64_from_registers(registers: Sequence[int], word_swap: bool = False,
                       byte_swap: bool = False) -> int:
    """
    Combine four registers into an unsigned 64-bit integer.

    registers[0] is the most significant word unless word_swap reverses the
    word order.
    """
    if len(registers) != 4:
        raise ModbusError.fatal(f"64-bit value needs 4 registers, got {len(registers)}")
    words = [r & 0xFFFF for r in registers]
    if byte_swap:
        words = [swap_bytes16(w) for w in words]
    if word_swap:
        words.reverse()
    value = 0
    for word in words:
        value = (value << 16) | word
    return value


def i64_from_registers(registers: Sequence[int], word_swap: bool = False,
                       byte_swap: bool = False) -> int:
    value = u64_from_registers(registers, word_swap, byte_swap)
    if value >= 1 << 63:
        return value - (1 << 64)
    return value


def float_from_registers(r0: int, r1: int) -> float:
    """
    Decode an IEEE-754 single precision value from two registers.

    SunSpec float convention (ABCD): r0 is the most significant word.
    """
    return struct.unpack('>f', struct.pack('>HH', r0 & 0xFFFF, r1 & 0xFFFF))[0]


def float_to_registers(value: float) -> List[int]:
    """Encode a float as the two big-endian registers a SunSpec device sends."""
    return list(struct.unpack('>HH', struct.pack('>f', value)))


def scaled_double(raw: int, scale_factor: int) -> float:
    """Apply a SunSpec scale factor: raw * 10^scale_factor."""
    return float(raw) * math.pow(10.0, scale_factor)


def decode_string(registers: Sequence[int]) -> str:
    """
    Decode an ASCII string packed two characters per register.

    The string ends at the first NUL byte; trailing spaces are removed.

    Raises:
        ModbusError: FATAL if the string contains unprintable characters
    """
    bytes_data = b''.join(struct.pack('>H', reg & 0xFFFF) for reg in registers)
    text = bytes_data.split(b'\x00', 1)[0].decode('latin-1').rstrip(' ')
    if not text.isprintable():
        raise ModbusError.fatal(f"String contains unprintable characters: {text!r}")
    return text


def to_hex16(value: int) -> str:
    """Format a register as 4 uppercase hex digits."""
    return f"{value & 0xFFFF:04X}"


def decode_raw(registers: Sequence[int], reg_type: str) -> Optional[int]:
    """
    Decode an integer register window according to its SunSpec type.

    Returns:
        Integer value, or None for the type's "not implemented" sentinel
    """
    if reg_type in ('uint16', 'enum16', 'bitfield16'):
        value = registers[0] & 0xFFFF
        return None if value == NOT_IMPLEMENTED_UINT16 else value
    if reg_type in ('int16', 'sunssf'):
        value = registers[0] & 0xFFFF
        return None if value == NOT_IMPLEMENTED_INT16 else to_int16(value)
    if reg_type == 'acc32':
        # Accumulators wrap around; every bit pattern is a valid count
        return u32_from_registers(registers[0], registers[1])
    if reg_type in ('uint32', 'bitfield32'):
        value = u32_from_registers(registers[0], registers[1])
        return None if value == NOT_IMPLEMENTED_UINT32 else value
    if reg_type == 'int32':
        value = u32_from_registers(registers[0], registers[1])
        return None if value == NOT_IMPLEMENTED_INT32 else i32_from_registers(registers[0], registers[1])
    if reg_type == 'uint64':
        return u64_from_registers(registers)
    raise ModbusError.fatal(f"Unsupported register type for integer decode: {reg_type}")


def decode_physical_value(shadow, value_reg, encoding, sf_reg=None) -> Optional[float]:
    """
    Decode one physical quantity from the register shadow.

    Under FLOAT encoding the register pair at value_reg is reinterpreted as
    IEEE-754. Under INTEGER_SCALED the integer at value_reg is sign-extended
    per its type and multiplied by 10^scale_factor read from sf_reg.

    Args:
        shadow: RegisterShadow holding fetched registers
        value_reg: RegisterAddress of the value
        encoding: EncodingVariant of the device
        sf_reg: RegisterAddress of the scale factor (INTEGER_SCALED only)

    Returns:
        Physical value or None if the device reports "not implemented"
    """
    registers = shadow.window(value_reg.address, value_reg.count)

    if value_reg.reg_type == 'float32':
        if encoding is not EncodingVariant.FLOAT:
            raise ModbusError.fatal(
                f"Float register {value_reg.address} requested on a "
                f"{encoding.name} device"
            )
        value = float_from_registers(registers[0], registers[1])
        return None if math.isnan(value) else value

    raw = decode_raw(registers, value_reg.reg_type)
    if sf_reg is None:
        return None if raw is None else float(raw)

    scale_factor = decode_raw(shadow.window(sf_reg.address, 1), 'sunssf')
    if raw is None or scale_factor is None:
        return None
    return scaled_double(raw, scale_factor)
