"""
MIFARE Classic value block format.

A value block stores a signed 32-bit value three times and a 1-byte address
four times, so corrupt or foreign data is never mistaken for a value:

    | [0:4[ | [4:8[  | [8:12[ | 12 | 13 | 14 | 15 |
    | ----- | ------ | ------ | -- | -- | -- | -- |
    | VALUE | ~VALUE | VALUE  |  A | ~A |  A | ~A |

VALUE is little endian. A block only counts as a value block when every copy
agrees; anything else decodes to PlainData.
"""

import struct
from dataclasses import dataclass
from typing import Union

from .errors import NotAValueBlock, PreconditionViolation, ValueOverflow
from .layout import BYTES_PER_BLOCK

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

_LAYOUT = struct.Struct("<iiiBBBB")


@dataclass(frozen=True)
class ValueBlock:
    """Decoded value block. Immutable: arithmetic returns a new instance."""
    value: int
    address: int = 0

    def __post_init__(self):
        if not INT32_MIN <= self.value <= INT32_MAX:
            raise ValueOverflow(f"Value {self.value} outside signed 32-bit range")
        if not 0 <= self.address <= 0xFF:
            raise PreconditionViolation(f"Value block address must fit in one byte, got {self.address}")


@dataclass(frozen=True)
class PlainData:
    """Decode outcome for 16 bytes that are not a valid value block."""
    data: bytes


def encode(block: ValueBlock) -> bytes:
    """Produce the fully redundant 16-byte layout."""
    inverted_address = ~block.address & 0xFF
    return _LAYOUT.pack(block.value, ~block.value, block.value,
                        block.address, inverted_address, block.address, inverted_address)


def decode(data: bytes) -> Union[ValueBlock, PlainData]:
    """Return a ValueBlock if every redundant copy agrees, otherwise PlainData."""
    data = bytes(data)
    if len(data) != BYTES_PER_BLOCK:
        return PlainData(data)

    value, inverted, copy, adr1, adr2, adr3, adr4 = _LAYOUT.unpack(data)
    if value != copy or inverted != ~value:
        return PlainData(data)
    if adr1 != adr3 or adr2 != adr4 or adr1 != (~adr2 & 0xFF):
        return PlainData(data)
    return ValueBlock(value, adr1)


def is_value_block(data: bytes) -> bool:
    return isinstance(decode(data), ValueBlock)


def require_value_block(data: bytes, block: int = None) -> ValueBlock:
    """Decode, raising NotAValueBlock when the redundancy check fails."""
    result = decode(data)
    if isinstance(result, PlainData):
        where = f"Block {block}" if block is not None else "Block"
        raise NotAValueBlock(f"{where} is not a valid value block")
    return result


def apply_delta(block: ValueBlock, delta: int) -> ValueBlock:
    """
    Add delta with overflow detection. Increment uses a positive delta,
    decrement a negative one. The card has no wraparound semantics.
    """
    if not INT32_MIN <= delta <= INT32_MAX:
        raise ValueOverflow(f"Delta {delta} outside signed 32-bit range")
    result = block.value + delta
    if not INT32_MIN <= result <= INT32_MAX:
        raise ValueOverflow(f"{block.value} {delta:+d} overflows a signed 32-bit value")
    return ValueBlock(result, block.address)


def init_value_block(value: int, address: int) -> bytes:
    """Encode a fresh value block from a caller-chosen value and address."""
    return encode(ValueBlock(value, address))
