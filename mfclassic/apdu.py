"""
APDU (Application Protocol Data Unit) utilities.
Handles PC/SC pseudo-APDU construction for MIFARE Classic, response parsing,
and hex formatting.

Contactless readers (ACR122U, OMNIKEY, SCM) expose MIFARE Classic through the
PC/SC part 3 storage card commands, all with CLA=0xFF.
"""

from enum import IntEnum
from typing import List, Optional


class APDUCommand:
    """Represents an ISO 7816-4 APDU command."""

    def __init__(self, cla: int, ins: int, p1: int, p2: int,
                 data: Optional[List[int]] = None, le: Optional[int] = None):
        self.cla = cla
        self.ins = ins
        self.p1 = p1
        self.p2 = p2
        self.data = data or []
        self.le = le

    def to_bytes(self) -> List[int]:
        """Convert to byte list for transmission."""
        cmd = [self.cla, self.ins, self.p1, self.p2]
        if self.data:
            cmd.append(len(self.data))
            cmd.extend(self.data)
        if self.le is not None:
            cmd.append(self.le)
        return cmd

    def __repr__(self):
        return f"APDU({bytes_to_hex(self.to_bytes())})"


class APDUResponse:
    """Represents an APDU response."""

    def __init__(self, data: List[int], sw1: int, sw2: int):
        self.data = data
        self.sw1 = sw1
        self.sw2 = sw2

    @property
    def sw(self) -> int:
        return (self.sw1 << 8) | self.sw2

    @property
    def is_success(self) -> bool:
        """Check if response indicates success."""
        return self.sw == 0x9000

    @property
    def status_text(self) -> str:
        """Human-readable status."""
        return STATUS_TEXT.get(self.sw, f"Unknown (0x{self.sw:04X})")

    def __repr__(self):
        return f"Response(data={bytes_to_hex(self.data)}, SW={self.sw:04X})"


STATUS_TEXT = {
    0x9000: "Success",
    0x6300: "Operation failed",
    0x6700: "Wrong length",
    0x6800: "CLA byte incorrect",
    0x6981: "Command incompatible",
    0x6982: "Security status not satisfied",
    0x6983: "Authentication method blocked",
    0x6986: "Command not allowed",
    0x6988: "Key number not valid",
    0x6A81: "Function not supported",
    0x6A82: "Block address out of range",
    0x6B00: "Wrong parameter P1-P2",
}


# ─── MIFARE Classic Pseudo-APDUs ────────────────────────────────────────────

class ClassicIns(IntEnum):
    """PC/SC part 3 instruction codes used for MIFARE Classic."""
    GET_DATA = 0xCA
    LOAD_KEYS = 0x82
    GENERAL_AUTHENTICATE = 0x86
    READ_BINARY = 0xB0
    UPDATE_BINARY = 0xD6
    VALUE_BLOCK = 0xD7


class ValueOp(IntEnum):
    """Value block operation codes (VB_OP) of the value block command."""
    STORE = 0x00
    INCREMENT = 0x01
    DECREMENT = 0x02
    RESTORE = 0x03


PSEUDO_CLA = 0xFF
AUTH_BLOCK_VERSION = 0x01


def get_uid() -> APDUCommand:
    """GET DATA with P1=0x00 returns the card UID."""
    return APDUCommand(PSEUDO_CLA, ClassicIns.GET_DATA, 0x00, 0x00, le=0x00)


def load_key(key: bytes, slot: int = 0) -> APDUCommand:
    """Load a 6-byte key into the reader's volatile key slot."""
    return APDUCommand(PSEUDO_CLA, ClassicIns.LOAD_KEYS, 0x00, slot, list(key))


def authenticate(block: int, key_type_code: int, slot: int = 0) -> APDUCommand:
    """GENERAL AUTHENTICATE against a block using the key loaded in slot."""
    data = [AUTH_BLOCK_VERSION, 0x00, block & 0xFF, int(key_type_code), slot]
    return APDUCommand(PSEUDO_CLA, ClassicIns.GENERAL_AUTHENTICATE, 0x00, 0x00, data)


def read_binary(block: int, length: int = 16) -> APDUCommand:
    return APDUCommand(PSEUDO_CLA, ClassicIns.READ_BINARY, 0x00, block & 0xFF, le=length)


def update_binary(block: int, data: bytes) -> APDUCommand:
    return APDUCommand(PSEUDO_CLA, ClassicIns.UPDATE_BINARY, 0x00, block & 0xFF, list(data))


def value_operation(block: int, op: ValueOp, amount: int) -> APDUCommand:
    """
    Increment/decrement a value block on the card.
    The operand is a signed 32-bit integer sent MSB first.
    """
    data = [int(op)] + list(amount.to_bytes(4, "big", signed=True))
    return APDUCommand(PSEUDO_CLA, ClassicIns.VALUE_BLOCK, 0x00, block & 0xFF, data)


def restore_value(source: int, target: int) -> APDUCommand:
    """Copy the value of source into target (restore + transfer)."""
    data = [int(ValueOp.RESTORE), target & 0xFF]
    return APDUCommand(PSEUDO_CLA, ClassicIns.VALUE_BLOCK, 0x00, source & 0xFF, data)


# ─── Hex Utilities ──────────────────────────────────────────────────────────

def bytes_to_hex(data, separator: str = " ") -> str:
    """Convert byte list to hex string."""
    return separator.join(f"{b:02X}" for b in data)


def hex_to_bytes(hex_string: str) -> List[int]:
    """Convert hex string to byte list."""
    hex_string = hex_string.replace(" ", "").replace(":", "").replace("-", "")
    if len(hex_string) % 2 != 0:
        hex_string = "0" + hex_string
    return [int(hex_string[i:i+2], 16) for i in range(0, len(hex_string), 2)]


def format_hex_dump(data, bytes_per_line: int = 16, start: int = 0) -> str:
    """Format data as a hex dump with ASCII representation, addresses from start."""
    lines = []
    for offset in range(0, len(data), bytes_per_line):
        chunk = data[offset:offset + bytes_per_line]
        hex_part = " ".join(f"{b:02X}" for b in chunk)
        ascii_part = "".join(chr(b) if 32 <= b < 127 else "." for b in chunk)
        hex_part = hex_part.ljust(bytes_per_line * 3 - 1)
        lines.append(f"{start + offset:04X}  {hex_part}  |{ascii_part}|")
    return "\n".join(lines)


def redact_frame(frame: List[int]) -> List[int]:
    """Mask key material in a LOAD KEYS frame before it is logged."""
    if len(frame) > 5 and frame[0] == PSEUDO_CLA and frame[1] == ClassicIns.LOAD_KEYS:
        return frame[:5] + [0x00] * (len(frame) - 5)
    return frame
