"""
Sector trailer access conditions.

Bytes 6-8 of a trailer hold three condition bits (C1, C2, C3) for each of
four block groups, every bit stored twice (once inverted). Byte 9 is free for
user data.

    byte 6:  ~C2[3..0] ~C1[3..0]
    byte 7:   C1[3..0] ~C3[3..0]
    byte 8:   C3[3..0]  C2[3..0]

Groups 0-2 are the data blocks (one block each in a 4-block sector, five
blocks each in a 16-block sector); group 3 is the trailer.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Tuple

from .keys import KEY_LENGTH, KeyType

TRAILER_GROUP = 3

_A = frozenset({KeyType.A})
_B = frozenset({KeyType.B})
_AB = frozenset({KeyType.A, KeyType.B})
_NONE: FrozenSet[KeyType] = frozenset()

# C1C2C3 -> (read, write, increment, decrement/transfer/restore)
DATA_PERMISSIONS: Dict[int, Tuple[FrozenSet[KeyType], ...]] = {
    0b000: (_AB, _AB, _AB, _AB),
    0b010: (_AB, _NONE, _NONE, _NONE),
    0b100: (_AB, _B, _NONE, _NONE),
    0b110: (_AB, _B, _B, _AB),
    0b001: (_AB, _NONE, _NONE, _AB),
    0b011: (_B, _B, _NONE, _NONE),
    0b101: (_B, _NONE, _NONE, _NONE),
    0b111: (_NONE, _NONE, _NONE, _NONE),
}

# C1C2C3 -> (read key A, write key A, read access bits, write access bits, read key B, write key B)
TRAILER_PERMISSIONS: Dict[int, Tuple[FrozenSet[KeyType], ...]] = {
    0b000: (_NONE, _A, _A, _NONE, _A, _A),
    0b010: (_NONE, _NONE, _A, _NONE, _A, _NONE),
    0b100: (_NONE, _B, _AB, _NONE, _NONE, _B),
    0b110: (_NONE, _NONE, _AB, _NONE, _NONE, _NONE),
    0b001: (_NONE, _A, _A, _A, _A, _A),
    0b011: (_NONE, _B, _AB, _B, _NONE, _B),
    0b101: (_NONE, _NONE, _AB, _B, _NONE, _NONE),
    0b111: (_NONE, _NONE, _AB, _NONE, _NONE, _NONE),
}

DATA_OPERATIONS = ("read", "write", "increment", "decrement")
TRAILER_OPERATIONS = ("read_key_a", "write_key_a", "read_access", "write_access",
                      "read_key_b", "write_key_b")


class InvalidAccessBits(ValueError):
    """The inverted copies of the access bits do not match."""


@dataclass(frozen=True)
class AccessConditions:
    """
    Condition bits per block group, each as a 3-bit C1C2C3 integer
    (C1 is the most significant bit).
    """
    groups: Tuple[int, int, int, int] = (0b000, 0b000, 0b000, 0b001)
    user_byte: int = 0x69

    def __post_init__(self):
        if len(self.groups) != 4 or any(not 0 <= g <= 0b111 for g in self.groups):
            raise ValueError(f"Access conditions need four 3-bit groups, got {self.groups}")
        object.__setattr__(self, "groups", tuple(self.groups))

    def allows(self, group: int, operation: str, key_type: KeyType) -> bool:
        """Check whether key_type may perform operation on a block group."""
        bits = self.groups[group]
        if group == TRAILER_GROUP:
            allowed = TRAILER_PERMISSIONS[bits][TRAILER_OPERATIONS.index(operation)]
        else:
            allowed = DATA_PERMISSIONS[bits][DATA_OPERATIONS.index(operation)]
        return key_type in allowed

    def to_dict(self) -> Dict:
        result = {f"group_{i}": f"{bits:03b}" for i, bits in enumerate(self.groups)}
        result["user_byte"] = f"0x{self.user_byte:02X}"
        return result


TRANSPORT_CONDITIONS = AccessConditions()


def group_for_block(offset: int, block_count: int) -> int:
    """Map a block's offset within its sector to its access group."""
    if offset == block_count - 1:
        return TRAILER_GROUP
    if block_count == 4:
        return offset
    return offset // 5


def encode(conditions: AccessConditions) -> bytes:
    """Encode conditions into the 4 access bytes (6-9) of a trailer."""
    c1 = c2 = c3 = 0
    for i, bits in enumerate(conditions.groups):
        c1 |= ((bits >> 2) & 1) << i
        c2 |= ((bits >> 1) & 1) << i
        c3 |= (bits & 1) << i
    byte6 = ((~c2 & 0x0F) << 4) | (~c1 & 0x0F)
    byte7 = (c1 << 4) | (~c3 & 0x0F)
    byte8 = (c3 << 4) | c2
    return bytes([byte6, byte7, byte8, conditions.user_byte & 0xFF])


def decode(data: bytes) -> AccessConditions:
    """
    Decode the 4 access bytes. Raises InvalidAccessBits if any inverted
    copy disagrees with its plain counterpart.
    """
    if len(data) != 4:
        raise InvalidAccessBits(f"Access bits are 4 bytes, got {len(data)}")
    byte6, byte7, byte8, user = data
    c1 = byte7 >> 4
    c2 = byte8 & 0x0F
    c3 = byte8 >> 4
    if (byte6 & 0x0F) != (~c1 & 0x0F) or (byte6 >> 4) != (~c2 & 0x0F) or (byte7 & 0x0F) != (~c3 & 0x0F):
        raise InvalidAccessBits(f"Inconsistent access bits {data[:3].hex().upper()}")

    groups = tuple(
        (((c1 >> i) & 1) << 2) | (((c2 >> i) & 1) << 1) | ((c3 >> i) & 1)
        for i in range(4)
    )
    return AccessConditions(groups, user)


def build_trailer(key_a: bytes, conditions: AccessConditions, key_b: bytes) -> bytes:
    """Assemble a 16-byte sector trailer."""
    if len(key_a) != KEY_LENGTH or len(key_b) != KEY_LENGTH:
        raise ValueError(f"Keys must be exactly {KEY_LENGTH} bytes")
    return bytes(key_a) + encode(conditions) + bytes(key_b)


def parse_trailer(data: bytes) -> Dict:
    """
    Parse a 16-byte sector trailer.

    Returns dict with key_a, access (AccessConditions or None when the bits
    are inconsistent), access_bytes and key_b. Key A always reads back as
    zeros; key B reads as zeros unless the conditions make it readable.
    """
    if len(data) != 16:
        raise ValueError(f"Sector trailer must be 16 bytes, got {len(data)}")
    try:
        access = decode(data[6:10])
    except InvalidAccessBits:
        access = None
    return {
        "key_a": bytes(data[0:6]),
        "access": access,
        "access_bytes": bytes(data[6:10]),
        "key_b": bytes(data[10:16]),
    }
