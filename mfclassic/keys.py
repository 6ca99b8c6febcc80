"""
Candidate keys for MIFARE Classic sector authentication.

A KeyStore is an ordered sequence of (key, type) pairs. Order is trial
precedence: earlier entries are tried first and the first success wins.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import FrozenSet, Iterable, Iterator, List, Optional, Sequence

from .apdu import bytes_to_hex, hex_to_bytes
from .errors import PreconditionViolation

KEY_LENGTH = 6


class KeyType(IntEnum):
    """Key type, valued by the authentication command code."""
    A = 0x60
    B = 0x61

    @classmethod
    def parse_order(cls, order: str) -> List["KeyType"]:
        """Parse an order string such as "AB" or "BA"."""
        types = [cls[c] for c in order.strip().upper() if c in ("A", "B")]
        if not types or len(set(types)) != len(types):
            raise ValueError(f"Invalid key type order: {order!r}")
        return types


# Well-known keys: factory default, MAD/NFC Forum keys and common transport keys
DEFAULT_KEYS = (
    "FFFFFFFFFFFF",
    "A0A1A2A3A4A5",
    "D3F7D3F7D3F7",
    "000000000000",
    "B0B1B2B3B4B5",
    "4D3A99C351DD",
    "1A982C7E459A",
    "AABBCCDDEEFF",
)


@dataclass(frozen=True)
class Key:
    """A 6-byte key tagged with its type, optionally pinned to sectors."""
    value: bytes
    key_type: KeyType = KeyType.A
    sectors: Optional[FrozenSet[int]] = None

    def __post_init__(self):
        if not isinstance(self.value, (bytes, bytearray)) or len(self.value) != KEY_LENGTH:
            raise PreconditionViolation(f"Key must be exactly {KEY_LENGTH} bytes")
        object.__setattr__(self, "value", bytes(self.value))
        if self.sectors is not None:
            object.__setattr__(self, "sectors", frozenset(self.sectors))

    @classmethod
    def from_hex(cls, hex_string: str, key_type: KeyType = KeyType.A,
                 sectors: Optional[FrozenSet[int]] = None) -> "Key":
        """Parse a key written as 12 hex digits (spaces, ':' and '-' allowed)."""
        digits = hex_string.replace(" ", "").replace(":", "").replace("-", "")
        if len(digits) != KEY_LENGTH * 2:
            raise PreconditionViolation(
                f"Key must be exactly {KEY_LENGTH * 2} hex digits, got {len(digits)}"
            )
        try:
            value = bytes(hex_to_bytes(digits))
        except ValueError as e:
            raise PreconditionViolation(f"Invalid hex key {hex_string!r}") from e
        return cls(value, key_type, sectors)

    @property
    def hex(self) -> str:
        return bytes_to_hex(self.value, "")

    def applies_to(self, sector: int) -> bool:
        return self.sectors is None or sector in self.sectors

    def __str__(self):
        return f"Key {self.key_type.name}: {self.hex}"


class KeyStore:
    """Ordered candidate keys. Insertion order is trial order."""

    def __init__(self, keys: Iterable[Key] = ()):
        self._keys: List[Key] = []
        for key in keys:
            self.add(key)

    @classmethod
    def from_keys(cls, raw_keys: Iterable, key_types: Sequence[KeyType] = (KeyType.A, KeyType.B),
                  sectors: Optional[Iterable[int]] = None) -> "KeyStore":
        """
        Build a store from raw keys, trying every key with each type in turn.

        Args:
            raw_keys: 6-byte keys as bytes or hex strings.
            key_types: Type order applied to each key (A before B by default).
            sectors: Optionally pin every key to these sectors.

        Returns:
            KeyStore with len(raw_keys) * len(key_types) entries.
        """
        store = cls()
        store.extend(raw_keys, key_types, sectors)
        return store

    @classmethod
    def defaults(cls, key_types: Optional[Sequence[KeyType]] = None) -> "KeyStore":
        """The well-known default keys, in the configured type order."""
        if key_types is None:
            from . import config
            key_types = config.KEY_TYPE_ORDER
        return cls.from_keys(DEFAULT_KEYS, key_types)

    def add(self, key: Key) -> None:
        if key in self._keys:
            return
        self._keys.append(key)

    def extend(self, raw_keys: Iterable, key_types: Sequence[KeyType] = (KeyType.A, KeyType.B),
               sectors: Optional[Iterable[int]] = None) -> None:
        pinned = frozenset(sectors) if sectors is not None else None
        for raw in raw_keys:
            value = Key.from_hex(raw).value if isinstance(raw, str) else bytes(raw)
            for key_type in key_types:
                self.add(Key(value, key_type, pinned))

    def candidates(self, sector: int) -> List[Key]:
        """Keys applicable to a sector, in trial order."""
        return [k for k in self._keys if k.applies_to(sector)]

    def __iter__(self) -> Iterator[Key]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self):
        return f"KeyStore({len(self._keys)} keys)"
