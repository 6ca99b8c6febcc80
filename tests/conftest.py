"""Shared fixtures: an in-memory MIFARE Classic card behind a PC/SC-style transmit function."""

from typing import Dict, List, Optional, Set

import pytest

from mfclassic import access_bits, value_block
from mfclassic.apdu import APDUCommand, APDUResponse, ClassicIns, ValueOp
from mfclassic.errors import TransceiverLost
from mfclassic.keys import KeyStore, KeyType
from mfclassic.layout import Card, CardType, block_to_sector, is_sector_trailer, sector_trailer_block
from mfclassic.session import MifareClassic

DEFAULT_KEY = bytes.fromhex("FFFFFFFFFFFF")
UID = bytes.fromhex("DEADBEEF")

OK = (0x90, 0x00)
AUTH_FAILED = (0x63, 0x00)
NOT_ALLOWED = (0x69, 0x82)


class FakeCard:
    """
    Behaves like a contactless reader with a Classic card in the field.

    Every sector opens with DEFAULT_KEY under both key types unless changed
    through set_key(). A NAK on any command drops the authentication, as on
    a real card.
    """

    def __init__(self, card_type: CardType = CardType.CLASSIC_1K, uid: bytes = UID):
        self.card_type = card_type
        self.uid = uid
        self.blocks: Dict[int, bytes] = {b: bytes(16) for b in range(card_type.block_count)}
        self.blocks[0] = uid + bytes([uid[0] ^ uid[1] ^ uid[2] ^ uid[3]]) + bytes(11)
        self.keys: Dict[int, Dict[KeyType, Optional[bytes]]] = {}
        for sector in range(card_type.sector_count):
            self.keys[sector] = {KeyType.A: DEFAULT_KEY, KeyType.B: DEFAULT_KEY}
            self.blocks[sector_trailer_block(sector)] = access_bits.build_trailer(
                DEFAULT_KEY, access_bits.TRANSPORT_CONDITIONS, DEFAULT_KEY)

        self.read_denied: Set[int] = set()
        self.write_denied: Set[int] = set()
        self.short_reads: Set[int] = set()
        # 1-based LOAD KEYS numbers answered with 63 00
        self.failing_loads: Set[int] = set()
        # block -> status returned to GENERAL AUTHENTICATE
        self.auth_status: Dict[int, tuple] = {}
        self.lose_on_auth_sector: Optional[int] = None
        self.lose_after: Optional[int] = None
        self.no_response = False

        self.loaded_key: Optional[bytes] = None
        self.authenticated = None
        self.frames: List[List[int]] = []

    # ─── Test Setup Helpers ──────────────────────────────────────────

    def set_key(self, sector: int, key_type: KeyType, key: Optional[bytes]):
        """Change (or with None, disable) a sector key."""
        self.keys[sector][key_type] = key

    def lock_sector(self, sector: int, key_type: KeyType = KeyType.A,
                    key: bytes = bytes.fromhex("112233445566")):
        """Make a sector open only with one specific key."""
        self.keys[sector] = {KeyType.A: None, KeyType.B: None}
        self.keys[sector][key_type] = key

    def count(self, ins: int) -> int:
        return sum(1 for f in self.frames if f[1] == ins)

    @property
    def auth_attempts(self) -> int:
        return self.count(ClassicIns.GENERAL_AUTHENTICATE)

    # ─── Transmit ────────────────────────────────────────────────────

    def __call__(self, command: APDUCommand) -> Optional[APDUResponse]:
        frame = command.to_bytes()
        self.frames.append(frame)
        if self.lose_after is not None and len(self.frames) > self.lose_after:
            raise TransceiverLost("Card removed")
        if self.no_response:
            return None

        handler = {
            ClassicIns.GET_DATA: self._get_uid,
            ClassicIns.LOAD_KEYS: self._load_key,
            ClassicIns.GENERAL_AUTHENTICATE: self._authenticate,
            ClassicIns.READ_BINARY: self._read,
            ClassicIns.UPDATE_BINARY: self._write,
            ClassicIns.VALUE_BLOCK: self._value,
        }[frame[1]]
        data, (sw1, sw2) = handler(frame)
        return APDUResponse(list(data), sw1, sw2)

    def _nak(self, status=NOT_ALLOWED):
        self.authenticated = None
        return b"", status

    def _opened(self, block: int) -> bool:
        return self.authenticated is not None and self.authenticated[0] == block_to_sector(block)

    def _get_uid(self, frame):
        return self.uid, OK

    def _load_key(self, frame):
        if self.count(ClassicIns.LOAD_KEYS) in self.failing_loads:
            return b"", AUTH_FAILED
        self.loaded_key = bytes(frame[5:11])
        return b"", OK

    def _authenticate(self, frame):
        block, key_type = frame[7], KeyType(frame[8])
        sector = block_to_sector(block)
        self.authenticated = None
        if self.lose_on_auth_sector == sector:
            raise TransceiverLost("Card removed")
        if block in self.auth_status:
            return self._nak(self.auth_status[block])
        expected = self.keys[sector][key_type]
        if expected is None or expected != self.loaded_key:
            return self._nak(AUTH_FAILED)
        self.authenticated = (sector, key_type)
        return b"", OK

    def _read(self, frame):
        block = frame[3]
        if not self._opened(block) or block in self.read_denied:
            return self._nak()
        data = self.blocks[block]
        if is_sector_trailer(block):
            data = bytes(6) + data[6:]
        if block in self.short_reads:
            data = data[:8]
        return data, OK

    def _write(self, frame):
        block = frame[3]
        if not self._opened(block) or block in self.write_denied:
            return self._nak()
        self.blocks[block] = bytes(frame[5:5 + frame[4]])
        return b"", OK

    def _value(self, frame):
        block, payload = frame[3], frame[5:5 + frame[4]]
        if not self._opened(block) or block in self.write_denied:
            return self._nak()
        if payload[0] == ValueOp.RESTORE:
            self.blocks[payload[1]] = self.blocks[block]
            return b"", OK
        current = value_block.decode(self.blocks[block])
        if not isinstance(current, value_block.ValueBlock):
            return self._nak()
        amount = int.from_bytes(bytes(payload[1:5]), "big", signed=True)
        delta = amount if payload[0] == ValueOp.INCREMENT else -amount
        self.blocks[block] = value_block.encode(value_block.apply_delta(current, delta))
        return b"", OK


@pytest.fixture
def fake_card():
    return FakeCard()


@pytest.fixture
def session(fake_card):
    return MifareClassic(fake_card, key_slot=0)


@pytest.fixture
def card(fake_card):
    return Card(fake_card.uid, fake_card.card_type)


@pytest.fixture
def default_keys():
    return KeyStore.from_keys([DEFAULT_KEY], (KeyType.A, KeyType.B))
