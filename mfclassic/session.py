"""
MIFARE Classic card session.

Owns the command channel to one card: a single authentication slot, the
exclusive lock serialising commands, and the PC/SC pseudo-APDU exchanges
(load key, authenticate, read, write, value operations, get UID).

Higher layers (Authenticator, BlockAccessor, DumpOrchestrator) build on this
class and never talk to the transceiver directly.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from . import apdu, config
from .apdu import APDUCommand, APDUResponse, ValueOp, bytes_to_hex, redact_frame
from .atr_parser import ATRInfo
from .errors import (
    AuthDenied, BlockAccessDenied, MalformedResponse, Operation, PreconditionViolation,
    TransceiverLost, check,
)
from .keys import KEY_LENGTH, Key, KeyType
from .layout import BYTES_PER_BLOCK, Card, CardType, sector_first_block

logger = logging.getLogger(__name__)

UID_LENGTHS = (4, 7, 10)

TransmitFunc = Callable[[APDUCommand], Optional[APDUResponse]]


@dataclass(frozen=True)
class AuthContext:
    """The sector/key/type combination currently authenticated on the card."""
    sector: int
    key_type: KeyType
    key: bytes = field(repr=False)
    serial: int = 0

    @property
    def key_hex(self) -> str:
        return bytes_to_hex(self.key, "")

    def __str__(self):
        return f"sector {self.sector} / key {self.key_type.name}"


class MifareClassic:
    """
    MIFARE Classic protocol handler.
    Sends one command at a time and tracks the live authentication context.
    """

    def __init__(self, transmit_func: TransmitFunc, key_slot: Optional[int] = None):
        """
        Args:
            transmit_func: Function that takes APDUCommand and returns APDUResponse.
                It raises TransceiverLost (or returns None) when the card is gone.
            key_slot: Reader key slot for loaded keys (defaults to config.KEY_SLOT).
        """
        self._transmit = transmit_func
        self._key_slot = config.KEY_SLOT if key_slot is None else key_slot
        self._lock = threading.RLock()
        self._context: Optional[AuthContext] = None
        self._serials = itertools.count(1)

    @property
    def lock(self) -> threading.RLock:
        """Exclusive session lock; hold it across check-then-dispatch sequences."""
        return self._lock

    @property
    def context(self) -> Optional[AuthContext]:
        return self._context

    def is_live(self, context: Optional[AuthContext]) -> bool:
        return context is not None and context == self._context

    def invalidate(self):
        """Forget the live context."""
        self._context = None

    # ─── Transport ───────────────────────────────────────────────────

    def _exchange(self, command: APDUCommand, operation: Operation,
                  block: Optional[int] = None,
                  expected_length: Optional[int] = None) -> APDUResponse:
        """Send one command, classify the status, keep the context slot honest."""
        with self._lock:
            logger.debug("> %s", bytes_to_hex(redact_frame(command.to_bytes())))
            try:
                response = self._transmit(command)
            except TransceiverLost as e:
                self._context = None
                logger.error("Transceiver lost during %s: %s", operation.value, e)
                raise

            if response is not None:
                logger.debug("< %s [%04X]", bytes_to_hex(response.data), response.sw)

            try:
                return check(response, operation, block, expected_length)
            except TransceiverLost as e:
                self._context = None
                logger.error("%s", e)
                raise
            except (AuthDenied, BlockAccessDenied):
                # The card halts after a NAK; its crypto state is gone
                self._context = None
                raise

    # ─── Card Identity ───────────────────────────────────────────────

    def read_uid(self) -> bytes:
        """Read the card UID (4, 7 or 10 bytes)."""
        response = self._exchange(apdu.get_uid(), Operation.GET_UID)
        if len(response.data) not in UID_LENGTHS:
            error = MalformedResponse(f"Invalid UID length {len(response.data)}", response.sw)
            logger.error("%s", error)
            raise error
        return bytes(response.data)

    def detect_card(self, atr: List[int], card_type: Optional[CardType] = None) -> Card:
        """
        Identify the card in the field.

        Args:
            atr: ATR reported by the reader.
            card_type: Layout override for readers whose ATR does not name the card.

        Raises:
            PreconditionViolation: the card is not a MIFARE Classic variant
                (checked before anything is sent).
        """
        info = ATRInfo(atr)
        resolved = card_type or info.card_type
        if resolved is None:
            raise PreconditionViolation(f"Not a MIFARE Classic card: {info.description}")
        card = Card(self.read_uid(), resolved, tuple(atr))
        logger.info("Detected %s", card)
        return card

    # ─── Authentication ──────────────────────────────────────────────

    def load_key(self, key: bytes):
        """Load a key into the reader's key slot."""
        if len(key) != KEY_LENGTH:
            raise PreconditionViolation(f"Key must be exactly {KEY_LENGTH} bytes")
        self._exchange(apdu.load_key(key, self._key_slot), Operation.LOAD_KEY)

    def authenticate(self, sector: int, key: Key) -> AuthContext:
        """
        Single authentication attempt against a sector.

        Any previous context is dropped before the attempt: the card loses
        its crypto state as soon as a new authentication starts.

        Raises:
            AuthDenied: wrong key or key type.
            TransceiverLost: card or reader gone.
        """
        with self._lock:
            self._context = None
            self.load_key(key.value)
            block = sector_first_block(sector)
            self._exchange(apdu.authenticate(block, key.key_type, self._key_slot),
                           Operation.AUTHENTICATE, block)
            self._context = AuthContext(sector, key.key_type, key.value, next(self._serials))
            logger.debug("Authenticated %s", self._context)
            return self._context

    # ─── Block Commands ──────────────────────────────────────────────
    # No precondition checks here; BlockAccessor enforces them.

    def read_block(self, block: int) -> bytes:
        response = self._exchange(apdu.read_binary(block, BYTES_PER_BLOCK), Operation.READ,
                                  block, expected_length=BYTES_PER_BLOCK)
        return bytes(response.data)

    def write_block(self, block: int, data: bytes):
        self._exchange(apdu.update_binary(block, data), Operation.WRITE, block)

    def value_operation(self, block: int, op: ValueOp, amount: int):
        self._exchange(apdu.value_operation(block, op, amount), Operation.VALUE, block)

    def restore_value(self, source: int, target: int):
        self._exchange(apdu.restore_value(source, target), Operation.VALUE, source)
