"""
Block access bound to an authenticated context.

Every operation checks its preconditions under the session lock before
anything reaches the card: the context must be the live one, the block must
belong to the context's sector, data must be exactly 16 bytes. Block 0 is
never written and trailers only change through write_sector_trailer().
"""

import logging
from typing import Dict, Optional, Union

from . import access_bits, value_block
from .access_bits import AccessConditions, InvalidAccessBits
from .apdu import ValueOp
from .errors import PreconditionViolation
from .keys import KEY_LENGTH
from .layout import (
    BYTES_PER_BLOCK, MANUFACTURER_BLOCK, Card, block_to_sector, is_sector_trailer,
    sector_trailer_block,
)
from .session import AuthContext, MifareClassic
from .value_block import INT32_MAX, ValueBlock

logger = logging.getLogger(__name__)


class BlockAccessor:
    """Read/write/value operations on blocks of the authenticated sector."""

    def __init__(self, session: MifareClassic, card: Optional[Card] = None):
        self._session = session
        self._card = card

    # ─── Preconditions ───────────────────────────────────────────────

    def _require(self, context: AuthContext, block: int):
        if self._card is not None and not self._card.has_block(block):
            raise PreconditionViolation(f"Block {block} does not exist on {self._card.card_type}")
        if block < 0:
            raise PreconditionViolation(f"Block {block} does not exist")
        if not self._session.is_live(context):
            raise PreconditionViolation(f"Context for {context} is not the live authentication")
        if block_to_sector(block) != context.sector:
            raise PreconditionViolation(
                f"Block {block} is outside authenticated sector {context.sector}"
            )

    def _require_writable(self, context: AuthContext, block: int, data: bytes):
        if block == MANUFACTURER_BLOCK:
            raise PreconditionViolation("Block 0 (manufacturer data) is read-only")
        if is_sector_trailer(block):
            raise PreconditionViolation(
                f"Block {block} is a sector trailer; use write_sector_trailer()"
            )
        if len(data) != BYTES_PER_BLOCK:
            raise PreconditionViolation(
                f"Data must be exactly {BYTES_PER_BLOCK} bytes, got {len(data)}"
            )
        self._require(context, block)

    # ─── Plain Blocks ────────────────────────────────────────────────

    def read(self, context: AuthContext, block: int) -> bytes:
        """Read one 16-byte block."""
        with self._session.lock:
            self._require(context, block)
            return self._session.read_block(block)

    def write(self, context: AuthContext, block: int, data: bytes):
        """Write one 16-byte data block."""
        with self._session.lock:
            self._require_writable(context, block, data)
            self._session.write_block(block, bytes(data))
            logger.info("Wrote block %d", block)

    # ─── Sector Trailer ──────────────────────────────────────────────

    def read_sector_trailer(self, context: AuthContext) -> Dict:
        """Read and parse the trailer of the authenticated sector."""
        data = self.read(context, sector_trailer_block(context.sector))
        return access_bits.parse_trailer(data)

    def write_sector_trailer(self, context: AuthContext, key_a: bytes,
                             conditions: Union[AccessConditions, bytes], key_b: bytes):
        """
        Replace the keys and access conditions of the authenticated sector.

        Raw access bytes are validated first: inconsistent bits would make
        the sector permanently unusable.
        """
        if len(key_a) != KEY_LENGTH or len(key_b) != KEY_LENGTH:
            raise PreconditionViolation(f"Keys must be exactly {KEY_LENGTH} bytes")
        if not isinstance(conditions, AccessConditions):
            try:
                conditions = access_bits.decode(bytes(conditions))
            except InvalidAccessBits as e:
                raise PreconditionViolation(str(e)) from e

        block = sector_trailer_block(context.sector)
        data = access_bits.build_trailer(key_a, conditions, key_b)
        with self._session.lock:
            self._require(context, block)
            self._session.write_block(block, data)
            logger.info("Rewrote sector trailer %d (access %s)",
                        block, access_bits.encode(conditions)[:3].hex().upper())

    # ─── Value Blocks ────────────────────────────────────────────────

    def read_value(self, context: AuthContext, block: int) -> ValueBlock:
        """Read a block and decode it, raising NotAValueBlock if it is plain data."""
        return value_block.require_value_block(self.read(context, block), block)

    def init_value_block(self, context: AuthContext, block: int, value: int,
                         address: Optional[int] = None) -> ValueBlock:
        """Format a data block as a value block. The address defaults to the block number."""
        vb = ValueBlock(value, block & 0xFF if address is None else address)
        self.write(context, block, value_block.encode(vb))
        return vb

    def increment(self, context: AuthContext, block: int, amount: int) -> ValueBlock:
        return self._apply(context, block, amount, ValueOp.INCREMENT)

    def decrement(self, context: AuthContext, block: int, amount: int) -> ValueBlock:
        return self._apply(context, block, amount, ValueOp.DECREMENT)

    def _apply(self, context: AuthContext, block: int, amount: int, op: ValueOp) -> ValueBlock:
        """
        Card-native increment/decrement. The current value is read and
        validated first and the result checked for overflow; nothing is
        sent if either check fails.
        """
        if not 0 <= amount <= INT32_MAX:
            raise PreconditionViolation(f"Amount must be between 0 and {INT32_MAX}, got {amount}")
        with self._session.lock:
            self._require_writable(context, block, bytes(BYTES_PER_BLOCK))
            current = self.read_value(context, block)
            delta = amount if op == ValueOp.INCREMENT else -amount
            expected = value_block.apply_delta(current, delta)
            self._session.value_operation(block, op, amount)
            logger.info("Block %d: %d -> %d", block, current.value, expected.value)
            return expected

    def restore(self, context: AuthContext, source: int, target: int):
        """Copy a value block into another block of the same sector."""
        with self._session.lock:
            self._require_writable(context, target, bytes(BYTES_PER_BLOCK))
            self.read_value(context, source)
            self._session.restore_value(source, target)
            logger.info("Copied value block %d to %d", source, target)
