"""
Full card dump.

Walks every sector in order, tries the candidate keys, reads every block of
the sectors that open and classifies data blocks as plain data or value
blocks. Sector and block failures are recorded in the report; only a lost
transceiver (or a cancellation between sectors) ends the walk early, and the
partial report is still returned.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from . import access_bits, config, value_block
from .access_bits import AccessConditions
from .apdu import bytes_to_hex, format_hex_dump
from .authenticator import Authenticator, AuthFailure
from .blocks import BlockAccessor
from .errors import AuthDenied, BlockAccessDenied, CardError, MalformedResponse, TransceiverLost
from .keys import KeyStore, KeyType
from .layout import BYTES_PER_BLOCK, BlockRole, Card, Sector, block_role
from .session import AuthContext, MifareClassic
from .value_block import ValueBlock

logger = logging.getLogger(__name__)


class SectorState(Enum):
    PENDING = "pending"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    READING_BLOCKS = "reading blocks"
    AUTH_FAILED = "auth failed"
    DONE = "done"


TRANSITIONS = {
    SectorState.PENDING: {SectorState.AUTHENTICATING},
    SectorState.AUTHENTICATING: {SectorState.AUTHENTICATED, SectorState.AUTH_FAILED},
    SectorState.AUTHENTICATED: {SectorState.READING_BLOCKS},
    SectorState.READING_BLOCKS: {SectorState.DONE},
    SectorState.AUTH_FAILED: {SectorState.DONE},
    SectorState.DONE: set(),
}

ProgressCallback = Callable[[int, SectorState], None]


# ─── Report Structures ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class BlockReport:
    """Outcome of reading one block: its bytes or the error that prevented it."""
    block: int
    role: BlockRole
    data: Optional[bytes] = None
    value: Optional[ValueBlock] = None
    error: Optional[CardError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict:
        result = {"block": self.block, "role": self.role.value}
        if self.data is not None:
            result["data"] = bytes_to_hex(self.data, "")
        if self.value is not None:
            result["value"] = self.value.value
            result["address"] = self.value.address
        if self.error is not None:
            result["error"] = str(self.error)
        return result

    def format_text(self) -> str:
        """One hex dump line addressed by card byte offset, or the error."""
        start = self.block * BYTES_PER_BLOCK
        if self.data is None:
            return f"{start:04X}  <{self.error}>"
        line = format_hex_dump(self.data, start=start)
        if self.value is not None:
            line += f"  value={self.value.value}"
        return line


@dataclass(frozen=True)
class SectorReport:
    sector: int
    authenticated: bool
    attempts: int
    key_type: Optional[KeyType] = None
    key: Optional[bytes] = field(default=None, repr=False)
    blocks: Tuple[BlockReport, ...] = ()
    access: Optional[AccessConditions] = None
    error: Optional[CardError] = None

    def block(self, number: int) -> Optional[BlockReport]:
        for report in self.blocks:
            if report.block == number:
                return report
        return None

    def to_dict(self) -> Dict:
        result = {
            "sector": self.sector,
            "authenticated": self.authenticated,
            "attempts": self.attempts,
        }
        if self.error is not None:
            result["error"] = str(self.error)
        if self.authenticated:
            result["key_type"] = self.key_type.name
            result["key"] = bytes_to_hex(self.key, "")
            result["blocks"] = [b.to_dict() for b in self.blocks]
            if self.access is not None:
                result["access"] = self.access.to_dict()
        return result


@dataclass(frozen=True)
class DumpReport:
    card: Card
    sectors: Tuple[SectorReport, ...]
    truncated: bool = False
    cancelled: bool = False
    lost_at_sector: Optional[int] = None
    error: Optional[TransceiverLost] = None

    @property
    def complete(self) -> bool:
        return not self.truncated

    @property
    def authenticated_sectors(self) -> List[int]:
        return [s.sector for s in self.sectors if s.authenticated]

    @property
    def failed_sectors(self) -> List[int]:
        return [s.sector for s in self.sectors if not s.authenticated]

    def sector(self, index: int) -> Optional[SectorReport]:
        for report in self.sectors:
            if report.sector == index:
                return report
        return None

    def to_dict(self) -> Dict:
        return {
            "uid": self.card.uid_hex,
            "card_type": self.card.card_type.label,
            "truncated": self.truncated,
            "cancelled": self.cancelled,
            "lost_at_sector": self.lost_at_sector,
            "error": str(self.error) if self.error else None,
            "sectors": [s.to_dict() for s in self.sectors],
        }

    def format_text(self) -> str:
        """Human-readable dump, one hex line per block."""
        lines = [str(self.card)]
        for sector in self.sectors:
            if sector.authenticated:
                lines.append(f"Sector {sector.sector}: key {sector.key_type.name} "
                             f"{bytes_to_hex(sector.key, '')}")
                lines.extend(b.format_text() for b in sector.blocks)
            else:
                reason = sector.error or f"no key matched ({sector.attempts} attempts)"
                lines.append(f"Sector {sector.sector}: {reason}")
        if self.cancelled:
            lines.append("Dump cancelled")
        elif self.truncated:
            lines.append(f"Card lost at sector {self.lost_at_sector}: {self.error}")
        return "\n".join(lines)


# ─── Orchestrator ───────────────────────────────────────────────────────────

class _SectorProgress:
    """Tracks one sector's state machine and reports transitions."""

    def __init__(self, sector: int, callback: Optional[ProgressCallback]):
        self.sector = sector
        self.state = SectorState.PENDING
        self._callback = callback

    def advance(self, state: SectorState):
        if state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Sector {self.sector}: illegal transition {self.state} -> {state}")
        logger.debug("Sector %d: %s -> %s", self.sector, self.state.value, state.value)
        self.state = state
        if self._callback is not None:
            self._callback(self.sector, state)


class DumpOrchestrator:
    """Reads every sector the candidate keys open."""

    def __init__(self, session: MifareClassic, reauth_after_nak: Optional[bool] = None):
        self._session = session
        self._reauth = config.REAUTH_AFTER_NAK if reauth_after_nak is None else reauth_after_nak

    def dump_all(self, card: Card, keys: KeyStore,
                 cancel_event: Optional[threading.Event] = None,
                 on_progress: Optional[ProgressCallback] = None) -> DumpReport:
        """
        Dump every sector of a card.

        Args:
            card: Detected card (sector layout and UID).
            keys: Candidate keys, tried in order for each sector.
            cancel_event: Checked between sectors; set it to stop early.
            on_progress: Called with (sector, state) on every state change.

        Returns:
            DumpReport. truncated is set when the transceiver was lost or
            the dump was cancelled; the sectors finished so far are kept.
        """
        authenticator = Authenticator(self._session, card)
        accessor = BlockAccessor(self._session, card)
        reports: List[SectorReport] = []

        logger.info("Dumping %s with %d candidate keys", card, len(keys))
        for sector in card.sectors():
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Dump cancelled before sector %d", sector.index)
                return DumpReport(card, tuple(reports), truncated=True, cancelled=True)

            progress = _SectorProgress(sector.index, on_progress)
            try:
                with self._session.lock:
                    reports.append(self._dump_sector(sector, keys, authenticator, accessor, progress))
            except TransceiverLost as e:
                logger.error("Dump aborted at sector %d: %s", sector.index, e)
                return DumpReport(card, tuple(reports), truncated=True,
                                  lost_at_sector=sector.index, error=e)

        report = DumpReport(card, tuple(reports))
        logger.info("Dump complete: %d/%d sectors read",
                    len(report.authenticated_sectors), card.sector_count)
        return report

    def _dump_sector(self, sector: Sector, keys: KeyStore, authenticator: Authenticator,
                     accessor: BlockAccessor, progress: _SectorProgress) -> SectorReport:
        progress.advance(SectorState.AUTHENTICATING)
        result = authenticator.try_keys(sector.index, keys)
        if isinstance(result, AuthFailure):
            progress.advance(SectorState.AUTH_FAILED)
            progress.advance(SectorState.DONE)
            return SectorReport(sector.index, False, result.attempts, error=result.error)

        progress.advance(SectorState.AUTHENTICATED)
        progress.advance(SectorState.READING_BLOCKS)
        context = result.context
        blocks: List[BlockReport] = []
        access = None
        for block in sector.blocks:
            report, context = self._read_block(block, context, authenticator, accessor)
            blocks.append(report)
            if report.role is BlockRole.TRAILER and report.data is not None:
                access = access_bits.parse_trailer(report.data)["access"]

        progress.advance(SectorState.DONE)
        return SectorReport(sector.index, True, result.attempts, result.context.key_type,
                            result.context.key, tuple(blocks), access)

    def _read_block(self, block: int, context: Optional[AuthContext],
                    authenticator: Authenticator,
                    accessor: BlockAccessor) -> Tuple[BlockReport, Optional[AuthContext]]:
        role = block_role(block)
        if context is None:
            error = AuthDenied(f"Re-authentication failed before block {block}")
            return BlockReport(block, role, error=error), None

        try:
            data = accessor.read(context, block)
        except (BlockAccessDenied, MalformedResponse) as e:
            logger.warning("Block %d: %s", block, e)
            return BlockReport(block, role, error=e), self._recover(context, authenticator)

        if role is BlockRole.DATA:
            decoded = value_block.decode(data)
            if isinstance(decoded, ValueBlock):
                return BlockReport(block, BlockRole.VALUE, data, decoded), context
        return BlockReport(block, role, data), context

    def _recover(self, context: AuthContext,
                 authenticator: Authenticator) -> Optional[AuthContext]:
        """Get a live context back after a block failure, or None if impossible."""
        if self._session.is_live(context):
            return context
        if not self._reauth:
            return None
        try:
            return authenticator.reauthenticate(context)
        except TransceiverLost:
            raise
        except CardError as e:
            logger.warning("Sector %d: re-authentication failed: %s", context.sector, e)
            return None


def dump_all(session: MifareClassic, card: Card, keys: KeyStore,
             cancel_event: Optional[threading.Event] = None,
             on_progress: Optional[ProgressCallback] = None) -> DumpReport:
    """Convenience wrapper around DumpOrchestrator.dump_all."""
    return DumpOrchestrator(session).dump_all(card, keys, cancel_event, on_progress)
