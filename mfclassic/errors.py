"""
Error taxonomy for MIFARE Classic operations and the status word classifier.

Hardware-caused conditions derive from CardError; caller misuse is a
PreconditionViolation and never a CardError, so tests and callers can tell a
programming defect apart from a flaky card.
"""

import logging
from enum import Enum
from typing import Optional

from .apdu import APDUResponse

logger = logging.getLogger(__name__)


class MifareError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str, sw: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.sw = sw

    def __str__(self):
        if self.sw is not None:
            return f"{self.message}: Status {self.sw >> 8:02X} {self.sw & 0xFF:02X}"
        return self.message


class CardError(MifareError):
    """A condition reported by the card, the reader or the transport."""


class AuthDenied(CardError):
    """The card rejected an authentication attempt (wrong key or type)."""


class AuthExhausted(CardError):
    """Every candidate key failed for a sector."""

    def __init__(self, sector: int, attempts: int):
        super().__init__(f"No candidate key opened sector {sector} ({attempts} attempts)")
        self.sector = sector
        self.attempts = attempts


class BlockAccessDenied(CardError):
    """Access bits forbid the operation under the current key."""

    def __init__(self, message: str, sw: Optional[int] = None, block: Optional[int] = None):
        super().__init__(message, sw)
        self.block = block


class TransceiverLost(CardError):
    """Card removed, reader disconnected or transport timed out."""


class MalformedResponse(CardError):
    """Unexpected response length, shape or status word."""


class PreconditionViolation(MifareError, ValueError):
    """The caller used the engine incorrectly; nothing was sent to the card."""


class ValueOverflow(MifareError, OverflowError):
    """Value block arithmetic left the signed 32-bit range."""


class NotAValueBlock(MifareError):
    """Block contents failed the value block redundancy check."""


# ─── Status Word Classification ─────────────────────────────────────────────

class Operation(Enum):
    """Command families; the same status word means different things per family."""
    GET_UID = "get UID"
    LOAD_KEY = "load key"
    AUTHENTICATE = "authenticate"
    READ = "read"
    WRITE = "write"
    VALUE = "value"


AUTH_DENIED_SW = frozenset({0x6300, 0x6982, 0x6983, 0x6988})
ACCESS_DENIED_SW = frozenset({0x6300, 0x6981, 0x6982, 0x6986, 0x6A82})
BLOCK_OPERATIONS = frozenset({Operation.READ, Operation.WRITE, Operation.VALUE})


def classify(response: Optional[APDUResponse], operation: Operation,
             block: Optional[int] = None) -> Optional[MifareError]:
    """
    Map a response to the error it represents, or None on success.

    Args:
        response: Response returned by the transceiver (None means no response).
        operation: The command family that produced it.
        block: Block address involved, used in messages.

    Returns:
        The matching MifareError instance, or None if the status is 90 00.
    """
    target = f" {block}" if block is not None else ""
    if response is None:
        return TransceiverLost(f"No response to {operation.value}{target}")

    sw = response.sw
    if sw == 0x9000:
        return None

    if operation is Operation.AUTHENTICATE and sw in AUTH_DENIED_SW:
        return AuthDenied(f"Authentication failed for block{target}", sw)
    if operation in BLOCK_OPERATIONS and sw in ACCESS_DENIED_SW:
        return BlockAccessDenied(f"Failed to {operation.value} block{target}", sw, block)
    return MalformedResponse(
        f"Unexpected status for {operation.value}{target} ({response.status_text})", sw
    )


def check(response: Optional[APDUResponse], operation: Operation,
          block: Optional[int] = None,
          expected_length: Optional[int] = None) -> APDUResponse:
    """Raise the classified error for a failed response, otherwise return it."""
    error = classify(response, operation, block)
    if error is not None:
        if isinstance(error, MalformedResponse):
            logger.error("%s", error)
        raise error

    if expected_length is not None and len(response.data) != expected_length:
        error = MalformedResponse(
            f"Expected {expected_length} bytes from {operation.value}, "
            f"got {len(response.data)}", response.sw
        )
        logger.error("%s", error)
        raise error
    return response
