"""
PC/SC transceiver.
Wraps a connected pyscard CardConnection as the transmit function the
MIFARE Classic session expects. Reader enumeration and connecting are left to
the caller.
"""

import logging
import threading
from typing import List, Optional

from .apdu import APDUCommand, APDUResponse
from .errors import TransceiverLost

# Try to import pyscard
try:
    from smartcard.CardConnection import CardConnection
    from smartcard.Exceptions import CardConnectionException, NoCardException
    PYSCARD_AVAILABLE = True
    _LOST_ERRORS = (CardConnectionException, NoCardException)
except ImportError:
    PYSCARD_AVAILABLE = False
    _LOST_ERRORS = ()

logger = logging.getLogger(__name__)


class PcscTransceiver:
    """Sends APDUs over an already connected pyscard connection."""

    def __init__(self, connection: "CardConnection"):
        if not PYSCARD_AVAILABLE:
            raise RuntimeError("pyscard required for PC/SC access")
        self._connection = connection
        self._lock = threading.Lock()
        self._connected = True

    @property
    def is_connected(self) -> bool:
        return self._connected

    def get_atr(self) -> List[int]:
        """Get the ATR of the connected card."""
        if not self._connected:
            raise TransceiverLost("Card connection closed")
        try:
            return list(self._connection.getATR())
        except _LOST_ERRORS as e:
            self._connected = False
            raise TransceiverLost(f"Could not read ATR: {e}") from e

    def transmit(self, apdu: APDUCommand) -> Optional[APDUResponse]:
        """Send an APDU command and get the response."""
        return self.transmit_raw(apdu.to_bytes())

    def transmit_raw(self, raw_apdu: List[int]) -> Optional[APDUResponse]:
        """Send raw APDU bytes and get the response."""
        if not self._connected:
            raise TransceiverLost("Card connection closed")

        with self._lock:
            try:
                data, sw1, sw2 = self._connection.transmit([int(b) for b in raw_apdu])
            except _LOST_ERRORS as e:
                self._connected = False
                logger.error("PC/SC transmit failed: %s", e)
                raise TransceiverLost(f"Card connection lost: {e}") from e
        return APDUResponse(list(data), sw1, sw2)

    def disconnect(self):
        """Disconnect from the card."""
        if self._connected:
            self._connected = False
            try:
                self._connection.disconnect()
            except _LOST_ERRORS as e:
                logger.debug("Disconnect after card loss: %s", e)
