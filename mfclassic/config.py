"""Engine configuration."""

import logging
import os

from .keys import KeyType

# Key type tried first when a raw key is expanded into (key, type) candidates.
# Also decides which type a sector ends up authenticated with when both open it.
KEY_TYPE_ORDER = KeyType.parse_order(os.getenv("MFC_KEY_TYPE_ORDER", "AB"))

# Reader volatile key slot used for LOAD KEYS / GENERAL AUTHENTICATE
KEY_SLOT = int(os.getenv("MFC_KEY_SLOT", "0"))

# A NAK on read/write drops the card's crypto state; re-authenticate before
# reading the rest of the sector during a dump
REAUTH_AFTER_NAK = os.getenv("MFC_REAUTH_AFTER_NAK", "1") not in ("0", "false", "no")

LOG_LEVEL = os.getenv("MFC_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Configure root logging for applications embedding the engine."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
