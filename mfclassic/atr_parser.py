"""
ATR (Answer To Reset) parser.
Identifies MIFARE Classic variants from the ATR that PC/SC readers
synthesise for contactless storage cards (PC/SC part 3, section 3.1.3.2.3).

    3B 8F 80 01 80 4F 0C A0 00 00 03 06 SS NN NN 00 00 00 00 TCK
                      |  RID         |  |  card name
                      AID length     standard
"""

from typing import Dict, List, Optional

from .apdu import bytes_to_hex
from .layout import CardType

PCSC_RID = [0xA0, 0x00, 0x00, 0x03, 0x06]

# Standard byte 0x03: ISO 14443 A part 3
STANDARD_ISO14443A_3 = 0x03

# PC/SC card name -> Classic layout. MIFARE Plus in SL1 behaves as a Classic card.
CARD_NAMES = {
    0x0001: CardType.CLASSIC_1K,
    0x0002: CardType.CLASSIC_4K,
    0x0026: CardType.MINI,
    0x0036: CardType.CLASSIC_2K,
    0x0037: CardType.CLASSIC_4K,
}

OTHER_CARD_NAMES = {
    0x0003: "MIFARE Ultralight",
    0x003A: "MIFARE Ultralight C",
    0x0030: "Topaz/Jewel",
    0x0038: "MIFARE Plus SL2 2K",
    0x0039: "MIFARE Plus SL2 4K",
}


class ATRInfo:
    """Parsed ATR information."""

    def __init__(self, atr_bytes: List[int]):
        self.raw = list(atr_bytes)
        self.hex = bytes_to_hex(self.raw)
        self.historical_bytes: List[int] = []
        self.standard: Optional[int] = None
        self.card_name: Optional[int] = None
        self.card_type: Optional[CardType] = None
        self._parse()

    def _parse(self):
        """Parse ATR bytes."""
        if len(self.raw) < 2:
            return

        # Format byte T0: low nibble is the number of historical bytes
        t0 = self.raw[1]
        num_historical = t0 & 0x0F

        # Skip interface bytes (Yi present based on T0)
        offset = 2
        y = t0 >> 4
        while y:
            if y & 0x1: offset += 1  # TAi
            if y & 0x2: offset += 1  # TBi
            if y & 0x4: offset += 1  # TCi
            if y & 0x8:
                if offset < len(self.raw):
                    y = self.raw[offset] >> 4
                    offset += 1
                else:
                    break
            else:
                break

        if offset < len(self.raw):
            end = min(offset + num_historical, len(self.raw))
            self.historical_bytes = self.raw[offset:end]

        # Historical bytes: 80 4F <len> <RID(5)> <SS> <NN NN> ...
        hist = self.historical_bytes
        if len(hist) >= 11 and hist[0] == 0x80 and hist[1] == 0x4F and hist[3:8] == PCSC_RID:
            self.standard = hist[8]
            self.card_name = (hist[9] << 8) | hist[10]
            self.card_type = CARD_NAMES.get(self.card_name)

    @property
    def is_classic(self) -> bool:
        return self.card_type is not None

    @property
    def description(self) -> str:
        if self.card_type is not None:
            return self.card_type.label
        if self.card_name is not None:
            return OTHER_CARD_NAMES.get(self.card_name, f"Unknown storage card (0x{self.card_name:04X})")
        return "Not a PC/SC storage card"

    def to_dict(self) -> Dict:
        """Return ATR info as dictionary."""
        return {
            "ATR": self.hex,
            "Card Type": self.description,
            "Card Name": f"0x{self.card_name:04X}" if self.card_name is not None else "None",
            "Historical Bytes": bytes_to_hex(self.historical_bytes) if self.historical_bytes else "None",
        }

    def __str__(self):
        return f"{self.description} [{self.hex}]"


def identify_card_type(atr_bytes: List[int]) -> Optional[CardType]:
    """Return the Classic layout for an ATR, or None for other card families."""
    return ATRInfo(atr_bytes).card_type
