"""
MIFARE Classic memory layout: card types, sector/block addressing, block roles.

All Classic variants use 16-byte blocks. Sectors 0-31 hold 4 blocks each;
on a 4K card sectors 32-39 hold 16 blocks each:

    MIFARE Mini:  5 sectors x 4 blocks                    =   20 blocks
    MIFARE 1K:   16 sectors x 4 blocks                    =   64 blocks
    MIFARE 2K:   32 sectors x 4 blocks                    =  128 blocks
    MIFARE 4K:   32 sectors x 4 blocks + 8 x 16 blocks    =  256 blocks

The last block of every sector is the sector trailer (Key A, access bits,
Key B). Block 0 holds the manufacturer data, including the UID.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

BYTES_PER_BLOCK = 16
SMALL_SECTOR_BLOCKS = 4
LARGE_SECTOR_BLOCKS = 16
SMALL_SECTOR_COUNT = 32
MANUFACTURER_BLOCK = 0


class CardType(Enum):
    """MIFARE Classic variants, valued by (name, sector count)."""
    MINI = ("MIFARE Mini", 5)
    CLASSIC_1K = ("MIFARE Classic 1K", 16)
    CLASSIC_2K = ("MIFARE Classic 2K", 32)
    CLASSIC_4K = ("MIFARE Classic 4K", 40)

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def sector_count(self) -> int:
        return self.value[1]

    @property
    def block_count(self) -> int:
        return sector_first_block(self.sector_count)

    def __str__(self):
        return self.label


class BlockRole(Enum):
    MANUFACTURER = "manufacturer"
    DATA = "data"
    TRAILER = "trailer"
    VALUE = "value"


# ─── Addressing ─────────────────────────────────────────────────────────────

def blocks_in_sector(sector: int) -> int:
    """Return the number of blocks in a sector."""
    return SMALL_SECTOR_BLOCKS if sector < SMALL_SECTOR_COUNT else LARGE_SECTOR_BLOCKS


def sector_first_block(sector: int) -> int:
    """Return the first block number for a given sector."""
    if sector < SMALL_SECTOR_COUNT:
        return sector * SMALL_SECTOR_BLOCKS
    return (SMALL_SECTOR_COUNT * SMALL_SECTOR_BLOCKS
            + (sector - SMALL_SECTOR_COUNT) * LARGE_SECTOR_BLOCKS)


def sector_trailer_block(sector: int) -> int:
    """Return the sector trailer block: first block of the next sector minus 1."""
    return sector_first_block(sector + 1) - 1


def block_to_sector(block: int) -> int:
    """Return the sector number for a given block."""
    small_area = SMALL_SECTOR_COUNT * SMALL_SECTOR_BLOCKS
    if block < small_area:
        return block // SMALL_SECTOR_BLOCKS
    return SMALL_SECTOR_COUNT + (block - small_area) // LARGE_SECTOR_BLOCKS


def is_sector_trailer(block: int) -> bool:
    """Check if a block number is a sector trailer."""
    return block == sector_trailer_block(block_to_sector(block))


def block_role(block: int) -> BlockRole:
    """
    Static role of a block. Value blocks are a runtime classification of
    DATA blocks and are never returned here.
    """
    if block == MANUFACTURER_BLOCK:
        return BlockRole.MANUFACTURER
    if is_sector_trailer(block):
        return BlockRole.TRAILER
    return BlockRole.DATA


# ─── Card Model ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Sector:
    """A sector's computed geometry."""
    index: int

    @property
    def first_block(self) -> int:
        return sector_first_block(self.index)

    @property
    def block_count(self) -> int:
        return blocks_in_sector(self.index)

    @property
    def blocks(self) -> List[int]:
        return list(range(self.first_block, self.first_block + self.block_count))

    @property
    def trailer(self) -> int:
        return sector_trailer_block(self.index)

    @property
    def data_blocks(self) -> List[int]:
        """Blocks other than the trailer, manufacturer block included."""
        return self.blocks[:-1]

    def __contains__(self, block: int) -> bool:
        return self.first_block <= block <= self.trailer


@dataclass(frozen=True)
class Card:
    """A detected card: identity and geometry for the current session."""
    uid: bytes
    card_type: CardType
    atr: Tuple[int, ...] = ()

    @property
    def sector_count(self) -> int:
        return self.card_type.sector_count

    @property
    def block_count(self) -> int:
        return self.card_type.block_count

    @property
    def block_size(self) -> int:
        return BYTES_PER_BLOCK

    @property
    def uid_hex(self) -> str:
        return self.uid.hex().upper()

    def sector(self, index: int) -> Sector:
        if not 0 <= index < self.sector_count:
            raise IndexError(f"{self.card_type} has no sector {index}")
        return Sector(index)

    def sectors(self) -> List[Sector]:
        return [Sector(i) for i in range(self.sector_count)]

    def has_block(self, block: int) -> bool:
        return 0 <= block < self.block_count

    def sector_of(self, block: int) -> Optional[Sector]:
        if not self.has_block(block):
            return None
        return Sector(block_to_sector(block))

    def __str__(self):
        return f"{self.card_type} [{self.uid_hex}]"
