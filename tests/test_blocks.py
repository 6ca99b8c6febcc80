"""Tests for block access under an authenticated context."""

import pytest

from conftest import DEFAULT_KEY
from mfclassic.access_bits import TRANSPORT_CONDITIONS, AccessConditions
from mfclassic.apdu import ClassicIns
from mfclassic.blocks import BlockAccessor
from mfclassic.errors import (
    BlockAccessDenied, MalformedResponse, NotAValueBlock, PreconditionViolation, ValueOverflow,
)
from mfclassic.keys import Key, KeyType
from mfclassic.value_block import INT32_MAX, ValueBlock, decode, encode

DATA = bytes(range(16))


@pytest.fixture
def accessor(session, card):
    return BlockAccessor(session, card)


@pytest.fixture
def context(session):
    return session.authenticate(1, Key(DEFAULT_KEY, KeyType.A))


class TestRead:
    def test_read(self, fake_card, accessor, context):
        fake_card.blocks[5] = DATA
        assert accessor.read(context, 5) == DATA

    def test_block_outside_sector(self, fake_card, accessor, context):
        sent = len(fake_card.frames)
        with pytest.raises(PreconditionViolation):
            accessor.read(context, 8)
        assert len(fake_card.frames) == sent

    def test_block_past_card(self, fake_card, accessor, context):
        with pytest.raises(PreconditionViolation):
            accessor.read(context, 64)

    def test_stale_context(self, fake_card, session, accessor, context):
        session.authenticate(2, Key(DEFAULT_KEY))
        sent = len(fake_card.frames)
        with pytest.raises(PreconditionViolation):
            accessor.read(context, 5)
        assert len(fake_card.frames) == sent

    def test_denied_drops_context(self, fake_card, session, accessor, context):
        fake_card.read_denied.add(5)
        with pytest.raises(BlockAccessDenied) as exc:
            accessor.read(context, 5)
        assert exc.value.block == 5
        assert session.context is None

    def test_short_read(self, fake_card, session, accessor, context):
        fake_card.short_reads.add(6)
        with pytest.raises(MalformedResponse):
            accessor.read(context, 6)
        assert session.is_live(context)


class TestWrite:
    def test_write(self, fake_card, accessor, context):
        accessor.write(context, 6, DATA)
        assert fake_card.blocks[6] == DATA

    def test_manufacturer_block(self, fake_card, session, accessor):
        context = session.authenticate(0, Key(DEFAULT_KEY))
        sent = len(fake_card.frames)
        with pytest.raises(PreconditionViolation, match="Block 0"):
            accessor.write(context, 0, DATA)
        assert len(fake_card.frames) == sent

    def test_trailer_needs_dedicated_call(self, fake_card, accessor, context):
        sent = len(fake_card.frames)
        with pytest.raises(PreconditionViolation, match="trailer"):
            accessor.write(context, 7, DATA)
        assert len(fake_card.frames) == sent

    @pytest.mark.parametrize("length", [0, 15, 17])
    def test_wrong_length(self, fake_card, accessor, context, length):
        sent = len(fake_card.frames)
        with pytest.raises(PreconditionViolation):
            accessor.write(context, 5, bytes(length))
        assert len(fake_card.frames) == sent

    def test_denied(self, fake_card, session, accessor, context):
        fake_card.write_denied.add(5)
        with pytest.raises(BlockAccessDenied):
            accessor.write(context, 5, DATA)
        assert session.context is None


class TestSectorTrailer:
    def test_read(self, accessor, context):
        trailer = accessor.read_sector_trailer(context)
        assert trailer["key_a"] == bytes(6)
        assert trailer["access"] == TRANSPORT_CONDITIONS

    def test_write(self, fake_card, accessor, context):
        key_a = bytes.fromhex("A0A1A2A3A4A5")
        conditions = AccessConditions((0, 0, 0b110, 0b011))
        accessor.write_sector_trailer(context, key_a, conditions, DEFAULT_KEY)
        assert fake_card.blocks[7][:6] == key_a
        assert fake_card.blocks[7][10:] == DEFAULT_KEY

    def test_write_raw_access_bytes(self, fake_card, accessor, context):
        accessor.write_sector_trailer(context, DEFAULT_KEY, bytes.fromhex("FF078069"), DEFAULT_KEY)
        assert fake_card.blocks[7][6:10] == bytes.fromhex("FF078069")

    def test_inconsistent_access_bytes(self, fake_card, accessor, context):
        sent = len(fake_card.frames)
        with pytest.raises(PreconditionViolation):
            accessor.write_sector_trailer(context, DEFAULT_KEY, bytes.fromhex("FF070069"), DEFAULT_KEY)
        assert len(fake_card.frames) == sent

    def test_bad_key_length(self, accessor, context):
        with pytest.raises(PreconditionViolation):
            accessor.write_sector_trailer(context, bytes(5), TRANSPORT_CONDITIONS, DEFAULT_KEY)


class TestValueBlocks:
    def test_init_defaults_address_to_block(self, fake_card, accessor, context):
        accessor.init_value_block(context, 5, 100)
        assert decode(fake_card.blocks[5]) == ValueBlock(100, 5)

    def test_read_value(self, fake_card, accessor, context):
        fake_card.blocks[5] = encode(ValueBlock(-7, 1))
        assert accessor.read_value(context, 5) == ValueBlock(-7, 1)

    def test_read_value_plain_data(self, fake_card, accessor, context):
        fake_card.blocks[5] = DATA
        with pytest.raises(NotAValueBlock):
            accessor.read_value(context, 5)

    def test_increment(self, fake_card, accessor, context):
        accessor.init_value_block(context, 5, 100)
        assert accessor.increment(context, 5, 5) == ValueBlock(105, 5)
        assert decode(fake_card.blocks[5]).value == 105

    def test_decrement(self, fake_card, accessor, context):
        accessor.init_value_block(context, 6, 10)
        assert accessor.decrement(context, 6, 3).value == 7
        assert decode(fake_card.blocks[6]).value == 7

    def test_overflow_sends_nothing(self, fake_card, accessor, context):
        accessor.init_value_block(context, 5, INT32_MAX)
        with pytest.raises(ValueOverflow):
            accessor.increment(context, 5, 1)
        assert fake_card.count(ClassicIns.VALUE_BLOCK) == 0
        assert decode(fake_card.blocks[5]).value == INT32_MAX

    def test_increment_plain_data(self, fake_card, accessor, context):
        fake_card.blocks[5] = DATA
        with pytest.raises(NotAValueBlock):
            accessor.increment(context, 5, 1)
        assert fake_card.count(ClassicIns.VALUE_BLOCK) == 0

    def test_negative_amount(self, fake_card, accessor, context):
        with pytest.raises(PreconditionViolation):
            accessor.decrement(context, 5, -1)

    def test_increment_trailer(self, accessor, context):
        with pytest.raises(PreconditionViolation):
            accessor.increment(context, 7, 1)

    def test_restore(self, fake_card, accessor, context):
        accessor.init_value_block(context, 5, 42)
        accessor.restore(context, 5, 6)
        assert decode(fake_card.blocks[6]).value == 42

    def test_restore_across_sectors(self, accessor, context):
        accessor.init_value_block(context, 5, 42)
        with pytest.raises(PreconditionViolation):
            accessor.restore(context, 5, 8)
