"""Tests for the card session: UID, authentication slot, transport failures."""

import logging

import pytest

from conftest import DEFAULT_KEY, UID, FakeCard
from mfclassic.apdu import ClassicIns
from mfclassic.errors import AuthDenied, MalformedResponse, PreconditionViolation, TransceiverLost
from mfclassic.keys import Key, KeyType
from mfclassic.layout import CardType
from mfclassic.session import MifareClassic

ATR_1K = [0x3B, 0x8F, 0x80, 0x01, 0x80, 0x4F, 0x0C, 0xA0, 0x00, 0x00, 0x03, 0x06,
          0x03, 0x00, 0x01, 0x00, 0x00, 0x00, 0x00, 0x6A]
ATR_ULTRALIGHT = ATR_1K[:13] + [0x00, 0x03] + ATR_1K[15:]

SECRET = bytes.fromhex("112233445566")


class TestReadUid:
    def test_uid(self, session):
        assert session.read_uid() == UID

    def test_bad_uid_length(self):
        session = MifareClassic(FakeCard(uid=bytes(5)))
        with pytest.raises(MalformedResponse):
            session.read_uid()

    def test_no_response(self, fake_card, session):
        fake_card.no_response = True
        with pytest.raises(TransceiverLost):
            session.read_uid()


class TestDetectCard:
    def test_classic_1k(self, session):
        card = session.detect_card(ATR_1K)
        assert card.card_type is CardType.CLASSIC_1K
        assert card.uid == UID
        assert card.atr == tuple(ATR_1K)

    def test_not_classic(self, fake_card, session):
        with pytest.raises(PreconditionViolation, match="Ultralight"):
            session.detect_card(ATR_ULTRALIGHT)
        assert fake_card.frames == []

    def test_override(self, session):
        assert session.detect_card([0x3B, 0x00], CardType.MINI).card_type is CardType.MINI


class TestAuthenticate:
    def test_success_sets_context(self, session):
        context = session.authenticate(1, Key(DEFAULT_KEY, KeyType.B))
        assert context.sector == 1
        assert context.key_type is KeyType.B
        assert context.key == DEFAULT_KEY
        assert session.is_live(context)

    def test_new_auth_invalidates_old_context(self, session):
        first = session.authenticate(1, Key(DEFAULT_KEY))
        second = session.authenticate(1, Key(DEFAULT_KEY))
        assert not session.is_live(first)
        assert session.is_live(second)
        assert first != second

    def test_authenticates_first_block_of_sector(self, fake_card, session):
        session.authenticate(2, Key(DEFAULT_KEY))
        assert fake_card.frames[-1][7] == 8

    def test_wrong_key_clears_context(self, fake_card, session):
        session.authenticate(0, Key(DEFAULT_KEY))
        with pytest.raises(AuthDenied):
            session.authenticate(0, Key(SECRET))
        assert session.context is None

    def test_transceiver_lost_clears_context(self, fake_card, session):
        session.authenticate(0, Key(DEFAULT_KEY))
        fake_card.lose_on_auth_sector = 1
        with pytest.raises(TransceiverLost):
            session.authenticate(1, Key(DEFAULT_KEY))
        assert session.context is None

    def test_load_key_wrong_length(self, fake_card, session):
        with pytest.raises(PreconditionViolation):
            session.load_key(bytes(5))
        assert fake_card.frames == []

    def test_key_never_logged(self, fake_card, session, caplog):
        fake_card.lock_sector(0, KeyType.A, SECRET)
        with caplog.at_level(logging.DEBUG, logger="mfclassic"):
            session.authenticate(0, Key(SECRET))
        assert fake_card.count(ClassicIns.LOAD_KEYS) == 1
        assert "11 22 33 44 55 66" not in caplog.text
        assert "112233445566" not in caplog.text

    def test_context_repr_hides_key(self, session):
        context = session.authenticate(0, Key(DEFAULT_KEY))
        assert "FFFFFFFFFFFF" not in repr(context).upper()
        assert str(context) == "sector 0 / key A"
