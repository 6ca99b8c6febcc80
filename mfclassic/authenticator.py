"""
Key trial: find the first candidate key that opens a sector.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from .errors import AuthDenied, AuthExhausted, CardError, PreconditionViolation, TransceiverLost
from .keys import Key, KeyStore
from .layout import Card
from .session import AuthContext, MifareClassic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthFailure:
    """
    No candidate key opened the sector. An expected outcome, not a defect.
    error is set when the trial stopped on a reader fault instead of running
    out of keys.
    """
    sector: int
    attempts: int
    error: Optional[CardError] = None

    def to_error(self) -> CardError:
        if self.error is not None:
            return self.error
        return AuthExhausted(self.sector, self.attempts)


@dataclass(frozen=True)
class AuthSuccess:
    context: AuthContext
    attempts: int


AuthResult = Union[AuthSuccess, AuthFailure]


class Authenticator:
    """Tries KeyStore candidates in order until one authenticates a sector."""

    def __init__(self, session: MifareClassic, card: Optional[Card] = None):
        self._session = session
        self._card = card

    def _check_sector(self, sector: int):
        if sector < 0 or (self._card is not None and sector >= self._card.sector_count):
            limit = self._card.sector_count if self._card is not None else "?"
            raise PreconditionViolation(f"Sector {sector} out of range (sector count {limit})")

    def try_keys(self, sector: int, keys: KeyStore) -> AuthResult:
        """
        Try every candidate for a sector, first success wins.

        AuthDenied per attempt is swallowed. Any other card error (a refused
        LOAD KEYS, an unexpected status) ends the trial with an AuthFailure
        carrying the error. TransceiverLost ends the trial and propagates;
        it is never treated as a wrong key.

        Returns:
            AuthSuccess with the live context and the attempt count, or
            AuthFailure with the number of attempts made.
        """
        self._check_sector(sector)
        attempts = 0
        with self._session.lock:
            for key in keys.candidates(sector):
                attempts += 1
                try:
                    context = self._session.authenticate(sector, key)
                except AuthDenied:
                    logger.debug("Sector %d: %s rejected", sector, key.key_type.name)
                    continue
                except TransceiverLost:
                    raise
                except CardError as e:
                    logger.warning("Sector %d: trial stopped after %d attempt(s): %s",
                                   sector, attempts, e)
                    return AuthFailure(sector, attempts, e)
                logger.info("Sector %d authenticated with key %s after %d attempt(s)",
                            sector, key.key_type.name, attempts)
                return AuthSuccess(context, attempts)

        logger.warning("Sector %d: no key matched (%d attempts)", sector, attempts)
        return AuthFailure(sector, attempts)

    def authenticate(self, sector: int, keys: KeyStore) -> Union[AuthContext, AuthFailure]:
        """Return the AuthContext on success, or AuthFailure when keys are exhausted."""
        result = self.try_keys(sector, keys)
        if isinstance(result, AuthSuccess):
            return result.context
        return result

    def require(self, sector: int, keys: KeyStore) -> AuthContext:
        """Like authenticate, but raises AuthExhausted (or the reader fault) on failure."""
        result = self.authenticate(sector, keys)
        if isinstance(result, AuthFailure):
            raise result.to_error()
        return result

    def reauthenticate(self, context: AuthContext) -> AuthContext:
        """
        Re-establish a context with the same sector, type and key, e.g. after
        a NAK dropped the card's crypto state. Raises AuthDenied on a rejected
        key, MalformedResponse on a reader fault.
        """
        key = Key(context.key, context.key_type)
        return self._session.authenticate(context.sector, key)
