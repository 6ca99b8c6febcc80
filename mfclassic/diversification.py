"""
Per-card key derivation for MIFARE Classic deployments.

Many installations do not use a single key for every card; each sector key
is derived from the card UID and a system master secret. Given the secret,
these helpers produce the candidate keys to try, pinned to their sectors.

Two schemes are supported:
- AN10922 AES-128 CMAC diversification, truncated to the 6-byte Classic key.
- HKDF-SHA256 expansion into one 6-byte key per sector.
"""

from typing import Iterable, List, Optional, Sequence

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import HKDF

from .keys import KEY_LENGTH, Key, KeyStore, KeyType

AES_BLOCK = 16
AN10922_AES_CONSTANT = 0x01
AN10922_INPUT_LENGTH = 32


# ─── CMAC Subkey Generation ────────────────────────────────────────────────

def _shift_left(data: bytes) -> bytes:
    """Shift a byte array left by 1 bit."""
    result = bytearray(len(data))
    overflow = 0
    for i in range(len(data) - 1, -1, -1):
        result[i] = ((data[i] << 1) & 0xFF) | overflow
        overflow = 1 if (data[i] & 0x80) else 0
    return bytes(result)


def _generate_cmac_subkeys_aes(key: bytes) -> tuple:
    """
    Generate CMAC subkeys K1, K2 for AES-128.
    Per NIST SP 800-38B / AN10922.
    """
    cipher = AES.new(key, AES.MODE_ECB)
    L = cipher.encrypt(b'\x00' * AES_BLOCK)

    K1 = _shift_left(L)
    if L[0] & 0x80:
        K1 = bytes(a ^ b for a, b in zip(K1, b'\x00' * 15 + b'\x87'))

    K2 = _shift_left(K1)
    if K1[0] & 0x80:
        K2 = bytes(a ^ b for a, b in zip(K2, b'\x00' * 15 + b'\x87'))

    return K1, K2


def _an10922_cmac(key: bytes, message: bytes) -> bytes:
    """
    AES CMAC with the AN10922 padding rule: input shorter than 32 bytes is
    padded with 80 00.. to 32 bytes and the last block is masked with K2,
    otherwise the last block is masked with K1.
    """
    K1, K2 = _generate_cmac_subkeys_aes(key)

    if len(message) < AN10922_INPUT_LENGTH:
        padded = bytearray(message) + bytearray([0x80])
        padded += bytearray(AN10922_INPUT_LENGTH - len(padded))
        subkey = K2
    else:
        padded = bytearray(message)
        subkey = K1

    for i in range(AES_BLOCK):
        padded[-(AES_BLOCK - i)] ^= subkey[i]

    cipher = AES.new(key, AES.MODE_CBC, iv=b'\x00' * AES_BLOCK)
    return cipher.encrypt(bytes(padded))[-AES_BLOCK:]


# ─── Classic Sector Keys ───────────────────────────────────────────────────

def diversify_sector_key(master_key: bytes, uid: bytes, sector: int,
                         key_type: KeyType = KeyType.A,
                         system_identifier: Optional[bytes] = None) -> bytes:
    """
    Derive a 6-byte sector key with AN10922 AES-128 diversification.

    Args:
        master_key: 16-byte AES master key
        uid: card UID (4 or 7 bytes)
        sector: sector number the key protects
        key_type: A or B (part of the diversification input)
        system_identifier: optional installation identifier

    Returns:
        First 6 bytes of the diversified AES key.
    """
    if len(master_key) != AES_BLOCK:
        raise ValueError("Master key must be 16 bytes")

    div_input = bytearray([AN10922_AES_CONSTANT])
    div_input.extend(uid)
    div_input.append(sector & 0xFF)
    div_input.append(int(key_type))
    if system_identifier:
        div_input.extend(system_identifier)
    if len(div_input) > AN10922_INPUT_LENGTH:
        raise ValueError("Diversification input longer than 31 bytes")

    return _an10922_cmac(bytes(master_key), bytes(div_input))[:KEY_LENGTH]


def derive_hkdf_sector_keys(uid: bytes, salt: bytes, context: bytes,
                            sector_count: int = 16) -> List[bytes]:
    """
    Expand the UID into one 6-byte key per sector with HKDF-SHA256.

    Returns:
        A list of sector_count keys, index = sector number.
    """
    raw = HKDF(
        master=uid,
        key_len=KEY_LENGTH,
        salt=salt,
        hashmod=SHA256,
        num_keys=sector_count,
        context=context,
    )
    if isinstance(raw, bytes):
        return [raw]
    return list(raw)


def diversified_keystore(master_key: bytes, uid: bytes, sectors: Iterable[int],
                         key_types: Sequence[KeyType] = (KeyType.A, KeyType.B),
                         system_identifier: Optional[bytes] = None) -> KeyStore:
    """Candidate keys from AN10922 diversification, each pinned to its sector."""
    store = KeyStore()
    for sector in sectors:
        for key_type in key_types:
            value = diversify_sector_key(master_key, uid, sector, key_type, system_identifier)
            store.add(Key(value, key_type, frozenset({sector})))
    return store


def hkdf_keystore(uid: bytes, salt: bytes, context: bytes, sector_count: int = 16,
                  key_types: Sequence[KeyType] = (KeyType.A, KeyType.B)) -> KeyStore:
    """Candidate keys from HKDF expansion, each pinned to its sector."""
    store = KeyStore()
    for sector, value in enumerate(derive_hkdf_sector_keys(uid, salt, context, sector_count)):
        for key_type in key_types:
            store.add(Key(value, key_type, frozenset({sector})))
    return store
