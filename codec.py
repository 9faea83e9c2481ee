"""Symmetric encryption for sensitive scalar columns.

Values are stored as ``iv_hex:ciphertext_hex`` using AES-256-CBC with PKCS7
padding and a fresh IV per call. Decryption never raises: rows written before
encryption was introduced are returned as they are.
"""

from __future__ import annotations

import binascii
import logging
import math
import os
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Optional, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from config import get_settings


logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16

Scalar = Union[str, int, float, Decimal]


def derive_key(secret: str) -> bytes:
    try:
        as_hex = bytes.fromhex(secret)
    except ValueError:
        as_hex = b""
    if len(as_hex) == KEY_LENGTH:
        return as_hex

    raw = secret.encode("utf-8")
    if len(raw) == KEY_LENGTH:
        return raw

    logger.warning(
        f"codec_key: secret length {len(raw)} adjusted to {KEY_LENGTH} bytes"
    )
    return raw[:KEY_LENGTH].ljust(KEY_LENGTH, b"\0")


def looks_encrypted(text: Optional[str]) -> bool:
    """True when ``text`` has the ``iv_hex:ciphertext_hex`` shape."""
    if not text:
        return False
    parts = text.split(":")
    if len(parts) != 2:
        return False
    iv_hex, cipher_hex = parts
    block_hex = algorithms.AES.block_size // 4
    if len(iv_hex) != IV_LENGTH * 2 or not cipher_hex or len(cipher_hex) % block_hex:
        return False
    try:
        bytes.fromhex(iv_hex)
        bytes.fromhex(cipher_hex)
    except ValueError:
        return False
    return True


class FieldCodec:
    def __init__(self, secret: str) -> None:
        self._key = derive_key(secret)

    def encrypt(self, value: Optional[Scalar]) -> Optional[str]:
        if value is None:
            return None
        plaintext = str(value).encode("utf-8")
        iv = os.urandom(IV_LENGTH)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, text: Optional[str]) -> Optional[str]:
        if not text:
            return text
        parts = text.split(":")
        if len(parts) != 2:
            return text
        try:
            iv = binascii.unhexlify(parts[0])
            ciphertext = binascii.unhexlify(parts[1])
            decryptor = Cipher(
                algorithms.AES(self._key), modes.CBC(iv)
            ).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (binascii.Error, ValueError, UnicodeDecodeError):
            logger.debug("codec_decrypt: returning raw value")
            return text

    def decrypt_to_number(self, text: Optional[str]) -> float:
        if text is None:
            return 0.0
        try:
            result = float(self.decrypt(text))
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(result) or math.isinf(result):
            return 0.0
        return result

    def decrypt_to_decimal(self, text: Optional[str]) -> Decimal:
        if text is None:
            return Decimal("0")
        try:
            result = Decimal(self.decrypt(text).strip())
        except (AttributeError, InvalidOperation):
            return Decimal("0")
        if not result.is_finite():
            return Decimal("0")
        return result


@lru_cache(maxsize=1)
def get_codec() -> FieldCodec:
    return FieldCodec(get_settings().encryption_key)


def encrypt(value: Optional[Scalar]) -> Optional[str]:
    return get_codec().encrypt(value)


def decrypt(text: Optional[str]) -> Optional[str]:
    return get_codec().decrypt(text)


def decrypt_to_number(text: Optional[str]) -> float:
    return get_codec().decrypt_to_number(text)


def decrypt_to_decimal(text: Optional[str]) -> Decimal:
    return get_codec().decrypt_to_decimal(text)
