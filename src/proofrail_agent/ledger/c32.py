"""Crockford base32 (c32check) encoding of Stacks account addresses."""

from __future__ import annotations

import hashlib

C32_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
HASH160_LENGTH = 20
_CHECKSUM_LENGTH = 4


class C32AddressError(ValueError):
    """Raised when a string is not a valid c32check address."""


def c32_encode(data: bytes) -> str:
    """Encode bytes as c32, keeping one leading '0' per leading zero byte."""

    value = int.from_bytes(data, "big")
    digits: list[str] = []
    while value > 0:
        value, remainder = divmod(value, 32)
        digits.append(C32_ALPHABET[remainder])
    leading_zero_bytes = len(data) - len(data.lstrip(b"\x00"))
    return "0" * leading_zero_bytes + "".join(reversed(digits))


def c32_decode(text: str) -> bytes:
    """Decode a c32 string produced by :func:`c32_encode`."""

    normalized = _normalize(text)
    value = 0
    for char in normalized:
        index = C32_ALPHABET.find(char)
        if index < 0:
            raise C32AddressError(f"Invalid c32 character {char!r} in {text!r}")
        value = value * 32 + index
    leading_zero_chars = len(normalized) - len(normalized.lstrip("0"))
    body = value.to_bytes((value.bit_length() + 7) // 8, "big") if value else b""
    return b"\x00" * leading_zero_chars + body


def c32_address(version: int, hash160: bytes) -> str:
    """Render a (version, hash160) pair as an ``S...`` address."""

    if not 0 <= version < len(C32_ALPHABET):
        raise C32AddressError(f"Address version out of range: {version}")
    if len(hash160) != HASH160_LENGTH:
        raise C32AddressError(f"hash160 must be {HASH160_LENGTH} bytes, got {len(hash160)}")
    checksum = _checksum(bytes([version]) + hash160)
    return "S" + C32_ALPHABET[version] + c32_encode(hash160 + checksum)


def c32_address_decode(address: str) -> tuple[int, bytes]:
    """Parse an ``S...`` address back into ``(version, hash160)``."""

    normalized = _normalize(address)
    if len(normalized) < 3 or not normalized.startswith("S"):  # noqa: PLR2004
        raise C32AddressError(f"Not a Stacks address: {address!r}")
    version = C32_ALPHABET.find(normalized[1])
    if version < 0:
        raise C32AddressError(f"Invalid address version character in {address!r}")
    payload = c32_decode(normalized[2:])
    if len(payload) != HASH160_LENGTH + _CHECKSUM_LENGTH:
        raise C32AddressError(f"Invalid address length: {address!r}")
    hash160, checksum = payload[:HASH160_LENGTH], payload[HASH160_LENGTH:]
    if _checksum(bytes([version]) + hash160) != checksum:
        raise C32AddressError(f"Address checksum mismatch: {address!r}")
    return version, hash160


def _checksum(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()[:_CHECKSUM_LENGTH]


def _normalize(text: str) -> str:
    return text.strip().upper().replace("O", "0").replace("L", "1").replace("I", "1")
