"""Clarity value consensus serialization used by read-only calls and arguments."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

from proofrail_agent.ledger.c32 import C32AddressError, c32_address, c32_address_decode

_INT128_MIN = -(1 << 127)
_INT128_MAX = (1 << 127) - 1
_UINT128_MAX = (1 << 128) - 1
_MAX_CONTRACT_NAME_LENGTH = 128
_MAX_TUPLE_KEY_LENGTH = 128


class ClarityType(IntEnum):
    """Wire type prefixes of serialized Clarity values."""

    INT = 0x00
    UINT = 0x01
    BUFFER = 0x02
    BOOL_TRUE = 0x03
    BOOL_FALSE = 0x04
    PRINCIPAL_STANDARD = 0x05
    PRINCIPAL_CONTRACT = 0x06
    RESPONSE_OK = 0x07
    RESPONSE_ERR = 0x08
    OPTIONAL_NONE = 0x09
    OPTIONAL_SOME = 0x0A
    LIST = 0x0B
    TUPLE = 0x0C
    STRING_ASCII = 0x0D
    STRING_UTF8 = 0x0E


class ClarityDecodeError(ValueError):
    """Raised when bytes are not a well-formed Clarity value."""


@dataclass(frozen=True, slots=True)
class CInt:
    value: int


@dataclass(frozen=True, slots=True)
class CUInt:
    value: int


@dataclass(frozen=True, slots=True)
class CBool:
    value: bool


@dataclass(frozen=True, slots=True)
class CBuffer:
    value: bytes


@dataclass(frozen=True, slots=True)
class CString:
    value: str
    utf8: bool = False


@dataclass(frozen=True, slots=True)
class CPrincipal:
    """Standard principal, or contract principal when ``contract_name`` is set."""

    address: str
    contract_name: str | None = None

    def __str__(self) -> str:
        if self.contract_name is None:
            return self.address
        return f"{self.address}.{self.contract_name}"

    @classmethod
    def parse(cls, value: str) -> CPrincipal:
        """Parse ``ADDRESS`` or ``ADDRESS.contract-name``."""

        address, separator, name = value.strip().partition(".")
        try:
            c32_address_decode(address)
        except C32AddressError as error:
            raise ValueError(f"Invalid principal {value!r}: {error}") from error
        if separator and not name:
            raise ValueError(f"Invalid principal {value!r}: empty contract name")
        return cls(address=address, contract_name=name or None)


@dataclass(frozen=True, slots=True)
class CResponse:
    ok: bool
    value: ClarityValue


@dataclass(frozen=True, slots=True)
class COptional:
    value: ClarityValue | None = None


@dataclass(frozen=True, slots=True)
class CList:
    items: tuple[ClarityValue, ...] = ()


@dataclass(frozen=True, slots=True)
class CTuple:
    fields: dict[str, ClarityValue] = field(default_factory=dict)


ClarityValue = (
    CInt | CUInt | CBool | CBuffer | CString | CPrincipal | CResponse | COptional | CList | CTuple
)


def serialize(value: ClarityValue) -> bytes:  # noqa: C901, PLR0911, PLR0912
    """Serialize a Clarity value into its consensus byte form."""

    if isinstance(value, CUInt):
        if not 0 <= value.value <= _UINT128_MAX:
            raise ValueError(f"uint out of range: {value.value}")
        return bytes([ClarityType.UINT]) + value.value.to_bytes(16, "big")
    if isinstance(value, CInt):
        if not _INT128_MIN <= value.value <= _INT128_MAX:
            raise ValueError(f"int out of range: {value.value}")
        return bytes([ClarityType.INT]) + value.value.to_bytes(16, "big", signed=True)
    if isinstance(value, CBool):
        return bytes([ClarityType.BOOL_TRUE if value.value else ClarityType.BOOL_FALSE])
    if isinstance(value, CBuffer):
        return bytes([ClarityType.BUFFER]) + _u32(len(value.value)) + value.value
    if isinstance(value, CString):
        if value.utf8:
            encoded = value.value.encode("utf-8")
            return bytes([ClarityType.STRING_UTF8]) + _u32(len(encoded)) + encoded
        encoded = value.value.encode("ascii")
        return bytes([ClarityType.STRING_ASCII]) + _u32(len(encoded)) + encoded
    if isinstance(value, CPrincipal):
        version, hash160 = c32_address_decode(value.address)
        if value.contract_name is None:
            return bytes([ClarityType.PRINCIPAL_STANDARD, version]) + hash160
        name = value.contract_name.encode("ascii")
        if len(name) > _MAX_CONTRACT_NAME_LENGTH:
            raise ValueError(f"Contract name too long: {value.contract_name!r}")
        prefix = bytes([ClarityType.PRINCIPAL_CONTRACT, version])
        return prefix + hash160 + bytes([len(name)]) + name
    if isinstance(value, CResponse):
        prefix = ClarityType.RESPONSE_OK if value.ok else ClarityType.RESPONSE_ERR
        return bytes([prefix]) + serialize(value.value)
    if isinstance(value, COptional):
        if value.value is None:
            return bytes([ClarityType.OPTIONAL_NONE])
        return bytes([ClarityType.OPTIONAL_SOME]) + serialize(value.value)
    if isinstance(value, CList):
        body = b"".join(serialize(item) for item in value.items)
        return bytes([ClarityType.LIST]) + _u32(len(value.items)) + body
    if isinstance(value, CTuple):
        parts = [bytes([ClarityType.TUPLE]), _u32(len(value.fields))]
        for key in sorted(value.fields):
            encoded_key = key.encode("ascii")
            parts.append(bytes([len(encoded_key)]) + encoded_key)
            parts.append(serialize(value.fields[key]))
        return b"".join(parts)
    raise TypeError(f"Unsupported Clarity value: {value!r}")


def deserialize(data: bytes) -> ClarityValue:
    """Deserialize exactly one Clarity value, rejecting trailing bytes."""

    reader = _Reader(data)
    value = reader.read_value()
    if reader.remaining:
        raise ClarityDecodeError(f"{reader.remaining} trailing byte(s) after Clarity value")
    return value


def to_hex(value: ClarityValue) -> str:
    """Serialize to the ``0x``-prefixed hex form used by the node API."""

    return "0x" + serialize(value).hex()


def from_hex(text: str) -> ClarityValue:
    """Deserialize a ``0x``-prefixed (or bare) hex string."""

    raw = text[2:] if text.startswith(("0x", "0X")) else text
    try:
        data = bytes.fromhex(raw)
    except ValueError as error:
        raise ClarityDecodeError(f"Invalid hex in Clarity value: {text[:32]!r}") from error
    return deserialize(data)


def _u32(length: int) -> bytes:
    return struct.pack(">I", length)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def take(self, size: int) -> bytes:
        if size > self.remaining:
            raise ClarityDecodeError(
                f"Unexpected end of Clarity value at offset {self._offset} "
                f"(wanted {size} byte(s), have {self.remaining})",
            )
        chunk = self._data[self._offset : self._offset + size]
        self._offset += size
        return chunk

    def read_u8(self) -> int:
        return self.take(1)[0]

    def read_u32(self) -> int:
        return struct.unpack(">I", self.take(4))[0]

    def read_principal(self) -> str:
        version = self.read_u8()
        try:
            return c32_address(version, self.take(20))
        except C32AddressError as error:
            raise ClarityDecodeError(str(error)) from error

    def read_value(self) -> ClarityValue:  # noqa: C901, PLR0911
        type_id = self.read_u8()
        try:
            kind = ClarityType(type_id)
        except ValueError as error:
            raise ClarityDecodeError(f"Unknown Clarity type prefix: 0x{type_id:02x}") from error

        if kind is ClarityType.UINT:
            return CUInt(int.from_bytes(self.take(16), "big"))
        if kind is ClarityType.INT:
            return CInt(int.from_bytes(self.take(16), "big", signed=True))
        if kind is ClarityType.BOOL_TRUE:
            return CBool(True)
        if kind is ClarityType.BOOL_FALSE:
            return CBool(False)
        if kind is ClarityType.BUFFER:
            return CBuffer(self.take(self.read_u32()))
        if kind in (ClarityType.STRING_ASCII, ClarityType.STRING_UTF8):
            utf8 = kind is ClarityType.STRING_UTF8
            raw = self.take(self.read_u32())
            try:
                return CString(raw.decode("utf-8" if utf8 else "ascii"), utf8=utf8)
            except UnicodeDecodeError as error:
                raise ClarityDecodeError(f"Invalid string payload: {error}") from error
        if kind is ClarityType.PRINCIPAL_STANDARD:
            return CPrincipal(self.read_principal())
        if kind is ClarityType.PRINCIPAL_CONTRACT:
            address = self.read_principal()
            name = self.take(self.read_u8()).decode("ascii", errors="replace")
            return CPrincipal(address, contract_name=name)
        if kind in (ClarityType.RESPONSE_OK, ClarityType.RESPONSE_ERR):
            return CResponse(ok=kind is ClarityType.RESPONSE_OK, value=self.read_value())
        if kind is ClarityType.OPTIONAL_NONE:
            return COptional(None)
        if kind is ClarityType.OPTIONAL_SOME:
            return COptional(self.read_value())
        if kind is ClarityType.LIST:
            count = self.read_u32()
            return CList(tuple(self.read_value() for _ in range(count)))

        count = self.read_u32()
        fields: dict[str, ClarityValue] = {}
        for _ in range(count):
            key_length = self.read_u8()
            if key_length > _MAX_TUPLE_KEY_LENGTH:
                raise ClarityDecodeError(f"Tuple key too long: {key_length}")
            key = self.take(key_length).decode("ascii", errors="replace")
            fields[key] = self.read_value()
        return CTuple(fields)
