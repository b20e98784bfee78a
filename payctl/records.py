"""Fixed-offset decoders for payment program accounts.

Every record is described by a :class:`Schema`: an ordered list of fields,
each with a byte offset, a byte length and a semantic kind. Decoding checks
the buffer length up front so a short buffer never yields a partly filled
record. Role records (server signers and relayers) share one 42-byte layout
and are told apart by their 8-byte leading discriminator.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import struct
from typing import Any, Callable, Dict, Optional, Tuple, Union

from solders.pubkey import Pubkey

from .constants import (
    CONFIG_AUTHORITY_OFFSET,
    CONFIG_BUMP_OFFSET,
    CONFIG_DISCRIMINATOR,
    CONFIG_EMERGENCY_ADMIN_OFFSET,
    CONFIG_FEE_RECIPIENT_OFFSET,
    CONFIG_PAUSED_OFFSET,
    DISCRIMINATOR_LEN,
    LOADER_PROGRAM_DATA_HEADER_SIZE,
    LOADER_PROGRAM_DATA_TAG,
    LOADER_PROGRAM_SIZE,
    LOADER_PROGRAM_TAG,
    PUBKEY_LEN,
    RELAYER_DISCRIMINATOR,
    ROLE_ACTIVE_OFFSET,
    ROLE_BUMP_OFFSET,
    ROLE_IDENTITY_OFFSET,
    SERVER_SIGNER_DISCRIMINATOR,
)
from .errors import MalformedAccount, UnknownRecordKind

KIND_IDENTITY = "identity"
KIND_FLAG = "flag"
KIND_BYTE = "byte"

_KIND_LENGTHS = {KIND_IDENTITY: PUBKEY_LEN, KIND_FLAG: 1, KIND_BYTE: 1}


@dataclass(frozen=True)
class Field:
    name: str
    offset: int
    length: int
    kind: str

    def __post_init__(self) -> None:
        expected = _KIND_LENGTHS.get(self.kind)
        if expected is None:
            raise ValueError(f"unknown field kind: {self.kind}")
        if self.length != expected:
            raise ValueError(f"{self.name}: {self.kind} fields are {expected} bytes")


@dataclass(frozen=True)
class Schema:
    name: str
    fields: Tuple[Field, ...]

    @property
    def size(self) -> int:
        return max(f.offset + f.length for f in self.fields)


CONFIG_SCHEMA = Schema(
    name="Config",
    fields=(
        Field("authority", CONFIG_AUTHORITY_OFFSET, PUBKEY_LEN, KIND_IDENTITY),
        Field("emergency_admin", CONFIG_EMERGENCY_ADMIN_OFFSET, PUBKEY_LEN, KIND_IDENTITY),
        Field("fee_recipient", CONFIG_FEE_RECIPIENT_OFFSET, PUBKEY_LEN, KIND_IDENTITY),
        Field("paused", CONFIG_PAUSED_OFFSET, 1, KIND_FLAG),
        Field("bump", CONFIG_BUMP_OFFSET, 1, KIND_BYTE),
    ),
)

ROLE_SCHEMA = Schema(
    name="RoleRecord",
    fields=(
        Field("identity", ROLE_IDENTITY_OFFSET, PUBKEY_LEN, KIND_IDENTITY),
        Field("is_active", ROLE_ACTIVE_OFFSET, 1, KIND_FLAG),
        Field("bump", ROLE_BUMP_OFFSET, 1, KIND_BYTE),
    ),
)


def decode_fields(data: bytes, schema: Schema) -> Dict[str, Any]:
    if len(data) < schema.size:
        raise MalformedAccount(
            f"{schema.name} account is {len(data)} bytes, layout needs {schema.size}"
        )
    out: Dict[str, Any] = {}
    for field in schema.fields:
        chunk = bytes(data[field.offset : field.offset + field.length])
        if field.kind == KIND_IDENTITY:
            out[field.name] = Pubkey.from_bytes(chunk)
        elif field.kind == KIND_FLAG:
            if chunk[0] not in (0, 1):
                raise MalformedAccount(f"{schema.name}.{field.name} is not a bool: {chunk[0]}")
            out[field.name] = chunk[0] == 1
        else:
            out[field.name] = chunk[0]
    return out


def encode_fields(values: Dict[str, Any], schema: Schema, discriminator: bytes = b"") -> bytes:
    buf = bytearray(schema.size)
    buf[: len(discriminator)] = discriminator
    for field in schema.fields:
        value = values[field.name]
        if field.kind == KIND_IDENTITY:
            raw = bytes(value)
        elif field.kind == KIND_FLAG:
            raw = b"\x01" if value else b"\x00"
        else:
            raw = bytes([int(value) & 0xFF])
        buf[field.offset : field.offset + field.length] = raw
    return bytes(buf)


# ── Records ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConfigRecord:
    authority: Pubkey
    emergency_admin: Pubkey
    fee_recipient: Pubkey
    paused: bool
    bump: int


@dataclass(frozen=True)
class ServerSignerRecord:
    signer: Pubkey
    is_active: bool
    bump: int


@dataclass(frozen=True)
class RelayerRecord:
    relayer: Pubkey
    is_active: bool
    bump: int


RoleRecord = Union[ServerSignerRecord, RelayerRecord]


def decode_config(data: bytes) -> ConfigRecord:
    return ConfigRecord(**decode_fields(data, CONFIG_SCHEMA))


def encode_config(record: ConfigRecord) -> bytes:
    values = {
        "authority": record.authority,
        "emergency_admin": record.emergency_admin,
        "fee_recipient": record.fee_recipient,
        "paused": record.paused,
        "bump": record.bump,
    }
    return encode_fields(values, CONFIG_SCHEMA, CONFIG_DISCRIMINATOR)


def decode_server_signer(data: bytes) -> ServerSignerRecord:
    fields = decode_fields(data, ROLE_SCHEMA)
    return ServerSignerRecord(signer=fields["identity"], is_active=fields["is_active"], bump=fields["bump"])


def decode_relayer(data: bytes) -> RelayerRecord:
    fields = decode_fields(data, ROLE_SCHEMA)
    return RelayerRecord(relayer=fields["identity"], is_active=fields["is_active"], bump=fields["bump"])


class RoleKind(Enum):
    SERVER_SIGNER = "server_signer"
    RELAYER = "relayer"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


ROLE_DISCRIMINATORS: Dict[bytes, RoleKind] = {
    SERVER_SIGNER_DISCRIMINATOR: RoleKind.SERVER_SIGNER,
    RELAYER_DISCRIMINATOR: RoleKind.RELAYER,
}

ROLE_DECODERS: Dict[RoleKind, Callable[[bytes], RoleRecord]] = {
    RoleKind.SERVER_SIGNER: decode_server_signer,
    RoleKind.RELAYER: decode_relayer,
}


def classify_role_record(data: bytes) -> Optional[RoleKind]:
    """Return the role kind for ``data``, or ``None`` for an unknown tag."""
    if len(data) < DISCRIMINATOR_LEN:
        raise MalformedAccount(f"account is {len(data)} bytes, too short for a discriminator")
    return ROLE_DISCRIMINATORS.get(bytes(data[:DISCRIMINATOR_LEN]))


def decode_role_record(data: bytes) -> Tuple[RoleKind, RoleRecord]:
    kind = classify_role_record(data)
    if kind is None:
        raise UnknownRecordKind(bytes(data[:DISCRIMINATOR_LEN]))
    return kind, ROLE_DECODERS[kind](data)


def encode_role_record(kind: RoleKind, identity: Pubkey, is_active: bool, bump: int) -> bytes:
    discriminator = {v: k for k, v in ROLE_DISCRIMINATORS.items()}[kind]
    values = {"identity": identity, "is_active": is_active, "bump": bump}
    return encode_fields(values, ROLE_SCHEMA, discriminator)


# ── Upgradeable loader ─────────────────────────────────────────────


@dataclass(frozen=True)
class ProgramDataRecord:
    slot: int
    upgrade_authority: Optional[Pubkey]


def decode_loader_program(data: bytes) -> Pubkey:
    """Return the ProgramData address stored in an upgradeable program account."""
    if len(data) < LOADER_PROGRAM_SIZE:
        raise MalformedAccount(f"program account is {len(data)} bytes, expected {LOADER_PROGRAM_SIZE}")
    (tag,) = struct.unpack_from("<I", data, 0)
    if tag != LOADER_PROGRAM_TAG:
        raise MalformedAccount(f"program account tag is {tag}, expected {LOADER_PROGRAM_TAG}")
    return Pubkey.from_bytes(bytes(data[4:LOADER_PROGRAM_SIZE]))


def decode_program_data(data: bytes) -> ProgramDataRecord:
    if len(data) < LOADER_PROGRAM_DATA_HEADER_SIZE:
        raise MalformedAccount(
            f"program data is {len(data)} bytes, header needs {LOADER_PROGRAM_DATA_HEADER_SIZE}"
        )
    tag, slot, has_authority = struct.unpack_from("<IQB", data, 0)
    if tag != LOADER_PROGRAM_DATA_TAG:
        raise MalformedAccount(f"program data tag is {tag}, expected {LOADER_PROGRAM_DATA_TAG}")
    if has_authority not in (0, 1):
        raise MalformedAccount(f"program data authority option is {has_authority}")
    authority = Pubkey.from_bytes(bytes(data[13:45])) if has_authority else None
    return ProgramDataRecord(slot=slot, upgrade_authority=authority)
