"""Address derivation and identity helpers for the payment program."""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import List, Sequence, Tuple

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .constants import DEFAULT_SEEDS, MAX_SEED_LEN, MAX_SEEDS, PUBKEY_LEN, SeedSet
from .errors import AddressDerivationError

SECRET_KEY_LEN = 64
SEED_KEY_LEN = 32


@dataclass(frozen=True)
class DerivedAddress:
    program_id: Pubkey
    seeds: Tuple[bytes, ...]
    address: Pubkey
    bump: int


def _check_seeds(seeds: Sequence[bytes]) -> Tuple[bytes, ...]:
    # One slot is reserved for the bump byte.
    if len(seeds) > MAX_SEEDS - 1:
        raise AddressDerivationError(f"too many seeds: {len(seeds)} (max {MAX_SEEDS - 1})")
    checked: List[bytes] = []
    for idx, seed in enumerate(seeds):
        if not isinstance(seed, (bytes, bytearray)):
            raise AddressDerivationError(f"seed {idx} must be bytes")
        if len(seed) > MAX_SEED_LEN:
            raise AddressDerivationError(f"seed {idx} is {len(seed)} bytes (max {MAX_SEED_LEN})")
        checked.append(bytes(seed))
    return tuple(checked)


def derive_address(program_id: Pubkey, seeds: Sequence[bytes]) -> DerivedAddress:
    checked = _check_seeds(seeds)
    address, bump = Pubkey.find_program_address(list(checked), program_id)
    return DerivedAddress(program_id=program_id, seeds=checked, address=address, bump=bump)


def derive_config(program_id: Pubkey, seeds: SeedSet = DEFAULT_SEEDS) -> DerivedAddress:
    return derive_address(program_id, [seeds.config])


def derive_server_signer(
    program_id: Pubkey,
    signer: Pubkey,
    seeds: SeedSet = DEFAULT_SEEDS,
) -> DerivedAddress:
    return derive_address(program_id, [seeds.server_signer, bytes(signer)])


def derive_relayer(
    program_id: Pubkey,
    relayer: Pubkey,
    seeds: SeedSet = DEFAULT_SEEDS,
) -> DerivedAddress:
    return derive_address(program_id, [seeds.relayer, bytes(relayer)])


def derive_delegate(program_id: Pubkey, seeds: SeedSet = DEFAULT_SEEDS) -> DerivedAddress:
    return derive_address(program_id, [seeds.delegate])


# ── Identities ─────────────────────────────────────────────────────


def parse_pubkey(text: str, name: str = "address") -> Pubkey:
    value = text.strip() if isinstance(text, str) else ""
    if not value:
        raise ValueError(f"{name} is required")
    try:
        raw = base58.b58decode(value)
    except ValueError as exc:
        raise ValueError(f"{name} is not valid base58: {value}") from exc
    if len(raw) != PUBKEY_LEN:
        raise ValueError(f"{name} must decode to {PUBKEY_LEN} bytes, got {len(raw)}")
    return Pubkey.from_bytes(raw)


def require_nonzero(pubkey: Pubkey, name: str) -> Pubkey:
    if pubkey == Pubkey.default():
        raise ValueError(f"{name} must not be the zero address")
    return pubkey


def keypair_from_secret_bytes(raw: bytes) -> Keypair:
    if len(raw) != SECRET_KEY_LEN:
        raise ValueError(f"secret key must be {SECRET_KEY_LEN} bytes, got {len(raw)}")
    keypair = Keypair.from_seed(bytes(raw[:SEED_KEY_LEN]))
    if bytes(keypair.pubkey()) != bytes(raw[SEED_KEY_LEN:]):
        raise ValueError("secret key does not match its embedded public key")
    return keypair


def keypair_from_base58(text: str) -> Keypair:
    value = text.strip() if isinstance(text, str) else ""
    if not value:
        raise ValueError("private key is required")
    try:
        raw = base58.b58decode(value)
    except ValueError as exc:
        raise ValueError("private key is not valid base58") from exc
    return keypair_from_secret_bytes(raw)


def load_keypair_file(path: str | Path) -> Keypair:
    """Load a ``solana-keygen`` JSON keypair (an array of 64 byte values)."""
    keypair_path = Path(path).expanduser()
    if not keypair_path.exists():
        raise FileNotFoundError(f"Keypair file not found: {keypair_path}")
    try:
        values = json.loads(keypair_path.read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"Keypair file is not JSON: {keypair_path}") from exc
    if not isinstance(values, list) or not all(isinstance(v, int) and 0 <= v <= 0xFF for v in values):
        raise ValueError(f"Keypair file must hold a byte array: {keypair_path}")
    return keypair_from_secret_bytes(bytes(values))


def keypair_json(keypair: Keypair) -> str:
    return json.dumps(list(bytes(keypair)))
