"""Network table, seeds and account layouts for the payment program."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True)
class NetworkProfile:
    key: str
    name: str
    cluster: str
    rpc_url: str
    explorer: str


EXPLORER_URL = "https://solscan.io"

NETWORKS = MappingProxyType(
    {
        "mainnet": NetworkProfile(
            key="mainnet",
            name="Solana Mainnet",
            cluster="mainnet-beta",
            rpc_url="https://api.mainnet-beta.solana.com",
            explorer=EXPLORER_URL,
        ),
        "devnet": NetworkProfile(
            key="devnet",
            name="Solana Devnet",
            cluster="devnet",
            rpc_url="https://api.devnet.solana.com",
            explorer=EXPLORER_URL,
        ),
    }
)

DEFAULT_NETWORK = "devnet"

# Anchor.toml section holding the program id per network.
ANCHOR_TOML_SECTIONS = MappingProxyType(
    {
        "mainnet": "mainnet",
        "devnet": "devnet",
    }
)

DEFAULT_PROGRAM_NAME = "setto_payment"


@dataclass(frozen=True)
class SeedSet:
    config: bytes = b"config"
    server_signer: bytes = b"server_signer"
    relayer: bytes = b"relayer"
    delegate: bytes = b"delegate"


DEFAULT_SEEDS = SeedSet()

MAX_SEED_LEN = 32
MAX_SEEDS = 16

PUBKEY_LEN = 32
DISCRIMINATOR_LEN = 8


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:DISCRIMINATOR_LEN]


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:DISCRIMINATOR_LEN]


CONFIG_DISCRIMINATOR = account_discriminator("Config")
SERVER_SIGNER_DISCRIMINATOR = account_discriminator("ServerSigner")
RELAYER_DISCRIMINATOR = account_discriminator("Relayer")

# Config: discriminator (8) + authority (32) + emergency_admin (32)
# + fee_recipient (32) + paused (1) + bump (1)
CONFIG_AUTHORITY_OFFSET = 8
CONFIG_EMERGENCY_ADMIN_OFFSET = 40
CONFIG_FEE_RECIPIENT_OFFSET = 72
CONFIG_PAUSED_OFFSET = 104
CONFIG_BUMP_OFFSET = 105
CONFIG_ACCOUNT_SIZE = 106

# ServerSigner / Relayer: discriminator (8) + identity (32) + is_active (1) + bump (1)
ROLE_IDENTITY_OFFSET = 8
ROLE_ACTIVE_OFFSET = 40
ROLE_BUMP_OFFSET = 41
ROLE_ACCOUNT_SIZE = 42

# BPF upgradeable loader account layouts.
LOADER_PROGRAM_TAG = 2
LOADER_PROGRAM_DATA_TAG = 3
LOADER_PROGRAM_SIZE = 36
LOADER_PROGRAM_DATA_HEADER_SIZE = 45

LAMPORTS_PER_SOL = 1_000_000_000
DEPLOY_MIN_BALANCE_SOL = 3.0
UPGRADE_MIN_BALANCE_SOL = 2.2
