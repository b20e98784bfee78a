"""On-chain lookups of the config and role records."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import List, Optional, Protocol, Tuple

from solders.pubkey import Pubkey

from .accounts import DerivedAddress, derive_config, derive_delegate, derive_relayer, derive_server_signer
from .constants import DEFAULT_SEEDS, ROLE_ACCOUNT_SIZE, SeedSet
from .errors import MalformedAccount, NotInitialized, UnknownRecordKind
from .records import (
    ConfigRecord,
    ProgramDataRecord,
    RelayerRecord,
    RoleKind,
    RoleRecord,
    ServerSignerRecord,
    decode_config,
    decode_loader_program,
    decode_program_data,
    decode_relayer,
    decode_role_record,
    decode_server_signer,
)

logger = logging.getLogger(__name__)


class AccountSource(Protocol):
    def get_account(self, address: str) -> bytes | None: ...

    def get_program_accounts(self, program_id: str, data_size: int) -> list[tuple[str, bytes]]: ...


@dataclass
class RoleListing:
    server_signers: List[Tuple[str, ServerSignerRecord]] = field(default_factory=list)
    relayers: List[Tuple[str, RelayerRecord]] = field(default_factory=list)
    skipped: int = 0


class Registry:
    """Read-side view of one program deployment.

    Nothing is cached: every call derives the address and fetches again, so
    a lookup always reflects current chain state.
    """

    def __init__(self, source: AccountSource, program_id: Pubkey, seeds: SeedSet = DEFAULT_SEEDS) -> None:
        self.source = source
        self.program_id = program_id
        self.seeds = seeds

    # Addresses

    def config_address(self) -> DerivedAddress:
        return derive_config(self.program_id, self.seeds)

    def role_address(self, kind: RoleKind, identity: Pubkey) -> DerivedAddress:
        if kind is RoleKind.SERVER_SIGNER:
            return derive_server_signer(self.program_id, identity, self.seeds)
        return derive_relayer(self.program_id, identity, self.seeds)

    def delegate_address(self) -> DerivedAddress:
        return derive_delegate(self.program_id, self.seeds)

    # Single-record lookups

    def fetch_config(self) -> Optional[ConfigRecord]:
        derived = self.config_address()
        data = self.source.get_account(str(derived.address))
        if data is None:
            return None
        return decode_config(data)

    def require_config(self) -> ConfigRecord:
        config = self.fetch_config()
        if config is None:
            raise NotInitialized(
                f"Config account {self.config_address().address} not found; program is not initialized"
            )
        return config

    def fetch_role(self, kind: RoleKind, identity: Pubkey) -> Optional[RoleRecord]:
        derived = self.role_address(kind, identity)
        data = self.source.get_account(str(derived.address))
        if data is None:
            return None
        if kind is RoleKind.SERVER_SIGNER:
            return decode_server_signer(data)
        return decode_relayer(data)

    def fetch_server_signer(self, signer: Pubkey) -> Optional[ServerSignerRecord]:
        return self.fetch_role(RoleKind.SERVER_SIGNER, signer)

    def fetch_relayer(self, relayer: Pubkey) -> Optional[RelayerRecord]:
        return self.fetch_role(RoleKind.RELAYER, relayer)

    def account_exists(self, address: Pubkey) -> bool:
        return self.source.get_account(str(address)) is not None

    # Bulk listing

    def list_roles(self) -> RoleListing:
        listing = RoleListing()
        accounts = self.source.get_program_accounts(str(self.program_id), ROLE_ACCOUNT_SIZE)
        for address, data in accounts:
            try:
                kind, record = decode_role_record(data)
            except UnknownRecordKind as exc:
                logger.debug("skipping %s: %s", address, exc)
                listing.skipped += 1
                continue
            except MalformedAccount as exc:
                logger.warning("skipping %s: %s", address, exc)
                listing.skipped += 1
                continue
            if kind is RoleKind.SERVER_SIGNER:
                listing.server_signers.append((address, record))
            else:
                listing.relayers.append((address, record))
        return listing


def fetch_program_data(source: AccountSource, program_id: Pubkey) -> Optional[ProgramDataRecord]:
    """Decode the upgradeable-loader ProgramData record behind ``program_id``.

    Returns ``None`` when the program account does not exist.
    """
    program_account = source.get_account(str(program_id))
    if program_account is None:
        return None
    program_data_address = decode_loader_program(program_account)
    data = source.get_account(str(program_data_address))
    if data is None:
        raise MalformedAccount(f"program data account {program_data_address} not found")
    return decode_program_data(data)
