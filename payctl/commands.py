"""Operator workflows composed from lookups, role checks and submission.

Every privileged command follows the same path: fetch fresh state, collect
inputs, check the caller's role, confirm, submit, report. Any failure ends
the command before submission; nothing is retried.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional, Protocol

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .accounts import keypair_json, require_nonzero
from .constants import DEPLOY_MIN_BALANCE_SOL, UPGRADE_MIN_BALANCE_SOL, NetworkProfile
from .deploy import ProcessResult, ProcessRunner, program_deploy_args, run_process
from .errors import (
    AlreadyInitialized,
    ConfigError,
    InvalidState,
    NotInitialized,
    ProgramNotDeployed,
    RecordExists,
    RecordMissing,
    SubmissionFailed,
)
from .gate import Role, require
from .helpers import explorer_account_url, explorer_tx_url, lamports_to_sol
from .project import (
    ProjectConfig,
    require_artifact,
    resolve_program_id,
    update_anchor_toml,
    update_idl_address,
    update_lib_rs,
    write_deployment_record,
)
from .prompts import Prompter
from .records import ConfigRecord, RoleKind
from .registry import AccountSource, Registry, fetch_program_data
from .staging import staged_credential
from .transactions import Submitter, TransactionSender

logger = logging.getLogger(__name__)

RULE = "=" * 60
THIN_RULE = "-" * 60


class ChainClient(AccountSource, TransactionSender, Protocol):
    def get_balance(self, address: str) -> int: ...


@dataclass
class CommandResult:
    """Outcome of one workflow; ``signature`` is set once a request landed."""

    success: bool
    message: str
    signature: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class Context:
    network: NetworkProfile
    project: ProjectConfig
    client: ChainClient
    prompter: Prompter
    runner: ProcessRunner = run_process
    program_id_override: Optional[str] = None

    def program_id(self) -> Pubkey:
        return resolve_program_id(self.project, self.network, self.program_id_override)

    def registry(self) -> Registry:
        return Registry(self.client, self.program_id())


def _section(title: str) -> None:
    print("\n" + THIN_RULE)
    print(title)
    print(THIN_RULE)


def _banner(title: str) -> None:
    print("\n" + RULE)
    print(f"    {title}")
    print(RULE)


def _confirm_mainnet(ctx: Context, action: str) -> None:
    if ctx.network.key == "mainnet":
        print(f"\nWARNING: this will {action} on MAINNET.")
        ctx.prompter.require_confirm(f"Are you sure you want to {action} on MAINNET?")


def _submit(
    ctx: Context,
    registry: Registry,
    operation: str,
    signer: Keypair,
    accounts: Dict[str, Pubkey],
    prompt: str,
) -> CommandResult:
    _confirm_mainnet(ctx, prompt.lower())
    ctx.prompter.require_confirm(f"Proceed to {prompt}?")
    logger.debug("submitting %s signed by %s", operation, signer.pubkey())
    submitter = Submitter(ctx.client, registry.program_id)
    signature = submitter.submit(operation, accounts, [signer])
    link = explorer_tx_url(ctx.network, signature)
    print(f"\nSuccess: {prompt}")
    print(f"Transaction: {signature}")
    print(f"Explorer:    {link}")
    return CommandResult(True, f"{operation} confirmed", signature=signature, data={"explorer": link})


# ── Status ─────────────────────────────────────────────────────────


def status(ctx: Context) -> CommandResult:
    program_id = ctx.program_id()
    _banner("Program Status")
    print(f"Network: {ctx.network.name} ({ctx.network.cluster})")

    _section("Program")
    print(f"Address: {program_id}")
    program_account = ctx.client.get_account(str(program_id))
    if program_account is None:
        print("Status:  NOT DEPLOYED")
        raise ProgramNotDeployed(f"Program {program_id} is not deployed on {ctx.network.name}")
    print("Status:  DEPLOYED")
    print(f"Size:    {len(program_account)} bytes")

    registry = Registry(ctx.client, program_id)
    config_address = registry.config_address().address
    _section("Config")
    print(f"Address: {config_address}")
    config = registry.fetch_config()
    if config is None:
        print("Status:  NOT INITIALIZED")
        raise NotInitialized(f"Config account {config_address} not found; run `payctl initialize`")
    print("Status:  INITIALIZED")
    print(f"Authority:       {config.authority}")
    print(f"Emergency Admin: {config.emergency_admin}")
    print(f"Fee Recipient:   {config.fee_recipient}")
    print(f"Paused:          {'YES' if config.paused else 'NO'}")

    delegate_address = registry.delegate_address().address
    delegate_exists = registry.account_exists(delegate_address)
    print(f"Delegate:        {delegate_address} ({'present' if delegate_exists else 'absent'})")

    listing = registry.list_roles()
    _section(f"Server Signers ({len(listing.server_signers)})")
    for address, record in listing.server_signers:
        print(f"{record.signer}  {'active' if record.is_active else 'inactive'}  [{address}]")
    _section(f"Relayers ({len(listing.relayers)})")
    for address, record in listing.relayers:
        print(f"{record.relayer}  {'active' if record.is_active else 'inactive'}  [{address}]")
    if listing.skipped:
        print(f"\nnote: {listing.skipped} unrecognized account(s) skipped")

    _section("Explorer Links")
    print(f"Program: {explorer_account_url(ctx.network, str(program_id))}")
    print(f"Config:  {explorer_account_url(ctx.network, str(config_address))}")
    print("\n" + RULE + "\n")

    return CommandResult(
        True,
        "status ok",
        data={
            "program_id": str(program_id),
            "config": config,
            "server_signers": [str(r.signer) for _, r in listing.server_signers],
            "relayers": [str(r.relayer) for _, r in listing.relayers],
            "delegate": delegate_exists,
            "skipped": listing.skipped,
        },
    )


# ── Initialize ─────────────────────────────────────────────────────


def initialize(
    ctx: Context,
    *,
    keypair_path: Optional[str] = None,
    emergency_admin: Optional[str] = None,
    server_signer: Optional[str] = None,
    fee_recipient: Optional[str] = None,
    relayer: Optional[str] = None,
) -> CommandResult:
    registry = ctx.registry()
    config_address = registry.config_address().address
    _banner("Initialize Program")
    print(f"Network:    {ctx.network.name}")
    print(f"Program ID: {registry.program_id}")
    if registry.fetch_config() is not None:
        raise AlreadyInitialized(f"Config account {config_address} already exists")

    authority = ctx.prompter.keypair("Authority", keypair_path)
    prompter = ctx.prompter
    admin = require_nonzero(
        prompter.pubkey("Emergency admin address", emergency_admin, default=authority.pubkey()),
        "emergency admin",
    )
    signer = require_nonzero(prompter.pubkey("Initial server signer address", server_signer), "server signer")
    recipient = require_nonzero(prompter.pubkey("Fee recipient address", fee_recipient), "fee recipient")
    first_relayer = require_nonzero(prompter.pubkey("Initial relayer address", relayer), "relayer")

    signer_account = registry.role_address(RoleKind.SERVER_SIGNER, signer).address
    relayer_account = registry.role_address(RoleKind.RELAYER, first_relayer).address

    _section("Summary")
    print(f"Authority:       {authority.pubkey()}")
    print(f"Emergency Admin: {admin}")
    print(f"Server Signer:   {signer}")
    print(f"Fee Recipient:   {recipient}")
    print(f"Relayer:         {first_relayer}")
    print(f"Config PDA:      {config_address}")

    return _submit(
        ctx,
        registry,
        "initialize",
        authority,
        {
            "authority": authority.pubkey(),
            "config": config_address,
            "emergency_admin": admin,
            "server_signer": signer,
            "server_signer_account": signer_account,
            "fee_recipient": recipient,
            "relayer": first_relayer,
            "relayer_account": relayer_account,
        },
        "initialize the program",
    )


# ── Role records ───────────────────────────────────────────────────


def change_role_record(
    ctx: Context,
    kind: RoleKind,
    *,
    add: bool,
    emergency: bool = False,
    identity: Optional[str] = None,
    keypair_path: Optional[str] = None,
) -> CommandResult:
    registry = ctx.registry()
    config = registry.require_config()
    verb = "add" if add else "remove"
    _banner(f"{'Emergency ' if emergency else ''}{verb.title()} {kind.label.title()}")
    print(f"Network: {ctx.network.name}")

    target = require_nonzero(ctx.prompter.pubkey(f"{kind.label.capitalize()} address", identity), kind.label)
    existing = registry.fetch_role(kind, target)
    if add and existing is not None:
        raise RecordExists(f"{target} is already registered as a {kind.label}")
    if not add and existing is None:
        raise RecordMissing(f"{target} is not registered as a {kind.label}")

    role = Role.EMERGENCY_ADMIN if emergency else Role.AUTHORITY
    caller = ctx.prompter.keypair(role.label.capitalize(), keypair_path)
    require(role, caller.pubkey(), config)

    record_account = registry.role_address(kind, target).address
    operation = f"{'emergency_' if emergency else ''}{verb}_{kind.value}"
    target_slot = f"new_{kind.value}" if add else f"{kind.value}_to_remove"

    _section("Summary")
    print(f"{role.label.capitalize()}: {caller.pubkey()}")
    print(f"{kind.label.capitalize()}: {target}")
    print(f"Record PDA: {record_account}")

    return _submit(
        ctx,
        registry,
        operation,
        caller,
        {
            role.value: caller.pubkey(),
            "config": registry.config_address().address,
            target_slot: target,
            f"{kind.value}_account": record_account,
        },
        f"{verb} {kind.label}",
    )


# ── Config updates ─────────────────────────────────────────────────

_CONFIG_UPDATES = {
    "set_emergency_admin": ("emergency_admin", "new_emergency_admin", "emergency admin"),
    "set_fee_recipient": ("fee_recipient", "new_fee_recipient", "fee recipient"),
    "transfer_authority": ("authority", "new_authority", "authority"),
}


def update_config(
    ctx: Context,
    operation: str,
    *,
    new_value: Optional[str] = None,
    keypair_path: Optional[str] = None,
) -> CommandResult:
    field_name, slot, label = _CONFIG_UPDATES[operation]
    registry = ctx.registry()
    config = registry.require_config()
    current = getattr(config, field_name)
    _banner(f"Set {label.title()}")
    print(f"Network:  {ctx.network.name}")
    print(f"Current {label}: {current}")

    new = require_nonzero(ctx.prompter.pubkey(f"New {label} address", new_value), f"new {label}")
    if new == current:
        raise InvalidState(f"{label.capitalize()} is already {new}")

    caller = ctx.prompter.keypair("Authority", keypair_path)
    require(Role.AUTHORITY, caller.pubkey(), config)

    _section("Summary")
    print(f"{label.capitalize()}: {current} -> {new}")
    if operation == "transfer_authority":
        print("\nWARNING: the current authority loses every authority-scoped permission.")
        ctx.prompter.require_confirm(f"Transfer authority to {new}?")

    return _submit(
        ctx,
        registry,
        operation,
        caller,
        {"authority": caller.pubkey(), "config": registry.config_address().address, slot: new},
        f"set {label}",
    )


# ── Pause / unpause ────────────────────────────────────────────────


def set_paused(ctx: Context, paused: bool, *, keypair_path: Optional[str] = None) -> CommandResult:
    registry = ctx.registry()
    config: ConfigRecord = registry.require_config()
    action = "pause" if paused else "unpause"
    _banner(f"{action.title()} Program")
    print(f"Network: {ctx.network.name}")
    print(f"Paused:  {'YES' if config.paused else 'NO'}")
    if config.paused == paused:
        raise InvalidState(f"Program is already {'paused' if paused else 'running'}")

    caller = ctx.prompter.keypair("Emergency admin", keypair_path)
    require(Role.EMERGENCY_ADMIN, caller.pubkey(), config)

    return _submit(
        ctx,
        registry,
        action,
        caller,
        {"emergency_admin": caller.pubkey(), "config": registry.config_address().address},
        f"{action.upper()} the program",
    )


# ── Deploy / upgrade ───────────────────────────────────────────────


def _check_balance(ctx: Context, who: Keypair, minimum_sol: float) -> None:
    balance = lamports_to_sol(ctx.client.get_balance(str(who.pubkey())))
    print(f"Balance: {balance:.4f} SOL")
    if balance < minimum_sol:
        print(f"\nWARNING: balance might be low; this usually needs ~{minimum_sol} SOL")
        ctx.prompter.require_confirm("Continue anyway?")


def _deploy_failed(result: ProcessResult, action: str) -> SubmissionFailed:
    return SubmissionFailed(
        f"{action} failed: solana exited with code {result.returncode}; "
        "check the program with `payctl status`",
        outcome_unknown=True,
    )


def _print_deploy_links(ctx: Context, program_id: str, result: ProcessResult) -> Optional[str]:
    signature = result.signature
    _section("Explorer Links")
    if signature:
        print(f"Transaction: {explorer_tx_url(ctx.network, signature)}")
    print(f"Program:     {explorer_account_url(ctx.network, program_id)}")
    return signature


def deploy(
    ctx: Context,
    *,
    program_keypair_path: Optional[str] = None,
    deployer_keypair_path: Optional[str] = None,
) -> CommandResult:
    artifact = require_artifact(ctx.project)
    _banner("Program Deployment")
    print(f"Network:  {ctx.network.name}")
    print(f"Artifact: {artifact}")
    _confirm_mainnet(ctx, "deploy")

    program = ctx.prompter.keypair("Program", program_keypair_path, optional=True)
    generated = program is None
    if program is None:
        if not ctx.prompter.interactive:
            raise ValueError("--program-keypair is required when running non-interactively")
        program = Keypair()
        print(f"\nGenerated new Program ID: {program.pubkey()}")
        ctx.prompter.reveal_secret("Program private key", base58.b58encode(bytes(program)).decode())
        ctx.prompter.require_confirm("Have you saved the program private key?")
    program_id = str(program.pubkey())

    deployer = ctx.prompter.keypair("Deployer", deployer_keypair_path)
    print(f"Deployer: {deployer.pubkey()}")
    program_data = None if generated else fetch_program_data(ctx.client, program.pubkey())
    existing = program_data is not None
    if program_data is not None:
        require(Role.UPGRADE_AUTHORITY, deployer.pubkey(), program_data)
    _check_balance(ctx, deployer, DEPLOY_MIN_BALANCE_SOL)

    _section("Deployment Summary")
    print(f"Network:    {ctx.network.name}")
    print(f"Program ID: {program_id} {'(EXISTING)' if existing else '(NEW)'}")
    print(f"Deployer:   {deployer.pubkey()}")
    ctx.prompter.require_confirm("Proceed with deployment?")

    with staged_credential(keypair_json(deployer).encode(), label="deployer") as deployer_path, \
         staged_credential(keypair_json(program).encode(), label="program") as program_path:
        result = ctx.runner(
            program_deploy_args(artifact, ctx.network.rpc_url, deployer_path, program_path),
            ctx.project.root,
        )
    if result.returncode != 0:
        raise _deploy_failed(result, "Deployment")

    update_lib_rs(ctx.project, program_id)
    update_anchor_toml(ctx.project, ctx.network, program_id)
    update_idl_address(ctx.project, program_id)
    record_path = write_deployment_record(ctx.project, ctx.network, program_id, str(deployer.pubkey()))
    print(f"\nDeployment saved to: {record_path}")
    signature = _print_deploy_links(ctx, program_id, result)
    print("\nNext: run `payctl initialize` to create the config account.")
    return CommandResult(True, "deployed", signature=signature, data={"program_id": program_id, "new": not existing})


def upgrade(
    ctx: Context,
    *,
    program_id: Optional[str] = None,
    keypair_path: Optional[str] = None,
) -> CommandResult:
    artifact = require_artifact(ctx.project)
    _banner("Program Upgrade")
    print(f"Network:  {ctx.network.name}")
    print(f"Artifact: {artifact}")
    _confirm_mainnet(ctx, "upgrade")

    program_id = program_id or ctx.program_id_override
    default_id: Optional[Pubkey] = None
    if program_id is None:
        try:
            default_id = ctx.program_id()
        except (ConfigError, ValueError):
            default_id = None
    target = ctx.prompter.pubkey("Program ID to upgrade", program_id, default=default_id)

    program_data = fetch_program_data(ctx.client, target)
    if program_data is None:
        raise ProgramNotDeployed(f"Program {target} not found on {ctx.network.name}")
    print(f"Upgrade authority: {program_data.upgrade_authority or '<none, immutable>'}")

    authority = ctx.prompter.keypair("Upgrade authority", keypair_path)
    require(Role.UPGRADE_AUTHORITY, authority.pubkey(), program_data)
    _check_balance(ctx, authority, UPGRADE_MIN_BALANCE_SOL)

    _section("Upgrade Summary")
    print(f"Program ID: {target}")
    print(f"Authority:  {authority.pubkey()}")
    ctx.prompter.require_confirm("Proceed with upgrade?")

    with staged_credential(keypair_json(authority).encode(), label="authority") as authority_path:
        result = ctx.runner(
            program_deploy_args(artifact, ctx.network.rpc_url, authority_path, str(target)),
            ctx.project.root,
        )
    if result.returncode != 0:
        raise _deploy_failed(result, "Upgrade")

    update_idl_address(ctx.project, str(target))
    signature = _print_deploy_links(ctx, str(target), result)
    return CommandResult(True, "upgraded", signature=signature, data={"program_id": str(target)})
