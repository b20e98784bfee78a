"""Instruction builders and transaction submission for admin operations."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Dict, List, Protocol, Sequence, Tuple

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction

from .constants import instruction_discriminator
from .errors import SubmissionFailed
from .helpers import commitment_satisfied

logger = logging.getLogger(__name__)

# Account slots per instruction, in the program's declared order:
# (name, is_signer, is_writable). Signer slots take the caller's key.
ACCOUNT_LAYOUTS: Dict[str, Tuple[Tuple[str, bool, bool], ...]] = {
    "initialize": (
        ("authority", True, True),
        ("config", False, True),
        ("emergency_admin", False, False),
        ("server_signer", False, False),
        ("server_signer_account", False, True),
        ("fee_recipient", False, False),
        ("relayer", False, False),
        ("relayer_account", False, True),
        ("system_program", False, False),
    ),
    "add_server_signer": (
        ("authority", True, True),
        ("config", False, False),
        ("new_server_signer", False, False),
        ("server_signer_account", False, True),
        ("system_program", False, False),
    ),
    "remove_server_signer": (
        ("authority", True, True),
        ("config", False, False),
        ("server_signer_to_remove", False, False),
        ("server_signer_account", False, True),
    ),
    "add_relayer": (
        ("authority", True, True),
        ("config", False, False),
        ("new_relayer", False, False),
        ("relayer_account", False, True),
        ("system_program", False, False),
    ),
    "remove_relayer": (
        ("authority", True, True),
        ("config", False, False),
        ("relayer_to_remove", False, False),
        ("relayer_account", False, True),
    ),
    "emergency_add_server_signer": (
        ("emergency_admin", True, True),
        ("config", False, False),
        ("new_server_signer", False, False),
        ("server_signer_account", False, True),
        ("system_program", False, False),
    ),
    "emergency_remove_server_signer": (
        ("emergency_admin", True, True),
        ("config", False, False),
        ("server_signer_to_remove", False, False),
        ("server_signer_account", False, True),
    ),
    "emergency_add_relayer": (
        ("emergency_admin", True, True),
        ("config", False, False),
        ("new_relayer", False, False),
        ("relayer_account", False, True),
        ("system_program", False, False),
    ),
    "emergency_remove_relayer": (
        ("emergency_admin", True, True),
        ("config", False, False),
        ("relayer_to_remove", False, False),
        ("relayer_account", False, True),
    ),
    "set_emergency_admin": (
        ("authority", True, False),
        ("config", False, True),
        ("new_emergency_admin", False, False),
    ),
    "set_fee_recipient": (
        ("authority", True, False),
        ("config", False, True),
        ("new_fee_recipient", False, False),
    ),
    "transfer_authority": (
        ("authority", True, False),
        ("config", False, True),
        ("new_authority", False, False),
    ),
    "pause": (
        ("emergency_admin", True, False),
        ("config", False, True),
    ),
    "unpause": (
        ("emergency_admin", True, False),
        ("config", False, True),
    ),
}


def build_instruction(program_id: Pubkey, operation: str, accounts: Dict[str, Pubkey]) -> Instruction:
    layout = ACCOUNT_LAYOUTS.get(operation)
    if layout is None:
        raise ValueError(f"Unknown operation: {operation}")
    resolved = dict(accounts)
    resolved.setdefault("system_program", SYSTEM_PROGRAM_ID)
    metas: List[AccountMeta] = []
    for name, is_signer, is_writable in layout:
        if name not in resolved:
            raise ValueError(f"{operation}: missing account '{name}'")
        metas.append(AccountMeta(pubkey=resolved[name], is_signer=is_signer, is_writable=is_writable))
    extra = set(resolved) - {name for name, _, _ in layout} - {"system_program"}
    if extra:
        raise ValueError(f"{operation}: unexpected accounts {sorted(extra)}")
    return Instruction(program_id, instruction_discriminator(operation), metas)


class TransactionSender(Protocol):
    def get_latest_blockhash(self) -> str: ...

    def send_transaction(self, raw_tx: bytes) -> str: ...

    def signature_status(self, signature: str) -> dict | None: ...


@dataclass
class Submitter:
    """Signs and sends one instruction per call, then waits for confirmation.

    The send itself is issued once; a failure after that point leaves the
    outcome to the network and is reported, never retried.
    """

    sender: TransactionSender
    program_id: Pubkey
    commitment: str = "confirmed"
    wait_seconds: float = 60.0
    poll_interval: float = 1.0

    def build(self, operation: str, accounts: Dict[str, Pubkey], signers: Sequence[Keypair]) -> Transaction:
        if not signers:
            raise ValueError("at least one signer is required")
        instruction = build_instruction(self.program_id, operation, accounts)
        blockhash = Hash.from_string(self.sender.get_latest_blockhash())
        payer = signers[0].pubkey()
        message = Message.new_with_blockhash([instruction], payer, blockhash)
        return Transaction(list(signers), message, blockhash)

    def submit(self, operation: str, accounts: Dict[str, Pubkey], signers: Sequence[Keypair]) -> str:
        try:
            tx = self.build(operation, accounts, signers)
        except ValueError as exc:
            raise SubmissionFailed(f"{operation}: could not build transaction: {exc}") from exc
        try:
            signature = self.sender.send_transaction(bytes(tx))
        except ValueError as exc:
            raise SubmissionFailed(f"{operation} rejected: {exc}") from exc
        logger.info("%s sent: %s", operation, signature)
        self.wait(signature)
        return signature

    def wait(self, signature: str) -> None:
        deadline = time.monotonic() + self.wait_seconds
        while True:
            try:
                entry = self.sender.signature_status(signature)
            except ValueError as exc:
                raise SubmissionFailed(
                    f"Could not confirm {signature}: {exc}", outcome_unknown=True
                ) from exc
            if entry is not None:
                err = entry.get("err")
                if err is not None:
                    raise SubmissionFailed(f"Transaction {signature} failed: {err}")
                if commitment_satisfied(entry.get("confirmationStatus"), self.commitment):
                    return
            if time.monotonic() >= deadline:
                raise SubmissionFailed(
                    f"Timed out waiting for {signature} to reach {self.commitment}; "
                    "check the result with `payctl status`",
                    outcome_unknown=True,
                )
            time.sleep(self.poll_interval)
