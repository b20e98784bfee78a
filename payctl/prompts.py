"""Operator input: flags first, interactive prompts for anything missing."""

from __future__ import annotations

import getpass
from pathlib import Path
from typing import Callable, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .accounts import keypair_from_base58, load_keypair_file, parse_pubkey
from .errors import UserAborted


class Prompter:
    """Collects validated values.

    ``assume_yes`` answers every confirmation with yes; ``interactive=False``
    turns any prompt for a missing value, and any confirmation not covered by
    ``assume_yes``, into an error instead.
    """

    def __init__(
        self,
        *,
        assume_yes: bool = False,
        interactive: bool = True,
        input_fn: Callable[[str], str] = input,
        secret_fn: Callable[[str], str] = getpass.getpass,
    ) -> None:
        self.assume_yes = assume_yes
        self.interactive = interactive
        self._input = input_fn
        self._secret = secret_fn

    def _ask(self, prompt: str) -> str:
        if not self.interactive:
            raise ValueError(f"missing value for: {prompt.rstrip(': ')}")
        return self._input(prompt)

    def pubkey(self, label: str, value: Optional[str] = None, default: Optional[Pubkey] = None) -> Pubkey:
        if value:
            return parse_pubkey(value, label)
        if not self.interactive and default is not None:
            return default
        suffix = f" [{default}]" if default is not None else ""
        while True:
            answer = self._ask(f"{label}{suffix}: ").strip()
            if not answer and default is not None:
                return default
            try:
                return parse_pubkey(answer, label)
            except ValueError as exc:
                if not self.interactive:
                    raise
                print(f"  {exc}")

    def keypair(self, label: str, path: Optional[str] = None, *, optional: bool = False) -> Optional[Keypair]:
        """Load a keypair from ``path`` or read a base58 secret without echo."""
        if path:
            return load_keypair_file(Path(path))
        if not self.interactive:
            if optional:
                return None
            raise ValueError(f"{label} keypair is required (use --keypair)")
        hint = ", or empty for a new one" if optional else ""
        while True:
            answer = self._secret(f"{label} private key (base58{hint}): ").strip()
            if not answer and optional:
                return None
            try:
                return keypair_from_base58(answer)
            except ValueError as exc:
                print(f"  {exc}")

    def confirm(self, message: str) -> bool:
        if self.assume_yes:
            return True
        if not self.interactive:
            raise ValueError(f"confirmation required ({message}); pass --yes")
        answer = self._input(f"{message} [y/N]: ").strip().lower()
        return answer in {"y", "yes"}

    def require_confirm(self, message: str) -> None:
        if not self.confirm(message):
            raise UserAborted(message)

    def reveal_secret(self, label: str, secret: str) -> None:
        """Show a freshly generated secret once, on the terminal only."""
        print(f"\n{label} (store it securely, it is not written anywhere):")
        print(f"  {secret}\n")
