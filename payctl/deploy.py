"""Helpers wrapping the ``solana program deploy`` CLI."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import subprocess
from typing import Callable, List

from .helpers import extract_last_signature


@dataclass
class ProcessResult:
    returncode: int
    output: str

    @property
    def signature(self) -> str | None:
        return extract_last_signature(self.output)


ProcessRunner = Callable[[List[str], Path], ProcessResult]


def resolve_solana_bin() -> str:
    return os.environ.get("PAYCTL_SOLANA_BIN") or "solana"


def program_deploy_args(
    artifact: Path,
    rpc_url: str,
    keypair_path: Path,
    program_id: str | Path,
    commitment: str = "confirmed",
) -> list[str]:
    """Argument array for a deploy (program keypair path) or upgrade (program id)."""
    return [
        resolve_solana_bin(),
        "program",
        "deploy",
        str(artifact),
        "--url",
        rpc_url,
        "--keypair",
        str(keypair_path),
        "--program-id",
        str(program_id),
        "--commitment",
        commitment,
    ]


def run_process(cmd: list[str], cwd: Path) -> ProcessResult:
    """Run ``cmd`` without a shell, echoing its output as it arrives."""
    print("Running:", " ".join(cmd))
    lines: list[str] = []
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=str(cwd),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Executable not found: {cmd[0]}") from exc
    with proc:
        for line in proc.stdout or ():
            print(line, end="")
            lines.append(line)
    returncode = proc.wait()
    return ProcessResult(returncode=returncode, output="".join(lines))
