"""Project settings: payctl.toml, Anchor.toml, build artifacts and deploy records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import re
from typing import Any, Dict, Optional

import tomli_w
from solders.pubkey import Pubkey

from .accounts import parse_pubkey
from .constants import ANCHOR_TOML_SECTIONS, DEFAULT_NETWORK, DEFAULT_PROGRAM_NAME, NETWORKS, NetworkProfile
from .errors import ArtifactMissing, ConfigError

logger = logging.getLogger(__name__)

PROJECT_FILE = "payctl.toml"
ANCHOR_TOML = "Anchor.toml"

DECLARE_ID_RE = re.compile(r'declare_id!\s*\(\s*"[^"]+"\s*\)')
TOML_HEADER_RE = re.compile(r"^[ \t]*\[", re.M)


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        import tomllib  # Python 3.11+
    except ImportError:  # pragma: no cover
        import tomli as tomllib  # type: ignore
    return tomllib.loads(path.read_text())


@dataclass(frozen=True)
class ProjectConfig:
    root: Path
    program_name: str = DEFAULT_PROGRAM_NAME
    networks: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def artifact_path(self) -> Path:
        return self.root / "target" / "deploy" / f"{self.program_name}.so"

    @property
    def idl_path(self) -> Path:
        return self.root / "target" / "idl" / f"{self.program_name}.json"

    @property
    def anchor_toml_path(self) -> Path:
        return self.root / ANCHOR_TOML

    @property
    def lib_rs_path(self) -> Path:
        return self.root / "src" / "lib.rs"

    def deployment_record_path(self, network: NetworkProfile) -> Path:
        return self.root / "deployments" / f"solana-{network.key}.json"


def load_project(root: str | Path | None = None) -> ProjectConfig:
    """Load ``payctl.toml`` from ``root`` (or ``PAYCTL_PROJECT_ROOT`` / cwd).

    A missing file yields defaults rooted at that directory.
    """
    base = Path(root or os.environ.get("PAYCTL_PROJECT_ROOT") or Path.cwd()).expanduser().resolve()
    path = base / PROJECT_FILE
    if not path.exists():
        return ProjectConfig(root=base)
    data = _load_toml(path)
    project = data.get("project") if isinstance(data.get("project"), dict) else {}
    program_name = project.get("program_name", DEFAULT_PROGRAM_NAME)
    if not isinstance(program_name, str) or not program_name:
        raise ConfigError(f"{path}: project.program_name must be a non-empty string")
    raw_root = project.get("root")
    if raw_root is not None and not isinstance(raw_root, str):
        raise ConfigError(f"{path}: project.root must be a string")
    resolved_root = (base / raw_root).resolve() if raw_root else base

    networks: Dict[str, Dict[str, str]] = {}
    raw_networks = data.get("networks") if isinstance(data.get("networks"), dict) else {}
    for key, entry in raw_networks.items():
        if key not in NETWORKS:
            raise ConfigError(f"{path}: unknown network '{key}' (expected one of {', '.join(NETWORKS)})")
        if not isinstance(entry, dict):
            raise ConfigError(f"{path}: [networks.{key}] must be a table")
        networks[key] = {k: v for k, v in entry.items() if k in {"rpc_url", "program_id"} and isinstance(v, str)}
    return ProjectConfig(root=resolved_root, program_name=program_name, networks=networks)


def write_project_file(path: Path, config: ProjectConfig, *, relative_root: Optional[str] = None) -> None:
    data: Dict[str, Any] = {"project": {"program_name": config.program_name}}
    if relative_root:
        data["project"]["root"] = relative_root
    if config.networks:
        data["networks"] = {k: dict(v) for k, v in config.networks.items()}
    path.write_bytes(tomli_w.dumps(data).encode())


def resolve_network(
    key: Optional[str],
    project: ProjectConfig,
    rpc_url: Optional[str] = None,
) -> NetworkProfile:
    """Pick the network profile; an RPC endpoint comes from the flag, env, then payctl.toml."""
    name = (key or os.environ.get("PAYCTL_NETWORK") or DEFAULT_NETWORK).strip().lower()
    profile = NETWORKS.get(name)
    if profile is None:
        raise ConfigError(f"Unknown network '{name}' (expected one of {', '.join(NETWORKS)})")
    rpc_url = rpc_url or os.environ.get("PAYCTL_RPC_URL") or project.networks.get(name, {}).get("rpc_url")
    if rpc_url and rpc_url != profile.rpc_url:
        return NetworkProfile(
            key=profile.key,
            name=profile.name,
            cluster=profile.cluster,
            rpc_url=rpc_url,
            explorer=profile.explorer,
        )
    return profile


# ── Program id ─────────────────────────────────────────────────────


def read_anchor_program_id(project: ProjectConfig, network: NetworkProfile) -> Optional[str]:
    path = project.anchor_toml_path
    if not path.exists():
        return None
    data = _load_toml(path)
    programs = data.get("programs") if isinstance(data.get("programs"), dict) else {}
    section = programs.get(ANCHOR_TOML_SECTIONS.get(network.key, network.key))
    if not isinstance(section, dict):
        return None
    value = section.get(project.program_name)
    return value if isinstance(value, str) and value else None


def resolve_program_id(
    project: ProjectConfig,
    network: NetworkProfile,
    override: Optional[str] = None,
) -> Pubkey:
    candidates = (
        ("--program-id", override),
        ("PAYCTL_PROGRAM_ID", os.environ.get("PAYCTL_PROGRAM_ID")),
        (PROJECT_FILE, project.networks.get(network.key, {}).get("program_id")),
    )
    for source, value in candidates:
        if value:
            return parse_pubkey(value, f"program id ({source})")
    anchor_value = read_anchor_program_id(project, network)
    if anchor_value:
        return parse_pubkey(anchor_value, f"program id ({ANCHOR_TOML})")
    raise ConfigError(
        f"Program ID for {network.key} not found; pass --program-id, set PAYCTL_PROGRAM_ID "
        f"or add [programs.{ANCHOR_TOML_SECTIONS.get(network.key, network.key)}] to {ANCHOR_TOML}"
    )


# ── Build artifacts ────────────────────────────────────────────────


def require_artifact(project: ProjectConfig) -> Path:
    path = project.artifact_path
    if not path.is_file():
        raise ArtifactMissing(f"Program binary not found: {path}; build the program first")
    return path


def update_lib_rs(project: ProjectConfig, program_id: str) -> bool:
    path = project.lib_rs_path
    if not path.exists():
        logger.info("%s not found, skipping declare_id update", path)
        return False
    content = path.read_text()
    updated, count = DECLARE_ID_RE.subn(f'declare_id!("{program_id}")', content, count=1)
    if count == 0:
        logger.info("no declare_id! in %s", path)
        return False
    path.write_text(updated)
    return True


def update_anchor_toml(project: ProjectConfig, network: NetworkProfile, program_id: str) -> None:
    """Point ``[programs.<network>]`` at ``program_id``, leaving the rest of the file as written."""
    path = project.anchor_toml_path
    section = ANCHOR_TOML_SECTIONS.get(network.key, network.key)
    entry = f'{project.program_name} = "{program_id}"'
    content = path.read_text() if path.exists() else ""

    header = re.compile(rf"^\[programs\.{re.escape(section)}\][ \t]*$", re.M).search(content)
    if header is None:
        block = f"[programs.{section}]\n{entry}\n"
        registry = re.compile(r"^\[registry\]", re.M).search(content)
        if registry is not None:
            content = content[: registry.start()] + block + "\n" + content[registry.start() :]
        else:
            if content and not content.endswith("\n"):
                content += "\n"
            content += ("\n" if content else "") + block
    else:
        next_header = TOML_HEADER_RE.search(content, header.end())
        end = next_header.start() if next_header else len(content)
        body = content[header.end() : end]
        key = re.compile(rf'^([ \t]*"?{re.escape(project.program_name)}"?[ \t]*=[ \t]*)"[^"\n]*"', re.M)
        body, count = key.subn(lambda m: f'{m.group(1)}"{program_id}"', body, count=1)
        if count == 0:
            body = f"\n{entry}" + body
        content = content[: header.end()] + body + content[end:]
    path.write_text(content)


def update_idl_address(project: ProjectConfig, program_id: str) -> bool:
    path = project.idl_path
    if not path.exists():
        logger.info("IDL %s not found, skipping address update", path)
        return False
    idl = json.loads(path.read_text())
    if idl.get("address") == program_id:
        return False
    idl["address"] = program_id
    path.write_text(json.dumps(idl, indent=2) + "\n")
    return True


def write_deployment_record(
    project: ProjectConfig,
    network: NetworkProfile,
    program_id: str,
    deployer: str,
) -> Path:
    path = project.deployment_record_path(network)
    path.parent.mkdir(parents=True, exist_ok=True)
    record = {
        "network": network.name,
        "programId": program_id,
        "deployer": deployer,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    path.write_text(json.dumps(record, indent=2) + "\n")
    return path
