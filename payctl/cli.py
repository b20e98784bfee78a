"""CLI entrypoint for payctl."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from . import commands
from .commands import Context
from .constants import DEFAULT_PROGRAM_NAME
from .errors import PayctlError, SubmissionFailed, UserAborted
from .helpers import RpcClient
from .project import PROJECT_FILE, ProjectConfig, load_project, resolve_network, write_project_file
from .prompts import Prompter
from .records import RoleKind

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_context(args: argparse.Namespace) -> Context:
    project = load_project(args.project)
    network = resolve_network(args.network, project, rpc_url=args.rpc_url)
    logger.debug("network %s via %s", network.key, network.rpc_url)
    prompter = Prompter(assume_yes=args.yes, interactive=not args.non_interactive)
    return Context(
        network=network,
        project=project,
        client=RpcClient(network.rpc_url),
        prompter=prompter,
        program_id_override=args.program_id,
    )


def _cmd_status(args: argparse.Namespace) -> int:
    commands.status(_build_context(args))
    return 0


def _cmd_initialize(args: argparse.Namespace) -> int:
    commands.initialize(
        _build_context(args),
        keypair_path=args.keypair,
        emergency_admin=args.emergency_admin,
        server_signer=args.server_signer,
        fee_recipient=args.fee_recipient,
        relayer=args.relayer,
    )
    return 0


def _cmd_role(args: argparse.Namespace) -> int:
    commands.change_role_record(
        _build_context(args),
        RoleKind(args.role_kind),
        add=args.role_add,
        emergency=args.emergency,
        identity=args.address,
        keypair_path=args.keypair,
    )
    return 0


def _cmd_config_update(args: argparse.Namespace) -> int:
    commands.update_config(
        _build_context(args),
        args.operation,
        new_value=args.address,
        keypair_path=args.keypair,
    )
    return 0


def _cmd_pause(args: argparse.Namespace) -> int:
    commands.set_paused(_build_context(args), args.paused, keypair_path=args.keypair)
    return 0


def _cmd_deploy(args: argparse.Namespace) -> int:
    commands.deploy(
        _build_context(args),
        program_keypair_path=args.program_keypair,
        deployer_keypair_path=args.keypair,
    )
    return 0


def _cmd_upgrade(args: argparse.Namespace) -> int:
    commands.upgrade(_build_context(args), keypair_path=args.keypair)
    return 0


def _cmd_project_init(args: argparse.Namespace) -> int:
    root = Path(args.path).expanduser()
    path = root / PROJECT_FILE
    if path.exists() and not args.force:
        raise ValueError(f"{path} already exists (use --force to overwrite)")
    networks = {}
    if args.devnet_rpc_url:
        networks["devnet"] = {"rpc_url": args.devnet_rpc_url}
    if args.mainnet_rpc_url:
        networks["mainnet"] = {"rpc_url": args.mainnet_rpc_url}
    root.mkdir(parents=True, exist_ok=True)
    config = ProjectConfig(root=root, program_name=args.program_name, networks=networks)
    write_project_file(path, config, relative_root=args.anchor_root)
    print(f"Wrote {path}")
    return 0


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--network", help="mainnet or devnet (default: PAYCTL_NETWORK or devnet)")
    parser.add_argument("--rpc-url", help="Override the network RPC endpoint")
    parser.add_argument("--program-id", help="Override the program id")
    parser.add_argument("--project", help="Project root holding payctl.toml / Anchor.toml")
    parser.add_argument("-y", "--yes", action="store_true", help="Answer yes to every confirmation")
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Fail instead of prompting for missing values",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")


def _add_keypair(parser: argparse.ArgumentParser, role: str) -> None:
    parser.add_argument("--keypair", help=f"{role} keypair file (prompted without echo when omitted)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=os.path.basename(sys.argv[0]) or "payctl")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_status = sub.add_parser("status", help="Show program, config and role records")
    _add_common(p_status)
    p_status.set_defaults(func=_cmd_status)

    p_init = sub.add_parser("initialize", help="Create the config account")
    _add_common(p_init)
    _add_keypair(p_init, "Authority")
    p_init.add_argument("--emergency-admin", help="Emergency admin (default: authority)")
    p_init.add_argument("--server-signer", help="Initial server signer")
    p_init.add_argument("--fee-recipient", help="Fee recipient")
    p_init.add_argument("--relayer", help="Initial relayer")
    p_init.set_defaults(func=_cmd_initialize)

    for kind in RoleKind:
        name = kind.value.replace("_", "-")
        for add in (True, False):
            for emergency in (False, True):
                verb = "add" if add else "remove"
                cmd = f"{'emergency-' if emergency else ''}{verb}-{name}"
                role = "Emergency admin" if emergency else "Authority"
                p_role = sub.add_parser(cmd, help=f"{verb.title()} a {kind.label} ({role.lower()})")
                _add_common(p_role)
                _add_keypair(p_role, role)
                p_role.add_argument("address", nargs="?", help=f"{kind.label.capitalize()} address")
                p_role.set_defaults(
                    func=_cmd_role,
                    role_kind=kind.value,
                    role_add=add,
                    emergency=emergency,
                )

    for operation, help_text in (
        ("set_emergency_admin", "Replace the emergency admin"),
        ("set_fee_recipient", "Replace the fee recipient"),
        ("transfer_authority", "Hand the authority role to another key"),
    ):
        p_update = sub.add_parser(operation.replace("_", "-"), help=help_text)
        _add_common(p_update)
        _add_keypair(p_update, "Authority")
        p_update.add_argument("address", nargs="?", help="New address")
        p_update.set_defaults(func=_cmd_config_update, operation=operation)

    for name, paused in (("pause", True), ("unpause", False)):
        p_pause = sub.add_parser(name, help=f"{name.title()} the program (emergency admin)")
        _add_common(p_pause)
        _add_keypair(p_pause, "Emergency admin")
        p_pause.set_defaults(func=_cmd_pause, paused=paused)

    p_deploy = sub.add_parser("deploy", help="Deploy the built program")
    _add_common(p_deploy)
    _add_keypair(p_deploy, "Deployer")
    p_deploy.add_argument("--program-keypair", help="Program keypair file (new key generated when omitted)")
    p_deploy.set_defaults(func=_cmd_deploy)

    p_upgrade = sub.add_parser("upgrade", help="Upgrade a deployed program")
    _add_common(p_upgrade)
    _add_keypair(p_upgrade, "Upgrade authority")
    p_upgrade.set_defaults(func=_cmd_upgrade)

    p_project = sub.add_parser("project-init", help=f"Write a {PROJECT_FILE}")
    p_project.add_argument("path", nargs="?", default=".", help="Destination directory")
    p_project.add_argument("--program-name", default=DEFAULT_PROGRAM_NAME, help="Anchor program name")
    p_project.add_argument("--anchor-root", help="Anchor workspace, relative to the destination")
    p_project.add_argument("--devnet-rpc-url", help="Devnet RPC endpoint")
    p_project.add_argument("--mainnet-rpc-url", help="Mainnet RPC endpoint")
    p_project.add_argument("--force", action="store_true", help="Overwrite an existing file")
    p_project.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p_project.set_defaults(func=_cmd_project_init)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except UserAborted:
        print("Cancelled.")
        return 0
    except EOFError:
        print("\nInput closed before a value was entered; nothing was submitted.")
        return 1
    except SubmissionFailed as exc:
        print(f"Error: {exc}")
        if exc.outcome_unknown:
            print("The request may still land; run `payctl status` before retrying.")
        return 1
    except PayctlError as exc:
        print(f"Error: {exc}")
        return 1
    except FileNotFoundError as exc:
        print(str(exc))
        return 1
    except ValueError as exc:
        print(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
