import io
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from solders.keypair import Keypair

from payctl.accounts import keypair_json
from payctl.cli import build_parser, main
from payctl.errors import AuthorizationDenied, NotInitialized, SubmissionFailed, UserAborted
from payctl.project import load_project
from payctl.records import RoleKind
from tests._chain import FakeChain, put_config


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self._env = patch.dict(os.environ, {}, clear=False)
        self._env.start()
        for key in ("PAYCTL_NETWORK", "PAYCTL_RPC_URL", "PAYCTL_PROGRAM_ID", "PAYCTL_PROJECT_ROOT"):
            os.environ.pop(key, None)

    def tearDown(self) -> None:
        self._env.stop()
        self._tmp.cleanup()

    def _run(self, *argv: str) -> tuple[int, str]:
        out = io.StringIO()
        with redirect_stdout(out):
            rc = main(list(argv))
        return rc, out.getvalue()

    def test_role_commands_are_registered(self) -> None:
        args = build_parser().parse_args(["emergency-add-relayer", "--keypair", "k.json", "Relayer111"])
        self.assertEqual(args.role_kind, RoleKind.RELAYER.value)
        self.assertTrue(args.role_add)
        self.assertTrue(args.emergency)
        self.assertEqual(args.address, "Relayer111")

        args = build_parser().parse_args(["remove-server-signer"])
        self.assertFalse(args.role_add)
        self.assertFalse(args.emergency)
        self.assertIsNone(args.address)

    def test_not_initialized_exits_nonzero(self) -> None:
        with patch("payctl.cli.commands.status", side_effect=NotInitialized("Config account X not found")):
            rc, out = self._run("status", "--project", str(self.root))
        self.assertEqual(rc, 1)
        self.assertIn("Config account X not found", out)

    def test_cancel_exits_zero(self) -> None:
        with patch("payctl.cli.commands.set_paused", side_effect=UserAborted("Proceed?")) as pause:
            rc, out = self._run("pause", "--project", str(self.root), "--keypair", "admin.json")
        self.assertEqual(rc, 0)
        self.assertIn("Cancelled.", out)
        self.assertTrue(pause.call_args[0][1])
        self.assertEqual(pause.call_args[1]["keypair_path"], "admin.json")

    def test_non_interactive_confirmation_needs_yes(self) -> None:
        chain = FakeChain()
        program_id = Keypair().pubkey()
        admin = Keypair()
        put_config(chain, program_id, authority=Keypair().pubkey(), emergency_admin=admin.pubkey())
        key_path = self.root / "admin.json"
        key_path.write_text(keypair_json(admin))
        argv = ["pause", "--project", str(self.root), "--program-id", str(program_id)]
        argv += ["--non-interactive", "--keypair", str(key_path)]
        with patch("payctl.cli.RpcClient", return_value=chain):
            rc, out = self._run(*argv)
        self.assertEqual(rc, 1)
        self.assertIn("pass --yes", out)
        self.assertEqual(chain.sent, [])

        with patch("payctl.cli.RpcClient", return_value=chain):
            rc, out = self._run(*argv, "--yes")
        self.assertEqual(rc, 0)
        self.assertEqual(len(chain.sent), 1)

    def test_closed_input_exits_nonzero(self) -> None:
        with patch("payctl.cli.commands.set_paused", side_effect=EOFError):
            rc, out = self._run("pause", "--project", str(self.root))
        self.assertEqual(rc, 1)
        self.assertIn("nothing was submitted", out)

    def test_denial_reports_both_identities(self) -> None:
        error = AuthorizationDenied("authority", "AAA", "BBB")
        with patch("payctl.cli.commands.update_config", side_effect=error) as update:
            rc, out = self._run("transfer-authority", "--project", str(self.root), "NewAuth")
        self.assertEqual(rc, 1)
        self.assertIn("expected AAA, got BBB", out)
        self.assertEqual(update.call_args[0][1], "transfer_authority")

    def test_unknown_outcome_hint(self) -> None:
        error = SubmissionFailed("timed out", outcome_unknown=True)
        with patch("payctl.cli.commands.upgrade", side_effect=error):
            rc, out = self._run("upgrade", "--project", str(self.root))
        self.assertEqual(rc, 1)
        self.assertIn("payctl status", out)

    def test_network_and_program_flags_reach_context(self) -> None:
        with patch("payctl.cli.commands.status") as status:
            rc, _ = self._run(
                "status",
                "--project",
                str(self.root),
                "--network",
                "mainnet",
                "--rpc-url",
                "http://localhost:8899",
                "--program-id",
                "Prog111",
            )
        self.assertEqual(rc, 0)
        ctx = status.call_args[0][0]
        self.assertEqual(ctx.network.key, "mainnet")
        self.assertEqual(ctx.client.rpc_url, "http://localhost:8899")
        self.assertEqual(ctx.program_id_override, "Prog111")

    def test_bad_network(self) -> None:
        rc, out = self._run("status", "--project", str(self.root), "--network", "localnet")
        self.assertEqual(rc, 1)
        self.assertIn("Unknown network", out)

    def test_project_init(self) -> None:
        rc, out = self._run("project-init", str(self.root), "--program-name", "pay", "--devnet-rpc-url", "http://d")
        self.assertEqual(rc, 0)
        project = load_project(self.root)
        self.assertEqual(project.program_name, "pay")
        self.assertEqual(project.networks["devnet"]["rpc_url"], "http://d")

        rc, out = self._run("project-init", str(self.root))
        self.assertEqual(rc, 1)
        self.assertIn("already exists", out)


if __name__ == "__main__":
    unittest.main()
