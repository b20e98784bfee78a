import hashlib
import io
import os
import stat
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

import base58
from solders.keypair import Keypair

from payctl import commands
from payctl.accounts import derive_server_signer, keypair_json
from payctl.commands import Context
from payctl.constants import NETWORKS
from payctl.deploy import ProcessResult
from payctl.errors import (
    AlreadyInitialized,
    ArtifactMissing,
    AuthorizationDenied,
    InvalidState,
    NotInitialized,
    ProgramNotDeployed,
    RecordExists,
    RecordMissing,
    SubmissionFailed,
    UserAborted,
)
from payctl.project import ProjectConfig, _load_toml
from payctl.prompts import Prompter
from payctl.records import RoleKind

from tests._chain import FakeChain, put_config, put_role, put_upgradeable_program

SIGNATURE = "5" * 88


def _ix_data(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


class CommandTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.project = ProjectConfig(root=self.root)
        self.chain = FakeChain()
        self.program_id = Keypair().pubkey()
        self.authority = Keypair()
        self.admin = Keypair()
        self.runs: list[list[str]] = []
        self.out = io.StringIO()
        self.staged_seen: list[Path] = []

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def ctx(self, network: str = "devnet", prompter: Prompter | None = None) -> Context:
        return Context(
            network=NETWORKS[network],
            project=self.project,
            client=self.chain,
            prompter=prompter or Prompter(assume_yes=True, interactive=False),
            runner=self.runner,
            program_id_override=str(self.program_id),
        )

    def runner(self, cmd: list[str], cwd: Path) -> ProcessResult:
        self.runs.append(list(cmd))
        return ProcessResult(returncode=0, output=f"Program Id: x\nSignature: {SIGNATURE}\n")

    def key_file(self, keypair: Keypair, name: str) -> str:
        path = self.root / f"{name}.json"
        path.write_text(keypair_json(keypair))
        return str(path)

    def seed_config(self, paused: bool = False) -> None:
        put_config(
            self.chain,
            self.program_id,
            authority=self.authority.pubkey(),
            emergency_admin=self.admin.pubkey(),
            paused=paused,
        )

    def build_artifact(self) -> None:
        self.project.artifact_path.parent.mkdir(parents=True, exist_ok=True)
        self.project.artifact_path.write_bytes(b"\x7fELF")

    def staged_runner(self, returncode: int = 0):
        def run(cmd: list[str], cwd: Path) -> ProcessResult:
            self.runs.append(list(cmd))
            keypair_path = Path(cmd[cmd.index("--keypair") + 1])
            self.staged_seen.append(keypair_path)
            self.assertTrue(keypair_path.exists())
            if os.name == "posix":
                self.assertEqual(stat.S_IMODE(keypair_path.stat().st_mode), 0o600)
            program_arg = cmd[cmd.index("--program-id") + 1]
            if program_arg.endswith(".json"):
                self.staged_seen.append(Path(program_arg))
            return ProcessResult(returncode=returncode, output=f"Signature: {SIGNATURE}\n")

        return run


class StatusTests(CommandTestCase):
    def test_status_without_config_never_submits(self) -> None:
        put_upgradeable_program(self.chain, self.program_id, self.authority.pubkey())
        with patch("payctl.commands.Submitter") as submitter, redirect_stdout(self.out):
            with self.assertRaises(NotInitialized):
                commands.status(self.ctx())
        submitter.assert_not_called()
        self.assertEqual(self.chain.sent, [])
        self.assertIn("NOT INITIALIZED", self.out.getvalue())

    def test_status_without_program(self) -> None:
        with redirect_stdout(self.out), self.assertRaises(ProgramNotDeployed):
            commands.status(self.ctx())

    def test_status_report(self) -> None:
        put_upgradeable_program(self.chain, self.program_id, self.authority.pubkey())
        self.seed_config(paused=True)
        signer = Keypair().pubkey()
        put_role(self.chain, self.program_id, RoleKind.SERVER_SIGNER, signer)
        put_role(self.chain, self.program_id, RoleKind.RELAYER, Keypair().pubkey(), active=False)
        with redirect_stdout(self.out):
            result = commands.status(self.ctx())
        self.assertTrue(result.success)
        self.assertEqual(result.data["server_signers"], [str(signer)])
        self.assertEqual(len(result.data["relayers"]), 1)
        self.assertFalse(result.data["delegate"])
        text = self.out.getvalue()
        self.assertIn("Paused:          YES", text)
        self.assertIn("?cluster=devnet", text)
        self.assertEqual(self.chain.sent, [])


class AuthorizationScenarioTests(CommandTestCase):
    def test_wrong_role_is_denied_then_right_role_submits(self) -> None:
        self.seed_config()
        new_recipient = str(Keypair().pubkey())

        with redirect_stdout(self.out), self.assertRaises(AuthorizationDenied) as ctx:
            commands.update_config(
                self.ctx(),
                "set_fee_recipient",
                new_value=new_recipient,
                keypair_path=self.key_file(self.admin, "admin"),
            )
        self.assertIn(f"expected {self.authority.pubkey()}, got {self.admin.pubkey()}", str(ctx.exception))
        self.assertEqual(self.chain.sent, [])

        with redirect_stdout(self.out):
            result = commands.update_config(
                self.ctx(),
                "set_fee_recipient",
                new_value=new_recipient,
                keypair_path=self.key_file(self.authority, "authority"),
            )
        self.assertTrue(result.success)
        self.assertEqual(len(self.chain.sent), 1)
        self.assertEqual(bytes(self.chain.sent[0].message.instructions[0].data), _ix_data("set_fee_recipient"))
        self.assertEqual(result.data["explorer"], f"https://solscan.io/tx/{result.signature}?cluster=devnet")

    def test_emergency_commands_require_emergency_admin(self) -> None:
        self.seed_config()
        with redirect_stdout(self.out), self.assertRaises(AuthorizationDenied):
            commands.change_role_record(
                self.ctx(),
                RoleKind.RELAYER,
                add=True,
                emergency=True,
                identity=str(Keypair().pubkey()),
                keypair_path=self.key_file(self.authority, "authority"),
            )
        self.assertEqual(self.chain.sent, [])

    def test_commands_require_config(self) -> None:
        with redirect_stdout(self.out), self.assertRaises(NotInitialized):
            commands.set_paused(self.ctx(), True, keypair_path=self.key_file(self.admin, "admin"))


class RoleRecordCommandTests(CommandTestCase):
    def test_add_server_signer(self) -> None:
        self.seed_config()
        signer = Keypair().pubkey()
        with redirect_stdout(self.out):
            commands.change_role_record(
                self.ctx(),
                RoleKind.SERVER_SIGNER,
                add=True,
                identity=str(signer),
                keypair_path=self.key_file(self.authority, "authority"),
            )
        message = self.chain.sent[0].message
        self.assertEqual(bytes(message.instructions[0].data), _ix_data("add_server_signer"))
        self.assertIn(derive_server_signer(self.program_id, signer).address, message.account_keys)

    def test_add_existing_record(self) -> None:
        self.seed_config()
        relayer = Keypair().pubkey()
        put_role(self.chain, self.program_id, RoleKind.RELAYER, relayer)
        with redirect_stdout(self.out), self.assertRaises(RecordExists):
            commands.change_role_record(
                self.ctx(),
                RoleKind.RELAYER,
                add=True,
                identity=str(relayer),
                keypair_path=self.key_file(self.authority, "authority"),
            )

    def test_remove_missing_record(self) -> None:
        self.seed_config()
        with redirect_stdout(self.out), self.assertRaises(RecordMissing):
            commands.change_role_record(
                self.ctx(),
                RoleKind.SERVER_SIGNER,
                add=False,
                identity=str(Keypair().pubkey()),
                keypair_path=self.key_file(self.authority, "authority"),
            )

    def test_emergency_remove_relayer(self) -> None:
        self.seed_config()
        relayer = Keypair().pubkey()
        put_role(self.chain, self.program_id, RoleKind.RELAYER, relayer)
        with redirect_stdout(self.out):
            result = commands.change_role_record(
                self.ctx(),
                RoleKind.RELAYER,
                add=False,
                emergency=True,
                identity=str(relayer),
                keypair_path=self.key_file(self.admin, "admin"),
            )
        self.assertTrue(result.success)
        self.assertEqual(bytes(self.chain.sent[0].message.instructions[0].data), _ix_data("emergency_remove_relayer"))


class ConfirmationTests(CommandTestCase):
    def test_declined_confirmation_has_no_effect(self) -> None:
        self.seed_config()
        prompter = Prompter(interactive=True, input_fn=lambda _: "n")
        with redirect_stdout(self.out), self.assertRaises(UserAborted):
            commands.set_paused(self.ctx(prompter=prompter), True, keypair_path=self.key_file(self.admin, "admin"))
        self.assertEqual(self.chain.sent, [])

    def test_non_interactive_without_yes_is_an_error(self) -> None:
        self.seed_config()
        prompter = Prompter(interactive=False)
        with redirect_stdout(self.out), self.assertRaisesRegex(ValueError, "--yes"):
            commands.set_paused(self.ctx(prompter=prompter), True, keypair_path=self.key_file(self.admin, "admin"))
        self.assertEqual(self.chain.sent, [])

    def test_mainnet_asks_twice(self) -> None:
        self.seed_config()
        prompts: list[str] = []

        def answer(prompt: str) -> str:
            prompts.append(prompt)
            return "y"

        prompter = Prompter(interactive=True, input_fn=answer)
        with redirect_stdout(self.out):
            commands.set_paused(self.ctx("mainnet", prompter), True, keypair_path=self.key_file(self.admin, "admin"))
        self.assertEqual(len(prompts), 2)
        self.assertIn("MAINNET", prompts[0])


class PauseAndInitializeTests(CommandTestCase):
    def test_pause_then_pause_again(self) -> None:
        self.seed_config(paused=True)
        with redirect_stdout(self.out), self.assertRaisesRegex(InvalidState, "already paused"):
            commands.set_paused(self.ctx(), True, keypair_path=self.key_file(self.admin, "admin"))
        with redirect_stdout(self.out):
            commands.set_paused(self.ctx(), False, keypair_path=self.key_file(self.admin, "admin"))
        self.assertEqual(bytes(self.chain.sent[0].message.instructions[0].data), _ix_data("unpause"))

    def test_transfer_to_same_authority(self) -> None:
        self.seed_config()
        with redirect_stdout(self.out), self.assertRaises(InvalidState):
            commands.update_config(
                self.ctx(),
                "transfer_authority",
                new_value=str(self.authority.pubkey()),
                keypair_path=self.key_file(self.authority, "authority"),
            )

    def test_initialize(self) -> None:
        with redirect_stdout(self.out):
            result = commands.initialize(
                self.ctx(),
                keypair_path=self.key_file(self.authority, "authority"),
                server_signer=str(Keypair().pubkey()),
                fee_recipient=str(Keypair().pubkey()),
                relayer=str(Keypair().pubkey()),
            )
        self.assertTrue(result.success)
        message = self.chain.sent[0].message
        self.assertEqual(bytes(message.instructions[0].data), _ix_data("initialize"))
        self.assertEqual(message.account_keys[0], self.authority.pubkey())

    def test_initialize_twice(self) -> None:
        self.seed_config()
        with redirect_stdout(self.out), self.assertRaises(AlreadyInitialized):
            commands.initialize(self.ctx(), keypair_path=self.key_file(self.authority, "authority"))


class DeployTests(CommandTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.deployer = Keypair()
        self.program = Keypair()

    def test_missing_artifact_touches_no_credentials(self) -> None:
        with patch("payctl.commands.staged_credential") as staged, redirect_stdout(self.out):
            with self.assertRaises(ArtifactMissing):
                commands.deploy(self.ctx(), deployer_keypair_path=self.key_file(self.deployer, "deployer"))
        staged.assert_not_called()

    def test_deploy_stages_and_removes_credentials(self) -> None:
        self.build_artifact()
        ctx = self.ctx()
        ctx.runner = self.staged_runner()
        with redirect_stdout(self.out):
            result = commands.deploy(
                ctx,
                program_keypair_path=self.key_file(self.program, "program"),
                deployer_keypair_path=self.key_file(self.deployer, "deployer"),
            )
        self.assertEqual(result.signature, SIGNATURE)
        self.assertTrue(result.data["new"])
        self.assertIn(f"{self.program.pubkey()} (NEW)", self.out.getvalue())
        self.assertEqual(len(self.staged_seen), 2)
        self.assertNotEqual(self.staged_seen[0], self.staged_seen[1])
        for path in self.staged_seen:
            self.assertFalse(path.exists())

        argv = " ".join(self.runs[0])
        for keypair in (self.deployer, self.program):
            self.assertNotIn(base58.b58encode(bytes(keypair)).decode(), argv)
            self.assertNotIn(keypair_json(keypair), argv)

        anchor = _load_toml(self.project.anchor_toml_path)
        self.assertEqual(anchor["programs"]["devnet"]["setto_payment"], str(self.program.pubkey()))
        self.assertTrue(self.project.deployment_record_path(NETWORKS["devnet"]).exists())

    def test_failed_deploy_still_removes_credentials(self) -> None:
        self.build_artifact()
        ctx = self.ctx()
        ctx.runner = self.staged_runner(returncode=1)
        with redirect_stdout(self.out), self.assertRaises(SubmissionFailed) as err:
            commands.deploy(
                ctx,
                program_keypair_path=self.key_file(self.program, "program"),
                deployer_keypair_path=self.key_file(self.deployer, "deployer"),
            )
        self.assertTrue(err.exception.outcome_unknown)
        for path in self.staged_seen:
            self.assertFalse(path.exists())
        self.assertFalse(self.project.anchor_toml_path.exists())

    def test_non_interactive_deploy_needs_program_keypair(self) -> None:
        self.build_artifact()
        with redirect_stdout(self.out), self.assertRaisesRegex(ValueError, "--program-keypair"):
            commands.deploy(self.ctx(), deployer_keypair_path=self.key_file(self.deployer, "deployer"))
        self.assertEqual(self.runs, [])

    def test_redeploy_checks_upgrade_authority(self) -> None:
        self.build_artifact()
        put_upgradeable_program(self.chain, self.program.pubkey(), Keypair().pubkey())
        with redirect_stdout(self.out), self.assertRaises(AuthorizationDenied):
            commands.deploy(
                self.ctx(),
                program_keypair_path=self.key_file(self.program, "program"),
                deployer_keypair_path=self.key_file(self.deployer, "deployer"),
            )
        self.assertEqual(self.runs, [])

    def test_redeploy_by_upgrade_authority_is_existing(self) -> None:
        self.build_artifact()
        put_upgradeable_program(self.chain, self.program.pubkey(), self.deployer.pubkey())
        ctx = self.ctx()
        ctx.runner = self.staged_runner()
        with redirect_stdout(self.out):
            result = commands.deploy(
                ctx,
                program_keypair_path=self.key_file(self.program, "program"),
                deployer_keypair_path=self.key_file(self.deployer, "deployer"),
            )
        self.assertFalse(result.data["new"])
        self.assertIn(f"{self.program.pubkey()} (EXISTING)", self.out.getvalue())


class UpgradeTests(CommandTestCase):
    def test_upgrade_requires_deployed_program(self) -> None:
        self.build_artifact()
        with redirect_stdout(self.out), self.assertRaises(ProgramNotDeployed):
            commands.upgrade(self.ctx(), keypair_path=self.key_file(self.authority, "authority"))

    def test_upgrade_denied_for_other_key(self) -> None:
        self.build_artifact()
        put_upgradeable_program(self.chain, self.program_id, self.authority.pubkey())
        with redirect_stdout(self.out), self.assertRaises(AuthorizationDenied):
            commands.upgrade(self.ctx(), keypair_path=self.key_file(self.admin, "admin"))
        self.assertEqual(self.runs, [])

    def test_upgrade(self) -> None:
        self.build_artifact()
        put_upgradeable_program(self.chain, self.program_id, self.authority.pubkey())
        ctx = self.ctx()
        ctx.runner = self.staged_runner()
        with redirect_stdout(self.out):
            result = commands.upgrade(ctx, keypair_path=self.key_file(self.authority, "authority"))
        self.assertEqual(result.data["program_id"], str(self.program_id))
        cmd = self.runs[0]
        self.assertEqual(cmd[cmd.index("--program-id") + 1], str(self.program_id))
        self.assertEqual(len(self.staged_seen), 1)
        self.assertFalse(self.staged_seen[0].exists())


if __name__ == "__main__":
    unittest.main()
