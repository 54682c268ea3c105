import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from mintwright.config import ResolutionContext, load_client_config, load_context, load_solana_cli_config
from mintwright.constants import SPL_TOKEN_PROGRAM_ID
from mintwright.rpc import RpcAccountFetcher


def _write_keypair(path: Path) -> Keypair:
    kp = Keypair()
    path.write_text(json.dumps(list(bytes(kp))))
    return kp


class ResolutionContextTests(unittest.TestCase):
    def test_payer_defaults_to_identity(self) -> None:
        kp = Keypair()
        context = ResolutionContext(identity=kp)
        self.assertIs(context.payer, kp)

    def test_string_addresses_are_parsed(self) -> None:
        key = Pubkey.new_unique()
        context = ResolutionContext(identity=str(key))
        self.assertEqual(context.identity, key)
        self.assertEqual(context.payer, key)

    def test_program_lookup(self) -> None:
        custom = Pubkey.new_unique()
        context = ResolutionContext(programs={"splToken": str(custom)})
        self.assertEqual(context.program("splToken"), custom)
        self.assertEqual(ResolutionContext().program("splToken"), Pubkey.from_string(SPL_TOKEN_PROGRAM_ID))
        with self.assertRaisesRegex(ValueError, "Unknown program"):
            context.program("nope")


class LoadContextTests(unittest.TestCase):
    def setUp(self) -> None:
        env = patch.dict(os.environ, {}, clear=False)
        env.start()
        self.addCleanup(env.stop)
        for name in ("MINTWRIGHT_RPC_URL", "MINTWRIGHT_KEYPAIR"):
            os.environ.pop(name, None)
        cli = patch("mintwright.config.load_solana_cli_config", return_value={})
        cli.start()
        self.addCleanup(cli.stop)

    def test_client_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            keypair_path = Path(tmp) / "id.json"
            kp = _write_keypair(keypair_path)
            payer = Pubkey.new_unique()
            rules = Pubkey.new_unique()
            config = Path(tmp) / "client.toml"
            config.write_text(
                "[client]\n"
                f'keypair = "{keypair_path}"\n'
                f'payer = "{payer}"\n'
                'rpc_url = "http://127.0.0.1:8899"\n'
                "[programs]\n"
                f'mplTokenAuthRules = "{rules}"\n'
            )
            context = load_context(config)
        self.assertEqual(context.identity.pubkey(), kp.pubkey())
        self.assertEqual(context.payer, payer)
        self.assertIsInstance(context.fetcher, RpcAccountFetcher)
        self.assertEqual(context.fetcher.rpc_url, "http://127.0.0.1:8899")
        self.assertEqual(context.program("mplTokenAuthRules"), rules)

    def test_offline_never_builds_a_fetcher(self) -> None:
        context = load_context(rpc_url="http://127.0.0.1:8899", offline=True)
        self.assertIsNone(context.fetcher)

    def test_environment_beats_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = Path(tmp) / "client.toml"
            config.write_text('[client]\nrpc_url = "http://file:8899"\n')
            with patch.dict(os.environ, {"MINTWRIGHT_RPC_URL": "http://env:8899"}):
                context = load_context(config)
        self.assertEqual(context.fetcher.rpc_url, "http://env:8899")

    def test_explicit_arguments_win(self) -> None:
        identity = Pubkey.new_unique()
        with patch.dict(os.environ, {"MINTWRIGHT_RPC_URL": "http://env:8899"}):
            context = load_context(rpc_url="http://arg:8899", identity=str(identity))
        self.assertEqual(context.fetcher.rpc_url, "http://arg:8899")
        self.assertEqual(context.identity, identity)
        self.assertEqual(context.payer, identity)

    def test_missing_explicit_keypair(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_context(identity="/nonexistent/mintwright/id.json", offline=True)

    def test_missing_cli_default_keypair_is_ignored(self) -> None:
        with patch(
            "mintwright.config.load_solana_cli_config",
            return_value={"keypair_path": "/nonexistent/mintwright/id.json"},
        ):
            context = load_context(offline=True)
        self.assertIsNone(context.identity)

    def test_bad_sections(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = Path(tmp) / "client.toml"
            config.write_text('client = "nope"\n')
            with self.assertRaisesRegex(ValueError, "must be tables"):
                load_client_config(config)


class SolanaCliConfigTests(unittest.TestCase):
    def test_reads_yaml_keys(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.yml"
            path.write_text(
                "---\n"
                "json_rpc_url: \"https://api.devnet.solana.com\"\n"
                "keypair_path: /home/dev/.config/solana/id.json\n"
                "# comment\n"
            )
            with patch.dict(os.environ, {"SOLANA_CONFIG": str(path)}):
                cfg = load_solana_cli_config()
        self.assertEqual(cfg["json_rpc_url"], "https://api.devnet.solana.com")
        self.assertEqual(cfg["keypair_path"], "/home/dev/.config/solana/id.json")

    def test_missing_file(self) -> None:
        with patch.dict(os.environ, {"SOLANA_CONFIG": "/nonexistent/mintwright/config.yml"}):
            self.assertEqual(load_solana_cli_config(), {})


if __name__ == "__main__":
    unittest.main()
