import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from solders.pubkey import Pubkey

from mintwright.addresses import derive
from mintwright.catalog import load_catalog
from mintwright.cli import _parse_pairs, main
from mintwright.constants import TOKEN_METADATA_PROGRAM_ID

META = Pubkey.from_string(TOKEN_METADATA_PROGRAM_ID)


def _run(argv):
    buf = io.StringIO()
    with redirect_stdout(buf):
        rc = main(argv)
    return rc, buf.getvalue()


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        env = patch.dict(os.environ, {}, clear=False)
        env.start()
        self.addCleanup(env.stop)
        for name in ("MINTWRIGHT_RPC_URL", "MINTWRIGHT_KEYPAIR"):
            os.environ.pop(name, None)
        cli = patch("mintwright.config.load_solana_cli_config", return_value={})
        cli.start()
        self.addCleanup(cli.stop)

    def test_list(self) -> None:
        rc, out = _run(["list"])
        self.assertEqual(rc, 0)
        lines = out.strip().splitlines()
        self.assertEqual(len(lines), 51)
        self.assertTrue(lines[0].startswith("createV1"))
        self.assertIn("[42, 0]", lines[0])

    def test_show(self) -> None:
        rc, out = _run(["show", "mintV1"])
        self.assertEqual(rc, 0)
        self.assertIn("discriminator: [43, 0]", out)
        self.assertIn("tokenRecord", out)
        self.assertIn("resolution order:", out)
        self.assertIn("(extra)", out)

    def test_show_unknown_instruction(self) -> None:
        rc, out = _run(["show", "createV9"])
        self.assertEqual(rc, 1)
        self.assertIn("Unknown instruction: createV9", out)

    def test_pda(self) -> None:
        mint = Pubkey.new_unique()
        rc, out = _run(["pda", "metadata", "--seed", f"mint={mint}"])
        self.assertEqual(rc, 0)
        self.assertEqual(out.strip(), str(derive([b"metadata", bytes(META), bytes(mint)], META)))

    def test_pda_with_all_digit_address(self) -> None:
        system = "11111111111111111111111111111111"
        rc, out = _run(["pda", "metadata", "--seed", f"mint={system}"])
        self.assertEqual(rc, 0)
        expected = derive([b"metadata", bytes(META), bytes(Pubkey.from_string(system))], META)
        self.assertEqual(out.strip(), str(expected))

    def test_resolve_json(self) -> None:
        mint = Pubkey.new_unique()
        authority = Pubkey.new_unique()
        rc, out = _run(
            [
                "resolve",
                "mintV1",
                "--offline",
                "--json",
                "--identity",
                str(authority),
                "--set",
                f"mint={mint}",
                "--set",
                "tokenStandard=NonFungible",
                "--set",
                "amount=1",
            ]
        )
        self.assertEqual(rc, 0)
        data = json.loads(out)
        self.assertEqual(data["program_id"], str(META))
        accounts = {acct["name"]: acct for acct in data["accounts"]}
        self.assertEqual(accounts["authority"]["address"], str(authority))
        self.assertEqual(accounts["tokenRecord"]["address"], str(META))
        self.assertEqual(data["storage_delta"], 293)
        self.assertTrue(data["data"].startswith("2b00"))

    def test_resolve_text(self) -> None:
        rc, out = _run(
            [
                "resolve",
                "verifyCreatorV1",
                "--offline",
                "--identity",
                str(Pubkey.new_unique()),
                "--set",
                f"metadata={Pubkey.new_unique()}",
            ]
        )
        self.assertEqual(rc, 0)
        self.assertIn("data: 3400", out)
        self.assertIn("storage delta: 0 bytes", out)

    def test_resolve_with_all_digit_address(self) -> None:
        system = "11111111111111111111111111111111"
        rc, out = _run(
            [
                "resolve",
                "verifyCreatorV1",
                "--offline",
                "--json",
                "--identity",
                str(Pubkey.new_unique()),
                "--set",
                f"metadata={system}",
            ]
        )
        self.assertEqual(rc, 0)
        accounts = {acct["name"]: acct for acct in json.loads(out)["accounts"]}
        self.assertEqual(accounts["metadata"]["address"], system)

    def test_resolve_with_all_digit_pubkey_argument(self) -> None:
        system = "11111111111111111111111111111111"
        rc, out = _run(
            [
                "resolve",
                "printV1",
                "--offline",
                "--json",
                "--identity",
                str(Pubkey.new_unique()),
                "--set",
                f"editionMint={Pubkey.new_unique()}",
                "--set",
                f"masterEditionMint={system}",
                "--set",
                "tokenStandard=NonFungible",
                "--set",
                "editionNumber=1",
            ]
        )
        self.assertEqual(rc, 0)
        accounts = {acct["name"]: acct for acct in json.loads(out)["accounts"]}
        expected = derive([b"metadata", bytes(META), bytes(Pubkey.from_string(system))], META)
        self.assertEqual(accounts["masterMetadata"]["address"], str(expected))

    def test_resolve_missing_slot(self) -> None:
        rc, out = _run(["resolve", "mintV1", "--offline", "--identity", str(Pubkey.new_unique())])
        self.assertEqual(rc, 1)
        self.assertIn("Missing required slot 'mint'", out)

    def test_split_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            rc, out = _run(["split", "delegateSaleV1", "createV1", "--out", tmp])
            self.assertEqual(rc, 0)
            self.assertIn("Wrote", out)
            path = Path(tmp) / "delegateSaleV1.toml"
            self.assertTrue(path.exists())
            reloaded = load_catalog(path)
            self.assertEqual(reloaded.names(), ["delegateSaleV1"])
            self.assertEqual(reloaded["delegateSaleV1"].discriminator, bytes([44, 1]))

            rc, out = _run(["--catalog", str(path), "list"])
            self.assertEqual(rc, 0)
            self.assertTrue(out.startswith("delegateSaleV1"))

    def test_missing_catalog_file(self) -> None:
        rc, out = _run(["--catalog", "/nonexistent/mintwright/program.toml", "list"])
        self.assertEqual(rc, 1)


class ParsePairsTests(unittest.TestCase):
    def test_json_values_with_string_fallback(self) -> None:
        pairs = _parse_pairs(["amount=5", "name=Asset", 'creators=[{"share": 100}]', "flag=true"], "--set")
        self.assertEqual(pairs, {"amount": 5, "name": "Asset", "creators": [{"share": 100}], "flag": True})

    def test_raw_names_keep_addresses_as_text(self) -> None:
        system = "11111111111111111111111111111111"
        pairs = _parse_pairs([f"mint={system}", "amount=1"], "--set", {"mint"})
        self.assertEqual(pairs, {"mint": system, "amount": 1})
        self.assertEqual(_parse_pairs([f"mint={system}"], "--set"), {"mint": int(system)})

    def test_rejects_malformed(self) -> None:
        with self.assertRaisesRegex(ValueError, "expects name=value"):
            _parse_pairs(["amount"], "--set")
        with self.assertRaises(ValueError):
            _parse_pairs(["=5"], "--set")


if __name__ == "__main__":
    unittest.main()
