import unittest

from solders.pubkey import Pubkey

from mintwright.accounts import (
    MasterEditionLayout,
    Metadata,
    MetadataLayout,
    TokenRecordLayout,
    decode_account,
    decode_master_edition,
    decode_metadata,
    decode_token_record,
)
from mintwright.constants import Key, TokenDelegateRole, TokenStandard, TokenState
from mintwright.errors import AccountDecodeError


def _metadata_bytes(**overrides) -> bytes:
    fields = {
        "key": Key.MetadataV1,
        "update_authority": Pubkey.new_unique(),
        "mint": Pubkey.new_unique(),
        "name": "Asset" + "\x00" * 27,
        "symbol": "AST\x00\x00\x00\x00\x00\x00\x00",
        "uri": "https://example.com/a.json" + "\x00" * 10,
        "seller_fee_basis_points": 500,
        "creators": [{"address": Pubkey.new_unique(), "verified": True, "share": 100}],
        "primary_sale_happened": False,
        "is_mutable": True,
        "edition_nonce": 255,
        "token_standard": TokenStandard.NonFungible,
        "collection": None,
        "uses": None,
        "collection_details": {"V1": {"size": 3}},
        "programmable_config": None,
    }
    fields.update(overrides)
    return MetadataLayout.build(fields)


class DecodeMetadataTests(unittest.TestCase):
    def test_strips_padding(self) -> None:
        record = decode_metadata(_metadata_bytes())
        self.assertIsInstance(record, Metadata)
        self.assertEqual(record.name, "Asset")
        self.assertEqual(record.symbol, "AST")
        self.assertEqual(record.uri, "https://example.com/a.json")
        self.assertIs(record.token_standard, TokenStandard.NonFungible)
        self.assertEqual(record.creators[0].share, 100)
        self.assertEqual(record.collection_details, {"V1": {"size": 3}})

    def test_trailing_bytes_ignored(self) -> None:
        record = decode_metadata(_metadata_bytes() + b"\x00" * 64)
        self.assertEqual(record.seller_fee_basis_points, 500)

    def test_missing_token_standard(self) -> None:
        record = decode_metadata(_metadata_bytes(token_standard=None, creators=None))
        self.assertIsNone(record.token_standard)
        self.assertIsNone(record.creators)

    def test_wrong_key(self) -> None:
        data = MasterEditionLayout.build({"key": Key.MasterEditionV2, "supply": 0, "max_supply": 0})
        with self.assertRaisesRegex(AccountDecodeError, "expected key MetadataV1, found MasterEditionV2"):
            decode_metadata(data)

    def test_truncated(self) -> None:
        with self.assertRaises(AccountDecodeError):
            decode_metadata(_metadata_bytes()[:40])
        with self.assertRaises(AccountDecodeError):
            decode_metadata(b"")


class DecodeAccountTests(unittest.TestCase):
    def test_dispatch_by_key(self) -> None:
        edition = MasterEditionLayout.build({"key": Key.MasterEditionV2, "supply": 2, "max_supply": None})
        self.assertEqual(decode_account(edition), decode_master_edition(edition))
        self.assertIsNone(decode_account(edition).max_supply)

        delegate = Pubkey.new_unique()
        record = TokenRecordLayout.build(
            {
                "key": Key.TokenRecord,
                "bump": 254,
                "state": TokenState.Locked,
                "rule_set_revision": None,
                "delegate": delegate,
                "delegate_role": TokenDelegateRole.Utility,
                "locked_transfer": None,
            }
        )
        decoded = decode_token_record(record)
        self.assertEqual(decode_account(record), decoded)
        self.assertIs(decoded.state, TokenState.Locked)
        self.assertEqual(decoded.delegate, delegate)

        self.assertEqual(decode_account(_metadata_bytes(name="x")).name, "x")

    def test_unsupported_keys(self) -> None:
        with self.assertRaisesRegex(AccountDecodeError, "no decoder"):
            decode_account(bytes([Key.EditionMarker]) + b"\x00" * 31)
        with self.assertRaisesRegex(AccountDecodeError, "unknown account key"):
            decode_account(b"\xff")


if __name__ == "__main__":
    unittest.main()
