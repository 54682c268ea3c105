import unittest
from types import MappingProxyType

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from mintwright.config import ResolutionContext
from mintwright.constants import TOKEN_AUTH_RULES_PROGRAM_ID, TokenStandard
from mintwright.engine import resolve
from mintwright.errors import DuplicateResolver, ExternalResolverFailure, RegistryFrozen, UnknownResolver
from mintwright.resolvers import (
    DEFAULT_REGISTRY,
    ResolverRegistry,
    authorization_rules_program,
    create_v1_bytes,
    creators_from_authority,
    decimals_for,
    is_non_fungible_or_mint_signer,
    print_supply_for,
    token_standard_from_metadata,
)
from mintwright.rules import UNSET, AccountValue, Conditional, Literal, Resolver, ResolverTest, SlotRef
from mintwright.slots import Slot, SlotTable


def _values(**kwargs):
    return MappingProxyType(kwargs)


class RegistryTests(unittest.TestCase):
    def test_default_registry_is_frozen(self) -> None:
        self.assertTrue(DEFAULT_REGISTRY.frozen)
        with self.assertRaises(RegistryFrozen):
            DEFAULT_REGISTRY.add("late", lambda values, context: None)

    def test_extend_copies_resolvers(self) -> None:
        child = DEFAULT_REGISTRY.extend()
        self.assertFalse(child.frozen)
        self.assertIn("create_v1_bytes", child)

        @child.register("always_seven", requires=["amount"])
        def always_seven(values, context):
            return 7

        self.assertEqual(child.get("always_seven").requires, ("amount",))
        self.assertNotIn("always_seven", DEFAULT_REGISTRY)
        self.assertEqual(len(child), len(DEFAULT_REGISTRY) + 1)

    def test_duplicate_and_unknown(self) -> None:
        registry = ResolverRegistry()
        registry.add("one", lambda values, context: 1)
        with self.assertRaises(DuplicateResolver):
            registry.add("one", lambda values, context: 2)
        with self.assertRaises(UnknownResolver):
            registry.get("two")
        self.assertEqual(registry.names(), ["one"])


class TokenMetadataResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.context = ResolutionContext()

    def test_create_v1_bytes(self) -> None:
        self.assertEqual(create_v1_bytes(_values(tokenStandard=TokenStandard.NonFungible), self.context), 1427)
        self.assertEqual(create_v1_bytes(_values(tokenStandard=TokenStandard.Fungible), self.context), 1017)
        self.assertEqual(create_v1_bytes(_values(tokenStandard=TokenStandard.FungibleAsset), self.context), 1017)

    def test_decimals_and_print_supply(self) -> None:
        nft = _values(tokenStandard=TokenStandard.ProgrammableNonFungible)
        fungible = _values(tokenStandard=TokenStandard.Fungible)
        self.assertIsNone(decimals_for(nft, self.context))
        self.assertEqual(decimals_for(fungible, self.context), 0)
        self.assertEqual(print_supply_for(nft, self.context), {"Zero": {}})
        self.assertIsNone(print_supply_for(fungible, self.context))

    def test_token_program_needed(self) -> None:
        fungible = TokenStandard.Fungible
        self.assertTrue(is_non_fungible_or_mint_signer(_values(tokenStandard=fungible, mint=Keypair()), self.context))
        self.assertFalse(
            is_non_fungible_or_mint_signer(_values(tokenStandard=fungible, mint=Pubkey.new_unique()), self.context)
        )

    def test_creators(self) -> None:
        authority = Keypair()
        creators = creators_from_authority(_values(authority=authority), self.context)
        self.assertEqual(creators, [{"address": authority.pubkey(), "verified": True, "share": 100}])
        self.assertIs(creators_from_authority(_values(), self.context), UNSET)

    def test_authorization_rules_program(self) -> None:
        value = authorization_rules_program(_values(authorizationRules=Pubkey.new_unique()), self.context)
        self.assertIsInstance(value, AccountValue)
        self.assertEqual(value.address, Pubkey.from_string(TOKEN_AUTH_RULES_PROGRAM_ID))
        self.assertIs(value.writable, False)
        self.assertIs(authorization_rules_program(_values(), self.context), UNSET)

    def test_authorization_rules_program_override(self) -> None:
        custom = Pubkey.new_unique()
        context = ResolutionContext(programs={"mplTokenAuthRules": str(custom)})
        value = authorization_rules_program(_values(authorizationRules=Pubkey.new_unique()), context)
        self.assertEqual(value.address, custom)

    def test_token_standard_without_fetcher(self) -> None:
        self.assertIs(token_standard_from_metadata(_values(metadata=Pubkey.new_unique()), self.context), UNSET)


class _FailingFetcher:
    def get_account(self, address):
        raise ConnectionError("rpc down")


class ResolverFailureTests(unittest.TestCase):
    def test_fetcher_error_is_wrapped(self) -> None:
        table = SlotTable(
            name="fetchStandard",
            program_id=Pubkey.new_unique(),
            slots=[
                Slot.account("metadata", 0, required=True),
                Slot.argument(
                    "tokenStandard",
                    rule=Resolver("token_standard_from_metadata", (SlotRef.account("metadata"),)),
                ),
            ],
            registry=DEFAULT_REGISTRY,
        )
        context = ResolutionContext(fetcher=_FailingFetcher())
        with self.assertRaises(ExternalResolverFailure) as ctx:
            resolve(table, {"metadata": Pubkey.new_unique()}, context)
        self.assertEqual(ctx.exception.resolver, "token_standard_from_metadata")
        self.assertEqual(ctx.exception.slot, "tokenStandard")
        self.assertIsInstance(ctx.exception.cause, ConnectionError)

    def test_network_resolver_skipped_offline(self) -> None:
        registry = DEFAULT_REGISTRY.extend()
        calls = []

        @registry.register("remote_amount", network=True)
        def remote_amount(values, context):
            calls.append(values)
            return 5

        table = SlotTable(
            name="offline",
            program_id=Pubkey.new_unique(),
            slots=[Slot.argument("amount", rule=Resolver("remote_amount"))],
            registry=registry,
        )
        self.assertFalse(resolve(table, {}, ResolutionContext()).is_set("amount"))
        self.assertEqual(calls, [])
        online = resolve(table, {}, ResolutionContext(fetcher=_FailingFetcher()))
        self.assertEqual(online["amount"], 5)
        self.assertEqual(len(calls), 1)

    def test_network_predicate_offline_takes_else_branch(self) -> None:
        registry = DEFAULT_REGISTRY.extend()

        @registry.register("remote_flag", network=True)
        def remote_flag(values, context):
            return True

        table = SlotTable(
            name="offline",
            program_id=Pubkey.new_unique(),
            slots=[
                Slot.argument(
                    "amount",
                    rule=Conditional(ResolverTest("remote_flag"), if_true=Literal(1), if_false=Literal(2)),
                )
            ],
            registry=registry,
        )
        self.assertEqual(resolve(table, {}, ResolutionContext())["amount"], 2)
        self.assertEqual(resolve(table, {}, ResolutionContext(fetcher=_FailingFetcher()))["amount"], 1)


if __name__ == "__main__":
    unittest.main()
