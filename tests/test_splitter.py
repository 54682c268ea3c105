import unittest

from solders.pubkey import Pubkey

from mintwright.assembler import InstructionDefinition
from mintwright.errors import ConfigurationError, SplitterNameCollision
from mintwright.rules import AccountRef, Identity, Literal
from mintwright.slots import Slot, SlotTable
from mintwright.splitter import Variant, VersionedInstruction, apply_overrides, split_instruction

PROGRAM = Pubkey.new_unique()


def _versioned(variants, **kwargs) -> VersionedInstruction:
    return VersionedInstruction(
        name="transfer",
        program_id=PROGRAM,
        discriminator=bytes([44]),
        accounts=[
            Slot.account("authority", 0, signer=True, rule=Identity()),
            Slot.account("record", 1, writable=True),
        ],
        args=[Slot.argument("amount", codec="u64", rule=Literal(1))],
        variants=variants,
        **kwargs,
    )


class SplitTests(unittest.TestCase):
    def test_names_and_discriminators(self) -> None:
        definitions = split_instruction(
            _versioned([Variant("V1", 0), Variant("SaleV1", 1, args=[Slot.argument("memo", codec="option<string>")])])
        )
        self.assertEqual([d.name for d in definitions], ["transferV1", "transferSaleV1"])
        self.assertEqual([d.discriminator for d in definitions], [bytes([44, 0]), bytes([44, 1])])

    def test_argument_order(self) -> None:
        (definition,) = split_instruction(
            _versioned([Variant("V1", 3, args=[Slot.argument("memo", codec="option<string>")])])
        )
        self.assertEqual([s.name for s in definition.table.arguments], ["discriminator", "amount", "memo"])
        self.assertEqual([s.name for s in definition.table.accounts], ["authority", "record"])

    def test_variant_argument_collides_with_shared_slot(self) -> None:
        with self.assertRaises(SplitterNameCollision) as ctx:
            split_instruction(_versioned([Variant("V1", 0, args=[Slot.argument("amount", codec="u8")])]))
        self.assertEqual(ctx.exception.name, "amount")
        with self.assertRaises(SplitterNameCollision):
            split_instruction(_versioned([Variant("V1", 0, args=[Slot.argument("record", codec="u8")])]))

    def test_duplicate_tag(self) -> None:
        with self.assertRaises(SplitterNameCollision):
            split_instruction(_versioned([Variant("V1", 0), Variant("V2", 0)]))

    def test_duplicate_variant_name(self) -> None:
        with self.assertRaises(SplitterNameCollision):
            split_instruction(_versioned([Variant("V1", 0), Variant("V1", 1)]))

    def test_tag_must_fit_a_byte(self) -> None:
        with self.assertRaises(ConfigurationError):
            split_instruction(_versioned([Variant("V1", 256)]))

    def test_variant_args_must_be_arguments(self) -> None:
        with self.assertRaisesRegex(ConfigurationError, "must be arguments"):
            split_instruction(_versioned([Variant("V1", 0, args=[Slot.account("extra", 2)])]))

    def test_variant_accounts_follow_shared_accounts(self) -> None:
        v1, v2 = split_instruction(
            _versioned(
                [
                    Variant("V1", 0),
                    Variant("V2", 1, accounts=[Slot.account("delegate", 2, signer=True)]),
                ]
            )
        )
        self.assertEqual([s.name for s in v1.table.accounts], ["authority", "record"])
        self.assertEqual([s.name for s in v2.table.accounts], ["authority", "record", "delegate"])
        self.assertEqual(v1.table.accounts, v2.table.accounts[:2])

    def test_variant_accounts_cannot_reuse_shared_positions(self) -> None:
        with self.assertRaisesRegex(ConfigurationError, "after the shared accounts"):
            split_instruction(_versioned([Variant("V1", 0, accounts=[Slot.account("delegate", 1)])]))
        with self.assertRaises(SplitterNameCollision):
            split_instruction(_versioned([Variant("V1", 0, accounts=[Slot.account("record", 2)])]))
        with self.assertRaisesRegex(ConfigurationError, "must be accounts"):
            split_instruction(_versioned([Variant("V1", 0, accounts=[Slot.argument("memo")])]))

    def test_override_can_reference_variant_account(self) -> None:
        (definition,) = split_instruction(
            _versioned(
                [
                    Variant(
                        "V2",
                        1,
                        accounts=[Slot.account("delegate", 2)],
                        overrides={"record": {"rule": AccountRef("delegate")}},
                    )
                ]
            )
        )
        order = definition.table.order
        self.assertLess(order.index("delegate"), order.index("record"))

    def test_no_variants(self) -> None:
        with self.assertRaises(ConfigurationError):
            split_instruction(_versioned([]))

    def test_variant_storage_wins(self) -> None:
        first, second = split_instruction(_versioned([Variant("V1", 0), Variant("V2", 1, storage=300)], storage=100))
        self.assertEqual(first.storage, 100)
        self.assertEqual(second.storage, 300)

    def test_variant_overrides(self) -> None:
        (definition,) = split_instruction(
            _versioned([Variant("V1", 0, overrides={"record": {"rule": Literal(PROGRAM), "writable": False}})])
        )
        record = definition.table.slot("record")
        self.assertEqual(record.rule, Literal(PROGRAM))
        self.assertFalse(record.writable)


class ApplyOverridesTests(unittest.TestCase):
    def setUp(self) -> None:
        table = SlotTable(
            name="sample",
            program_id=PROGRAM,
            slots=[
                Slot.account("authority", 0, signer=True, rule=Identity()),
                Slot.account("record", 1),
            ],
        )
        self.definition = InstructionDefinition(table=table, storage=10)

    def test_optional_flips_required(self) -> None:
        updated = apply_overrides(self.definition, {"record": {"optional": False}})
        self.assertTrue(updated.table.slot("record").required)
        self.assertFalse(self.definition.table.slot("record").required)
        self.assertEqual(updated.storage, 10)

    def test_rule_none_removes_default(self) -> None:
        updated = apply_overrides(self.definition, {"authority": {"rule": None}})
        self.assertIsNone(updated.table.slot("authority").rule)

    def test_unknown_slot(self) -> None:
        with self.assertRaisesRegex(ConfigurationError, "unknown slots nope"):
            apply_overrides(self.definition, {"nope": {"optional": True}})

    def test_unknown_attribute(self) -> None:
        with self.assertRaisesRegex(ConfigurationError, "cannot override index"):
            apply_overrides(self.definition, {"record": {"index": 5}})

    def test_overrides_are_validated(self) -> None:
        with self.assertRaises(ConfigurationError):
            apply_overrides(self.definition, {"record": {"signer": "maybe"}})


if __name__ == "__main__":
    unittest.main()
