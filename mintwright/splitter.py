"""Build-time splitting of versioned instructions into concrete ones."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from solders.pubkey import Pubkey

from .assembler import DISCRIMINATOR, InstructionDefinition, StorageRule
from .codecs import TypeRegistry
from .constants import OPTIONAL_OMITTED
from .errors import ConfigurationError, SplitterNameCollision
from .rules import Literal
from .slots import Slot, SlotTable
from .util import upper_first

OVERRIDABLE = {"rule", "required", "optional", "signer", "writable", "docs", "creates", "creates_if_missing", "extra"}


@dataclass(frozen=True)
class Variant:
    name: str
    tag: int
    args: List[Slot] = field(default_factory=list)
    accounts: List[Slot] = field(default_factory=list)
    overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    storage: StorageRule = None
    docs: str = ""


@dataclass
class VersionedInstruction:
    """One logical instruction whose arguments are a tagged union of variants."""

    name: str
    program_id: Pubkey
    discriminator: bytes
    accounts: List[Slot]
    args: List[Slot] = field(default_factory=list)
    variants: List[Variant] = field(default_factory=list)
    optional_accounts: str = OPTIONAL_OMITTED
    storage: StorageRule = None
    registry: Any = None
    types: Optional[TypeRegistry] = None
    docs: str = ""


def discriminator_slot(value: bytes) -> Slot:
    return Slot.argument(DISCRIMINATOR, rule=Literal(bytes(value)), docs="Instruction discriminator")


def split_instruction(versioned: VersionedInstruction) -> List[InstructionDefinition]:
    if not versioned.variants:
        raise ConfigurationError(f"{versioned.name}: versioned instruction has no variants")
    shared = list(versioned.accounts) + list(versioned.args)
    shared_names = {slot.name for slot in shared} | {DISCRIMINATOR}
    shared_end = max((slot.index for slot in versioned.accounts), default=-1)

    seen_names: Dict[str, int] = {}
    seen_tags: Dict[int, str] = {}
    for variant in versioned.variants:
        if variant.name in seen_names:
            raise SplitterNameCollision(versioned.name, variant.name, variant.name)
        if not 0 <= variant.tag <= 255:
            raise ConfigurationError(f"{versioned.name}.{variant.name}: tag must fit in one byte")
        if variant.tag in seen_tags:
            raise SplitterNameCollision(versioned.name, variant.name, f"tag {variant.tag} ({seen_tags[variant.tag]})")
        seen_names[variant.name] = variant.tag
        seen_tags[variant.tag] = variant.name

    out: List[InstructionDefinition] = []
    for variant in versioned.variants:
        own_names = set(shared_names)
        for slot in variant.args:
            if slot.is_account:
                raise ConfigurationError(f"{versioned.name}.{variant.name}: variant args must be arguments")
            if slot.name in own_names:
                raise SplitterNameCollision(versioned.name, variant.name, slot.name)
            own_names.add(slot.name)
        for slot in variant.accounts:
            if not slot.is_account:
                raise ConfigurationError(f"{versioned.name}.{variant.name}: variant accounts must be accounts")
            if slot.index <= shared_end:
                raise ConfigurationError(
                    f"{versioned.name}.{variant.name}: account '{slot.name}' must come after the shared accounts"
                )
            if slot.name in own_names:
                raise SplitterNameCollision(versioned.name, variant.name, slot.name)
            own_names.add(slot.name)
        discriminator = bytes(versioned.discriminator) + bytes([variant.tag])
        slots = (
            list(versioned.accounts)
            + list(variant.accounts)
            + [discriminator_slot(discriminator)]
            + list(versioned.args)
            + list(variant.args)
        )
        table = SlotTable(
            name=f"{versioned.name}{upper_first(variant.name)}",
            program_id=versioned.program_id,
            slots=slots,
            optional_accounts=versioned.optional_accounts,
            registry=versioned.registry,
            types=versioned.types,
            docs=variant.docs or versioned.docs,
        )
        storage = variant.storage if variant.storage is not None else versioned.storage
        definition = InstructionDefinition(table=table, storage=storage, docs=table.docs)
        if variant.overrides:
            definition = apply_overrides(definition, variant.overrides)
        out.append(definition)
    return out


def apply_overrides(
    definition: InstructionDefinition,
    overrides: Dict[str, Dict[str, Any]],
) -> InstructionDefinition:
    """Return a copy of ``definition`` with per-slot attributes replaced.

    Each override maps a slot name to the attributes to change. ``rule``
    set to ``None`` removes the slot's default; ``optional`` is the inverse
    of ``required``. The new table is validated again.
    """
    table = definition.table
    slots: List[Slot] = []
    pending = dict(overrides)
    for slot in table.slots:
        attrs = pending.pop(slot.name, None)
        if attrs is None:
            slots.append(slot)
            continue
        unknown = set(attrs) - OVERRIDABLE
        if unknown:
            raise ConfigurationError(f"{table.name}: cannot override {', '.join(sorted(unknown))} on '{slot.name}'")
        changes = dict(attrs)
        if "optional" in changes:
            changes["required"] = not changes.pop("optional")
        slots.append(replace(slot, **changes))
    if pending:
        raise ConfigurationError(f"{table.name}: overrides name unknown slots {', '.join(sorted(pending))}")
    return _with_slots(definition, slots)


def _with_slots(definition: InstructionDefinition, slots: List[Slot]) -> InstructionDefinition:
    table = definition.table
    new_table = SlotTable(
        name=table.name,
        program_id=table.program_id,
        slots=slots,
        optional_accounts=table.optional_accounts,
        registry=table.registry,
        types=table.types,
        docs=table.docs,
    )
    return InstructionDefinition(table=new_table, storage=definition.storage, docs=definition.docs)
