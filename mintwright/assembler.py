"""Instruction assembly: ordered account metas, payload bytes and storage delta."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Union

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .codecs import TypeRegistry
from .constants import ACCOUNT_HEADER_SIZE
from .engine import Assignment, ResolvedAccount, resolve
from .errors import CodecError, ConfigurationError, ExternalResolverFailure, MintwrightError
from .resolvers import DEFAULT_REGISTRY
from .rules import Literal, Resolver
from .slots import SlotTable

logger = logging.getLogger(__name__)

DISCRIMINATOR = "discriminator"

StorageRule = Union[int, Resolver, None]


@dataclass
class InstructionDefinition:
    """A slot table plus what the assembler needs beyond it.

    The discriminator lives in the table as the ``discriminator`` argument
    slot, a raw-bytes slot with a ``Literal`` rule that is written first.
    ``storage`` is the base number of bytes the instruction allocates, either
    a constant or a resolver over resolved slots.
    """

    table: SlotTable
    storage: StorageRule = None
    docs: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.storage, bool) or (isinstance(self.storage, int) and self.storage < 0):
            raise ConfigurationError(f"{self.name}: storage must be a non-negative integer")
        slot = self.table.get(DISCRIMINATOR)
        if slot is not None:
            if slot.is_account or slot.codec or not isinstance(slot.rule, Literal):
                raise ConfigurationError(f"{self.name}: discriminator must be a raw argument with a literal rule")
        if isinstance(self.storage, Resolver):
            declared = {ref.name for ref in self.storage.depends_on}
            for ref in self.storage.depends_on:
                if ref.name not in self.table:
                    raise ConfigurationError(f"{self.name}: storage resolver reads unknown slot {ref}")
            registry = self.table.registry
            if registry is not None:
                missing = [dep for dep in registry.get(self.storage.name).requires if dep not in declared]
                if missing:
                    raise ConfigurationError(
                        f"{self.name}: storage resolver '{self.storage.name}' needs {', '.join(missing)}"
                    )

    @property
    def name(self) -> str:
        return self.table.name

    @property
    def discriminator(self) -> bytes:
        slot = self.table.get(DISCRIMINATOR)
        if slot is None:
            return b""
        return bytes(slot.rule.value)


@dataclass(frozen=True)
class ResolvedInstruction:
    program_id: Pubkey
    accounts: List[ResolvedAccount]
    data: bytes
    signers: List[Pubkey]
    storage_delta: int
    keypairs: List[Keypair] = field(default_factory=list, compare=False)

    def account_metas(self) -> List[AccountMeta]:
        return [
            AccountMeta(pubkey=acct.address, is_signer=acct.signer, is_writable=acct.writable)
            for acct in self.accounts
        ]

    def to_instruction(self) -> Instruction:
        return Instruction(self.program_id, self.data, self.account_metas())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program_id": str(self.program_id),
            "accounts": [
                {
                    "name": acct.name,
                    "address": str(acct.address),
                    "signer": acct.signer,
                    "writable": acct.writable,
                }
                for acct in self.accounts
            ],
            "data": self.data.hex(),
            "signers": [str(key) for key in self.signers],
            "storage_delta": self.storage_delta,
        }


def encode_arguments(definition: InstructionDefinition, assignment: Assignment) -> bytes:
    table = definition.table
    chunks: List[bytes] = []
    for slot in table.arguments:
        if slot.extra:
            continue
        if slot.name not in assignment.values:
            # Only options may be left out of the payload; they encode as none.
            if slot.codec and slot.codec.startswith("option<"):
                chunks.append(_types(table).encode(slot.codec, None))
                continue
            raise CodecError(f"{table.name}: argument '{slot.name}' has no value to encode")
        value = assignment.values[slot.name]
        if not slot.codec:
            if not isinstance(value, (bytes, bytearray)):
                raise CodecError(f"{table.name}: argument '{slot.name}' has no codec and is not bytes")
            chunks.append(bytes(value))
            continue
        try:
            chunks.append(_types(table).encode(slot.codec, value))
        except CodecError as exc:
            raise CodecError(f"{table.name}: argument '{slot.name}': {exc}") from exc
    return b"".join(chunks)


def _types(table: SlotTable) -> TypeRegistry:
    return table.types or TypeRegistry()


def storage_delta(definition: InstructionDefinition, assignment: Assignment) -> int:
    total = _base_storage(definition, assignment)
    fetcher = assignment.context.fetcher if assignment.context is not None else None
    for slot in definition.table.accounts:
        if not slot.creates or slot.name not in assignment.values:
            continue
        if slot.creates_if_missing and fetcher is not None:
            address = assignment.values[slot.name]
            try:
                exists = fetcher.get_account(address) is not None
            except MintwrightError:
                raise
            except Exception as exc:
                raise ExternalResolverFailure("account_exists", slot.name, exc) from exc
            if exists:
                logger.debug("%s: %s already exists, not counted", definition.name, slot.name)
                continue
        total += slot.creates + ACCOUNT_HEADER_SIZE
    return total


def _base_storage(definition: InstructionDefinition, assignment: Assignment) -> int:
    storage = definition.storage
    if storage is None:
        return 0
    if isinstance(storage, int):
        return storage
    registry = assignment.registry or DEFAULT_REGISTRY
    visible = MappingProxyType(
        {ref.name: assignment.values[ref.name] for ref in storage.depends_on if ref.name in assignment.values}
    )
    try:
        value = registry.get(storage.name)(visible, assignment.context)
    except MintwrightError:
        raise
    except Exception as exc:
        raise ExternalResolverFailure(storage.name, "<storage>", exc) from exc
    if isinstance(value, bool) or not isinstance(value, int):
        raise ExternalResolverFailure(storage.name, "<storage>", TypeError(f"returned {value!r}, not int"))
    return value


def assemble(definition: InstructionDefinition, assignment: Assignment) -> ResolvedInstruction:
    if assignment.table is not definition.table:
        raise ValueError(f"Assignment was resolved against {assignment.table.name}, not {definition.name}")
    accounts = assignment.accounts()
    data = encode_arguments(definition, assignment)
    signers = [acct.address for acct in accounts if acct.signer]
    return ResolvedInstruction(
        program_id=definition.table.program_id,
        accounts=accounts,
        data=data,
        signers=signers,
        storage_delta=storage_delta(definition, assignment),
        keypairs=assignment.keypairs(),
    )


def build(
    definition: InstructionDefinition,
    inputs: Optional[Dict[str, Any]] = None,
    context: Any = None,
) -> ResolvedInstruction:
    """Resolve and assemble in one step."""
    return assemble(definition, resolve(definition.table, inputs, context))
