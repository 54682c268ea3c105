"""Resolution engine: turns a sparse request into a total slot assignment."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .addresses import is_signer_value, to_pubkey
from .codecs import TypeRegistry
from .config import ResolutionContext
from .constants import OPTIONAL_PROGRAM_ID
from .errors import (
    CodecError,
    DerivationError,
    ExternalResolverFailure,
    MintwrightError,
    MissingRequiredSlot,
    PredicateTypeMismatch,
    ResolutionError,
    UnresolvableReference,
)
from .resolvers import DEFAULT_REGISTRY, ResolverRegistry
from .rules import (
    UNSET,
    AccountRef,
    AccountValue,
    ArgEquals,
    ArgRef,
    CallerSupplied,
    Conditional,
    DefaultRule,
    Derived,
    Identity,
    IsPresent,
    Literal,
    Payer,
    ProgramId,
    Resolver,
    ResolverTest,
    SlotRef,
)
from .slots import EITHER, Slot, SlotTable

logger = logging.getLogger(__name__)

_EMPTY_TYPES = TypeRegistry()


@dataclass(frozen=True)
class ResolvedAccount:
    name: str
    address: Pubkey
    signer: bool
    writable: bool


@dataclass
class Assignment:
    """Total assignment for one call. Unset slots are absent from ``values``."""

    table: SlotTable
    values: Dict[str, Any]
    sources: Dict[str, str]
    overrides: Dict[str, AccountValue] = field(default_factory=dict)
    context: Optional[ResolutionContext] = None
    registry: Optional[ResolverRegistry] = None

    def is_set(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def arguments(self) -> Dict[str, Any]:
        return {slot.name: self.values[slot.name] for slot in self.table.arguments if slot.name in self.values}

    def accounts(self) -> List[ResolvedAccount]:
        """Account metas in index order, with the table's optional-account strategy applied."""
        out: List[ResolvedAccount] = []
        for slot in self.table.accounts:
            if slot.name not in self.values:
                if self.table.optional_accounts == OPTIONAL_PROGRAM_ID:
                    out.append(ResolvedAccount(slot.name, self.table.program_id, False, False))
                continue
            value = self.values[slot.name]
            signer = _signer_flag(slot, value)
            writable = slot.writable
            override = self.overrides.get(slot.name)
            if override is not None:
                if override.signer is not None:
                    signer = override.signer
                if override.writable is not None:
                    writable = override.writable
            out.append(ResolvedAccount(slot.name, to_pubkey(value), signer, writable))
        return out

    def keypairs(self) -> List[Keypair]:
        """Keypairs behind signing accounts, in account order, without repeats."""
        signing = {acct.name for acct in self.accounts() if acct.signer}
        seen = set()
        out: List[Keypair] = []
        for slot in self.table.accounts:
            value = self.values.get(slot.name)
            if slot.name in signing and isinstance(value, Keypair) and value.pubkey() not in seen:
                seen.add(value.pubkey())
                out.append(value)
        return out


def _signer_flag(slot: Slot, value: Any) -> bool:
    if slot.signer == EITHER:
        return is_signer_value(value)
    return bool(slot.signer)


class _Unresolved(Exception):
    def __init__(self, ref: SlotRef) -> None:
        self.ref = ref
        super().__init__(str(ref))


class _Resolution:
    def __init__(
        self,
        table: SlotTable,
        inputs: Mapping[str, Any],
        context: ResolutionContext,
        registry: ResolverRegistry,
    ) -> None:
        self.table = table
        self.inputs = inputs
        self.context = context
        self.registry = registry
        self.types = table.types or _EMPTY_TYPES
        self.values: Dict[str, Any] = {}
        self.sources: Dict[str, str] = {}
        self.overrides: Dict[str, AccountValue] = {}

    def run(self) -> Assignment:
        for name in self.table.order:
            slot = self.table.slot(name)
            if self.inputs.get(name) is not None:
                self.values[name] = self._coerce_input(slot, self.inputs[name])
                self.sources[name] = "caller"
                logger.debug("%s: slot %s supplied by caller", self.table.name, name)
            elif slot.rule is not None:
                value = self._evaluate(slot, slot.rule)
                if value is UNSET:
                    logger.debug("%s: slot %s left unset by %s rule", self.table.name, name, slot.rule.kind)
                else:
                    self._store(slot, value, slot.rule.kind)
            if slot.required and name not in self.values:
                raise MissingRequiredSlot(name, slot.rule.kind if slot.rule is not None else None)
        return Assignment(self.table, self.values, self.sources, self.overrides, self.context, self.registry)

    def _store(self, slot: Slot, value: Any, kind: str) -> None:
        if isinstance(value, AccountValue):
            if slot.is_account:
                self.overrides[slot.name] = value
            value = value.address
        if slot.is_account:
            value = self._address(slot, value, kind)
        self.values[slot.name] = value
        self.sources[slot.name] = kind
        logger.debug("%s: slot %s resolved by %s rule", self.table.name, slot.name, kind)

    def _address(self, slot: Slot, value: Any, kind: str) -> Any:
        if isinstance(value, (Keypair, Pubkey)):
            return value
        try:
            return to_pubkey(value)
        except ValueError as exc:
            raise ResolutionError(f"Slot '{slot.name}': {exc}", slot=slot.name, rule_kind=kind) from exc

    def _coerce_input(self, slot: Slot, value: Any) -> Any:
        if slot.is_account:
            return self._address(slot, value, "caller")
        if not slot.codec:
            return value
        try:
            return self.types.coerce(slot.codec, value)
        except CodecError as exc:
            raise ResolutionError(f"Slot '{slot.name}': {exc}", slot=slot.name, rule_kind="caller") from exc

    # ── Rules ──────────────────────────────────────────────────────

    def _evaluate(self, slot: Slot, rule: DefaultRule) -> Any:
        if isinstance(rule, Literal):
            return rule.value
        if isinstance(rule, Identity):
            return UNSET if self.context.identity is None else self.context.identity
        if isinstance(rule, Payer):
            return UNSET if self.context.payer is None else self.context.payer
        if isinstance(rule, ProgramId):
            return self.table.program_id
        if isinstance(rule, (AccountRef, ArgRef)):
            ref = rule.references()[0]
            if ref.name in self.values:
                return self.values[ref.name]
            self._check_reference(slot, ref, rule.kind)
            return UNSET
        if isinstance(rule, Derived):
            return self._derive(slot, rule)
        if isinstance(rule, Conditional):
            branch = rule.if_true if self._test(slot, rule.test) else rule.if_false
            if branch is None:
                return UNSET
            return self._evaluate(slot, branch)
        if isinstance(rule, Resolver):
            return self._call(slot, rule.name, rule.depends_on)
        raise ResolutionError(f"Slot '{slot.name}': unknown rule {rule!r}", slot=slot.name)

    def _check_reference(self, slot: Slot, ref: SlotRef, kind: str) -> None:
        # A target with a rule of its own was deliberately left empty.
        if self.table.slot(ref.name).rule is None:
            raise UnresolvableReference(slot.name, str(ref), kind)

    def _derive(self, slot: Slot, rule: Derived) -> Any:
        def lookup(ref: SlotRef) -> Any:
            if ref.name not in self.values:
                raise _Unresolved(ref)
            return self.values[ref.name]

        try:
            return rule.template.derive(self.table.program_id, lookup, slot.name)
        except _Unresolved as missing:
            self._check_reference(slot, missing.ref, rule.kind)
            return UNSET
        except ResolutionError:
            raise
        except (DerivationError, ValueError) as exc:
            raise ResolutionError(f"Slot '{slot.name}': {exc}", slot=slot.name, rule_kind=rule.kind) from exc

    def _test(self, slot: Slot, test: Any) -> bool:
        if isinstance(test, IsPresent):
            return test.ref.name in self.values
        if isinstance(test, CallerSupplied):
            return self.inputs.get(test.ref.name) is not None
        if isinstance(test, ArgEquals):
            if test.name not in self.values:
                return False
            return _equals(slot.name, self.values[test.name], test.value)
        if isinstance(test, ResolverTest):
            result = self._call(slot, test.name, test.depends_on)
            if result is UNSET:
                return False
            if not isinstance(result, bool):
                raise PredicateTypeMismatch(
                    slot.name, f"resolver '{test.name}' returned {type(result).__name__}, not bool"
                )
            return result
        raise PredicateTypeMismatch(slot.name, f"unknown predicate {test!r}")

    def _call(self, slot: Slot, name: str, depends_on: Any) -> Any:
        entry = self.registry.get(name)
        if entry.network and self.context.fetcher is None:
            logger.debug("%s: slot %s skips network resolver %s (offline)", self.table.name, slot.name, name)
            return UNSET
        visible = MappingProxyType({ref.name: self.values[ref.name] for ref in depends_on if ref.name in self.values})
        try:
            return entry(visible, self.context)
        except MintwrightError:
            raise
        except Exception as exc:
            raise ExternalResolverFailure(name, slot.name, exc) from exc


def _equals(slot: str, actual: Any, expected: Any) -> bool:
    if isinstance(expected, IntEnum):
        if isinstance(actual, IntEnum) and type(actual) is not type(expected):
            raise PredicateTypeMismatch(
                slot, f"cannot compare {type(actual).__name__} with {type(expected).__name__}"
            )
        if isinstance(actual, bool) or not isinstance(actual, int):
            raise PredicateTypeMismatch(slot, f"cannot compare {actual!r} with {type(expected).__name__}")
        return int(actual) == int(expected)
    if isinstance(expected, bool) or isinstance(actual, bool):
        if type(actual) is not type(expected):
            raise PredicateTypeMismatch(slot, f"cannot compare {actual!r} with {expected!r}")
        return actual == expected
    if type(actual) is not type(expected) and not (isinstance(actual, int) and isinstance(expected, int)):
        raise PredicateTypeMismatch(slot, f"cannot compare {actual!r} with {expected!r}")
    return actual == expected


def resolve(
    table: SlotTable,
    inputs: Optional[Mapping[str, Any]] = None,
    context: Optional[ResolutionContext] = None,
    registry: Optional[ResolverRegistry] = None,
) -> Assignment:
    inputs = dict(inputs or {})
    unknown = sorted(name for name in inputs if name not in table)
    if unknown:
        raise ResolutionError(f"{table.name}: unknown slots {', '.join(unknown)}", slot=unknown[0])
    registry = registry or table.registry or DEFAULT_REGISTRY
    return _Resolution(table, inputs, context or ResolutionContext(), registry).run()
