"""Slot tables: the ordered account and argument slots of one instruction."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Union

from solders.pubkey import Pubkey

from .addresses import to_pubkey
from .codecs import TypeRegistry
from .constants import ALLOWED_OPTIONAL_STRATEGIES, OPTIONAL_OMITTED
from .errors import (
    CodecError,
    ConfigurationError,
    CyclicDependency,
    DuplicateAccountIndex,
    DuplicateSlotName,
    UnknownResolver,
    UnknownSlotReference,
)
from .rules import (
    ACCOUNT,
    ARGUMENT,
    Conditional,
    DefaultRule,
    ResolverTest,
    Resolver,
    SlotRef,
    caller_references,
    resolver_names,
)

if TYPE_CHECKING:  # pragma: no cover
    from .resolvers import ResolverRegistry

EITHER = "either"
SignerFlag = Union[bool, str]


@dataclass(frozen=True)
class Slot:
    name: str
    kind: str
    required: bool = False
    index: Optional[int] = None
    signer: SignerFlag = False
    writable: bool = False
    rule: Optional[DefaultRule] = None
    codec: Optional[str] = None
    extra: bool = False
    creates: int = 0
    creates_if_missing: bool = False
    docs: str = ""

    @property
    def is_account(self) -> bool:
        return self.kind == ACCOUNT

    @property
    def ref(self) -> SlotRef:
        return SlotRef(self.kind, self.name)

    @classmethod
    def account(cls, name: str, index: int, **kwargs) -> "Slot":
        return cls(name=name, kind=ACCOUNT, index=index, **kwargs)

    @classmethod
    def argument(cls, name: str, codec: Optional[str] = None, **kwargs) -> "Slot":
        return cls(name=name, kind=ARGUMENT, codec=codec, **kwargs)


@dataclass
class SlotTable:
    """Validated slot table.

    Construction fails fast on duplicate names or account indices, dangling
    references and dependency cycles. When ``registry`` is given, every
    resolver a rule names must be registered and its rule must declare the
    dependencies the resolver reads.
    """

    name: str
    program_id: Pubkey
    slots: List[Slot]
    optional_accounts: str = OPTIONAL_OMITTED
    registry: Optional["ResolverRegistry"] = None
    types: Optional[TypeRegistry] = None
    docs: str = ""
    _by_name: Dict[str, Slot] = field(init=False, repr=False, compare=False)
    _order: List[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.program_id = to_pubkey(self.program_id)
        self.slots = list(self.slots)
        if self.optional_accounts not in ALLOWED_OPTIONAL_STRATEGIES:
            raise ConfigurationError(
                f"{self.name}: optional_accounts must be one of {sorted(ALLOWED_OPTIONAL_STRATEGIES)}"
            )
        self._by_name = {}
        for slot in self.slots:
            if slot.name in self._by_name:
                raise DuplicateSlotName(self.name, slot.name)
            self._check_slot(slot)
            self._by_name[slot.name] = slot
        self._check_indices()
        self._check_references()
        self._check_codecs()
        if self.registry is not None:
            self._check_resolvers(self.registry)
        self._order = self._topological_order()

    def _check_slot(self, slot: Slot) -> None:
        if slot.kind not in (ACCOUNT, ARGUMENT):
            raise ConfigurationError(f"{self.name}: slot '{slot.name}' has unknown kind {slot.kind!r}")
        if slot.kind == ACCOUNT:
            if slot.index is None or isinstance(slot.index, bool) or slot.index < 0:
                raise ConfigurationError(f"{self.name}: account '{slot.name}' needs a non-negative index")
            if slot.signer not in (True, False, EITHER):
                raise ConfigurationError(f"{self.name}: account '{slot.name}' has invalid signer flag")
        elif slot.index is not None:
            raise ConfigurationError(f"{self.name}: argument '{slot.name}' cannot have an index")

    def _check_indices(self) -> None:
        seen: Dict[int, List[str]] = {}
        for slot in self.accounts:
            seen.setdefault(slot.index, []).append(slot.name)
        for index, names in seen.items():
            if len(names) > 1:
                raise DuplicateAccountIndex(self.name, index, names)

    def _check_references(self) -> None:
        for slot in self.slots:
            if slot.rule is None:
                continue
            for ref in slot.rule.references() + caller_references(slot.rule):
                target = self._by_name.get(ref.name)
                if target is None or target.kind != ref.kind:
                    raise UnknownSlotReference(self.name, slot.name, str(ref))

    def _check_codecs(self) -> None:
        types = self.types or TypeRegistry()
        for slot in self.arguments:
            if not slot.codec:
                continue
            try:
                types.check(slot.codec)
            except CodecError as exc:
                raise ConfigurationError(f"{self.name}: argument '{slot.name}': {exc}") from exc

    def _check_resolvers(self, registry: "ResolverRegistry") -> None:
        for slot in self.slots:
            for name in resolver_names(slot.rule):
                if name not in registry:
                    raise UnknownResolver(name, slot=slot.name)
            for node in _resolver_nodes(slot.rule):
                declared = {ref.name for ref in node.depends_on}
                missing = [dep for dep in registry.get(node.name).requires if dep not in declared]
                if missing:
                    raise ConfigurationError(
                        f"{self.name}: slot '{slot.name}' calls resolver '{node.name}' "
                        f"without declaring {', '.join(missing)}"
                    )

    def _topological_order(self) -> List[str]:
        deps: Dict[str, List[str]] = {}
        for slot in self.slots:
            names: List[str] = []
            if slot.rule is not None:
                for ref in slot.rule.references():
                    if ref.name not in names:
                        names.append(ref.name)
            deps[slot.name] = names

        order: List[str] = []
        done: set = set()
        remaining = [slot.name for slot in self.slots]
        while remaining:
            ready = [name for name in remaining if all(dep in done for dep in deps[name])]
            if not ready:
                raise CyclicDependency(self.name, _find_cycle(deps, remaining))
            # One slot per pass keeps ties in declaration order.
            name = ready[0]
            order.append(name)
            done.add(name)
            remaining.remove(name)
        return order

    # ── Accessors ──────────────────────────────────────────────────

    @property
    def order(self) -> List[str]:
        return list(self._order)

    @property
    def accounts(self) -> List[Slot]:
        return sorted((s for s in self.slots if s.kind == ACCOUNT), key=lambda s: s.index)

    @property
    def arguments(self) -> List[Slot]:
        return [s for s in self.slots if s.kind == ARGUMENT]

    def slot(self, name: str) -> Slot:
        try:
            return self._by_name[name]
        except KeyError as exc:
            raise KeyError(f"{self.name}: no slot named '{name}'") from exc

    def get(self, name: str) -> Optional[Slot]:
        return self._by_name.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[Slot]:
        return iter(self.slots)


def _resolver_nodes(rule: Optional[DefaultRule]) -> List[Union[Resolver, ResolverTest]]:
    if rule is None:
        return []
    if isinstance(rule, Resolver):
        return [rule]
    if isinstance(rule, Conditional):
        nodes: List[Union[Resolver, ResolverTest]] = []
        if isinstance(rule.test, ResolverTest):
            nodes.append(rule.test)
        return nodes + _resolver_nodes(rule.if_true) + _resolver_nodes(rule.if_false)
    return []


def _find_cycle(deps: Dict[str, List[str]], candidates: List[str]) -> List[str]:
    stuck = set(candidates)
    start = candidates[0]
    path: List[str] = []
    seen: Dict[str, int] = {}
    node = start
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = next(dep for dep in deps[node] if dep in stuck)
    return path[seen[node]:] + [node]
