"""Named resolver functions and the registry that holds them.

A resolver receives a read-only mapping with exactly the slots its rule
declares in ``depends_on`` (unset slots are absent) plus the resolution
context. It returns a value, ``UNSET`` to leave the slot empty, or an
``AccountValue`` to also override the account's flags.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .addresses import is_signer_value, to_pubkey
from .constants import (
    ACCOUNT_HEADER_SIZE,
    MASTER_EDITION_SIZE,
    METADATA_SIZE,
    MINT_SIZE,
    TokenStandard,
)
from .errors import DuplicateResolver, RegistryFrozen, UnknownResolver
from .rules import UNSET, AccountValue

if TYPE_CHECKING:  # pragma: no cover
    from .config import ResolutionContext

ResolverFn = Callable[[Mapping[str, Any], "ResolutionContext"], Any]

FUNGIBLE_STANDARDS = {TokenStandard.Fungible, TokenStandard.FungibleAsset}
PROGRAMMABLE_STANDARDS = {TokenStandard.ProgrammableNonFungible, TokenStandard.ProgrammableNonFungibleEdition}


@dataclass(frozen=True)
class RegisteredResolver:
    name: str
    fn: ResolverFn
    requires: Tuple[str, ...] = ()
    network: bool = False

    def __call__(self, values: Mapping[str, Any], context: "ResolutionContext") -> Any:
        return self.fn(values, context)


class ResolverRegistry:
    def __init__(self) -> None:
        self._resolvers: Dict[str, RegisteredResolver] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(
        self,
        name: str,
        requires: Optional[Iterable[str]] = None,
        network: bool = False,
    ) -> Callable[[ResolverFn], ResolverFn]:
        def decorator(fn: ResolverFn) -> ResolverFn:
            self.add(name, fn, requires=requires, network=network)
            return fn

        return decorator

    def add(
        self,
        name: str,
        fn: ResolverFn,
        requires: Optional[Iterable[str]] = None,
        network: bool = False,
    ) -> RegisteredResolver:
        if self._frozen:
            raise RegistryFrozen(f"Cannot register '{name}': registry is frozen")
        if name in self._resolvers:
            raise DuplicateResolver(f"Resolver '{name}' is already registered")
        entry = RegisteredResolver(name=name, fn=fn, requires=tuple(requires or ()), network=network)
        self._resolvers[name] = entry
        return entry

    def get(self, name: str) -> RegisteredResolver:
        try:
            return self._resolvers[name]
        except KeyError as exc:
            raise UnknownResolver(name) from exc

    def freeze(self) -> "ResolverRegistry":
        self._frozen = True
        return self

    def extend(self) -> "ResolverRegistry":
        """Unfrozen copy holding the same resolvers, for adding program-specific ones."""
        child = ResolverRegistry()
        child._resolvers = dict(self._resolvers)
        return child

    def names(self) -> List[str]:
        return sorted(self._resolvers)

    def __contains__(self, name: object) -> bool:
        return name in self._resolvers

    def __len__(self) -> int:
        return len(self._resolvers)


def is_non_fungible_standard(standard: Any) -> bool:
    return TokenStandard(standard) not in FUNGIBLE_STANDARDS


def is_programmable_standard(standard: Any) -> bool:
    return TokenStandard(standard) in PROGRAMMABLE_STANDARDS


def _standard(values: Mapping[str, Any]) -> Optional[TokenStandard]:
    value = values.get("tokenStandard")
    return None if value is None else TokenStandard(value)


DEFAULT_REGISTRY = ResolverRegistry()


@DEFAULT_REGISTRY.register("is_non_fungible", requires=["tokenStandard"])
def is_non_fungible(values, context):
    standard = _standard(values)
    return standard is not None and is_non_fungible_standard(standard)


@DEFAULT_REGISTRY.register("is_programmable", requires=["tokenStandard"])
def is_programmable(values, context):
    standard = _standard(values)
    return standard is not None and is_programmable_standard(standard)


@DEFAULT_REGISTRY.register("is_non_fungible_or_mint_signer", requires=["mint", "tokenStandard"])
def is_non_fungible_or_mint_signer(values, context):
    # A fresh mint signs its own creation, which needs the token program.
    if is_non_fungible(values, context):
        return True
    return is_signer_value(values.get("mint"))


@DEFAULT_REGISTRY.register("decimals_for", requires=["tokenStandard"])
def decimals_for(values, context):
    return None if is_non_fungible(values, context) else 0


@DEFAULT_REGISTRY.register("print_supply_for", requires=["tokenStandard"])
def print_supply_for(values, context):
    return {"Zero": {}} if is_non_fungible(values, context) else None


@DEFAULT_REGISTRY.register("collection_details_for", requires=["isCollection"])
def collection_details_for(values, context):
    return {"V1": {"size": 0}} if values.get("isCollection") else None


@DEFAULT_REGISTRY.register("creators_from_authority", requires=["authority"])
def creators_from_authority(values, context):
    authority = values.get("authority")
    if authority is None:
        return UNSET
    return [{"address": to_pubkey(authority), "verified": True, "share": 100}]


@DEFAULT_REGISTRY.register("authorization_rules_program", requires=["authorizationRules"])
def authorization_rules_program(values, context):
    if values.get("authorizationRules") is None:
        return UNSET
    return AccountValue(context.program("mplTokenAuthRules"), writable=False)


@DEFAULT_REGISTRY.register("create_v1_bytes", requires=["tokenStandard"])
def create_v1_bytes(values, context):
    base = MINT_SIZE + METADATA_SIZE + 2 * ACCOUNT_HEADER_SIZE
    if is_non_fungible(values, context):
        return base + MASTER_EDITION_SIZE + ACCOUNT_HEADER_SIZE
    return base


@DEFAULT_REGISTRY.register("token_standard_from_metadata", requires=["metadata"], network=True)
def token_standard_from_metadata(values, context):
    from .accounts import decode_metadata

    metadata = values.get("metadata")
    if metadata is None or context.fetcher is None:
        return UNSET
    data = context.fetcher.get_account(to_pubkey(metadata))
    if data is None:
        return UNSET
    record = decode_metadata(data)
    if record.token_standard is None:
        return UNSET
    return record.token_standard


DEFAULT_REGISTRY.freeze()
