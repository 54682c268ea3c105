"""Error taxonomy for slot tables, resolution and assembly."""

from __future__ import annotations

from typing import Optional


class MintwrightError(Exception):
    """Base class for every error raised by mintwright."""


# ── Build time ─────────────────────────────────────────────────────


class ConfigurationError(MintwrightError, ValueError):
    """Raised when a slot table or catalog is malformed."""


class CyclicDependency(ConfigurationError):
    def __init__(self, table: str, cycle: list[str]) -> None:
        self.table = table
        self.cycle = cycle
        super().__init__(f"{table}: cyclic default rules: {' -> '.join(cycle)}")


class DuplicateAccountIndex(ConfigurationError):
    def __init__(self, table: str, index: int, names: list[str]) -> None:
        self.table = table
        self.index = index
        self.names = names
        super().__init__(f"{table}: account index {index} used by {', '.join(names)}")


class DuplicateSlotName(ConfigurationError):
    def __init__(self, table: str, name: str) -> None:
        self.table = table
        self.name = name
        super().__init__(f"{table}: slot '{name}' declared more than once")


class UnknownSlotReference(ConfigurationError):
    def __init__(self, table: str, slot: str, ref: str) -> None:
        self.table = table
        self.slot = slot
        self.ref = ref
        super().__init__(f"{table}: slot '{slot}' references unknown slot {ref}")


class UnknownResolver(ConfigurationError):
    def __init__(self, name: str, slot: Optional[str] = None) -> None:
        self.name = name
        self.slot = slot
        where = f" (slot '{slot}')" if slot else ""
        super().__init__(f"Unknown resolver '{name}'{where}")


class SplitterNameCollision(ConfigurationError):
    def __init__(self, instruction: str, variant: str, name: str) -> None:
        self.instruction = instruction
        self.variant = variant
        self.name = name
        super().__init__(
            f"{instruction}.{variant}: variant slot '{name}' collides with a shared slot"
        )


class CatalogError(ConfigurationError):
    """Raised when a declarative program file cannot be turned into slot tables."""


# ── Call time ──────────────────────────────────────────────────────


class ResolutionError(MintwrightError, ValueError):
    """Raised when a request cannot be resolved into a complete instruction."""

    def __init__(self, message: str, slot: Optional[str] = None, rule_kind: Optional[str] = None) -> None:
        self.slot = slot
        self.rule_kind = rule_kind
        super().__init__(message)


class MissingRequiredSlot(ResolutionError):
    def __init__(self, slot: str, rule_kind: Optional[str] = None) -> None:
        detail = f" (rule: {rule_kind})" if rule_kind else ""
        super().__init__(f"Missing required slot '{slot}'{detail}", slot=slot, rule_kind=rule_kind)


class UnresolvableReference(ResolutionError):
    def __init__(self, slot: str, ref: str, rule_kind: Optional[str] = None) -> None:
        self.ref = ref
        super().__init__(
            f"Slot '{slot}' references '{ref}', which could not be resolved",
            slot=slot,
            rule_kind=rule_kind,
        )


class PredicateTypeMismatch(ResolutionError):
    def __init__(self, slot: str, detail: str) -> None:
        super().__init__(f"Slot '{slot}': {detail}", slot=slot, rule_kind="conditional")


class DerivationInputNotFixedWidth(ResolutionError):
    def __init__(self, slot: str, seed: str, encoding: str) -> None:
        self.seed = seed
        self.encoding = encoding
        super().__init__(
            f"Slot '{slot}': seed '{seed}' uses variable-width encoding '{encoding}'",
            slot=slot,
            rule_kind="derived",
        )


class ExternalResolverFailure(ResolutionError):
    def __init__(self, resolver: str, slot: str, cause: BaseException) -> None:
        self.resolver = resolver
        self.cause = cause
        super().__init__(
            f"Resolver '{resolver}' failed for slot '{slot}': {cause}",
            slot=slot,
            rule_kind="resolver",
        )


# ── Peripheral ─────────────────────────────────────────────────────


class DerivationError(MintwrightError, ValueError):
    """Raised when seed bytes cannot be turned into a derived address."""


class SeedTooLong(DerivationError):
    pass


class CodecError(MintwrightError, ValueError):
    """Raised when an argument value cannot be encoded or a type expression is invalid."""


class AccountDecodeError(MintwrightError, ValueError):
    """Raised when account bytes do not match the expected record layout."""


class RegistryError(MintwrightError, RuntimeError):
    pass


class RegistryFrozen(RegistryError):
    pass


class DuplicateResolver(RegistryError):
    pass
