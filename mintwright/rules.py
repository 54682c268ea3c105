"""Default rules: the tagged-variant language that fills unset slots.

Rules are plain frozen dataclasses. They are built directly in Python or
loaded from the declarative program format (see ``catalog.py``) through
``rule_from_dict``. ``rule_to_dict`` produces the same canonical form, so a
slot table survives a round trip through TOML.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from solders.pubkey import Pubkey

from .addresses import ConstantSeed, ProgramIdSeed, SeedTemplate, VariableSeed, SEED_ENCODINGS, to_pubkey
from .constants import SCALAR_ENUMS
from .errors import CatalogError

ACCOUNT = "account"
ARGUMENT = "argument"
_REF_PREFIXES = {"account": ACCOUNT, "arg": ARGUMENT, "argument": ARGUMENT}


@dataclass(frozen=True)
class SlotRef:
    kind: str
    name: str

    @classmethod
    def account(cls, name: str) -> "SlotRef":
        return cls(ACCOUNT, name)

    @classmethod
    def arg(cls, name: str) -> "SlotRef":
        return cls(ARGUMENT, name)

    @classmethod
    def parse(cls, text: str) -> "SlotRef":
        if not isinstance(text, str) or ":" not in text:
            raise CatalogError(f"Slot reference must look like 'account:name' or 'arg:name', got {text!r}")
        prefix, name = text.split(":", 1)
        kind = _REF_PREFIXES.get(prefix.strip().lower())
        if kind is None or not name.strip():
            raise CatalogError(f"Invalid slot reference: {text!r}")
        return cls(kind, name.strip())

    def __str__(self) -> str:
        return f"{'account' if self.kind == ACCOUNT else 'arg'}:{self.name}"


class _Unset:
    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass(frozen=True)
class AccountValue:
    """Resolver output that also overrides the slot's base flags."""

    address: Any
    writable: Optional[bool] = None
    signer: Optional[bool] = None


# ── Predicates ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class ArgEquals:
    kind: ClassVar[str] = "equals"
    name: str
    value: Any

    def references(self) -> List[SlotRef]:
        return [SlotRef.arg(self.name)]


@dataclass(frozen=True)
class IsPresent:
    kind: ClassVar[str] = "present"
    ref: SlotRef

    def references(self) -> List[SlotRef]:
        return [self.ref]


@dataclass(frozen=True)
class CallerSupplied:
    """True when the caller passed a value for ``ref``.

    Caller input is fixed before evaluation starts, so this test adds no
    dependency edge. The target may itself depend on the tested slot.
    """

    kind: ClassVar[str] = "supplied"
    ref: SlotRef

    def references(self) -> List[SlotRef]:
        return []


@dataclass(frozen=True)
class ResolverTest:
    kind: ClassVar[str] = "resolver"
    name: str
    depends_on: Tuple[SlotRef, ...] = ()

    def references(self) -> List[SlotRef]:
        return list(self.depends_on)


Predicate = Union[ArgEquals, IsPresent, CallerSupplied, ResolverTest]


# ── Rules ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Literal:
    kind: ClassVar[str] = "literal"
    value: Any

    def references(self) -> List[SlotRef]:
        return []


@dataclass(frozen=True)
class Identity:
    kind: ClassVar[str] = "identity"

    def references(self) -> List[SlotRef]:
        return []


@dataclass(frozen=True)
class Payer:
    kind: ClassVar[str] = "payer"

    def references(self) -> List[SlotRef]:
        return []


@dataclass(frozen=True)
class ProgramId:
    kind: ClassVar[str] = "program_id"

    def references(self) -> List[SlotRef]:
        return []


@dataclass(frozen=True)
class AccountRef:
    kind: ClassVar[str] = "account"
    name: str

    def references(self) -> List[SlotRef]:
        return [SlotRef.account(self.name)]


@dataclass(frozen=True)
class ArgRef:
    kind: ClassVar[str] = "arg"
    name: str

    def references(self) -> List[SlotRef]:
        return [SlotRef.arg(self.name)]


@dataclass(frozen=True)
class Derived:
    kind: ClassVar[str] = "derived"
    template: SeedTemplate

    def references(self) -> List[SlotRef]:
        return self.template.references()


@dataclass(frozen=True)
class Conditional:
    kind: ClassVar[str] = "conditional"
    test: Predicate
    if_true: Optional["DefaultRule"] = None
    if_false: Optional["DefaultRule"] = None

    def references(self) -> List[SlotRef]:
        refs = list(self.test.references())
        for branch in (self.if_true, self.if_false):
            if branch is not None:
                refs.extend(branch.references())
        return refs


@dataclass(frozen=True)
class Resolver:
    kind: ClassVar[str] = "resolver"
    name: str
    depends_on: Tuple[SlotRef, ...] = field(default_factory=tuple)

    def references(self) -> List[SlotRef]:
        return list(self.depends_on)


DefaultRule = Union[Literal, Identity, Payer, ProgramId, AccountRef, ArgRef, Derived, Conditional, Resolver]


def resolver_names(rule: Optional[DefaultRule]) -> List[str]:
    """Every resolver a rule can call, including resolver predicates."""
    if rule is None:
        return []
    if isinstance(rule, Resolver):
        return [rule.name]
    if isinstance(rule, Conditional):
        names = [rule.test.name] if isinstance(rule.test, ResolverTest) else []
        return names + resolver_names(rule.if_true) + resolver_names(rule.if_false)
    return []


def caller_references(rule: Optional[DefaultRule]) -> List[SlotRef]:
    """Slots a rule tests for caller input. These are not dependency edges."""
    if not isinstance(rule, Conditional):
        return []
    refs = [rule.test.ref] if isinstance(rule.test, CallerSupplied) else []
    return refs + caller_references(rule.if_true) + caller_references(rule.if_false)


# ── Canonical dict form ────────────────────────────────────────────


def value_to_dict(value: Any) -> Dict[str, Any]:
    if value is None:
        return {"kind": "none"}
    if isinstance(value, Pubkey):
        return {"kind": "public_key", "value": str(value)}
    if isinstance(value, IntEnum):
        return {"kind": "enum", "type": type(value).__name__, "variant": value.name}
    if isinstance(value, (bytes, bytearray)):
        return {"kind": "bytes", "hex": bytes(value).hex()}
    return {"kind": "literal", "value": value}


def value_from_dict(data: Dict[str, Any]) -> Any:
    kind = data.get("kind")
    if kind == "none":
        return None
    if kind == "public_key":
        return to_pubkey(data.get("value"))
    if kind == "enum":
        enum_type = SCALAR_ENUMS.get(data.get("type", ""))
        if enum_type is None:
            raise CatalogError(f"Unknown enum type: {data.get('type')}")
        try:
            return enum_type[data.get("variant")]
        except KeyError as exc:
            raise CatalogError(f"Unknown {data.get('type')} variant: {data.get('variant')}") from exc
    if kind == "bytes":
        return bytes.fromhex(data.get("hex", ""))
    if kind == "literal":
        if "value" not in data:
            raise CatalogError("literal value missing")
        return data["value"]
    raise CatalogError(f"Unknown value kind: {kind!r}")


def _seed_to_dict(seed: Any) -> Dict[str, Any]:
    if isinstance(seed, ConstantSeed):
        return {"constant_hex": seed.value.hex()}
    if isinstance(seed, ProgramIdSeed):
        return {"program_id": True}
    out = {"variable": str(seed.ref), "encoding": seed.encoding}
    if seed.name and seed.name != seed.ref.name:
        out["name"] = seed.name
    return out


def _seed_from_dict(data: Dict[str, Any]) -> Any:
    if not isinstance(data, dict):
        raise CatalogError("seed entries must be tables")
    if "constant_hex" in data:
        return ConstantSeed(bytes.fromhex(data["constant_hex"]))
    if "constant" in data:
        return ConstantSeed.utf8(str(data["constant"]))
    if "address" in data:
        return ConstantSeed.address(data["address"])
    if data.get("program_id"):
        return ProgramIdSeed()
    if "variable" in data:
        encoding = data.get("encoding", "pubkey")
        if encoding not in SEED_ENCODINGS:
            raise CatalogError(f"Unknown seed encoding: {encoding}")
        ref = SlotRef.parse(data["variable"])
        return VariableSeed(ref=ref, encoding=encoding, name=str(data.get("name", ref.name)))
    raise CatalogError(f"Unrecognised seed: {data}")


def template_to_dict(template: SeedTemplate) -> Dict[str, Any]:
    out: Dict[str, Any] = {"seeds": [_seed_to_dict(seed) for seed in template.seeds]}
    if template.program is not None:
        out["program"] = str(template.program)
    return out


def template_from_dict(data: Dict[str, Any]) -> SeedTemplate:
    seeds = data.get("seeds")
    if not isinstance(seeds, list):
        raise CatalogError("derived rule requires a seeds list")
    program = data.get("program")
    return SeedTemplate(
        seeds=tuple(_seed_from_dict(seed) for seed in seeds),
        program=to_pubkey(program) if program else None,
    )


def predicate_to_dict(test: Predicate) -> Dict[str, Any]:
    if isinstance(test, ArgEquals):
        return {"arg": test.name, "equals": value_to_dict(test.value)}
    if isinstance(test, IsPresent):
        return {"present": str(test.ref)}
    if isinstance(test, CallerSupplied):
        return {"supplied": str(test.ref)}
    return {"resolver": test.name, "depends_on": [str(ref) for ref in test.depends_on]}


def predicate_from_dict(data: Dict[str, Any]) -> Predicate:
    if not isinstance(data, dict):
        raise CatalogError("condition must be a table")
    if "equals" in data:
        equals = data["equals"]
        value = value_from_dict(equals) if isinstance(equals, dict) else equals
        return ArgEquals(name=str(data.get("arg")), value=value)
    if "present" in data:
        return IsPresent(SlotRef.parse(data["present"]))
    if "supplied" in data:
        return CallerSupplied(SlotRef.parse(data["supplied"]))
    if "resolver" in data:
        return ResolverTest(
            name=str(data["resolver"]),
            depends_on=tuple(SlotRef.parse(ref) for ref in data.get("depends_on", [])),
        )
    raise CatalogError(f"Unrecognised condition: {data}")


def rule_to_dict(rule: DefaultRule) -> Dict[str, Any]:
    if isinstance(rule, Literal):
        return value_to_dict(rule.value)
    if isinstance(rule, (Identity, Payer, ProgramId)):
        return {"kind": rule.kind}
    if isinstance(rule, (AccountRef, ArgRef)):
        return {"kind": rule.kind, "name": rule.name}
    if isinstance(rule, Derived):
        return {"kind": "derived", **template_to_dict(rule.template)}
    if isinstance(rule, Conditional):
        out: Dict[str, Any] = {"kind": "conditional", "condition": predicate_to_dict(rule.test)}
        if rule.if_true is not None:
            out["if_true"] = rule_to_dict(rule.if_true)
        if rule.if_false is not None:
            out["if_false"] = rule_to_dict(rule.if_false)
        return out
    if isinstance(rule, Resolver):
        return {"kind": "resolver", "name": rule.name, "depends_on": [str(ref) for ref in rule.depends_on]}
    raise TypeError(f"Not a default rule: {rule!r}")


def rule_from_dict(data: Dict[str, Any]) -> DefaultRule:
    if not isinstance(data, dict):
        raise CatalogError(f"rule must be a table, got {data!r}")
    kind = data.get("kind")
    if kind in {"none", "public_key", "enum", "bytes", "literal"}:
        return Literal(value_from_dict(data))
    if kind == "identity":
        return Identity()
    if kind == "payer":
        return Payer()
    if kind == "program_id":
        return ProgramId()
    if kind == "account":
        return AccountRef(str(data.get("name")))
    if kind == "arg":
        return ArgRef(str(data.get("name")))
    if kind == "derived":
        return Derived(template_from_dict(data))
    if kind == "conditional":
        if_true = data.get("if_true")
        if_false = data.get("if_false")
        if if_true is None and if_false is None:
            raise CatalogError("conditional rule needs if_true or if_false")
        return Conditional(
            test=predicate_from_dict(data.get("condition")),
            if_true=rule_from_dict(if_true) if if_true is not None else None,
            if_false=rule_from_dict(if_false) if if_false is not None else None,
        )
    if kind == "resolver":
        return Resolver(
            name=str(data.get("name")),
            depends_on=tuple(SlotRef.parse(ref) for ref in data.get("depends_on", [])),
        )
    raise CatalogError(f"Unknown rule kind: {kind!r}")
