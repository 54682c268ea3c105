"""Declarative program files: load slot tables from TOML and write them back.

A program file has these top-level tables:

    [program]      name, address, optional_accounts
    [programs]     extra named program addresses
    [types.<T>]    struct / enum definitions for the codec catalog
    [pdas.<P>]     named seed templates
    [defaults]     rules applied by account name (``accounts`` and
                   ``required_accounts``) when an instruction gives none
    [presets.<S>]  argument and override bundles shared by variants
    [instructions.<I>]

Rules use the canonical form from ``rules.py`` plus two shorthands:
``{kind = "pda", name = ..., seeds = {...}}`` and
``{kind = "program", name = ...}``. A bare scalar is a literal.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

try:
    import tomllib
except ImportError:  # pragma: no cover - Python < 3.11
    import tomli as tomllib

import tomli_w
from solders.pubkey import Pubkey

from .addresses import (
    ConstantSeed,
    ProgramIdSeed,
    SEED_ENCODINGS,
    SeedTemplate,
    VariableSeed,
    derive,
    encode_seed_value,
    to_pubkey,
)
from .assembler import DISCRIMINATOR, InstructionDefinition
from .codecs import TypeRegistry
from .constants import DEFAULT_CATALOG, DEFAULT_PROGRAMS, OPTIONAL_OMITTED, SCALAR_ENUMS, SEED_STRING_ENUMS
from .errors import CatalogError, CodecError
from .resolvers import DEFAULT_REGISTRY, ResolverRegistry
from .rules import (
    ACCOUNT,
    ARGUMENT,
    Conditional,
    Derived,
    Literal,
    Resolver,
    SlotRef,
    caller_references,
    predicate_from_dict,
    rule_from_dict,
    rule_to_dict,
)
from .slots import EITHER, Slot, SlotTable
from .splitter import Variant, VersionedInstruction, discriminator_slot, split_instruction

PARAM_PREFIX = "$"
_OVERRIDE_KEYS = {"default", "no_default", "optional", "signer", "writable", "docs", "creates", "creates_if_missing"}


class _OutOfScope(CatalogError):
    """A rule names a slot the instruction does not have."""


# ── PDAs ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PdaSeedSpec:
    kind: str
    value: bytes = b""
    name: str = ""
    encoding: str = "pubkey"
    default: Any = None


@dataclass(frozen=True)
class PdaSpec:
    name: str
    seeds: Tuple[PdaSeedSpec, ...]
    program: Optional[Pubkey] = None
    docs: str = ""

    def variables(self) -> List[str]:
        return [seed.name for seed in self.seeds if seed.kind == "variable"]

    def bind(
        self,
        bindings: Dict[str, Any],
        scope: Dict[str, str],
        programs: Dict[str, Pubkey],
        where: str,
    ) -> SeedTemplate:
        unknown = set(bindings) - set(self.variables())
        if unknown:
            raise CatalogError(f"{where}: pda '{self.name}' has no seeds named {', '.join(sorted(unknown))}")
        seeds = []
        for seed in self.seeds:
            if seed.kind == "constant":
                seeds.append(ConstantSeed(seed.value))
            elif seed.kind == "program_id":
                seeds.append(ProgramIdSeed())
            else:
                seeds.append(self._bind_variable(seed, bindings, scope, programs, where))
        return SeedTemplate(seeds=tuple(seeds), program=self.program)

    def _bind_variable(
        self,
        seed: PdaSeedSpec,
        bindings: Dict[str, Any],
        scope: Dict[str, str],
        programs: Dict[str, Pubkey],
        where: str,
    ):
        binding = bindings.get(seed.name)
        if binding is None:
            if seed.name in scope:
                return VariableSeed(SlotRef(scope[seed.name], seed.name), seed.encoding, seed.name)
            if seed.default is None:
                raise _OutOfScope(f"{where}: pda '{self.name}' seed '{seed.name}' is unbound")
            binding = seed.default
        if isinstance(binding, str):
            ref = SlotRef.parse(binding)
            if ref.name not in scope or scope[ref.name] != ref.kind:
                raise _OutOfScope(f"{where}: pda '{self.name}' seed '{seed.name}' binds unknown slot {ref}")
            return VariableSeed(ref, seed.encoding, seed.name)
        return ConstantSeed(constant_seed_bytes(binding, seed.encoding, programs, where))

    def derive(self, program_id: Pubkey, values: Dict[str, Any], programs: Dict[str, Pubkey]) -> Pubkey:
        out: List[bytes] = []
        for seed in self.seeds:
            if seed.kind == "constant":
                out.append(seed.value)
            elif seed.kind == "program_id":
                out.append(bytes(program_id))
            else:
                value = values.get(seed.name)
                if value is None:
                    if seed.default is None:
                        raise CatalogError(f"pda '{self.name}': missing seed '{seed.name}'")
                    out.append(constant_seed_bytes(seed.default, seed.encoding, programs, self.name))
                elif isinstance(value, dict):
                    out.append(constant_seed_bytes(value, seed.encoding, programs, self.name))
                else:
                    out.append(encode_seed_value(value, seed.encoding))
        return derive(out, self.program or program_id)


def constant_seed_bytes(binding: Any, encoding: str, programs: Dict[str, Pubkey], where: str) -> bytes:
    if isinstance(binding, dict):
        if "value" in binding:
            return encode_seed_value(binding["value"], encoding)
        if "address" in binding:
            return bytes(to_pubkey(binding["address"]))
        if "program" in binding:
            return bytes(_program(programs, binding["program"], where))
        if "enum" in binding:
            seeds = SEED_STRING_ENUMS.get(binding["enum"])
            enum_type = SCALAR_ENUMS.get(binding["enum"])
            if enum_type is None:
                raise CatalogError(f"{where}: unknown enum {binding['enum']}")
            try:
                member = enum_type[binding.get("variant")]
            except KeyError as exc:
                raise CatalogError(f"{where}: unknown {binding['enum']} variant {binding.get('variant')}") from exc
            if seeds is not None:
                return seeds[member].encode("utf-8")
            return encode_seed_value(int(member), encoding)
    elif not isinstance(binding, str):
        return encode_seed_value(binding, encoding)
    raise CatalogError(f"{where}: cannot use {binding!r} as a constant seed")


def _program(programs: Dict[str, Pubkey], name: str, where: str) -> Pubkey:
    if name in programs:
        return programs[name]
    try:
        return to_pubkey(name)
    except ValueError as exc:
        raise CatalogError(f"{where}: unknown program '{name}'") from exc


# ── Catalog ────────────────────────────────────────────────────────


@dataclass
class Catalog:
    name: str
    program_id: Pubkey
    programs: Dict[str, Pubkey]
    types: TypeRegistry
    pdas: Dict[str, PdaSpec]
    instructions: Dict[str, InstructionDefinition]
    versioned: Dict[str, VersionedInstruction] = field(default_factory=dict)
    optional_accounts: str = OPTIONAL_OMITTED
    source: str = "<memory>"

    def __getitem__(self, name: str) -> InstructionDefinition:
        try:
            return self.instructions[name]
        except KeyError as exc:
            raise KeyError(f"Unknown instruction: {name}") from exc

    def __contains__(self, name: object) -> bool:
        return name in self.instructions

    def __iter__(self) -> Iterator[InstructionDefinition]:
        return iter(self.instructions.values())

    def names(self) -> List[str]:
        return list(self.instructions)

    def derive_pda(self, name: str, values: Optional[Dict[str, Any]] = None) -> Pubkey:
        spec = self.pdas.get(name)
        if spec is None:
            raise CatalogError(f"Unknown pda: {name}")
        return spec.derive(self.program_id, dict(values or {}), self.programs)


class _Loader:
    def __init__(
        self,
        data: Dict[str, Any],
        source: str,
        programs: Optional[Dict[str, Any]],
        registry: ResolverRegistry,
    ) -> None:
        self.data = data
        self.source = source
        self.registry = registry
        self.programs: Dict[str, Pubkey] = {name: to_pubkey(addr) for name, addr in DEFAULT_PROGRAMS.items()}
        declared = _table(data, "programs", source)
        overrides = programs or {}
        try:
            for name, address in list(declared.items()) + list(overrides.items()):
                self.programs[name] = to_pubkey(address)
        except ValueError as exc:
            raise CatalogError(f"{source}: {exc}") from exc

        program = _table(data, "program", source)
        self.name = str(program.get("name", "program"))
        if self.name in self.programs and (self.name in overrides or "address" not in program):
            self.program_id = self.programs[self.name]
        elif "address" in program:
            self.program_id = to_pubkey(program["address"])
        else:
            raise CatalogError(f"{source}: [program] needs an address")
        self.programs.setdefault(self.name, self.program_id)
        self.optional_accounts = str(program.get("optional_accounts", OPTIONAL_OMITTED))

        try:
            self.types = TypeRegistry(_table(data, "types", source))
        except CodecError as exc:
            raise CatalogError(f"{source}: {exc}") from exc
        self.pdas = {name: self._pda(name, spec) for name, spec in _table(data, "pdas", source).items()}
        defaults = _table(data, "defaults", source)
        self.defaults_any = _table(defaults, "accounts", source)
        self.defaults_required = _table(defaults, "required_accounts", source)
        self.presets = _table(data, "presets", source)

    def _pda(self, name: str, spec: Dict[str, Any]) -> PdaSpec:
        where = f"pdas.{name}"
        seeds = []
        for entry in spec.get("seeds", []):
            if not isinstance(entry, dict):
                raise CatalogError(f"{where}: seeds must be tables")
            if "constant" in entry:
                seeds.append(PdaSeedSpec("constant", value=str(entry["constant"]).encode("utf-8")))
            elif entry.get("program_id"):
                seeds.append(PdaSeedSpec("program_id"))
            elif "variable" in entry:
                encoding = entry.get("encoding", "pubkey")
                if encoding not in SEED_ENCODINGS:
                    raise CatalogError(f"{where}: unknown seed encoding {encoding}")
                seeds.append(
                    PdaSeedSpec("variable", name=str(entry["variable"]), encoding=encoding, default=entry.get("default"))
                )
            else:
                raise CatalogError(f"{where}: unrecognised seed {entry}")
        program = spec.get("program")
        return PdaSpec(
            name=name,
            seeds=tuple(seeds),
            program=_program(self.programs, program, where) if program else None,
            docs=str(spec.get("docs", "")),
        )

    # Rules

    def rule(self, data: Any, scope: Dict[str, str], where: str):
        if not isinstance(data, dict):
            if data is None:
                raise CatalogError(f"{where}: empty default")
            return Literal(data)
        kind = data.get("kind")
        if kind == "pda":
            spec = self.pdas.get(data.get("name"))
            if spec is None:
                raise CatalogError(f"{where}: unknown pda '{data.get('name')}'")
            return Derived(spec.bind(dict(data.get("seeds", {})), scope, self.programs, where))
        if kind == "program":
            return Literal(_program(self.programs, str(data.get("name")), where))
        if kind == "conditional":
            condition = predicate_from_dict(data.get("condition"))
            if_true = data.get("if_true")
            if_false = data.get("if_false")
            if if_true is None and if_false is None:
                raise CatalogError(f"{where}: conditional needs if_true or if_false")
            rule = Conditional(
                test=condition,
                if_true=self.rule(if_true, scope, where) if if_true is not None else None,
                if_false=self.rule(if_false, scope, where) if if_false is not None else None,
            )
        else:
            rule = rule_from_dict(data)
        for ref in rule.references() + caller_references(rule):
            if scope.get(ref.name) != ref.kind:
                raise _OutOfScope(f"{where}: rule references unknown slot {ref}")
        return rule

    def storage(self, data: Any, scope: Dict[str, str], where: str):
        if data is None or isinstance(data, int):
            return data
        rule = self.rule(data, scope, where)
        if not isinstance(rule, Resolver):
            raise CatalogError(f"{where}: storage must be an integer or a resolver")
        return rule

    # Slots

    def account(self, entry: Dict[str, Any], position: int, scope: Dict[str, str], where: str) -> Slot:
        name = _slot_name(entry, where)
        where = f"{where}.{name}"
        required = not entry.get("optional", False)
        signer = entry.get("signer", False)
        if signer not in (True, False, EITHER):
            raise CatalogError(f"{where}: signer must be true, false or \"either\"")
        return Slot.account(
            name,
            index=int(entry.get("index", position)),
            required=required,
            signer=signer,
            writable=bool(entry.get("writable", False)),
            rule=self.account_rule(name, entry, required, scope, where),
            creates=int(entry.get("creates", 0)),
            creates_if_missing=bool(entry.get("creates_if_missing", False)),
            docs=str(entry.get("docs", "")),
        )

    def account_rule(self, name: str, entry: Dict[str, Any], required: bool, scope: Dict[str, str], where: str):
        if entry.get("no_default"):
            return None
        if "default" in entry:
            return self.rule(entry["default"], scope, where)
        candidates = [self.defaults_any.get(name)]
        if required:
            candidates.insert(0, self.defaults_required.get(name))
        for candidate in candidates:
            if candidate is None:
                continue
            try:
                return self.rule(candidate, scope, where)
            except _OutOfScope:
                continue
        return None

    def argument(self, entry: Dict[str, Any], scope: Dict[str, str], where: str) -> Slot:
        name = _slot_name(entry, where)
        where = f"{where}.{name}"
        codec = entry.get("type")
        if codec is not None:
            try:
                self.types.check(codec)
            except CodecError as exc:
                raise CatalogError(f"{where}: {exc}") from exc
        optional = entry.get("optional", codec is not None and str(codec).startswith("option<"))
        return Slot.argument(
            name,
            codec=codec,
            required=not optional,
            extra=bool(entry.get("extra", False)),
            rule=self.rule(entry["default"], scope, where) if "default" in entry else None,
            docs=str(entry.get("docs", "")),
        )

    def overrides(self, raw: Dict[str, Any], scope: Dict[str, str], where: str) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for name, attrs in raw.items():
            if not isinstance(attrs, dict):
                raise CatalogError(f"{where}.overrides.{name} must be a table")
            unknown = set(attrs) - _OVERRIDE_KEYS
            if unknown:
                raise CatalogError(f"{where}.overrides.{name}: unknown keys {', '.join(sorted(unknown))}")
            changes = {key: value for key, value in attrs.items() if key not in ("default", "no_default")}
            if attrs.get("no_default"):
                changes["rule"] = None
            elif "default" in attrs:
                changes["rule"] = self.rule(attrs["default"], scope, f"{where}.overrides.{name}")
            out[name] = changes
        return out

    # Instructions

    def instruction(self, name: str, spec: Dict[str, Any]) -> Tuple[Optional[VersionedInstruction], List[InstructionDefinition]]:
        where = f"instructions.{name}"
        account_entries = spec.get("accounts", [])
        arg_entries = spec.get("args", [])
        scope = {_slot_name(e, where): ACCOUNT for e in account_entries}
        scope.update({_slot_name(e, where): ARGUMENT for e in arg_entries})
        accounts = [self.account(e, idx, scope, where) for idx, e in enumerate(account_entries)]
        args = [self.argument(e, scope, where) for e in arg_entries]
        discriminator = bytes(spec.get("discriminator", []))
        optional_accounts = str(spec.get("optional_accounts", self.optional_accounts))

        if "variants" not in spec:
            slots = accounts + ([discriminator_slot(discriminator)] if discriminator else []) + args
            table = SlotTable(
                name=name,
                program_id=self.program_id,
                slots=slots,
                optional_accounts=optional_accounts,
                registry=self.registry,
                types=self.types,
                docs=str(spec.get("docs", "")),
            )
            storage = self.storage(spec.get("storage"), scope, where)
            return None, [InstructionDefinition(table=table, storage=storage, docs=table.docs)]

        first_index = max((slot.index for slot in accounts), default=-1) + 1
        variants = [self.variant(entry, scope, first_index, where) for entry in spec["variants"]]
        versioned = VersionedInstruction(
            name=name,
            program_id=self.program_id,
            discriminator=discriminator,
            accounts=accounts,
            args=args,
            variants=variants,
            optional_accounts=optional_accounts,
            storage=self.storage(spec.get("storage"), scope, where),
            registry=self.registry,
            types=self.types,
            docs=str(spec.get("docs", "")),
        )
        return versioned, split_instruction(versioned)

    def variant(self, entry: Dict[str, Any], shared_scope: Dict[str, str], first_index: int, where: str) -> Variant:
        if "name" not in entry or "tag" not in entry:
            raise CatalogError(f"{where}: variants need a name and a tag")
        where = f"{where}.{entry['name']}"
        args_raw, overrides_raw = self.expand_presets(entry, where)
        scope = dict(shared_scope)
        account_entries = entry.get("accounts", [])
        scope.update({_slot_name(e, where): ARGUMENT for e in args_raw})
        scope.update({_slot_name(e, where): ACCOUNT for e in account_entries})
        return Variant(
            name=str(entry["name"]),
            tag=int(entry["tag"]),
            args=[self.argument(e, scope, where) for e in args_raw],
            accounts=[self.account(e, first_index + idx, scope, where) for idx, e in enumerate(account_entries)],
            overrides=self.overrides(overrides_raw, scope, where),
            storage=self.storage(entry.get("storage"), scope, where),
            docs=str(entry.get("docs", "")),
        )

    def expand_presets(self, entry: Dict[str, Any], where: str) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        uses = entry.get("use", [])
        if isinstance(uses, str):
            uses = [uses]
        params = {f"{PARAM_PREFIX}{key}": value for key, value in entry.get("with", {}).items()}
        args: List[Dict[str, Any]] = []
        overrides: Dict[str, Dict[str, Any]] = {}
        for preset_name in uses:
            preset = self.presets.get(preset_name)
            if preset is None:
                raise CatalogError(f"{where}: unknown preset '{preset_name}'")
            preset = _substitute(copy.deepcopy(preset), params, where)
            args.extend(preset.get("args", []))
            for slot, attrs in preset.get("overrides", {}).items():
                overrides.setdefault(slot, {}).update(attrs)
        args.extend(entry.get("args", []))
        for slot, attrs in entry.get("overrides", {}).items():
            overrides.setdefault(slot, {}).update(attrs)
        return args, overrides

    def load(self) -> Catalog:
        instructions: Dict[str, InstructionDefinition] = {}
        versioned: Dict[str, VersionedInstruction] = {}
        for name, spec in _table(self.data, "instructions", self.source).items():
            try:
                parent, definitions = self.instruction(name, spec)
            except _OutOfScope as exc:
                raise CatalogError(str(exc)) from exc
            if parent is not None:
                versioned[name] = parent
            for definition in definitions:
                if definition.name in instructions:
                    raise CatalogError(f"{self.source}: instruction '{definition.name}' defined twice")
                instructions[definition.name] = definition
        return Catalog(
            name=self.name,
            program_id=self.program_id,
            programs=self.programs,
            types=self.types,
            pdas=self.pdas,
            instructions=instructions,
            versioned=versioned,
            optional_accounts=self.optional_accounts,
            source=self.source,
        )


def _table(data: Dict[str, Any], key: str, source: str) -> Dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise CatalogError(f"{source}: [{key}] must be a table")
    return value


def _slot_name(entry: Any, where: str) -> str:
    if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
        raise CatalogError(f"{where}: every slot needs a name")
    return entry["name"]


def _substitute(value: Any, params: Dict[str, Any], where: str) -> Any:
    if isinstance(value, dict):
        return {key: _substitute(val, params, where) for key, val in value.items()}
    if isinstance(value, list):
        return [_substitute(item, params, where) for item in value]
    if isinstance(value, str) and value.startswith(PARAM_PREFIX):
        if value not in params:
            raise CatalogError(f"{where}: preset parameter {value} is not set")
        return params[value]
    return value


# ── Entry points ───────────────────────────────────────────────────


def parse_catalog(
    data: Dict[str, Any],
    source: str = "<memory>",
    programs: Optional[Dict[str, Any]] = None,
    registry: Optional[ResolverRegistry] = None,
) -> Catalog:
    return _Loader(data, source, programs, registry or DEFAULT_REGISTRY).load()


def load_catalog(
    path: Optional[Path] = None,
    programs: Optional[Dict[str, Any]] = None,
    registry: Optional[ResolverRegistry] = None,
) -> Catalog:
    """Load a program file, or the bundled Token Metadata program when ``path`` is None."""
    if path is None:
        text = resources.files("mintwright").joinpath("programs", f"{DEFAULT_CATALOG}.toml").read_text()
        source = f"{DEFAULT_CATALOG}.toml"
    else:
        text = Path(path).read_text()
        source = str(path)
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise CatalogError(f"{source}: {exc}") from exc
    return parse_catalog(data, source=source, programs=programs, registry=registry)


def _slot_to_dict(slot: Slot) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": slot.name}
    if slot.is_account:
        out["index"] = slot.index
        out["optional"] = not slot.required
        out["signer"] = slot.signer
        out["writable"] = slot.writable
        if slot.creates:
            out["creates"] = slot.creates
        if slot.creates_if_missing:
            out["creates_if_missing"] = True
    else:
        if slot.codec:
            out["type"] = slot.codec
        out["optional"] = not slot.required
        if slot.extra:
            out["extra"] = True
    if slot.rule is not None:
        out["default"] = rule_to_dict(slot.rule)
    elif slot.is_account:
        out["no_default"] = True
    if slot.docs:
        out["docs"] = slot.docs
    return out


def definition_to_dict(definition: InstructionDefinition, program_name: str = "program") -> Dict[str, Any]:
    table = definition.table
    instruction: Dict[str, Any] = {
        "discriminator": list(definition.discriminator),
        "accounts": [_slot_to_dict(slot) for slot in table.accounts],
        "args": [_slot_to_dict(slot) for slot in table.arguments if slot.name != DISCRIMINATOR],
    }
    if table.optional_accounts != OPTIONAL_OMITTED:
        instruction["optional_accounts"] = table.optional_accounts
    if isinstance(definition.storage, int):
        instruction["storage"] = definition.storage
    elif isinstance(definition.storage, Resolver):
        instruction["storage"] = rule_to_dict(definition.storage)
    if definition.docs:
        instruction["docs"] = definition.docs
    out: Dict[str, Any] = {
        "program": {"name": program_name, "address": str(table.program_id)},
    }
    if table.types is not None and table.types.definitions:
        out["types"] = table.types.definitions
    out["instructions"] = {definition.name: instruction}
    return out


def dump_definition(definition: InstructionDefinition, program_name: str = "program") -> str:
    """Specialised definition as a standalone program file that ``load_catalog`` reads back."""
    return tomli_w.dumps(definition_to_dict(definition, program_name))
