"""Argument codecs built on borsh-construct.

Type expressions:

    u8 u16 u32 u64 u128 i8 i16 i32 i64 bool string bytes pubkey
    option<T>  vec<T>  array<T;N>  map<K,V>  defined:Name

Named types are declared on a ``TypeRegistry`` as structs, scalar enums or
data enums. Data enum values are written ``{"Variant": {field: value}}``;
a field-less variant may also be given as the bare variant name.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union

import borsh_construct as borsh
from construct import Adapter, Bytes as FixedBytes, Construct, Switch
from solders.pubkey import Pubkey

from .addresses import to_pubkey
from .constants import PUBKEY_LEN, SCALAR_ENUMS
from .errors import CodecError
from .util import parse_int

INTEGER_BITS = {
    "u8": (8, False),
    "u16": (16, False),
    "u32": (32, False),
    "u64": (64, False),
    "u128": (128, False),
    "i8": (8, True),
    "i16": (16, True),
    "i32": (32, True),
    "i64": (64, True),
}
_INTEGER_LAYOUTS = {
    "u8": borsh.U8,
    "u16": borsh.U16,
    "u32": borsh.U32,
    "u64": borsh.U64,
    "u128": borsh.U128,
    "i8": borsh.I8,
    "i16": borsh.I16,
    "i32": borsh.I32,
    "i64": borsh.I64,
}
PRIMITIVES = set(INTEGER_BITS) | {"bool", "string", "bytes", "pubkey"}


# ── Type expressions ───────────────────────────────────────────────


@dataclass(frozen=True)
class TypeNode:
    name: str
    args: Tuple["TypeNode", ...] = ()
    size: Optional[int] = None
    ref: Optional[str] = None

    def __str__(self) -> str:
        if self.name == "defined":
            return f"defined:{self.ref}"
        if self.name == "array":
            return f"array<{self.args[0]};{self.size}>"
        if self.args:
            return f"{self.name}<{','.join(str(a) for a in self.args)}>"
        return self.name


def _split_top_level(text: str, sep: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    start = 0
    for idx, ch in enumerate(text):
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth -= 1
        elif ch == sep and depth == 0:
            parts.append(text[start:idx])
            start = idx + 1
    parts.append(text[start:])
    return [part.strip() for part in parts]


def parse_type(expr: Union[str, TypeNode]) -> TypeNode:
    if isinstance(expr, TypeNode):
        return expr
    if not isinstance(expr, str) or not expr.strip():
        raise CodecError(f"Invalid type expression: {expr!r}")
    text = expr.strip()
    if text in PRIMITIVES:
        return TypeNode(text)
    if text.startswith("defined:"):
        ref = text.split(":", 1)[1].strip()
        if not ref:
            raise CodecError(f"Invalid type expression: {expr!r}")
        return TypeNode("defined", ref=ref)
    if "<" not in text or not text.endswith(">"):
        raise CodecError(f"Unknown type: {text}")
    head, inner = text.split("<", 1)
    head = head.strip()
    inner = inner[:-1]
    if head in ("option", "vec"):
        return TypeNode(head, args=(parse_type(inner),))
    if head == "array":
        parts = _split_top_level(inner, ";")
        if len(parts) != 2:
            raise CodecError(f"array needs an element type and a length: {text}")
        try:
            size = parse_int(parts[1])
        except ValueError as exc:
            raise CodecError(f"Invalid array length in {text}") from exc
        return TypeNode("array", args=(parse_type(parts[0]),), size=size)
    if head == "map":
        parts = _split_top_level(inner, ",")
        if len(parts) != 2:
            raise CodecError(f"map needs a key and a value type: {text}")
        return TypeNode("map", args=(parse_type(parts[0]), parse_type(parts[1])))
    raise CodecError(f"Unknown type: {text}")


# ── Adapters ───────────────────────────────────────────────────────


class PubkeyAdapter(Adapter):
    def __init__(self) -> None:
        super().__init__(FixedBytes(PUBKEY_LEN))

    def _decode(self, obj, context, path) -> Pubkey:
        return Pubkey(bytes(obj))

    def _encode(self, obj, context, path) -> bytes:
        return bytes(to_pubkey(obj))


BorshPubkey = PubkeyAdapter()


class ScalarEnum(Adapter):
    def __init__(self, name: str, variants: List[str]) -> None:
        super().__init__(borsh.U8)
        self.name = name
        self.variants = list(variants)
        self.enum_type = SCALAR_ENUMS.get(name)

    def _decode(self, obj, context, path):
        if obj >= len(self.variants):
            raise CodecError(f"{self.name}: unknown variant index {obj}")
        if self.enum_type is not None:
            return self.enum_type(obj)
        return self.variants[obj]

    def _encode(self, obj, context, path) -> int:
        if isinstance(obj, str):
            if obj not in self.variants:
                raise CodecError(f"{self.name}: unknown variant {obj!r}")
            return self.variants.index(obj)
        return int(obj)


class TaggedUnion(Adapter):
    """Borsh data enum: a u8 variant index followed by the variant's fields."""

    def __init__(self, name: str, variants: List[Tuple[str, Construct]]) -> None:
        self.name = name
        self.variant_names = [variant for variant, _ in variants]
        cases = {idx: layout for idx, (_, layout) in enumerate(variants)}
        super().__init__(borsh.CStruct("index" / borsh.U8, "value" / Switch(lambda this: this.index, cases)))

    def _decode(self, obj, context, path) -> Dict[str, Any]:
        if obj.index >= len(self.variant_names):
            raise CodecError(f"{self.name}: unknown variant index {obj.index}")
        return {self.variant_names[obj.index]: plain(obj.value)}

    def _encode(self, obj, context, path) -> Dict[str, Any]:
        variant, fields = split_variant(obj, self.name)
        if variant not in self.variant_names:
            raise CodecError(f"{self.name}: unknown variant {variant!r}")
        return {"index": self.variant_names.index(variant), "value": fields}


def split_variant(value: Any, type_name: str = "enum") -> Tuple[str, Dict[str, Any]]:
    if isinstance(value, str):
        return value, {}
    if isinstance(value, dict) and len(value) == 1:
        variant, fields = next(iter(value.items()))
        return variant, dict(fields or {})
    raise CodecError(f"{type_name}: expected a variant name or {{Variant: fields}}, got {value!r}")


def plain(obj: Any) -> Any:
    """Containers from parsing turned into plain dicts and lists."""
    if isinstance(obj, dict):
        return {key: plain(val) for key, val in obj.items() if not str(key).startswith("_")}
    if isinstance(obj, list):
        return [plain(item) for item in obj]
    return obj


# ── Registry ───────────────────────────────────────────────────────


class TypeRegistry:
    def __init__(self, definitions: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self._definitions: Dict[str, Dict[str, Any]] = {}
        self._layouts: Dict[str, Construct] = {}
        for name, definition in (definitions or {}).items():
            self.define(name, definition)

    @property
    def definitions(self) -> Dict[str, Dict[str, Any]]:
        return dict(self._definitions)

    def define(self, name: str, definition: Dict[str, Any]) -> None:
        kind = definition.get("kind")
        if kind not in ("struct", "enum"):
            raise CodecError(f"Type {name}: kind must be 'struct' or 'enum'")
        if kind == "struct" and not isinstance(definition.get("fields"), list):
            raise CodecError(f"Type {name}: struct needs a fields list")
        if kind == "enum" and not definition.get("variants"):
            raise CodecError(f"Type {name}: enum needs variants")
        self._definitions[name] = definition
        self._layouts.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def definition(self, name: str) -> Dict[str, Any]:
        try:
            return self._definitions[name]
        except KeyError as exc:
            raise CodecError(f"Unknown defined type: {name}") from exc

    def is_scalar_enum(self, name: str) -> bool:
        definition = self.definition(name)
        return definition["kind"] == "enum" and all(isinstance(v, str) for v in definition["variants"])

    def check(self, expr: Union[str, TypeNode]) -> TypeNode:
        """Parse ``expr`` and make sure every defined type it names exists."""
        node = parse_type(expr)
        self.layout(node)
        return node

    # Layouts

    def layout(self, expr: Union[str, TypeNode]) -> Construct:
        node = parse_type(expr)
        key = str(node)
        if key not in self._layouts:
            self._layouts[key] = self._build_layout(node, ())
        return self._layouts[key]

    def _build_layout(self, node: TypeNode, stack: Tuple[str, ...]) -> Construct:
        if node.name in _INTEGER_LAYOUTS:
            return _INTEGER_LAYOUTS[node.name]
        if node.name == "bool":
            return borsh.Bool
        if node.name == "string":
            return borsh.String
        if node.name == "bytes":
            return borsh.Bytes
        if node.name == "pubkey":
            return BorshPubkey
        if node.name == "option":
            return borsh.Option(self._build_layout(node.args[0], stack))
        if node.name == "vec":
            return borsh.Vec(self._build_layout(node.args[0], stack))
        if node.name == "array":
            return self._build_layout(node.args[0], stack)[node.size]
        if node.name == "map":
            return borsh.HashMap(self._build_layout(node.args[0], stack), self._build_layout(node.args[1], stack))
        return self._build_defined(node.ref, stack)

    def _fields_layout(self, fields: List[Any], stack: Tuple[str, ...]) -> Construct:
        return borsh.CStruct(*(name / self._build_layout(parse_type(expr), stack) for name, expr in fields))

    def _build_defined(self, name: str, stack: Tuple[str, ...]) -> Construct:
        if name in stack:
            raise CodecError(f"Recursive type definition: {' -> '.join(stack + (name,))}")
        definition = self.definition(name)
        stack = stack + (name,)
        if definition["kind"] == "struct":
            return self._fields_layout(definition["fields"], stack)
        variants = definition["variants"]
        if all(isinstance(v, str) for v in variants):
            return ScalarEnum(name, variants)
        return TaggedUnion(
            name,
            [(v["name"], self._fields_layout(v.get("fields", []), stack)) for v in variants],
        )

    # Values

    def encode(self, expr: Union[str, TypeNode], value: Any) -> bytes:
        node = parse_type(expr)
        coerced = self.coerce(node, value)
        try:
            return self.layout(node).build(coerced)
        except CodecError:
            raise
        except Exception as exc:
            raise CodecError(f"Cannot encode {value!r} as {node}: {exc}") from exc

    def decode(self, expr: Union[str, TypeNode], data: bytes) -> Any:
        node = parse_type(expr)
        try:
            return plain(self.layout(node).parse(data))
        except CodecError:
            raise
        except Exception as exc:
            raise CodecError(f"Cannot decode {node}: {exc}") from exc

    def coerce(self, expr: Union[str, TypeNode], value: Any) -> Any:
        node = parse_type(expr)
        name = node.name
        if name in INTEGER_BITS:
            return _coerce_int(value, name)
        if name == "bool":
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lower() in ("true", "false"):
                return value.strip().lower() == "true"
            raise CodecError(f"Expected bool, got {value!r}")
        if name == "string":
            if not isinstance(value, str):
                raise CodecError(f"Expected string, got {value!r}")
            return value
        if name == "bytes":
            return _coerce_bytes(value)
        if name == "pubkey":
            try:
                return to_pubkey(value)
            except ValueError as exc:
                raise CodecError(str(exc)) from exc
        if name == "option":
            return None if value is None else self.coerce(node.args[0], value)
        if name == "vec":
            return [self.coerce(node.args[0], item) for item in _as_list(value, node)]
        if name == "array":
            if isinstance(value, (bytes, bytearray)) and node.args[0].name == "u8":
                value = list(value)
            items = _as_list(value, node)
            if len(items) != node.size:
                raise CodecError(f"Expected {node.size} items for {node}, got {len(items)}")
            return [self.coerce(node.args[0], item) for item in items]
        if name == "map":
            if not isinstance(value, dict):
                raise CodecError(f"Expected a mapping for {node}, got {value!r}")
            key_type, value_type = node.args
            return {self.coerce(key_type, k): self.coerce(value_type, v) for k, v in value.items()}
        return self._coerce_defined(node.ref, value)

    def _coerce_fields(self, type_name: str, fields: List[Any], value: Any) -> Dict[str, Any]:
        if not isinstance(value, dict):
            raise CodecError(f"{type_name}: expected a mapping, got {value!r}")
        declared = [name for name, _ in fields]
        unknown = [key for key in value if key not in declared]
        if unknown:
            raise CodecError(f"{type_name}: unknown fields {', '.join(unknown)}")
        out: Dict[str, Any] = {}
        for field_name, expr in fields:
            node = parse_type(expr)
            if field_name not in value:
                if node.name == "option":
                    out[field_name] = None
                    continue
                raise CodecError(f"{type_name}: missing field '{field_name}'")
            out[field_name] = self.coerce(node, value[field_name])
        return out

    def _coerce_defined(self, name: str, value: Any) -> Any:
        definition = self.definition(name)
        if definition["kind"] == "struct":
            return self._coerce_fields(name, definition["fields"], value)
        variants = definition["variants"]
        if all(isinstance(v, str) for v in variants):
            return coerce_scalar_enum(name, variants, value)
        variant, fields = split_variant(value, name)
        for entry in variants:
            if entry["name"] == variant:
                return {variant: self._coerce_fields(f"{name}.{variant}", entry.get("fields", []), fields)}
        raise CodecError(f"{name}: unknown variant {variant!r}")


def coerce_scalar_enum(name: str, variants: List[str], value: Any) -> Any:
    enum_type = SCALAR_ENUMS.get(name)
    if isinstance(value, IntEnum):
        if enum_type is not None and not isinstance(value, enum_type):
            raise CodecError(f"{name}: got a {type(value).__name__} value")
        index = int(value)
    elif isinstance(value, bool):
        raise CodecError(f"{name}: expected a variant, got {value!r}")
    elif isinstance(value, int):
        index = value
    elif isinstance(value, str):
        text = value.strip()
        if text in variants:
            index = variants.index(text)
        else:
            try:
                index = parse_int(text)
            except ValueError as exc:
                raise CodecError(f"{name}: unknown variant {value!r}") from exc
    else:
        raise CodecError(f"{name}: expected a variant, got {value!r}")
    if index < 0 or index >= len(variants):
        raise CodecError(f"{name}: variant index {index} out of range")
    return enum_type(index) if enum_type is not None else variants[index]


def _coerce_int(value: Any, type_name: str) -> int:
    bits, signed = INTEGER_BITS[type_name]
    if isinstance(value, bool):
        raise CodecError(f"Expected {type_name}, got bool")
    if isinstance(value, str):
        try:
            value = parse_int(value)
        except ValueError as exc:
            raise CodecError(f"Expected {type_name}, got {value!r}") from exc
    if not isinstance(value, int):
        raise CodecError(f"Expected {type_name}, got {value!r}")
    low, high = (-(2 ** (bits - 1)), 2 ** (bits - 1) - 1) if signed else (0, 2**bits - 1)
    if value < low or value > high:
        raise CodecError(f"{value} does not fit {type_name}")
    return value


def _coerce_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str) and value.startswith("0x"):
        try:
            return bytes.fromhex(value[2:])
        except ValueError as exc:
            raise CodecError(f"Invalid hex bytes: {value!r}") from exc
    if isinstance(value, list):
        return bytes(value)
    raise CodecError(f"Expected bytes, got {value!r}")


def _as_list(value: Any, node: TypeNode) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    raise CodecError(f"Expected a list for {node}, got {value!r}")
