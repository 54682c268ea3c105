"""Address coercion, seed templates and derived-address computation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence, Tuple, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .constants import EDITION_MARKER_BIT_SIZE, MAX_SEED_LEN, MAX_SEEDS, PUBKEY_LEN
from .errors import DerivationError, DerivationInputNotFixedWidth, SeedTooLong

if TYPE_CHECKING:  # pragma: no cover
    from .rules import SlotRef

FIXED_WIDTH_ENCODINGS = {
    "pubkey": PUBKEY_LEN,
    "u8": 1,
    "u16": 2,
    "u32": 4,
    "u64": 8,
    "bool": 1,
}
# Text seeds computed from a fixed-width u64 input.
COMPUTED_ENCODINGS = {"edition_marker"}
VARIABLE_WIDTH_ENCODINGS = {"utf8", "bytes"}
FIXED_INPUT_ENCODINGS = set(FIXED_WIDTH_ENCODINGS) | COMPUTED_ENCODINGS
SEED_ENCODINGS = FIXED_INPUT_ENCODINGS | VARIABLE_WIDTH_ENCODINGS


def to_pubkey(value: Any) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, Keypair):
        return value.pubkey()
    if isinstance(value, str):
        try:
            return Pubkey.from_string(value.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid base58 address: {value!r}") from exc
    if isinstance(value, (bytes, bytearray)) and len(value) == PUBKEY_LEN:
        return Pubkey(bytes(value))
    pubkey_attr = getattr(value, "pubkey", None)
    if callable(pubkey_attr):
        return to_pubkey(pubkey_attr())
    raise ValueError(f"Cannot interpret {type(value).__name__} as an address")


def is_signer_value(value: Any) -> bool:
    return isinstance(value, Keypair)


def encode_seed_value(value: Any, encoding: str) -> bytes:
    if encoding == "pubkey":
        return bytes(to_pubkey(value))
    if encoding == "bool":
        return b"\x01" if value else b"\x00"
    if encoding == "edition_marker":
        number = int.from_bytes(encode_seed_value(value, "u64"), "little")
        return str(number // EDITION_MARKER_BIT_SIZE).encode("utf-8")
    if encoding in FIXED_WIDTH_ENCODINGS:
        width = FIXED_WIDTH_ENCODINGS[encoding]
        try:
            return int(value).to_bytes(width, "little")
        except (OverflowError, TypeError, ValueError) as exc:
            raise DerivationError(f"Seed value {value!r} does not fit {encoding}") from exc
    if encoding == "utf8":
        return str(value).encode("utf-8")
    if encoding == "bytes":
        return bytes(value)
    raise DerivationError(f"Unknown seed encoding: {encoding}")


def check_seeds(seeds: Sequence[bytes]) -> None:
    # find_program_address appends the bump seed.
    if len(seeds) > MAX_SEEDS - 1:
        raise SeedTooLong(f"At most {MAX_SEEDS - 1} seeds are allowed, got {len(seeds)}")
    for idx, seed in enumerate(seeds):
        if len(seed) > MAX_SEED_LEN:
            raise SeedTooLong(f"Seed {idx} is {len(seed)} bytes (max {MAX_SEED_LEN})")


def derive_with_bump(seeds: Sequence[bytes], program_id: Any) -> Tuple[Pubkey, int]:
    check_seeds(seeds)
    return Pubkey.find_program_address(list(seeds), to_pubkey(program_id))


def derive(seeds: Sequence[bytes], program_id: Any) -> Pubkey:
    return derive_with_bump(seeds, program_id)[0]


@dataclass(frozen=True)
class ConstantSeed:
    value: bytes

    @classmethod
    def utf8(cls, text: str) -> "ConstantSeed":
        return cls(text.encode("utf-8"))

    @classmethod
    def address(cls, value: Any) -> "ConstantSeed":
        return cls(bytes(to_pubkey(value)))


@dataclass(frozen=True)
class ProgramIdSeed:
    pass


@dataclass(frozen=True)
class VariableSeed:
    ref: "SlotRef"
    encoding: str = "pubkey"
    name: Optional[str] = None


Seed = Union[ConstantSeed, ProgramIdSeed, VariableSeed]


@dataclass(frozen=True)
class SeedTemplate:
    """Ordered recipe for a derived address.

    ``program`` is the program the address is derived under; when unset the
    slot table's own program is used. ``ProgramIdSeed`` always contributes the
    slot table's program id.
    """

    seeds: Tuple[Seed, ...] = field(default_factory=tuple)
    program: Optional[Pubkey] = None

    def references(self) -> List["SlotRef"]:
        return [seed.ref for seed in self.seeds if isinstance(seed, VariableSeed)]

    def seed_bytes(
        self,
        program_id: Pubkey,
        lookup: Callable[["SlotRef"], Any],
        slot: str = "?",
    ) -> List[bytes]:
        out: List[bytes] = []
        for seed in self.seeds:
            if isinstance(seed, ConstantSeed):
                out.append(seed.value)
            elif isinstance(seed, ProgramIdSeed):
                out.append(bytes(program_id))
            else:
                if seed.encoding not in FIXED_INPUT_ENCODINGS:
                    raise DerivationInputNotFixedWidth(slot, seed.name or seed.ref.name, seed.encoding)
                out.append(encode_seed_value(lookup(seed.ref), seed.encoding))
        return out

    def derive(
        self,
        program_id: Pubkey,
        lookup: Callable[["SlotRef"], Any],
        slot: str = "?",
    ) -> Pubkey:
        seeds = self.seed_bytes(program_id, lookup, slot)
        return derive(seeds, self.program or program_id)
