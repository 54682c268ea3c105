"""Decoders for the Token Metadata program's persisted records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from borsh_construct import Bool, CStruct, Option, String, U8, U16, U64, Vec
from solders.pubkey import Pubkey

from .codecs import BorshPubkey, ScalarEnum, TaggedUnion, plain
from .constants import Key, TokenDelegateRole, TokenStandard, TokenState, UseMethod
from .errors import AccountDecodeError


def _scalar(enum_type) -> ScalarEnum:
    return ScalarEnum(enum_type.__name__, [member.name for member in enum_type])


KeyLayout = _scalar(Key)

CreatorLayout = CStruct("address" / BorshPubkey, "verified" / Bool, "share" / U8)
CollectionLayout = CStruct("verified" / Bool, "key" / BorshPubkey)
UsesLayout = CStruct("use_method" / _scalar(UseMethod), "remaining" / U64, "total" / U64)
CollectionDetailsLayout = TaggedUnion(
    "CollectionDetails",
    [("V1", CStruct("size" / U64)), ("V2", CStruct("padding" / U8[8]))],
)
ProgrammableConfigLayout = TaggedUnion(
    "ProgrammableConfig",
    [("V1", CStruct("rule_set" / Option(BorshPubkey)))],
)

MetadataLayout = CStruct(
    "key" / KeyLayout,
    "update_authority" / BorshPubkey,
    "mint" / BorshPubkey,
    "name" / String,
    "symbol" / String,
    "uri" / String,
    "seller_fee_basis_points" / U16,
    "creators" / Option(Vec(CreatorLayout)),
    "primary_sale_happened" / Bool,
    "is_mutable" / Bool,
    "edition_nonce" / Option(U8),
    "token_standard" / Option(_scalar(TokenStandard)),
    "collection" / Option(CollectionLayout),
    "uses" / Option(UsesLayout),
    "collection_details" / Option(CollectionDetailsLayout),
    "programmable_config" / Option(ProgrammableConfigLayout),
)

MasterEditionLayout = CStruct(
    "key" / KeyLayout,
    "supply" / U64,
    "max_supply" / Option(U64),
)

TokenRecordLayout = CStruct(
    "key" / KeyLayout,
    "bump" / U8,
    "state" / _scalar(TokenState),
    "rule_set_revision" / Option(U64),
    "delegate" / Option(BorshPubkey),
    "delegate_role" / Option(_scalar(TokenDelegateRole)),
    "locked_transfer" / Option(BorshPubkey),
)

MetadataDelegateRecordLayout = CStruct(
    "key" / KeyLayout,
    "bump" / U8,
    "mint" / BorshPubkey,
    "delegate" / BorshPubkey,
    "update_authority" / BorshPubkey,
)


@dataclass(frozen=True)
class Creator:
    address: Pubkey
    verified: bool
    share: int


@dataclass(frozen=True)
class Metadata:
    key: Key
    update_authority: Pubkey
    mint: Pubkey
    name: str
    symbol: str
    uri: str
    seller_fee_basis_points: int
    creators: Optional[List[Creator]]
    primary_sale_happened: bool
    is_mutable: bool
    edition_nonce: Optional[int]
    token_standard: Optional[TokenStandard]
    collection: Optional[Dict[str, Any]]
    uses: Optional[Dict[str, Any]]
    collection_details: Optional[Dict[str, Any]]
    programmable_config: Optional[Dict[str, Any]]


@dataclass(frozen=True)
class MasterEdition:
    key: Key
    supply: int
    max_supply: Optional[int]


@dataclass(frozen=True)
class TokenRecord:
    key: Key
    bump: int
    state: TokenState
    rule_set_revision: Optional[int]
    delegate: Optional[Pubkey]
    delegate_role: Optional[TokenDelegateRole]
    locked_transfer: Optional[Pubkey]


@dataclass(frozen=True)
class MetadataDelegateRecord:
    key: Key
    bump: int
    mint: Pubkey
    delegate: Pubkey
    update_authority: Pubkey


Record = Union[Metadata, MasterEdition, TokenRecord, MetadataDelegateRecord]


def _parse(layout, data: bytes, expected: Key, label: str) -> Dict[str, Any]:
    raw = bytes(data)
    if not raw:
        raise AccountDecodeError(f"{label}: account data is empty")
    if raw[0] != expected:
        try:
            found = Key(raw[0]).name
        except ValueError:
            found = str(raw[0])
        raise AccountDecodeError(f"{label}: expected key {expected.name}, found {found}")
    try:
        return plain(layout.parse(raw))
    except Exception as exc:
        raise AccountDecodeError(f"{label}: {exc}") from exc


def _clean(text: str) -> str:
    return text.rstrip("\x00")


def decode_metadata(data: bytes) -> Metadata:
    obj = _parse(MetadataLayout, data, Key.MetadataV1, "Metadata")
    creators = obj["creators"]
    return Metadata(
        key=obj["key"],
        update_authority=obj["update_authority"],
        mint=obj["mint"],
        name=_clean(obj["name"]),
        symbol=_clean(obj["symbol"]),
        uri=_clean(obj["uri"]),
        seller_fee_basis_points=obj["seller_fee_basis_points"],
        creators=None if creators is None else [Creator(**c) for c in creators],
        primary_sale_happened=obj["primary_sale_happened"],
        is_mutable=obj["is_mutable"],
        edition_nonce=obj["edition_nonce"],
        token_standard=obj["token_standard"],
        collection=obj["collection"],
        uses=obj["uses"],
        collection_details=obj["collection_details"],
        programmable_config=obj["programmable_config"],
    )


def decode_master_edition(data: bytes) -> MasterEdition:
    obj = _parse(MasterEditionLayout, data, Key.MasterEditionV2, "MasterEdition")
    return MasterEdition(**obj)


def decode_token_record(data: bytes) -> TokenRecord:
    obj = _parse(TokenRecordLayout, data, Key.TokenRecord, "TokenRecord")
    return TokenRecord(**obj)


def decode_metadata_delegate_record(data: bytes) -> MetadataDelegateRecord:
    obj = _parse(MetadataDelegateRecordLayout, data, Key.MetadataDelegate, "MetadataDelegateRecord")
    return MetadataDelegateRecord(**obj)


DECODERS = {
    Key.MetadataV1: decode_metadata,
    Key.MasterEditionV2: decode_master_edition,
    Key.TokenRecord: decode_token_record,
    Key.MetadataDelegate: decode_metadata_delegate_record,
}


def decode_account(data: bytes) -> Record:
    raw = bytes(data)
    if not raw:
        raise AccountDecodeError("account data is empty")
    try:
        key = Key(raw[0])
    except ValueError as exc:
        raise AccountDecodeError(f"unknown account key {raw[0]}") from exc
    decoder = DECODERS.get(key)
    if decoder is None:
        raise AccountDecodeError(f"no decoder for {key.name} accounts")
    return decoder(raw)
