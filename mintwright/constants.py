"""Token Metadata constants and enums."""

from enum import IntEnum

# Well-known program addresses.
TOKEN_METADATA_PROGRAM_ID = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
SPL_TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
SPL_TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
SPL_ATA_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
TOKEN_AUTH_RULES_PROGRAM_ID = "auth9SigNpDKz4sJJ1DfCTuZrZNSAgh9sFD3rboVmgg"
SYSVAR_INSTRUCTIONS_ID = "Sysvar1nstructions1111111111111111111111111"

DEFAULT_PROGRAMS = {
    "mplTokenMetadata": TOKEN_METADATA_PROGRAM_ID,
    "splSystem": SYSTEM_PROGRAM_ID,
    "splToken": SPL_TOKEN_PROGRAM_ID,
    "splToken2022": SPL_TOKEN_2022_PROGRAM_ID,
    "splAssociatedToken": SPL_ATA_PROGRAM_ID,
    "mplTokenAuthRules": TOKEN_AUTH_RULES_PROGRAM_ID,
    "sysvarInstructions": SYSVAR_INSTRUCTIONS_ID,
}

# Record sizes used for storage estimates.
ACCOUNT_HEADER_SIZE = 128
MINT_SIZE = 82
TOKEN_ACCOUNT_SIZE = 165
METADATA_SIZE = 679
MASTER_EDITION_SIZE = 282
TOKEN_RECORD_SIZE = 80
METADATA_DELEGATE_RECORD_SIZE = 98

# Editions tracked by one edition marker account.
EDITION_MARKER_BIT_SIZE = 248

# Derivation limits (runtime MAX_SEEDS includes the bump seed).
MAX_SEEDS = 16
MAX_SEED_LEN = 32
PUBKEY_LEN = 32

OPTIONAL_OMITTED = "omitted"
OPTIONAL_PROGRAM_ID = "program_id"
ALLOWED_OPTIONAL_STRATEGIES = {OPTIONAL_OMITTED, OPTIONAL_PROGRAM_ID}

DEFAULT_CATALOG = "token_metadata"


class Key(IntEnum):
    Uninitialized = 0
    EditionV1 = 1
    MasterEditionV1 = 2
    ReservationListV1 = 3
    MetadataV1 = 4
    ReservationListV2 = 5
    MasterEditionV2 = 6
    EditionMarker = 7
    UseAuthorityRecord = 8
    CollectionAuthorityRecord = 9
    TokenOwnedEscrow = 10
    TokenRecord = 11
    MetadataDelegate = 12
    EditionMarkerV2 = 13
    HolderDelegate = 14


class TokenStandard(IntEnum):
    NonFungible = 0
    FungibleAsset = 1
    Fungible = 2
    NonFungibleEdition = 3
    ProgrammableNonFungible = 4
    ProgrammableNonFungibleEdition = 5


class TokenState(IntEnum):
    Unlocked = 0
    Locked = 1
    Listed = 2


class TokenDelegateRole(IntEnum):
    Sale = 0
    Transfer = 1
    Utility = 2
    Staking = 3
    Standard = 4
    LockedTransfer = 5
    Migration = 6


class MetadataDelegateRole(IntEnum):
    AuthorityItem = 0
    Collection = 1
    Use = 2
    Data = 3
    ProgrammableConfig = 4
    DataItem = 5
    CollectionItem = 6
    ProgrammableConfigItem = 7


class HolderDelegateRole(IntEnum):
    PrintDelegate = 0


class UseMethod(IntEnum):
    Burn = 0
    Multiple = 1
    Single = 2


# Role strings used as PDA seeds by the on-chain program.
METADATA_DELEGATE_ROLE_SEEDS = {
    MetadataDelegateRole.AuthorityItem: "authority_item_delegate",
    MetadataDelegateRole.Collection: "collection_delegate",
    MetadataDelegateRole.Use: "use_delegate",
    MetadataDelegateRole.Data: "data_delegate",
    MetadataDelegateRole.ProgrammableConfig: "programmable_config_delegate",
    MetadataDelegateRole.DataItem: "data_item_delegate",
    MetadataDelegateRole.CollectionItem: "collection_item_delegate",
    MetadataDelegateRole.ProgrammableConfigItem: "prog_config_item_delegate",
}

HOLDER_DELEGATE_ROLE_SEEDS = {
    HolderDelegateRole.PrintDelegate: "print_delegate",
}

# Scalar enums known to the codec catalog, by declared type name.
SCALAR_ENUMS = {
    "Key": Key,
    "TokenStandard": TokenStandard,
    "TokenState": TokenState,
    "TokenDelegateRole": TokenDelegateRole,
    "MetadataDelegateRole": MetadataDelegateRole,
    "HolderDelegateRole": HolderDelegateRole,
    "UseMethod": UseMethod,
}

# Enum values that map onto a seed string rather than their discriminant.
SEED_STRING_ENUMS = {
    "MetadataDelegateRole": METADATA_DELEGATE_ROLE_SEEDS,
    "HolderDelegateRole": HOLDER_DELEGATE_ROLE_SEEDS,
}
