"""Resolution context and client configuration loading."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib
except ImportError:  # pragma: no cover - Python < 3.11
    import tomli as tomllib

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .addresses import to_pubkey
from .constants import DEFAULT_PROGRAMS

ENV_RPC_URL = "MINTWRIGHT_RPC_URL"
ENV_KEYPAIR = "MINTWRIGHT_KEYPAIR"


@dataclass
class ResolutionContext:
    """What the engine knows about the caller.

    ``identity`` and ``payer`` may be keypairs or bare addresses; keypairs
    make "either" signer slots sign. ``fetcher`` is only used by network
    resolvers.
    """

    identity: Any = None
    payer: Any = None
    fetcher: Any = None
    programs: Dict[str, Pubkey] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.identity, str):
            self.identity = to_pubkey(self.identity)
        if isinstance(self.payer, str):
            self.payer = to_pubkey(self.payer)
        if self.payer is None:
            self.payer = self.identity
        self.programs = {name: to_pubkey(address) for name, address in self.programs.items()}

    def program(self, name: str) -> Pubkey:
        if name in self.programs:
            return self.programs[name]
        if name in DEFAULT_PROGRAMS:
            return to_pubkey(DEFAULT_PROGRAMS[name])
        raise ValueError(f"Unknown program: {name}")


def load_keypair(path: Path) -> Keypair:
    raw = json.loads(Path(path).expanduser().read_text())
    return Keypair.from_bytes(bytes(raw))


def load_solana_cli_config() -> dict[str, str]:
    path = os.environ.get("SOLANA_CONFIG") or os.environ.get("SOLANA_CONFIG_FILE")
    if path:
        cfg_path = Path(path)
    else:
        cfg_path = Path.home() / ".config" / "solana" / "cli" / "config.yml"
    try:
        text = cfg_path.read_text()
    except OSError:
        return {}
    cfg: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        if key:
            cfg[key] = value.strip().strip("\"'")
    return cfg


def load_client_config(path: Optional[Path]) -> Dict[str, Any]:
    if path is None:
        return {}
    with Path(path).open("rb") as fh:
        data = tomllib.load(fh)
    client = data.get("client", {})
    programs = data.get("programs", {})
    if not isinstance(client, dict) or not isinstance(programs, dict):
        raise ValueError(f"{path}: [client] and [programs] must be tables")
    return {"client": client, "programs": programs}


def _signer_or_address(value: Optional[str]) -> Any:
    if not value:
        return None
    candidate = Path(value).expanduser()
    if candidate.suffix == ".json" or candidate.exists():
        return load_keypair(candidate)
    return to_pubkey(value)


def load_context(
    path: Optional[Path] = None,
    rpc_url: Optional[str] = None,
    identity: Optional[str] = None,
    payer: Optional[str] = None,
    offline: bool = False,
) -> ResolutionContext:
    """Build a context from a client TOML file, the environment and the Solana CLI config.

    Explicit arguments win, then ``MINTWRIGHT_*`` environment variables, then
    the client file, then the Solana CLI config. ``identity`` and ``payer``
    may be keypair file paths or base58 addresses.
    """
    cfg = load_client_config(path)
    client = cfg.get("client", {})
    cli_cfg = load_solana_cli_config()

    rpc_url = (
        rpc_url
        or os.environ.get(ENV_RPC_URL)
        or client.get("rpc_url")
        or cli_cfg.get("json_rpc_url")
    )
    identity_src = (
        identity
        or os.environ.get(ENV_KEYPAIR)
        or client.get("keypair")
        or cli_cfg.get("keypair_path")
    )
    payer_src = payer or client.get("payer")

    try:
        identity_value = _signer_or_address(identity_src)
    except FileNotFoundError:
        # The Solana CLI default keypair may simply not exist yet.
        if identity_src == cli_cfg.get("keypair_path") and identity is None:
            identity_value = None
        else:
            raise
    fetcher = None
    if rpc_url and not offline:
        from .rpc import RpcAccountFetcher

        fetcher = RpcAccountFetcher(rpc_url)
    return ResolutionContext(
        identity=identity_value,
        payer=_signer_or_address(payer_src),
        fetcher=fetcher,
        programs=dict(cfg.get("programs", {})),
    )
