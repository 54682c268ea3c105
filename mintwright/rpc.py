"""Account-existence collaborators for network resolvers and storage estimates."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional, Protocol

from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment

from .addresses import to_pubkey

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 6
DEFAULT_BACKOFF = 0.25


class AccountFetcher(Protocol):
    def get_account(self, address: Any) -> Optional[bytes]:
        """Raw account data, or ``None`` when the account does not exist."""


class RpcAccountFetcher:
    """Reads accounts through ``solana.rpc.api.Client``.

    Transport failures are retried ``retries`` times, sleeping
    ``backoff * 2**attempt`` seconds between attempts. The policy belongs to
    the caller; the engine only sees the final result or error.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        retries: int = DEFAULT_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
        commitment: str = "confirmed",
        client: Optional[Client] = None,
    ) -> None:
        if retries < 0:
            raise ValueError("retries must be >= 0")
        if backoff < 0:
            raise ValueError("backoff must be >= 0")
        self.rpc_url = rpc_url
        self.retries = retries
        self.backoff = backoff
        self.commitment = Commitment(commitment)
        self.client = client or Client(rpc_url, timeout=timeout)

    def get_account(self, address: Any) -> Optional[bytes]:
        pubkey = to_pubkey(address)
        for attempt in range(self.retries + 1):
            try:
                resp = self.client.get_account_info(pubkey, commitment=self.commitment)
            except SolanaRpcException as exc:
                if attempt < self.retries:
                    delay = self.backoff * (2**attempt)
                    logger.debug("get_account_info(%s) failed (%s), retrying in %.2fs", pubkey, exc.error_msg, delay)
                    time.sleep(delay)
                    continue
                raise ValueError(f"RPC transport error fetching {pubkey}: {exc.error_msg}") from exc
            if resp.value is None:
                return None
            return bytes(resp.value.data)
        raise ValueError("RPC request failed after retries")


class StaticAccountFetcher:
    """In-memory fetcher for tests and offline resolution."""

    def __init__(self, accounts: Optional[Dict[Any, bytes]] = None) -> None:
        self._accounts = {to_pubkey(key): bytes(data) for key, data in (accounts or {}).items()}
        self.requests = []

    def add(self, address: Any, data: bytes) -> None:
        self._accounts[to_pubkey(address)] = bytes(data)

    def get_account(self, address: Any) -> Optional[bytes]:
        pubkey = to_pubkey(address)
        self.requests.append(pubkey)
        return self._accounts.get(pubkey)
