"""
Client for the on-chain AgentDirectory contract.

Reads fall back across the configured RPC endpoints in order. Writes are
signed with the sponsor key, sent to the primary endpoint only, and never
retried: a duplicate submission is worse than a failed one.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from agent_directory.errors import (
    ChainError, DirectoryError, ExternalUnavailableError, SponsorNotConfiguredError,
)

logger = logging.getLogger("agent_directory.chain")

DIRECTORY_ABI = [
    {
        "inputs": [
            {"name": "name", "type": "string"},
            {"name": "platforms", "type": "string[]"},
            {"name": "urls", "type": "string[]"},
        ],
        "name": "register",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [{"name": "name", "type": "string"}],
        "name": "lookup",
        "outputs": [
            {"name": "", "type": "string"},
            {"name": "", "type": "string[]"},
            {"name": "", "type": "string[]"},
            {"name": "", "type": "address"},
            {"name": "", "type": "uint256"},
            {"name": "", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "registrationFee",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "count",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "offset", "type": "uint256"},
            {"name": "limit", "type": "uint256"},
        ],
        "name": "getAgentNames",
        "outputs": [{"name": "", "type": "string[]"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def _iso(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


@dataclass
class RegistrationRecord:
    name: str
    platforms: List[str] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)
    registrant: str = ""
    registered_at: int = 0
    last_active: int = 0

    @classmethod
    def from_tuple(cls, data: Sequence[Any]) -> "RegistrationRecord":
        return cls(
            name=data[0],
            platforms=list(data[1]),
            urls=list(data[2]),
            registrant=data[3],
            registered_at=int(data[4]),
            last_active=int(data[5]),
        )

    def to_dict(self, include_last_active: bool = True) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "platforms": self.platforms,
            "urls": self.urls,
            "registrant": self.registrant,
            "registeredAt": _iso(self.registered_at),
        }
        if include_last_active:
            data["lastActive"] = _iso(self.last_active)
        return data


@dataclass
class Confirmation:
    tx_hash: str
    block_number: int


class DirectoryClient:
    """Async read/write access to the directory contract."""

    def __init__(
        self,
        contract_address: str,
        rpc_urls: Sequence[str],
        private_key: str = "",
        gas_limit: int = 300000,
    ):
        if not rpc_urls:
            raise ValueError("At least one RPC URL is required")
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.rpc_urls = list(rpc_urls)
        self.gas_limit = gas_limit
        self._providers = [AsyncWeb3(AsyncHTTPProvider(url)) for url in self.rpc_urls]
        self._contracts = [
            w3.eth.contract(address=self.contract_address, abi=DIRECTORY_ABI)
            for w3 in self._providers
        ]
        self._account = Account.from_key(private_key) if private_key else None
        # One submission at a time so concurrent registrations never share a nonce
        self._submit_lock = asyncio.Lock()

    @property
    def has_sponsor(self) -> bool:
        return self._account is not None

    @property
    def sponsor_address(self) -> Optional[str]:
        return self._account.address if self._account else None

    def _require_sponsor(self):
        if not self._account:
            raise SponsorNotConfiguredError("Sponsor wallet not configured")
        return self._account

    async def _read(self, call: Callable[[AsyncWeb3, Any], Awaitable[Any]], what: str) -> Any:
        last_error: Optional[Exception] = None
        for url, w3, contract in zip(self.rpc_urls, self._providers, self._contracts):
            try:
                return await call(w3, contract)
            except ContractLogicError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"RPC {url} failed on {what}: {e}")
        raise ExternalUnavailableError(f"Directory unavailable ({what}): {last_error}")

    async def _call(self, call: Callable[[AsyncWeb3, Any], Awaitable[Any]], what: str) -> Any:
        """Like _read, for calls where a revert is a failure rather than an answer."""
        try:
            return await self._read(call, what)
        except ContractLogicError as e:
            logger.error(f"Directory call {what} reverted: {e}")
            raise DirectoryError(f"Directory call {what} reverted") from e

    # ---- Reads ----

    async def lookup(self, name: str) -> Optional[RegistrationRecord]:
        """Return the record, or None when the directory confirms it does not exist.

        Raises ExternalUnavailableError when no endpoint could answer.
        """
        try:
            data = await self._read(lambda w3, c: c.functions.lookup(name).call(), f"lookup {name}")
        except ContractLogicError:
            return None
        if not data or not data[0]:
            return None
        return RegistrationRecord.from_tuple(data)

    async def count(self) -> int:
        return int(await self._call(lambda w3, c: c.functions.count().call(), "count"))

    async def registration_fee(self) -> int:
        return int(await self._call(lambda w3, c: c.functions.registrationFee().call(), "registrationFee"))

    async def get_agent_names(self, offset: int, limit: int) -> List[str]:
        names = await self._call(
            lambda w3, c: c.functions.getAgentNames(offset, limit).call(),
            "getAgentNames",
        )
        return list(names)

    async def wallet_balance(self) -> int:
        account = self._require_sponsor()
        return int(await self._call(lambda w3, c: w3.eth.get_balance(account.address), "getBalance"))

    # ---- Writes ----

    async def submit_registration(
        self, name: str, platforms: List[str], urls: List[str], fee: int,
    ) -> str:
        """Sign and broadcast ``register``. Returns the tx hash once it is in the mempool.

        Failures before the broadcast raise ChainError without a tx hash and
        nothing reached the network. If the broadcast itself fails the node may
        still have accepted the transaction, so the ChainError carries the
        locally computed hash.
        """
        account = self._require_sponsor()
        w3 = self._providers[0]
        contract = self._contracts[0]
        async with self._submit_lock:
            try:
                nonce = await w3.eth.get_transaction_count(account.address, "pending")
                tx = await contract.functions.register(name, platforms, urls).build_transaction({
                    "from": account.address,
                    "value": fee,
                    "gas": self.gas_limit,
                    "nonce": nonce,
                })
                signed = account.sign_transaction(tx)
            except Exception as e:
                raise ChainError(f"Registration failed: {e}") from e

            local_hash = Web3.to_hex(signed.hash)
            try:
                tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                logger.error(f"Broadcast of {local_hash} for {name} failed, outcome unknown: {e}")
                raise ChainError(f"Registration outcome unknown: {e}", tx_hash=local_hash) from e
        return Web3.to_hex(tx_hash)

    async def confirm(self, tx_hash: str, timeout: float = 120.0) -> Confirmation:
        w3 = self._providers[0]
        try:
            receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise ChainError(f"Transaction not confirmed within {timeout:.0f}s", tx_hash=tx_hash) from e
        except Exception as e:
            raise ChainError(f"Could not confirm transaction: {e}", tx_hash=tx_hash) from e
        if receipt["status"] != 1:
            raise ChainError("Transaction reverted", tx_hash=tx_hash)
        return Confirmation(tx_hash=tx_hash, block_number=int(receipt["blockNumber"]))
