"""FastAPI dependency providers. Process-wide singletons; tests override them."""
from functools import lru_cache

from fastapi import Depends
from web3 import Web3

from agent_directory import config
from agent_directory.capabilities import (
    CapabilityIndex, CapabilityStore, JsonCapabilityStore, SqlCapabilityStore,
)
from agent_directory.database import SessionLocal, init_db
from agent_directory.directory_client import DirectoryClient
from agent_directory.gate import GateStore, InMemoryGateStore
from agent_directory.pipeline import RegistrationPipeline
from agent_directory.verifiers import VerifierRegistry, build_default_registry


@lru_cache
def get_directory() -> DirectoryClient:
    return DirectoryClient(
        contract_address=config.CONTRACT_ADDRESS,
        rpc_urls=config.RPC_URLS,
        private_key=config.SPONSOR_PRIVATE_KEY,
        gas_limit=config.REGISTER_GAS_LIMIT,
    )


@lru_cache
def get_verifiers() -> VerifierRegistry:
    return build_default_registry(
        timeout=config.VERIFY_TIMEOUT_SECONDS,
        fail_closed=config.FAIL_CLOSED_PLATFORMS,
    )


@lru_cache
def get_gate() -> GateStore:
    return InMemoryGateStore(cooldown_seconds=config.REGISTRATION_COOLDOWN_SECONDS)


@lru_cache
def get_capability_store() -> CapabilityStore:
    if config.CAPABILITY_STORE == "sql":
        init_db()
        return SqlCapabilityStore(SessionLocal)
    return JsonCapabilityStore(config.CAPABILITIES_FILE)


def get_pipeline(
    directory: DirectoryClient = Depends(get_directory),
    verifiers: VerifierRegistry = Depends(get_verifiers),
    gate: GateStore = Depends(get_gate),
) -> RegistrationPipeline:
    return RegistrationPipeline(
        directory=directory,
        verifiers=verifiers,
        gate=gate,
        gas_buffer_wei=Web3.to_wei(config.GAS_BUFFER_ETH, "ether"),
        confirm_timeout=config.CONFIRM_TIMEOUT_SECONDS,
    )


def get_capability_index(
    store: CapabilityStore = Depends(get_capability_store),
    directory: DirectoryClient = Depends(get_directory),
) -> CapabilityIndex:
    return CapabilityIndex(store=store, directory=directory)
