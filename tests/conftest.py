import asyncio
from typing import Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from agent_directory.capabilities import CapabilityIndex, JsonCapabilityStore
from agent_directory.deps import get_capability_store, get_directory, get_gate, get_verifiers
from agent_directory.directory_client import Confirmation, RegistrationRecord
from agent_directory.gate import InMemoryGateStore
from agent_directory.main import app
from agent_directory.pipeline import RegistrationPipeline
from agent_directory.routers import capabilities as capabilities_router
from agent_directory.verifiers import build_default_registry

ETHER = 10 ** 18
GAS_BUFFER_WEI = 5 * 10 ** 14
SPONSOR = "0x1111111111111111111111111111111111111111"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDirectory:
    """In-memory stand-in for DirectoryClient."""

    def __init__(self, fee: int = 10 ** 15, balance: int = ETHER, sponsor: bool = True):
        self.records: Dict[str, RegistrationRecord] = {}
        self.names: List[str] = []
        self.fee = fee
        self.balance = balance
        self.has_sponsor = sponsor
        self.sponsor_address = SPONSOR if sponsor else None
        self.submissions: List[dict] = []
        self.lookup_error: Optional[Exception] = None
        self.confirm_error: Optional[Exception] = None
        self.submit_error: Optional[Exception] = None
        self.block_number = 4242

    def add(self, name: str, platforms=("moltbook",), urls=None) -> RegistrationRecord:
        record = RegistrationRecord(
            name=name,
            platforms=list(platforms),
            urls=list(urls or [f"https://example.com/{name}" for _ in platforms]),
            registrant=SPONSOR,
            registered_at=1700000000,
            last_active=1700000000,
        )
        self.records[name] = record
        self.names.append(name)
        return record

    async def lookup(self, name: str) -> Optional[RegistrationRecord]:
        if self.lookup_error:
            raise self.lookup_error
        return self.records.get(name)

    async def count(self) -> int:
        return len(self.names)

    async def registration_fee(self) -> int:
        return self.fee

    async def get_agent_names(self, offset: int, limit: int) -> List[str]:
        return self.names[offset:offset + limit]

    async def wallet_balance(self) -> int:
        return self.balance

    async def submit_registration(self, name, platforms, urls, fee) -> str:
        self.submissions.append({"name": name, "platforms": platforms, "urls": urls, "fee": fee})
        if self.submit_error:
            raise self.submit_error
        return "0x" + f"{len(self.submissions):064x}"

    async def confirm(self, tx_hash: str, timeout: float = 120.0) -> Confirmation:
        if self.confirm_error:
            raise self.confirm_error
        last = self.submissions[-1]
        self.add(last["name"], last["platforms"], last["urls"])
        return Confirmation(tx_hash=tx_hash, block_number=self.block_number)


def status_transport(statuses: Optional[Dict[str, object]] = None, default: int = 200) -> httpx.MockTransport:
    """Answer by URL prefix. A value may be a status code or an exception to raise."""
    statuses = statuses or {}

    def handler(request: httpx.Request) -> httpx.Response:
        for prefix, outcome in statuses.items():
            if str(request.url).startswith(prefix):
                if isinstance(outcome, Exception):
                    raise outcome
                return httpx.Response(outcome)
        return httpx.Response(default)

    return httpx.MockTransport(handler)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def transport():
    return status_transport()


@pytest.fixture
def verifiers(transport):
    return build_default_registry(timeout=1.0, transport=transport)


@pytest.fixture
def gate(clock):
    return InMemoryGateStore(cooldown_seconds=60, clock=clock)


@pytest.fixture
def pipeline(directory, verifiers, gate):
    return RegistrationPipeline(
        directory=directory,
        verifiers=verifiers,
        gate=gate,
        gas_buffer_wei=GAS_BUFFER_WEI,
        confirm_timeout=5,
    )


@pytest.fixture
def store(tmp_path):
    return JsonCapabilityStore(str(tmp_path / "data" / "capabilities.json"))


@pytest.fixture
def index(store, directory):
    return CapabilityIndex(store=store, directory=directory)


@pytest.fixture
def client(directory, verifiers, gate, store):
    app.dependency_overrides[get_directory] = lambda: directory
    app.dependency_overrides[get_verifiers] = lambda: verifiers
    app.dependency_overrides[get_gate] = lambda: gate
    app.dependency_overrides[get_capability_store] = lambda: store
    capabilities_router.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
