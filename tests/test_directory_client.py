"""Tests for DirectoryClient behavior that does not need a live RPC."""

import asyncio
from types import SimpleNamespace

import pytest
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from agent_directory.directory_client import DirectoryClient, RegistrationRecord
from agent_directory.errors import (
    ChainError, DirectoryError, ExternalUnavailableError, SponsorNotConfiguredError,
)

from conftest import run

CONTRACT = "0xd172ee7f44b1d9e2c2445e89e736b980da1f1205"
RPCS = ["https://rpc-one.invalid", "https://rpc-two.invalid"]
REGISTRANT = "0x1111111111111111111111111111111111111111"


def _client(private_key=""):
    return DirectoryClient(CONTRACT, RPCS, private_key=private_key)


def test_record_from_contract_tuple():
    record = RegistrationRecord.from_tuple(
        ("KitViolin", ["moltbook", "x"], ["https://moltbook.com/u/KitViolin", "https://x.com/kit"],
         REGISTRANT, 1700000000, 1700000600)
    )
    data = record.to_dict()
    assert data["name"] == "KitViolin"
    assert data["platforms"] == ["moltbook", "x"]
    assert data["registeredAt"] == "2023-11-14T22:13:20.000Z"
    assert data["lastActive"] == "2023-11-14T22:23:20.000Z"
    assert "lastActive" not in record.to_dict(include_last_active=False)


def test_sponsor_configuration():
    client = _client()
    assert client.contract_address == "0xD172eE7F44B1d9e2C2445E89E736B980DA1f1205"
    assert not client.has_sponsor
    with pytest.raises(SponsorNotConfiguredError):
        run(client.wallet_balance())

    client = _client(private_key="0x" + "11" * 32)
    assert client.has_sponsor
    assert client.sponsor_address.startswith("0x")


def test_read_falls_back_to_next_endpoint():
    client = _client()
    calls = []

    async def call(w3, contract):
        calls.append(w3)
        if len(calls) == 1:
            raise ConnectionError("primary down")
        return 7

    assert run(client._read(call, "count")) == 7
    assert len(calls) == 2


def test_read_raises_unavailable_when_all_endpoints_fail():
    client = _client()

    async def call(w3, contract):
        raise ConnectionError("down")

    with pytest.raises(ExternalUnavailableError):
        run(client._read(call, "count"))


def test_lookup_distinguishes_not_found_from_unavailable(monkeypatch):
    client = _client()

    async def empty(call, what):
        return ("", [], [], "0x0000000000000000000000000000000000000000", 0, 0)

    monkeypatch.setattr(client, "_read", empty)
    assert run(client.lookup("Nobody")) is None

    async def reverted(call, what):
        raise ContractLogicError("execution reverted: not found")

    monkeypatch.setattr(client, "_read", reverted)
    assert run(client.lookup("Nobody")) is None

    async def down(call, what):
        raise ExternalUnavailableError("Directory unavailable (lookup): down")

    monkeypatch.setattr(client, "_read", down)
    with pytest.raises(ExternalUnavailableError):
        run(client.lookup("KitViolin"))

    async def found(call, what):
        return ("KitViolin", ["moltbook"], ["https://moltbook.com/u/KitViolin"], REGISTRANT, 1, 2)

    monkeypatch.setattr(client, "_read", found)
    assert run(client.lookup("KitViolin")).registrant == REGISTRANT


def test_non_lookup_reads_wrap_reverts(monkeypatch):
    client = _client()

    async def reverted(call, what):
        raise ContractLogicError("execution reverted: offset out of range")

    monkeypatch.setattr(client, "_read", reverted)
    with pytest.raises(DirectoryError) as exc:
        run(client.get_agent_names(900, 100))
    assert exc.value.status_code == 500
    assert not isinstance(exc.value, ExternalUnavailableError)
    with pytest.raises(DirectoryError):
        run(client.count())
    with pytest.raises(DirectoryError):
        run(client.registration_fee())


class FakeEth:
    def __init__(self):
        self.sent = []
        self.send_error = None
        self.nonce_error = None
        self.receipt = {"status": 1, "blockNumber": 77}
        self.receipt_error = None

    async def get_transaction_count(self, address, block):
        if self.nonce_error:
            raise self.nonce_error
        await asyncio.sleep(0)
        return len(self.sent)

    async def send_raw_transaction(self, raw):
        await asyncio.sleep(0)
        self.sent.append(bytes(raw))
        if self.send_error:
            raise self.send_error
        return Web3.keccak(raw)

    async def wait_for_transaction_receipt(self, tx_hash, timeout=120):
        if self.receipt_error:
            raise self.receipt_error
        return self.receipt


class FakeRegisterCall:
    def __init__(self, built):
        self.built = built

    async def build_transaction(self, params):
        self.built.append(params["nonce"])
        return {
            "to": Web3.to_checksum_address(CONTRACT),
            "value": params["value"],
            "gas": params["gas"],
            "gasPrice": 10 ** 9,
            "nonce": params["nonce"],
            "chainId": 8453,
            "data": "0x",
        }


def _writable_client():
    client = _client(private_key="0x" + "11" * 32)
    eth = FakeEth()
    built = []
    client._providers = [SimpleNamespace(eth=eth)]
    client._contracts = [SimpleNamespace(
        functions=SimpleNamespace(register=lambda name, platforms, urls: FakeRegisterCall(built)),
    )]
    return client, eth, built


def test_submit_returns_broadcast_hash():
    client, eth, built = _writable_client()
    tx_hash = run(client.submit_registration("KitViolin", ["moltbook"], ["https://moltbook.com/u/KitViolin"], 10))
    assert tx_hash == Web3.to_hex(Web3.keccak(eth.sent[0]))
    assert built == [0]


def test_concurrent_submissions_never_share_a_nonce():
    client, eth, built = _writable_client()

    async def both():
        return await asyncio.gather(
            client.submit_registration("first-agent", ["github"], ["https://github.com/a"], 10),
            client.submit_registration("second-agent", ["github"], ["https://github.com/b"], 10),
        )

    hashes = run(both())
    assert built == [0, 1]
    assert len(set(hashes)) == 2


def test_failure_before_broadcast_has_no_tx_hash():
    client, eth, built = _writable_client()
    eth.nonce_error = ConnectionError("rpc down")
    with pytest.raises(ChainError) as exc:
        run(client.submit_registration("KitViolin", ["github"], ["https://github.com/kit"], 10))
    assert exc.value.tx_hash is None
    assert eth.sent == []


def test_broadcast_failure_carries_local_tx_hash():
    client, eth, built = _writable_client()
    eth.send_error = ConnectionError("connection reset")
    with pytest.raises(ChainError) as exc:
        run(client.submit_registration("KitViolin", ["github"], ["https://github.com/kit"], 10))
    assert exc.value.tx_hash == Web3.to_hex(Web3.keccak(eth.sent[0]))
    assert "outcome unknown" in exc.value.message


def test_confirm_outcomes():
    client, eth, built = _writable_client()
    confirmation = run(client.confirm("0xabc", timeout=1))
    assert confirmation.tx_hash == "0xabc"
    assert confirmation.block_number == 77

    eth.receipt = {"status": 0, "blockNumber": 78}
    with pytest.raises(ChainError) as exc:
        run(client.confirm("0xabc", timeout=1))
    assert exc.value.message == "Transaction reverted"
    assert exc.value.tx_hash == "0xabc"

    eth.receipt_error = TimeExhausted("not mined")
    with pytest.raises(ChainError) as exc:
        run(client.confirm("0xdef", timeout=1))
    assert exc.value.tx_hash == "0xdef"
    assert "not confirmed" in exc.value.message

    eth.receipt_error = ConnectionError("rpc down")
    with pytest.raises(ChainError) as exc:
        run(client.confirm("0xdef", timeout=1))
    assert exc.value.tx_hash == "0xdef"
