import asyncio

import pytest

from config.settings import Settings
from core.rpc_factory import build_rpc
from core.rpc_pool import SolanaRPCPool
from core.solana_rpc_async import (
    RpcMethods,
    RpcResponseError,
    RpcTransportError,
    SolanaRPCAsync,
    TokenAmount,
    is_transient,
)


def _client(**kw):
    kw.setdefault("rps", 0)
    kw.setdefault("backoff_base_s", 0.0)
    return SolanaRPCAsync("https://rpc.test", **kw)


def test_call_retries_transient_errors(monkeypatch):
    client = _client(max_retries=3)
    calls = []

    async def flaky(method, params):
        calls.append(method)
        if len(calls) < 3:
            raise RpcTransportError("RPC HTTP 429")
        return {"value": 5}

    monkeypatch.setattr(client, "_call_once", flaky)
    assert asyncio.run(client.call("getBalance", [])) == {"value": 5}
    assert calls == ["getBalance"] * 3


def test_call_gives_up_after_max_retries(monkeypatch):
    client = _client(max_retries=2)
    calls = []

    async def down(method, params):
        calls.append(method)
        raise RpcTransportError("RPC timeout")

    monkeypatch.setattr(client, "_call_once", down)
    with pytest.raises(RpcTransportError):
        asyncio.run(client.call("getSlot", []))
    assert len(calls) == 3


def test_call_raises_node_errors_immediately(monkeypatch):
    client = _client(max_retries=5)
    calls = []

    async def invalid(method, params):
        calls.append(method)
        raise RpcResponseError("Invalid param", -32602)

    monkeypatch.setattr(client, "_call_once", invalid)
    with pytest.raises(RpcResponseError) as exc:
        asyncio.run(client.call("getAccountInfo", ["x"]))
    assert exc.value.code == -32602
    assert len(calls) == 1


class ScriptedClient:
    def __init__(self, url, outcome):
        self.url = url
        self.outcome = outcome
        self.calls = 0

    async def call(self, method, params):
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _pool(*outcomes):
    pool = SolanaRPCPool([f"https://rpc{i}.test" for i in range(len(outcomes))])
    pool.clients = [ScriptedClient(u, o) for u, o in zip(pool.urls, outcomes)]
    pool._idx = 0
    return pool


def test_pool_fails_over_on_transient_error():
    pool = _pool(RpcResponseError("Too many requests", 429), {"ok": True})
    assert asyncio.run(pool.call("getSlot", [])) == {"ok": True}
    assert [c.calls for c in pool.clients] == [1, 1]


def test_pool_raises_non_transient_error_without_failover():
    pool = _pool(RpcResponseError("Invalid param", -32602), {"ok": True})
    with pytest.raises(RpcResponseError):
        asyncio.run(pool.call("getSlot", []))
    assert pool.clients[1].calls == 0


def test_pool_raises_last_error_when_all_endpoints_fail():
    pool = _pool(RpcTransportError("a"), RpcTransportError("b"))
    with pytest.raises(RpcTransportError, match="b"):
        asyncio.run(pool.call("getSlot", []))


def test_build_rpc_picks_pool_for_multiple_urls():
    rpc, kind = build_rpc(Settings(rpc_urls=("https://a.test", "https://b.test")))
    assert kind == "pool"
    assert isinstance(rpc, SolanaRPCPool)

    rpc, kind = build_rpc(Settings(rpc_http="https://only.test"))
    assert kind == "single"
    assert rpc.rpc_http == "https://only.test"


class StatusRpc(RpcMethods):
    def __init__(self, statuses=None, results=None):
        self.statuses = list(statuses or [])
        self.results = results or {}
        self.requests = []

    async def call(self, method, params):
        self.requests.append((method, params))
        if method == "getSignatureStatuses":
            return {"value": [self.statuses.pop(0) if self.statuses else None]}
        return self.results.get(method)


def test_confirm_signature_waits_for_commitment():
    rpc = StatusRpc([None, {"confirmationStatus": "processed", "err": None}, {"confirmationStatus": "confirmed", "err": None}])
    assert asyncio.run(rpc.confirm_signature("sig", tries=5, sleep_s=0)) is True
    assert len(rpc.requests) == 3


def test_confirm_signature_fails_on_tx_error():
    rpc = StatusRpc([{"confirmationStatus": "confirmed", "err": {"InstructionError": [0, "Custom"]}}])
    assert asyncio.run(rpc.confirm_signature("sig", tries=5, sleep_s=0)) is False


def test_confirm_signature_gives_up():
    assert asyncio.run(StatusRpc().confirm_signature("sig", tries=2, sleep_s=0)) is False


def test_get_token_account_balance():
    rpc = StatusRpc(results={"getTokenAccountBalance": {"value": {"amount": "2000000", "decimals": 6, "uiAmount": 2.0}}})
    bal = asyncio.run(rpc.get_token_account_balance("ata"))
    assert bal == TokenAmount(raw=2_000_000, decimals=6)
    assert bal.ui == 2.0
    assert rpc.requests == [("getTokenAccountBalance", ["ata", {"commitment": "confirmed"}])]


def test_get_multiple_accounts_pads_missing_values():
    rpc = StatusRpc(results={"getMultipleAccounts": {"value": [{"owner": "a"}]}})
    assert asyncio.run(rpc.get_multiple_accounts(["k1", "k2"])) == [{"owner": "a"}, None]


def test_is_transient():
    assert is_transient(RpcTransportError("RPC HTTP 503"))
    assert is_transient(RpcResponseError("slow down", 429))
    assert is_transient(RpcResponseError("Node is unavailable", -32005))
    assert not is_transient(RpcResponseError("Invalid param", -32602))
    assert not is_transient(ValueError("x"))


def test_client_retries_node_side_timeouts(monkeypatch):
    client = _client(max_retries=2)
    calls = []

    async def slow_node(method, params):
        calls.append(method)
        if len(calls) == 1:
            raise RpcResponseError("Request timed out", -32004)
        return 7

    monkeypatch.setattr(client, "_call_once", slow_node)
    assert asyncio.run(client.call("getSlot", [])) == 7
    assert len(calls) == 2
