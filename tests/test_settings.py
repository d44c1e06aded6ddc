from config.settings import METEORA_PROGRAM_ID, Settings


def _clear(monkeypatch):
    for k in ("RPC_URL", "RPC_HTTP", "RPC_URLS", "RPC_WS", "MODE", "LP_PERCENTAGE", "LISTING_MAX_ATTEMPTS",
              "POOL_CREATION_MARKERS", "TX_SKIP_PREFLIGHT"):
        monkeypatch.delenv(k, raising=False)


def test_defaults(monkeypatch):
    _clear(monkeypatch)
    s = Settings.from_env()
    assert s.program_id == METEORA_PROGRAM_ID
    assert s.mode == "REAL"
    assert s.paper is False
    assert s.lp_percentage == 80.0
    assert s.listing_max_attempts == 30
    assert s.listing_interval_s == 10.0
    assert s.ws_reconnect_interval_s == 5.0
    assert s.tx_skip_preflight is True
    assert s.rpc_ws == "wss://api.mainnet-beta.solana.com"


def test_env_overrides(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("RPC_URL", "http://localhost:8899")
    monkeypatch.setenv("RPC_URLS", "https://a.test, https://b.test,")
    monkeypatch.setenv("MODE", "paper")
    monkeypatch.setenv("POOL_CREATION_MARKERS", "open , init")
    monkeypatch.setenv("TX_SKIP_PREFLIGHT", "0")
    s = Settings.from_env()
    assert s.rpc_http == "http://localhost:8899"
    assert s.rpc_ws == "ws://localhost:8899"
    assert s.rpc_urls == ("https://a.test", "https://b.test")
    assert s.paper is True
    assert s.creation_markers == ("open", "init")
    assert s.tx_skip_preflight is False


def test_bad_numbers_fall_back_to_defaults(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("LISTING_MAX_ATTEMPTS", "many")
    monkeypatch.setenv("LP_PERCENTAGE", "")
    s = Settings.from_env()
    assert s.listing_max_attempts == 30
    assert s.lp_percentage == 80.0
