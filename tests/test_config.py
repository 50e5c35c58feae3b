import pytest
from meshtrust_core.config import AuthConfig
from meshtrust_core.trust import InMemoryTrustStore, SQLiteTrustStore, load_trust_store


def test_defaults(monkeypatch):
    for var in ("MAX_CHALLENGE_AGE", "LATENCY_SLACK", "STORE_PROVIDER", "WEBHOOK_URL"):
        monkeypatch.delenv("MESHTRUST_" + var, raising=False)
    cfg = AuthConfig.from_env()
    assert cfg.max_challenge_age == 30
    assert cfg.handshake_timeout == 35
    assert cfg.store_provider == "sqlite"
    assert cfg.webhook_url is None


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("MESHTRUST_MAX_CHALLENGE_AGE", "10")
    monkeypatch.setenv("MESHTRUST_LATENCY_SLACK", "2.5")
    monkeypatch.setenv("MESHTRUST_MAX_FAILURES", "3")
    monkeypatch.setenv("MESHTRUST_STORE_PROVIDER", "MEMORY")
    monkeypatch.setenv("MESHTRUST_WEBHOOK_URL", "http://operator.local/hook")
    cfg = AuthConfig.from_env()
    assert cfg.handshake_timeout == 12.5
    assert cfg.max_failures == 3
    assert cfg.store_provider == "memory"
    assert cfg.webhook_url == "http://operator.local/hook"


@pytest.mark.parametrize("var,value", [
    ("MAX_CHALLENGE_AGE", "soon"),
    ("MAX_CHALLENGE_AGE", "-1"),
    ("MAX_FAILURES", "0"),
    ("MAX_FAILURES", "2.5"),
])
def test_invalid_env(monkeypatch, var, value):
    monkeypatch.setenv("MESHTRUST_" + var, value)
    with pytest.raises(ValueError):
        AuthConfig.from_env()


def test_load_trust_store(tmp_path):
    assert isinstance(load_trust_store(AuthConfig(store_provider="memory")), InMemoryTrustStore)
    store = load_trust_store(AuthConfig(db_path=str(tmp_path / "db" / "t.db")))
    assert isinstance(store, SQLiteTrustStore)
    store.close()
    with pytest.raises(ValueError):
        load_trust_store(AuthConfig(store_provider="postgres"))
