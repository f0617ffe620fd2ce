from dispatch.config import Settings
from dispatch.db import normalize_database_url


def test_settings_defaults(monkeypatch):
    for name in ("EVENTS_QUEUE", "MAX_RETRIES", "TESTING_USER", "RETRY_DELAYS_MS"):
        monkeypatch.delenv(name, raising=False)
    s = Settings()
    assert s.events_queue == "dispatch.events"
    assert s.max_retries == 3
    assert s.testing_user is None
    assert s.retry_delays_ms == [1000, 2000, 4000, 8000]


def test_settings_env_override(monkeypatch):
    monkeypatch.setenv("SEND_CONCURRENCY", "5")
    monkeypatch.setenv("RETRY_DELAYS_MS", "500,1500")
    monkeypatch.setenv("TESTING_USER", "5559999999")
    s = Settings()
    assert s.send_concurrency == 5
    assert s.retry_delays_ms == [500, 1500]
    assert s.testing_user == "5559999999"


def test_database_url_normalized_for_asyncpg():
    assert normalize_database_url("postgresql://u:p@db/x") == "postgresql+asyncpg://u:p@db/x"
