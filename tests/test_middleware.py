"""Tests for the HTTP middleware stack and settings."""

import pytest
from fastapi.testclient import TestClient

from docgate.config import Settings
from docgate.main import create_app
from docgate.middleware import InMemoryRateLimitStore

FIND = {"database": "test", "collection": "sample", "filter": {}}


def make_client(conn_mgr, **overrides):
    fields = {"log_dir": "", "rate_limit_max": 0}
    fields.update(overrides)
    return TestClient(create_app(Settings(**fields), conn_mgr))


class TestAPIKeyGate:

    @pytest.fixture
    def gated(self, conn_mgr):
        with make_client(conn_mgr, api_key="key", api_secret="secret") as c:
            yield c

    def test_missing_headers_forbidden(self, gated):
        res = gated.post("/api/find", json=FIND)
        assert res.status_code == 403
        assert res.json() == {"message": "Forbidden: Invalid API Key or Secret"}

    def test_wrong_secret_forbidden(self, gated):
        res = gated.post("/api/find", json=FIND, headers={"x-api-key": "key", "x-api-secret": "nope"})
        assert res.status_code == 403

    def test_valid_headers_reach_dispatch(self, gated):
        res = gated.post("/api/find", json=FIND, headers={"x-api-key": "key", "x-api-secret": "secret"})
        assert res.status_code == 404
        assert res.json()["success"] is False

    def test_health_is_public(self, gated):
        assert gated.get("/health").status_code == 200


class TestRateLimit:

    def test_requests_over_limit_rejected(self, conn_mgr):
        with make_client(conn_mgr, rate_limit_max=2, rate_limit_message="slow down") as c:
            assert c.get("/health").status_code == 200
            assert c.get("/health").status_code == 200
            res = c.get("/health")
        assert res.status_code == 429
        assert res.json() == {"message": "slow down"}
        assert int(res.headers["retry-after"]) >= 1

    def test_store_window_slides(self):
        store = InMemoryRateLimitStore()
        assert store.record_attempt("ip", 10, now=0.0) == 1
        assert store.record_attempt("ip", 10, now=5.0) == 2
        assert store.record_attempt("ip", 10, now=10.5) == 2
        assert store.record_attempt("other", 10, now=10.5) == 1
        assert store.retry_after("ip", 10, now=11.0) == 4
        assert store.retry_after("missing", 10, now=11.0) == 0

    def test_spoofed_forwarded_for_is_ignored(self, conn_mgr):
        with make_client(conn_mgr, rate_limit_max=2) as c:
            codes = [
                c.get("/health", headers={"x-forwarded-for": f"10.0.0.{i}"}).status_code
                for i in range(3)
            ]
        assert codes == [200, 200, 429]

    def test_forwarded_for_honoured_from_trusted_proxy(self, conn_mgr):
        with make_client(conn_mgr, rate_limit_max=2, trusted_proxies=["testclient"]) as c:
            codes = [
                c.get("/health", headers={"x-forwarded-for": f"10.0.0.{i}, 172.16.0.1"}).status_code
                for i in range(3)
            ]
        assert codes == [200, 200, 200]

    def test_expired_identifiers_are_dropped(self):
        store = InMemoryRateLimitStore()
        for i in range(50):
            store.record_attempt(f"ip-{i}", 10, now=float(i) / 10)
        assert len(store) == 50
        store.record_attempt("late", 10, now=100.0)
        assert len(store) == 1
        assert store.retry_after("ip-0", 10, now=100.0) == 0

    def test_cleanup_keeps_live_identifiers(self):
        store = InMemoryRateLimitStore()
        store.record_attempt("old", 10, now=0.0)
        store.record_attempt("new", 10, now=8.0)
        assert store.cleanup(10, now=12.0) == 1
        assert len(store) == 1
        assert store.record_attempt("new", 10, now=12.0) == 2


class TestBodyLimit:

    def test_oversized_body_rejected(self, conn_mgr):
        with make_client(conn_mgr, max_body_bytes=16) as c:
            res = c.post("/api/find", json=FIND)
        assert res.status_code == 413
        assert res.json()["success"] is False

    def test_chunked_body_over_limit_rejected(self, conn_mgr):
        def chunks():
            yield b'{"database": "test", '
            yield b'"collection": "sample", "filter": {}}'

        with make_client(conn_mgr, max_body_bytes=16) as c:
            res = c.post("/api/find", content=chunks(), headers={"content-type": "application/json"})
        assert res.status_code == 413
        assert res.json() == {"success": False, "message": "Request body exceeds 16 bytes"}

    def test_chunked_body_under_limit_passes(self, conn_mgr):
        def chunks():
            yield b'{"database": "test", '
            yield b'"collection": "sample", "filter": {}}'

        with make_client(conn_mgr, max_body_bytes=1024) as c:
            res = c.post("/api/find", content=chunks(), headers={"content-type": "application/json"})
        assert res.status_code == 404


class TestSettings:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MONGODB_URI", "mongodb://db:27017")
        monkeypatch.setenv("API_KEY", "k")
        monkeypatch.setenv("API_SECRET", "s")
        monkeypatch.setenv("ALLOWED_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("RATE_LIMIT_MAX", "7")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("TRUSTED_PROXIES", "10.0.0.1, 10.0.0.2")
        s = Settings.from_env()
        assert s.mongodb_uri == "mongodb://db:27017"
        assert s.auth_enabled is True
        assert s.allowed_origins == ["http://a.test", "http://b.test"]
        assert s.rate_limit_max == 7
        assert s.port == 8080
        assert s.log_level == "DEBUG"
        assert s.trusted_proxies == ["10.0.0.1", "10.0.0.2"]

    def test_defaults(self, monkeypatch):
        for name in ("API_KEY", "API_SECRET", "ALLOWED_ORIGINS", "PORT", "RATE_LIMIT_MAX", "TRUSTED_PROXIES"):
            monkeypatch.delenv(name, raising=False)
        s = Settings.from_env()
        assert s.auth_enabled is False
        assert s.allowed_origins == ["*"]
        assert s.port == 3000
        assert s.trusted_proxies == []

    def test_bad_integer(self, monkeypatch):
        monkeypatch.setenv("PORT", "eighty")
        with pytest.raises(ValueError):
            Settings.from_env()
