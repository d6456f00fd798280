import ssl

import pytest
from fastapi.testclient import TestClient
from redis.connection import SSLConnection
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import ALLOWED_ORIGIN, ADMIN_TOKEN, FakeClock, auth_header, make_settings

from catalog_api.main import create_app
from catalog_api.security.frontend_token import (
    TOKEN_HEADER,
    generate_frontend_token,
    seconds_until_rotation,
)
from catalog_api.security.middleware import is_same_host
from catalog_api.security.rate_limit import (
    HIT_SCRIPT,
    InMemoryRateLimitStore,
    RateLimiter,
    RedisRateLimitStore,
)
from catalog_api.utils.redis_client import DEFAULT_SOCKET_TIMEOUT, create_redis_client


# Origin guard


def test_allowed_origin_is_echoed(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN
    assert response.headers["Access-Control-Allow-Credentials"] == "true"
    assert "X-Frontend-Token" in response.headers["Access-Control-Allow-Headers"]


def test_unknown_origin_is_rejected(app):
    client = TestClient(app, headers={"Origin": "https://evil.example"})
    response = client.get("/api/products")

    assert response.status_code == 403
    assert response.json()["error"] == "Forbidden: Invalid origin"


@pytest.mark.parametrize(
    "referer",
    ["http://testserver/index.html", "http://testserver:80/", "http://u@testserver/page"],
)
def test_same_host_referer_without_origin_gets_wildcard(app, referer):
    client = TestClient(app)
    response = client.get("/api/health", headers={"Referer": referer})

    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.parametrize(
    "referer",
    [None, "http://other-host/page", "not a url", "http://testserver:8080/page"],
)
def test_missing_origin_with_foreign_or_absent_referer_is_rejected(app, referer):
    client = TestClient(app)
    headers = {"Referer": referer} if referer else {}
    response = client.get("/api/products", headers=headers)

    assert response.status_code == 403


def test_same_host_compares_hostname_and_default_port():
    assert is_same_host("https://shop.example.com:443/cart", "shop.example.com")
    assert is_same_host("https://shop.example.com/cart", "shop.example.com:443")
    assert is_same_host("http://Shop.Example.com/", "shop.example.com")
    assert not is_same_host("https://shop.example.com/", "shop.example.com:80")
    assert not is_same_host("http://shop.example.com:bad/", "shop.example.com")


def test_rejected_origin_never_reaches_backend(app, fake_backend):
    client = TestClient(app, headers={"Origin": "https://evil.example"})
    client.post("/api/products", json={"title": "x"}, headers=auth_header(ADMIN_TOKEN))

    assert fake_backend.calls == []


def test_preflight_short_circuits_with_200(client, fake_backend):
    response = client.options("/api/products")

    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Methods"] == "GET, POST, PUT, DELETE, OPTIONS"
    assert fake_backend.calls == []


def test_production_origins_come_from_settings(fake_backend):
    settings = make_settings(vercel_url="catalog.vercel.app", custom_domain="shop.example.com")
    app = create_app(settings=settings, supabase=fake_backend)

    for origin in ("https://catalog.vercel.app", "https://shop.example.com", "http://127.0.0.1:3000"):
        response = TestClient(app, headers={"Origin": origin}).get("/api/health")
        assert response.status_code == 200


# Security headers


def test_security_and_cache_headers_on_api_responses(client):
    response = client.get("/api/health")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "default-src 'self'" in response.headers["Content-Security-Policy"]
    assert response.headers["Cache-Control"].startswith("no-store")
    assert "Strict-Transport-Security" not in response.headers


def test_hsts_when_forwarded_over_https(client):
    response = client.get("/api/health", headers={"X-Forwarded-Proto": "https"})

    assert response.headers["Strict-Transport-Security"].startswith("max-age=31536000")


def test_headers_also_set_on_origin_rejections(app):
    response = TestClient(app, headers={"Origin": "https://evil.example"}).get("/api/health")

    assert response.status_code == 403
    assert response.headers["X-Frame-Options"] == "DENY"


# Rate limiting


def test_in_memory_store_window_lifecycle():
    store = InMemoryRateLimitStore()
    now = 1000.0

    assert [store.hit("ip", now, 3, 60).allowed for _ in range(3)] == [True, True, True]
    blocked = store.hit("ip", now + 1, 3, 60)
    assert not blocked.allowed
    assert blocked.count == 3

    assert store.hit("other-ip", now + 1, 3, 60).allowed

    fresh = store.hit("ip", now + 61, 3, 60)
    assert fresh.allowed and fresh.count == 1


def test_api_returns_429_after_limit_and_recovers_after_window(fake_backend):
    clock = FakeClock()
    limiter = RateLimiter(max_requests=2, window_seconds=60, clock=clock)
    app = create_app(settings=make_settings(), supabase=fake_backend, rate_limiter=limiter)
    client = TestClient(app, headers={"Origin": ALLOWED_ORIGIN})

    assert client.get("/api/products").status_code == 200
    assert client.get("/api/products").status_code == 200

    limited = client.get("/api/products")
    assert limited.status_code == 429
    assert limited.json()["error"] == "Too many requests"
    assert int(limited.headers["Retry-After"]) >= 1

    clock.advance(61)
    assert client.get("/api/products").status_code == 200


def test_unmatched_api_paths_count_toward_the_limit(fake_backend):
    limiter = RateLimiter(max_requests=2, window_seconds=60, clock=FakeClock())
    app = create_app(settings=make_settings(), supabase=fake_backend, rate_limiter=limiter)
    client = TestClient(app, headers={"Origin": ALLOWED_ORIGIN})

    assert client.get("/api/widgets").status_code == 404
    assert client.get("/api/widgets").status_code == 404

    limited = client.get("/api/products")
    assert limited.status_code == 429
    assert limited.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN
    assert not fake_backend.called("list_products")


def test_non_api_paths_are_not_rate_limited(fake_backend):
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
    app = create_app(settings=make_settings(), supabase=fake_backend, rate_limiter=limiter)
    client = TestClient(app, headers={"Origin": ALLOWED_ORIGIN})

    for _ in range(3):
        client.get("/missing")

    assert client.get("/api/health").status_code == 200


class FakeRedis:
    """Runs the limiter's hit script against dicts, the way Redis would."""

    def __init__(self, fail: bool = False) -> None:
        self.counts: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.scripts: list[str] = []
        self.fail = fail

    def register_script(self, script):
        self.scripts.append(script)
        return self._run_hit_script

    def _run_hit_script(self, keys, args):
        if self.fail:
            raise RedisConnectionError("redis down")
        key = keys[0]
        max_requests, window_ms = args
        count = self.counts.get(key, 0)
        allowed = 0
        if count < max_requests:
            count += 1
            self.counts[key] = count
            allowed = 1
        ttl = self.ttls.get(key, -1)
        if ttl < 0:
            self.ttls[key] = window_ms
            ttl = window_ms
        return [allowed, count, ttl]


def test_redis_store_counts_and_sets_expiry():
    redis_client = FakeRedis()
    store = RedisRateLimitStore(redis_client)

    decisions = [store.hit("1.2.3.4", 0.0, 2, 900) for _ in range(3)]

    assert [d.allowed for d in decisions] == [True, True, False]
    assert redis_client.ttls["ratelimit:1.2.3.4"] == 900_000


def test_redis_store_fails_open():
    store = RedisRateLimitStore(FakeRedis(fail=True))

    assert store.hit("1.2.3.4", 0.0, 1, 900).allowed


def test_redis_store_leaves_full_window_untouched():
    redis_client = FakeRedis()
    store = RedisRateLimitStore(redis_client)

    decisions = [store.hit("ip", 0.0, 2, 900) for _ in range(6)]

    assert [d.allowed for d in decisions] == [True, True, False, False, False, False]
    assert redis_client.counts == {"ratelimit:ip": 2}
    assert decisions[-1].count == 2
    assert redis_client.scripts == [HIT_SCRIPT]


def test_redis_client_uses_short_timeouts():
    client = create_redis_client("redis://localhost:6379/0")
    kwargs = client.connection_pool.connection_kwargs

    assert kwargs["socket_connect_timeout"] == DEFAULT_SOCKET_TIMEOUT
    assert kwargs["socket_timeout"] == DEFAULT_SOCKET_TIMEOUT
    assert kwargs["decode_responses"] is True


def test_redis_client_switches_upstash_to_tls():
    client = create_redis_client("redis://default:pw@eu1-catalog.upstash.io:6379")

    assert client.connection_pool.connection_class is SSLConnection
    assert client.connection_pool.connection_kwargs["ssl_cert_reqs"] == ssl.CERT_NONE


# Frontend token


def test_frontend_token_is_stable_within_window_and_rotates():
    start = 1_700_000_100.0
    token = generate_frontend_token("secret", now=start)

    assert len(token) == 16
    assert all(c in "0123456789abcdef" for c in token)
    assert generate_frontend_token("secret", now=start + 10) == token
    assert generate_frontend_token("secret", now=start + 300) != token
    assert generate_frontend_token("other", now=start) != token


def test_seconds_until_rotation_is_within_window():
    assert seconds_until_rotation(now=600.0) == 300
    assert seconds_until_rotation(now=899.5) == 1


def test_token_endpoint_issues_current_token(client):
    body = client.get("/api/health/token").json()

    assert body["token"] == generate_frontend_token("test-secret")
    assert body["token_type"] == "Bearer"
    assert 1 <= body["expires_in"] <= 300


def test_frontend_only_mode_requires_token(fake_backend):
    settings = make_settings(require_frontend_token=True)
    app = create_app(settings=settings, supabase=fake_backend)
    client = TestClient(app, headers={"Origin": ALLOWED_ORIGIN})
    payload = {"title": "Dune", "author": "Frank Herbert", "price": 12}

    blocked = client.post("/api/products", json=payload, headers=auth_header(ADMIN_TOKEN))
    assert blocked.status_code == 403
    assert blocked.json()["error"] == "Forbidden: Frontend access only"

    headers = {**auth_header(ADMIN_TOKEN), TOKEN_HEADER: generate_frontend_token("test-secret")}
    allowed = client.post("/api/products", json=payload, headers=headers)
    assert allowed.status_code == 201
