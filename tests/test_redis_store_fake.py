"""Redis backend against an in-process Redis (real WATCH/MULTI/EXEC semantics)."""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier
from unittest.mock import Mock

import fakeredis
import pytest

from admission.adapters.rate_limit.base import CounterRecord
from admission.adapters.rate_limit.redis_store import RedisCounterStore
from admission.core.policies import RateLimitPolicy
from admission.services.counter_sweeper import CounterSweeper
from admission.services.rate_limiter import RateLimiter

HOUR_MS = 60 * 60 * 1000
NOW_S = 1_700_000_000.0
NOW_MS = int(NOW_S * 1000)
INDEX_KEY = "_rateLimits#index"


@pytest.fixture
def client() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


def seed(client: fakeredis.FakeRedis, doc_id: str, count: int, window_start_ms: int) -> None:
    client.hset(f"_rateLimits:{doc_id}", mapping={"count": count, "windowStart": window_start_ms})
    client.zadd(INDEX_KEY, {doc_id: window_start_ms})


def test_quota_is_never_exceeded(client: fakeredis.FakeRedis) -> None:
    policy = RateLimitPolicy(max_requests=3, window_ms=60_000, key_prefix="rate_auth")
    limiter = RateLimiter(RedisCounterStore(client), clock=Mock(return_value=NOW_S))

    results = [limiter.check("203.0.113.7", policy).allowed for _ in range(10)]

    assert results.count(True) == 3
    assert client.hget("_rateLimits:rate_auth_203_0_113_7", "count") == "3"
    assert client.zscore(INDEX_KEY, "rate_auth_203_0_113_7") == NOW_MS


def test_concurrent_checks_admit_exactly_the_quota(client: fakeredis.FakeRedis) -> None:
    n = 10
    policy = RateLimitPolicy(max_requests=n, window_ms=60_000, key_prefix="conc")
    store = RedisCounterStore(client, max_transaction_retries=100)
    barrier = Barrier(2 * n)

    def request(_: int):
        limiter = RateLimiter(store)
        barrier.wait()
        return limiter.evaluate("198.51.100.4", policy)

    with ThreadPoolExecutor(max_workers=2 * n) as pool:
        results = list(pool.map(request, range(2 * n)))

    assert all(result.ok for result in results)
    assert [result.decision.allowed for result in results].count(True) == n
    assert client.hget("_rateLimits:conc_198_51_100_4", "count") == str(n)


def test_conflicting_write_reruns_body_on_fresh_data(client: fakeredis.FakeRedis) -> None:
    seed(client, "rate_auth_x", count=1, window_start_ms=NOW_MS)
    store = RedisCounterStore(client)
    seen: list[CounterRecord | None] = []

    def body(tx):
        seen.append(tx.get())
        if len(seen) == 1:
            # Another writer commits between our read and our EXEC.
            client.hincrby("_rateLimits:rate_auth_x", "count", 5)
        tx.increment(1)

    store.run_transaction("rate_auth_x", body)

    assert [record.count for record in seen] == [1, 6]
    assert client.hget("_rateLimits:rate_auth_x", "count") == "7"


def test_sweep_deletes_only_records_past_retention(client: fakeredis.FakeRedis) -> None:
    seed(client, "rate_auth_fresh", count=3, window_start_ms=NOW_MS)
    seed(client, "rate_auth_recent", count=9, window_start_ms=NOW_MS - 12 * HOUR_MS)
    seed(client, "rate_auth_stale", count=1, window_start_ms=NOW_MS - 48 * HOUR_MS)
    sweeper = CounterSweeper(
        RedisCounterStore(client), retention_ms=24 * HOUR_MS, clock=Mock(return_value=NOW_S)
    )

    assert sweeper.sweep() == 1
    assert not client.exists("_rateLimits:rate_auth_stale")
    assert client.hget("_rateLimits:rate_auth_recent", "count") == "9"
    assert sorted(client.zrange(INDEX_KEY, 0, -1)) == ["rate_auth_fresh", "rate_auth_recent"]


def test_sweep_clears_dangling_index_entries(client: fakeredis.FakeRedis) -> None:
    client.zadd(INDEX_KEY, {"rate_bulk_gone": NOW_MS - 48 * HOUR_MS})
    seed(client, "rate_bulk_broken", count=1, window_start_ms=NOW_MS - 48 * HOUR_MS)
    client.hset("_rateLimits:rate_bulk_broken", "windowStart", "not-a-number")

    deleted = RedisCounterStore(client).delete_expired(NOW_MS - 24 * HOUR_MS, 500)

    assert deleted == 1
    assert client.zcard(INDEX_KEY) == 0
    assert not client.exists("_rateLimits:rate_bulk_broken")
