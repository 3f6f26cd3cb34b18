from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from relay_registry.clock import epoch_ms
from relay_registry.config import RateLimitConfig
from relay_registry.errors import RateLimited
from relay_registry.models.records import AccessLogEntry
from relay_registry.security.rate_limit import RateLimitDecision, RateLimiter


def _hit(access_log, cred_id, when):
    access_log.log(
        AccessLogEntry(
            api_key_id=cred_id,
            endpoint="/peers",
            method="GET",
            ip_address="198.51.100.7",
            status_code=200,
            created_at=when,
        )
    )


@pytest.fixture
def cred(credentials):
    return credentials.create("limited", rate_limit=5)


def test_fresh_credential_is_allowed_with_full_budget(limiter, cred):
    d = limiter.check_and_consume(cred.id)
    assert d.allowed is True
    assert d.remaining == 5
    assert d.limit == 5


def test_at_limit_is_still_admitted_with_nothing_left(limiter, access_log, cred, clock):
    for i in range(5):
        _hit(access_log, cred.id, clock.now - timedelta(seconds=i))
    d = limiter.check_and_consume(cred.id)
    assert d.allowed is True
    assert d.remaining == 0


def test_over_limit_is_denied(limiter, access_log, cred, clock):
    for i in range(6):
        _hit(access_log, cred.id, clock.now - timedelta(seconds=i))
    d = limiter.check_and_consume(cred.id)
    assert d.allowed is False
    assert d.remaining == 0


def test_window_lower_bound_is_inclusive(limiter, access_log, cred, clock):
    for _ in range(5):
        _hit(access_log, cred.id, clock.now - timedelta(seconds=61))
    assert limiter.check_and_consume(cred.id).remaining == 5

    for _ in range(6):
        _hit(access_log, cred.id, clock.now - timedelta(seconds=60))
    assert limiter.check_and_consume(cred.id).allowed is False


def test_entries_age_out_of_the_window(limiter, access_log, cred, clock):
    for _ in range(6):
        _hit(access_log, cred.id, clock.now)
    assert limiter.check_and_consume(cred.id).allowed is False

    clock.advance(61)
    d = limiter.check_and_consume(cred.id)
    assert d.allowed is True
    assert d.remaining == 5


def test_other_credentials_do_not_count(limiter, access_log, credentials, cred, clock):
    other = credentials.create("noisy", rate_limit=5)
    for _ in range(10):
        _hit(access_log, other.id, clock.now)
    assert limiter.check_and_consume(cred.id).remaining == 5


def test_limit_change_applies_to_next_check(limiter, access_log, credentials, cred, clock):
    for _ in range(6):
        _hit(access_log, cred.id, clock.now)
    assert limiter.check_and_consume(cred.id).allowed is False

    credentials.set_rate_limit(cred.id, 10)
    d = limiter.check_and_consume(cred.id)
    assert d.allowed is True
    assert d.remaining == 4
    assert d.limit == 10


def test_unknown_credential_is_denied(limiter, clock):
    d = limiter.check_and_consume(12345)
    assert d == RateLimitDecision(allowed=False, remaining=0, reset_at=clock.now, limit=0)


def test_reset_is_next_wall_clock_minute(limiter, cred, clock):
    # FIXED_NOW is 12:30:15 UTC
    d = limiter.check_and_consume(cred.id)
    assert d.reset_at == datetime(2025, 3, 14, 12, 31, 0, tzinfo=timezone.utc)
    assert d.reset_ms == epoch_ms(d.reset_at)
    assert d.retry_after(clock.now) == 45


def test_decision_headers(limiter, cred):
    h = limiter.check_and_consume(cred.id).headers()
    assert h["X-RateLimit-Limit"] == "5"
    assert h["X-RateLimit-Remaining"] == "5"
    assert h["X-RateLimit-Reset"].isdigit()


def test_window_length_is_configurable(db, access_log, cred, clock):
    short = RateLimiter(db, RateLimitConfig(window_seconds=10), clock=clock)
    for _ in range(6):
        _hit(access_log, cred.id, clock.now - timedelta(seconds=30))
    assert short.check_and_consume(cred.id).allowed is True


def test_retry_after_is_at_least_one_second(clock):
    d = RateLimitDecision(allowed=False, remaining=0, reset_at=clock.now, limit=1)
    assert d.retry_after(clock.now + timedelta(seconds=5)) == 1


def test_rate_limited_error_carries_decision_headers():
    reset = datetime(2025, 3, 14, 12, 31, tzinfo=timezone.utc)
    decision = RateLimitDecision(allowed=False, remaining=0, reset_at=reset, limit=5)

    err = RateLimited.from_decision(decision, retry_after=45)
    assert err.status_code == 429
    assert err.code == "rate_limited"
    assert err.headers == {**decision.headers(), "Retry-After": "45"}
    assert err.details == {"limit": 5, "remaining": 0, "reset_at": epoch_ms(reset), "retry_after": 45}

    bare = RateLimited.from_decision(decision)
    assert bare.headers == decision.headers()
    assert "retry_after" not in bare.details
