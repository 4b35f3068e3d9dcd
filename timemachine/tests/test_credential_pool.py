"""Tests for credential rotation and health bookkeeping."""

from __future__ import annotations

from datetime import timedelta

import pytest

from timemachine.services.credential_pool import (
    INDEX_STORE_KEY,
    KEYS_STORE_KEY,
    STATS_STORE_KEY,
    CredentialPool,
    mask_token,
)
from timemachine.tests.factories import FakeClock, make_token

A, B, C, D = (make_token(label) for label in "ABCD")


def _pool(*tokens: str, clock: FakeClock | None = None) -> CredentialPool:
    pool = CredentialPool(clock=clock or FakeClock())
    for token in tokens:
        assert pool.add(token)
    return pool


def test_add_rejects_empty_short_and_duplicate_tokens():
    pool = CredentialPool()

    assert pool.add("") is False
    assert pool.add("x" * 34) is False
    assert pool.add(A) is True
    assert pool.add(A) is False

    assert pool.tokens == [A]
    assert pool.current_index == 0
    assert pool.health(A).request_count == 0


def test_current_is_none_for_empty_pool():
    pool = CredentialPool()
    assert pool.current() is None
    assert pool.current_index is None


def test_rotate_skips_failed_and_quota_exceeded_keys():
    pool = _pool(A, B, C)
    pool.mark_failed(A, "The request cannot be completed because you have exceeded your quota.")
    pool.mark_failed(B, "HTTP 500")
    pool.current_index = 0

    assert pool.rotate() is True
    assert pool.current_index == 2
    assert pool.current() == C


def test_rotate_wraps_around_from_the_end():
    pool = _pool(A, B, C)
    pool.current_index = 2
    pool.mark_failed(C, "Network error")

    assert pool.rotate() is True
    assert pool.current() == A


def test_rotate_resets_to_first_key_when_all_unusable():
    pool = _pool(A, B, C)
    for token in (A, B, C):
        pool.mark_failed(token, "HTTP 403")
    pool.current_index = 1

    assert pool.rotate() is False
    assert pool.current_index == 0


def test_rotate_can_return_to_current_key_when_it_is_the_only_clean_one():
    pool = _pool(A, B)
    pool.mark_failed(B, "HTTP 500")

    assert pool.rotate() is True
    assert pool.current() == A


@pytest.mark.parametrize(
    ("message", "quota"),
    [
        ("quota exceeded", True),
        ("The request cannot be completed because you have exceeded your QUOTA.", True),
        ("dailyLimitExceeded", True),
        ("RateLimitExceeded for this key", True),
        ("HTTP 500", False),
        ("Network error", False),
        ("API key not valid. Please pass a valid API key.", False),
    ],
)
def test_mark_failed_classifies_quota_errors(message: str, quota: bool):
    clock = FakeClock()
    pool = _pool(A, clock=clock)

    pool.mark_failed(A, message)

    health = pool.health(A)
    assert health.failed is True
    assert health.quota_exceeded is quota
    assert health.last_failed_at == clock.now


def test_mark_success_counts_and_clears_failure():
    clock = FakeClock()
    pool = _pool(A, clock=clock)
    pool.mark_failed(A, "HTTP 500")

    pool.mark_success(A)
    pool.mark_success(A)

    health = pool.health(A)
    assert health.request_count == 2
    assert health.success_count == 2
    assert health.failed is False
    assert health.last_used_at == clock.now


def test_remove_before_current_keeps_pointer_on_same_key():
    pool = _pool(A, B, C)
    pool.current_index = 2

    assert pool.remove(A) is True

    assert pool.tokens == [B, C]
    assert pool.current() == C
    assert A not in pool.stats


def test_remove_current_key_stays_in_range():
    pool = _pool(A, B, C)
    pool.current_index = 0

    assert pool.remove(A) is True
    assert pool.current_index == 0
    assert pool.current() == B


def test_remove_last_key_clears_pointer_and_unknown_is_noop():
    pool = _pool(A)

    assert pool.remove(B) is False
    assert pool.remove(A) is True
    assert pool.current_index is None
    assert pool.current() is None


def test_snapshot_masks_tokens():
    pool = _pool(A, B)
    pool.current_index = 1

    snapshot = pool.snapshot()

    assert [entry.masked for entry in snapshot] == [mask_token(A), mask_token(B)]
    assert [entry.current for entry in snapshot] == [False, True]
    assert all(A not in entry.masked for entry in snapshot)


@pytest.mark.asyncio
async def test_save_and_load_preserve_order_index_and_stats(memory_store):
    clock = FakeClock()
    pool = _pool(C, A, B, clock=clock)
    pool.current_index = 2
    pool.mark_success(A)
    pool.mark_failed(B, "quota")
    await pool.save(memory_store)

    loaded = await CredentialPool.load(memory_store, clock=clock)

    assert loaded.tokens == [C, A, B]
    assert loaded.current_index == 2
    assert loaded.health(A).success_count == 1
    assert loaded.health(B).quota_exceeded is True
    assert loaded.health(B).last_failed_at == clock.now


@pytest.mark.asyncio
async def test_load_clears_failures_older_than_a_day(memory_store):
    clock = FakeClock()
    pool = _pool(A, B, clock=clock)
    pool.mark_failed(A, "quota exceeded")
    clock.advance(hours=20)
    pool.mark_failed(B, "quota exceeded")
    await pool.save(memory_store)

    clock.advance(hours=5)
    loaded = await CredentialPool.load(memory_store, clock=clock, failure_reset=timedelta(hours=24))

    assert loaded.health(A).failed is False
    assert loaded.health(A).quota_exceeded is False
    assert loaded.health(B).failed is True
    assert loaded.health(B).quota_exceeded is True


@pytest.mark.asyncio
async def test_load_resets_out_of_range_index(memory_store):
    await memory_store.set(KEYS_STORE_KEY, [A, B])
    await memory_store.set(INDEX_STORE_KEY, 7)
    await memory_store.set(STATS_STORE_KEY, "garbage")

    loaded = await CredentialPool.load(memory_store)

    assert loaded.current_index == 0
    assert loaded.health(B).failed is False


@pytest.mark.asyncio
async def test_load_empty_store_gives_empty_pool(memory_store):
    loaded = await CredentialPool.load(memory_store)
    assert len(loaded) == 0
    assert loaded.current_index is None


def test_mark_success_clears_quota_flag():
    pool = _pool(A)
    pool.mark_failed(A, "quota exceeded")

    pool.mark_success(A)

    assert pool.health(A).usable is True
