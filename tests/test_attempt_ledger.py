"""
Tests for the attempt ledger.
"""

import asyncio

import pytest

from voicegate.services.attempt_ledger import AttemptLedger

PHONE = "+51999888777"


class TestAttemptLedger:

    @pytest.mark.asyncio
    async def test_triggers_exactly_at_threshold(self, ledger):
        assert await ledger.record_failure(PHONE) == (1, False)
        assert await ledger.record_failure(PHONE) == (2, False)
        assert await ledger.record_failure(PHONE) == (3, True)
        assert await ledger.record_failure(PHONE) == (4, False)

    @pytest.mark.asyncio
    async def test_success_resets(self, ledger):
        await ledger.record_failure(PHONE)
        await ledger.record_failure(PHONE)

        await ledger.record_success(PHONE)

        assert await ledger.failure_count(PHONE) == 0
        assert await ledger.record_failure(PHONE) == (1, False)

    @pytest.mark.asyncio
    async def test_counts_are_per_number(self, ledger):
        await ledger.record_failure(PHONE)

        assert await ledger.failure_count("+51911222333") == 0

    @pytest.mark.asyncio
    async def test_counter_lapses_with_ttl(self, ledger, clock):
        await ledger.record_failure(PHONE)
        clock.advance(3601)

        assert await ledger.failure_count(PHONE) == 0

    @pytest.mark.asyncio
    async def test_lock_is_set_once(self, ledger):
        assert not await ledger.is_locked(PHONE)

        assert await ledger.lock(PHONE) is True
        assert await ledger.lock(PHONE) is False
        assert await ledger.is_locked(PHONE)

    @pytest.mark.asyncio
    async def test_lock_lapses_with_ttl(self, ledger, clock):
        await ledger.lock(PHONE)
        clock.advance(3600)

        assert not await ledger.is_locked(PHONE)

    @pytest.mark.asyncio
    async def test_concurrent_failures_trigger_once(self, ledger):
        results = await asyncio.gather(*[ledger.record_failure(PHONE) for _ in range(5)])

        assert sorted(count for count, _ in results) == [1, 2, 3, 4, 5]
        assert [triggered for _, triggered in results].count(True) == 1

    def test_rejects_zero_threshold(self, store):
        with pytest.raises(ValueError):
            AttemptLedger(store, threshold=0)
